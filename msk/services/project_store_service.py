"""
Project store: per-page upsert, stale marking and active project lookup.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from msk.core.exceptions import StaleMarkFailed
from msk.core.logging import logger
from msk.models.project import Project
from msk.schemas.sync import RecordChange
from msk.schemas.tidbcloud import ProjectItem
from msk.services.base import BaseService
from msk.utils.date_utils import parse_unix_seconds, utc_now

# 项目没有上级，使用固定的 parent key 表示“API key 可见的所有项目”
PROJECT_SCOPE = "*"


class ProjectStoreService(BaseService[Project]):
    """项目存储服务"""

    resource = "projects"

    def __init__(self, db: Session, clock=utc_now):
        super().__init__(db, Project, clock)

    def _to_row(self, item: ProjectItem) -> Dict[str, Any]:
        try:
            create_timestamp = parse_unix_seconds(item.create_timestamp)
        except ValueError:
            # 项目创建时间无法解析时记为 0，不中断同步
            logger.warning(
                f"项目创建时间无法解析，按 0 处理: 项目={item.id}, createTimestamp={item.create_timestamp!r}"
            )
            create_timestamp = 0
        return {
            "id": item.id,
            "org_id": item.org_id,
            "name": item.name,
            "cluster_count": item.cluster_count,
            "user_count": item.user_count,
            "create_timestamp": create_timestamp,
            "aws_cmek_enabled": item.aws_cmek_enabled,
        }

    def store(self, parent_key: str, items: Sequence[ProjectItem]) -> None:
        """一页项目在一个事务中写入，任一失败整页回滚"""
        if not items:
            return
        now = self.clock()
        item_id = None
        try:
            for item in items:
                item_id = item.id
                self.upsert(Project, self._to_row(item), now)
            item_id = None
            self.commit()
        except Exception as exc:
            self.rollback()
            error = self.write_error(exc, item_id=item_id)
            if error is exc:
                raise
            raise error from exc
        logger.debug(f"项目写入完成: 数量={len(items)}")

    def mark_stale(self, parent_key: str, sync_epoch: datetime) -> int:
        """本次同步未触达的项目标记为删除（parent_key 固定为全部项目）"""
        try:
            count = self.soft_delete(Project, self.clock(), Project.updated_at < sync_epoch)
            self.commit()
        except SQLAlchemyError as exc:
            self.rollback()
            raise StaleMarkFailed(f"failed to mark stale projects: {exc}", parent_key=parent_key) from exc
        return count

    def preview(self, parent_key: str, items: Sequence[ProjectItem]) -> List[RecordChange]:
        """只读：一页项目写入后会新增或修改哪些字段"""
        rows = {item.id: self._to_row(item) for item in items}
        existing = {p.id: p for p in self.load_existing(Project, Project.id.in_(list(rows)))}
        changes = [self.compare(project_id, existing.get(project_id), row) for project_id, row in rows.items()]
        return [change for change in changes if change is not None]

    def list_live_ids(self, parent_key: str) -> Set[str]:
        return self.live_ids()

    def list_active_project_ids(self) -> List[str]:
        """拥有集群且未删除的项目ID"""
        try:
            rows = (
                self.db.query(Project.id)
                .filter(Project.is_deleted == False, Project.cluster_count > 0)  # noqa: E712
                .order_by(Project.id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise self.read_error(exc) from exc
        return [row[0] for row in rows]
