"""
Cluster store: per-page upsert of clusters and their nodes, stale marking.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterator, List, Sequence, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from msk.core.exceptions import StaleMarkFailed, StoreWriteFailed
from msk.core.logging import logger
from msk.models.cluster import Cluster, ClusterNode
from msk.schemas.sync import ACTION_UPDATE, FieldChange, RecordChange
from msk.schemas.tidbcloud import ClusterItem
from msk.services.base import BaseService
from msk.utils.date_utils import parse_unix_seconds, utc_now


class ClusterStoreService(BaseService[Cluster]):
    """集群存储服务（节点随集群在同一事务内写入）"""

    resource = "clusters"

    def __init__(self, db: Session, clock=utc_now):
        super().__init__(db, Cluster, clock)

    def _to_row(self, project_id: str, item: ClusterItem) -> Dict[str, Any]:
        try:
            create_timestamp = parse_unix_seconds(item.create_timestamp)
        except ValueError as exc:
            raise StoreWriteFailed(
                f"invalid create_timestamp {item.create_timestamp!r}", item_id=item.id
            ) from exc
        if item.project_id and item.project_id != project_id:
            logger.warning(
                f"集群所属项目与请求项目不一致，按请求项目写入: 集群={item.id}, "
                f"返回项目={item.project_id}, 请求项目={project_id}"
            )
        return {
            "id": item.id,
            "project_id": project_id,
            "name": item.name,
            "cluster_type": item.cluster_type,
            "cloud_provider": item.cloud_provider,
            "region": item.region,
            "create_timestamp": create_timestamp,
            "tidb_version": item.status.tidb_version,
            "cluster_status": item.status.cluster_status,
        }

    def _node_rows(self, item: ClusterItem) -> Iterator[Tuple[str, Dict[str, Any]]]:
        for component, node in item.status.node_map.iter_nodes():
            yield node.node_name, {
                "cluster_id": item.id,
                "node_name": node.node_name,
                "component_type": component,
                "availability_zone": node.availability_zone,
                "node_size": node.node_size,
                "vcpu_num": node.vcpu_num,
                "ram_bytes": node.ram_bytes,
                "storage_size_gib": node.storage_size_gib,
                "status": node.status,
            }

    def _store_nodes(self, item: ClusterItem, now: datetime) -> int:
        """写入集群节点，并把本次未出现的节点标记为删除"""
        seen = set()
        for node_name, row in self._node_rows(item):
            try:
                self.upsert(ClusterNode, row, now)
            except SQLAlchemyError as exc:
                raise self.write_error(exc, item_id=f"{item.id}/{node_name}") from exc
            seen.add(node_name)

        filters = [ClusterNode.cluster_id == item.id]
        if seen:
            filters.append(ClusterNode.node_name.notin_(sorted(seen)))
        return self.soft_delete(ClusterNode, now, *filters)

    def store(self, parent_key: str, items: Sequence[ClusterItem]) -> None:
        """一页集群（含节点）在一个事务中写入，任一失败整页回滚"""
        if not items:
            return
        now = self.clock()
        item_id = None
        removed_nodes = 0
        try:
            for item in items:
                item_id = item.id
                self.upsert(Cluster, self._to_row(parent_key, item), now)
                removed_nodes += self._store_nodes(item, now)
            item_id = None
            self.commit()
        except Exception as exc:
            self.rollback()
            error = self.write_error(exc, item_id=item_id)
            if error is exc:
                raise
            raise error from exc
        logger.debug(
            f"集群写入完成: 项目={parent_key}, 集群数={len(items)}, 删除节点数={removed_nodes}"
        )

    def mark_stale(self, parent_key: str, sync_epoch: datetime) -> int:
        """本次同步未触达的集群及其节点标记为删除"""
        try:
            stale_ids = [
                row[0]
                for row in self.db.query(Cluster.id)
                .filter(
                    Cluster.project_id == parent_key,
                    Cluster.updated_at < sync_epoch,
                    Cluster.is_deleted == False,  # noqa: E712
                )
                .all()
            ]
            count = 0
            if stale_ids:
                now = self.clock()
                count = self.soft_delete(Cluster, now, Cluster.id.in_(stale_ids))
                self.soft_delete(ClusterNode, now, ClusterNode.cluster_id.in_(stale_ids))
            self.commit()
        except SQLAlchemyError as exc:
            self.rollback()
            raise StaleMarkFailed(f"failed to mark stale clusters: {exc}", parent_key=parent_key) from exc
        if stale_ids:
            logger.info(f"集群标记删除: 项目={parent_key}, 集群={stale_ids}")
        return count

    def _preview_nodes(self, item: ClusterItem) -> List[RecordChange]:
        existing = {n.node_name: n for n in self.load_existing(ClusterNode, ClusterNode.cluster_id == item.id)}
        changes = []
        seen = set()
        for node_name, row in self._node_rows(item):
            seen.add(node_name)
            changes.append(self.compare(f"{item.id}/{node_name}", existing.get(node_name), row))
        for node_name, node in sorted(existing.items()):
            if node_name not in seen and not node.is_deleted:
                changes.append(
                    RecordChange(
                        record_id=f"{item.id}/{node_name}",
                        action=ACTION_UPDATE,
                        changes=[FieldChange(field="is_deleted", old=False, new=True)],
                    )
                )
        return [change for change in changes if change is not None]

    def preview(self, parent_key: str, items: Sequence[ClusterItem]) -> List[RecordChange]:
        """只读：一页集群（含节点）写入后会新增或修改哪些字段"""
        rows = {item.id: self._to_row(parent_key, item) for item in items}
        existing = {c.id: c for c in self.load_existing(Cluster, Cluster.id.in_(list(rows)))}
        changes = []
        for item in items:
            change = self.compare(item.id, existing.get(item.id), rows[item.id])
            if change is not None:
                changes.append(change)
            changes.extend(self._preview_nodes(item))
        return changes

    def list_live_ids(self, parent_key: str) -> Set[str]:
        return self.live_ids(Cluster.project_id == parent_key)
