"""
Generic paginated sync: walks a remote listing to completion, upserts each
page, then marks records not touched by this run as deleted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Set

from sqlalchemy.orm import Session

from msk.core.deadline import Deadline
from msk.core.exceptions import CustomException, RemoteInconsistentPaging
from msk.core.logging import logger
from msk.core.pagination import Page, clamp_page_size, expected_pages
from msk.schemas.sync import ParentSyncResult, RecordChange, SyncSummary
from msk.services.cluster_store_service import ClusterStoreService
from msk.services.project_store_service import PROJECT_SCOPE, ProjectStoreService
from msk.services.tidbcloud_service import ClusterSource, ProjectSource, TiDBCloudClient
from msk.utils.date_utils import utc_now


class PaginatedSource(Protocol):
    """分页数据源：返回一页数据和远端报告的总数"""

    resource: str

    def fetch(self, parent_key: str, page: int, page_size: int) -> Page:
        ...


class UpsertStore(Protocol):
    """按页 upsert 的本地存储"""

    def store(self, parent_key: str, items: Sequence) -> None:
        ...

    def mark_stale(self, parent_key: str, sync_epoch: datetime) -> int:
        ...

    def list_live_ids(self, parent_key: str) -> Set[str]:
        ...

    def preview(self, parent_key: str, items: Sequence) -> List[RecordChange]:
        ...


class SyncService:
    """
    同步编排：对每个 parent key 依次执行
    START -> FETCH_PAGE -> STORE_PAGE -> ... -> MARK_STALE -> DONE。

    任一阶段失败立即中断整次运行（不返回部分结果），已提交的页保留。
    """

    def __init__(
        self,
        source: PaginatedSource,
        store: UpsertStore,
        page_size: int = 20,
        deadline: Optional[Deadline] = None,
        clock: Callable[[], datetime] = utc_now,
        dry_run: bool = False,
    ):
        self.source = source
        self.store = store
        self.page_size = clamp_page_size(page_size)
        self.deadline = deadline or Deadline.unbounded()
        self.clock = clock
        self.dry_run = dry_run

    @property
    def resource(self) -> str:
        return getattr(self.source, "resource", "records")

    def sync(self, parent_keys: Iterable[str]) -> SyncSummary:
        summary = SyncSummary(resource=self.resource, dry_run=self.dry_run)
        for parent_key in parent_keys:
            summary.merge(self.sync_parent(parent_key))
        logger.info(
            f"同步完成: 资源={self.resource}, parent 数={summary.parents_processed}, "
            f"处理数={summary.items_processed}, 标记删除数={summary.items_marked_stale}"
            + (" [DRY RUN]" if self.dry_run else "")
        )
        return summary

    def sync_parent(self, parent_key: str) -> ParentSyncResult:
        """同步单个 parent key 下的全部记录"""
        # 纪元必须早于第一次拉取，保证本次写入的记录 updated_at >= 纪元
        sync_epoch = self.clock()
        result = ParentSyncResult(parent_key=parent_key, sync_epoch=sync_epoch, dry_run=self.dry_run)
        seen_ids: Set[str] = set()
        page = 1
        total: Optional[int] = None
        stage = "fetch"

        try:
            while True:
                stage = "fetch"
                self.deadline.check(f"fetching {self.resource} page {page} of {parent_key}")
                batch = self.source.fetch(parent_key, page, self.page_size)
                if total is None:
                    total = batch.total
                    logger.info(
                        f"开始同步: 资源={self.resource}, parent={parent_key}, 总数={total}, "
                        f"预计页数={expected_pages(total, self.page_size)}"
                    )
                if batch.is_empty:
                    if result.items_processed < total:
                        raise RemoteInconsistentPaging(
                            f"empty page while only {result.items_processed} of {total} "
                            f"{self.resource} were processed",
                            processed=result.items_processed,
                            total=total,
                        )
                    break

                stage = "store"
                if self.dry_run:
                    changes = self.store.preview(parent_key, batch.items)
                    result.would_change.extend(changes)
                    for change in changes:
                        logger.info(
                            f"[DRY RUN] Would {change.action} {self.resource} {change.record_id}: {change.describe()}"
                        )
                else:
                    self.store.store(parent_key, batch.items)
                seen_ids.update(item.identifier for item in batch.items)
                result.pages_fetched += 1
                result.items_processed += len(batch.items)
                logger.debug(
                    f"分页处理完成: 资源={self.resource}, parent={parent_key}, page={page}, "
                    f"进度={result.items_processed}/{total}"
                )

                if result.items_processed >= total:
                    break
                page += 1

            stage = "mark_stale"
            self.deadline.check(f"marking stale {self.resource} of {parent_key}")
            if self.dry_run:
                result.would_mark_stale = sorted(self.store.list_live_ids(parent_key) - seen_ids)
                for stale_id in result.would_mark_stale:
                    logger.info(f"[DRY RUN] Would mark {self.resource} {stale_id} as deleted")
            else:
                result.items_marked_stale = self.store.mark_stale(parent_key, sync_epoch)
        except CustomException as exc:
            context = {"parent_key": parent_key, "stage": stage}
            if stage != "mark_stale":
                context["page"] = page
            exc.add_context(**context)
            logger.error(f"同步失败: 资源={self.resource}, {exc}")
            raise

        logger.info(
            f"parent 同步完成: 资源={self.resource}, parent={parent_key}, 页数={result.pages_fetched}, "
            f"处理数={result.items_processed}, 标记删除数={result.items_marked_stale}"
        )
        return result


def sync_projects(
    db: Session,
    client: TiDBCloudClient,
    page_size: int = 20,
    deadline: Optional[Deadline] = None,
    dry_run: bool = False,
) -> SyncSummary:
    """同步 API key 可见的全部项目"""
    service = SyncService(
        ProjectSource(client), ProjectStoreService(db), page_size=page_size, deadline=deadline, dry_run=dry_run
    )
    return service.sync([PROJECT_SCOPE])


def sync_clusters(
    db: Session,
    client: TiDBCloudClient,
    project_ids: Optional[Sequence[str]] = None,
    page_size: int = 20,
    deadline: Optional[Deadline] = None,
    dry_run: bool = False,
) -> SyncSummary:
    """同步指定项目的集群；未指定时同步所有拥有集群的项目"""
    if project_ids is None:
        project_ids = ProjectStoreService(db).list_active_project_ids()
        if not project_ids:
            logger.info("没有拥有集群的项目，跳过集群同步（请先执行 fetch-projects）")
    service = SyncService(
        ClusterSource(client), ClusterStoreService(db), page_size=page_size, deadline=deadline, dry_run=dry_run
    )
    return service.sync(project_ids)
