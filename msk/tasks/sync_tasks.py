"""
Celery tasks for periodic TiDB Cloud inventory sync.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from msk.config.database import SessionLocal
from msk.config.settings import settings
from msk.core.cache import cache_manager
from msk.core.deadline import Deadline
from msk.core.logging import logger
from msk.services.sync_service import sync_clusters, sync_projects
from msk.services.tidbcloud_service import TiDBCloudClient
from msk.tasks.celery_app import celery_app

# 确保模型在 Celery 进程中注册
import msk.models  # noqa: F401

SYNC_LOCK_KEY = "msk:sync_inventory_lock"


def run_inventory_sync(project_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    """先同步项目再同步集群，两步共享同一个时限"""
    deadline = Deadline(settings.MSK_JOB_TIMEOUT_SECONDS)
    db = SessionLocal()
    try:
        with TiDBCloudClient(deadline=deadline) as client:
            projects = sync_projects(db, client, page_size=settings.MSK_PAGE_SIZE, deadline=deadline)
            clusters = sync_clusters(
                db, client, project_ids=project_ids, page_size=settings.MSK_PAGE_SIZE, deadline=deadline
            )
    finally:
        db.close()
    return {"projects": projects.model_dump(mode="json"), "clusters": clusters.model_dump(mode="json")}


@celery_app.task(
    name="msk.tasks.sync_tasks.sync_inventory",
    priority=settings.CELERY_TASK_PRIORITY_SYNC,
    ignore_result=True,  # 忽略结果，避免存储任务结果
)
def sync_inventory() -> None:
    """定时同步项目与集群。"""
    if not settings.MSK_SYNC_ENABLE_SCHEDULE:
        return

    # 使用分布式锁防止两次同步同时写同一个库
    lock_value = str(uuid.uuid4())
    if not cache_manager.acquire_lock(
        SYNC_LOCK_KEY, timeout=settings.MSK_SYNC_LOCK_TIMEOUT_SECONDS, value=lock_value
    ):
        logger.warning("同步任务已在执行中，跳过本次执行")
        return

    try:
        result = run_inventory_sync()
        logger.info(
            f"定时同步任务完成: 项目数={result['projects']['items_processed']}, "
            f"集群数={result['clusters']['items_processed']}, "
            f"标记删除项目={result['projects']['items_marked_stale']}, "
            f"标记删除集群={result['clusters']['items_marked_stale']}"
        )
    except Exception as exc:
        logger.error(f"定时同步任务失败: {exc}", exc_info=True)
        raise
    finally:
        # 释放锁（使用锁的值确保只有持有者才能释放）
        cache_manager.release_lock(SYNC_LOCK_KEY, value=lock_value)
