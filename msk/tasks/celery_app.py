"""
Celery App Configuration
"""

from celery import Celery

from msk.config.settings import settings
from msk.core.logging import logger

# 创建Celery应用
celery_app = Celery(
    "msk",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["msk.tasks.sync_tasks"],
)

# Celery配置
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # 单次同步受 MSK_JOB_TIMEOUT_SECONDS 约束，这里只兜底
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,
    worker_prefetch_multiplier=1,
    # 任务确认机制：任务完成后才确认，防止重复执行
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=False,
    task_routes={"msk.tasks.sync_tasks.*": {"queue": "sync"}},
    task_default_priority=settings.CELERY_TASK_PRIORITY_DEFAULT,
)


def build_beat_schedule() -> dict:
    """根据配置生成定时任务表"""
    if not settings.MSK_SYNC_ENABLE_SCHEDULE:
        return {}
    interval = settings.MSK_SYNC_INTERVAL_SECONDS
    return {
        "msk-sync-inventory": {
            "task": "msk.tasks.sync_tasks.sync_inventory",
            "schedule": interval,
            "options": {"expires": interval},
        },
    }


celery_app.conf.beat_schedule = build_beat_schedule()
if celery_app.conf.beat_schedule:
    logger.debug(f"Celery Beat 已启用同步任务: 同步间隔={settings.MSK_SYNC_INTERVAL_SECONDS}秒")
