"""
Sync run result schemas.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field

from msk.schemas.base import BaseSchema

ACTION_INSERT = "insert"
ACTION_UPDATE = "update"


class FieldChange(BaseSchema):
    """单个字段的旧值与新值（新增记录的旧值为 None）"""
    field: str
    old: Any = None
    new: Any = None


class RecordChange(BaseSchema):
    """dry-run 时一条记录将发生的变更"""
    record_id: str
    action: str
    changes: List[FieldChange] = Field(default_factory=list)

    def describe(self) -> str:
        if self.action == ACTION_INSERT:
            return ", ".join(f"{c.field}={c.new!r}" for c in self.changes)
        return ", ".join(f"{c.field}: {c.old!r} -> {c.new!r}" for c in self.changes)


class ParentSyncResult(BaseSchema):
    """单个 parent key 的同步结果"""
    parent_key: str
    sync_epoch: datetime
    pages_fetched: int = 0
    items_processed: int = 0
    items_marked_stale: int = 0
    dry_run: bool = False
    # 仅 dry-run 时填充：本次会新增/修改的记录，以及会被标记删除的记录 ID
    would_change: List[RecordChange] = Field(default_factory=list)
    would_mark_stale: List[str] = Field(default_factory=list)

    def changes_by_action(self, action: str) -> List[RecordChange]:
        return [change for change in self.would_change if change.action == action]


class SyncSummary(BaseSchema):
    """整次同步的汇总"""
    resource: str
    parents_processed: int = 0
    items_processed: int = 0
    items_marked_stale: int = 0
    dry_run: bool = False
    parents: List[ParentSyncResult] = Field(default_factory=list)

    def merge(self, result: ParentSyncResult) -> "SyncSummary":
        self.parents.append(result)
        self.parents_processed += 1
        self.items_processed += result.items_processed
        if result.dry_run:
            self.items_marked_stale += len(result.would_mark_stale)
        else:
            self.items_marked_stale += result.items_marked_stale
        return self

    def parent(self, parent_key: str) -> Optional[ParentSyncResult]:
        for result in self.parents:
            if result.parent_key == parent_key:
                return result
        return None
