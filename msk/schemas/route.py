"""
Route reconciliation schemas.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from msk.schemas.base import BaseSchema

UNSET_NEXT_HOP = "unset"


class RouteState(str, Enum):
    MISSING = "missing"
    MISMATCHED = "mismatched"
    MATCHING = "matching"


class RouteAction(str, Enum):
    CREATE = "create"
    REPLACE = "replace"
    SKIP = "skip"


class RouteTableView(BaseSchema):
    """路由表快照：目的 CIDR -> 下一跳 ID（无法识别的目标为 None）"""
    route_table_id: str
    name: str = ""
    routes: Dict[str, Optional[str]] = Field(default_factory=dict)


class RouteDecision(BaseSchema):
    """单个路由表的判定结果"""
    route_table_id: str
    route_table_name: str = ""
    destination_cidr: str
    desired_next_hop: str
    state: RouteState
    # 仅 MISMATCHED 时有意义；None 表示原路由没有下一跳
    previous_next_hop: Optional[str] = None

    @property
    def action(self) -> RouteAction:
        if self.state == RouteState.MISSING:
            return RouteAction.CREATE
        if self.state == RouteState.MISMATCHED:
            return RouteAction.REPLACE
        return RouteAction.SKIP

    @property
    def previous_display(self) -> str:
        return self.previous_next_hop or UNSET_NEXT_HOP


class RouteOutcome(BaseSchema):
    decision: RouteDecision
    applied: bool = False
    message: str = ""


class RouteReconcileReport(BaseSchema):
    vpc_id: str
    destination_cidr: str
    desired_next_hop: str
    dry_run: bool = False
    outcomes: List[RouteOutcome] = Field(default_factory=list)

    def count(self, action: RouteAction) -> int:
        return sum(1 for o in self.outcomes if o.decision.action == action)
