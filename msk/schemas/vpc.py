"""
VPC info and peering schemas.
"""

from __future__ import annotations

from typing import Optional

from msk.schemas.base import BaseSchema


class VpcInfo(BaseSchema):
    vpc_id: str
    cidr_block: str
    account_id: str
    region: Optional[str] = None


class PeeringResult(BaseSchema):
    peering_id: str
    status: str
    # accepted | would_accept | already_active | skipped
    action: str
    message: str = ""
