"""
Route reconciliation for the route tables of one VPC.
"""

from __future__ import annotations

import ipaddress
from typing import Any, Dict, List, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from msk.core.deadline import Deadline
from msk.core.exceptions import RemoteProtocolError, RouteMutationFailed, ValidationFailed
from msk.core.logging import logger
from msk.schemas.route import (
    RouteAction,
    RouteDecision,
    RouteOutcome,
    RouteReconcileReport,
    RouteState,
    RouteTableView,
)
from msk.utils.aws_utils import get_aws_client, get_name_from_tags

# 下一跳 ID 前缀 -> EC2 CreateRoute/ReplaceRoute 参数名（按前缀长度倒序匹配）
NEXT_HOP_PARAMETERS = {
    "pcx-": "VpcPeeringConnectionId",
    "tgw-": "TransitGatewayId",
    "nat-": "NatGatewayId",
    "igw-": "GatewayId",
    "vgw-": "GatewayId",
    "eni-": "NetworkInterfaceId",
    "vpce-": "VpcEndpointId",
    "lgw-": "LocalGatewayId",
    "cagw-": "CarrierGatewayId",
    "i-": "InstanceId",
}

# DescribeRouteTables 返回的路由中可能出现的下一跳字段
_ROUTE_TARGET_FIELDS = (
    "VpcPeeringConnectionId",
    "TransitGatewayId",
    "NatGatewayId",
    "GatewayId",
    "NetworkInterfaceId",
    "InstanceId",
    "LocalGatewayId",
    "CarrierGatewayId",
    "CoreNetworkArn",
)


def normalize_cidr(cidr: str) -> str:
    """规范化 IPv4/IPv6 CIDR，非法时抛出 ValueError"""
    return str(ipaddress.ip_network(cidr.strip(), strict=False))


def next_hop_parameter(next_hop: str) -> str:
    for prefix in sorted(NEXT_HOP_PARAMETERS, key=len, reverse=True):
        if next_hop.startswith(prefix):
            return NEXT_HOP_PARAMETERS[prefix]
    raise ValidationFailed(f"unsupported next hop id '{next_hop}'")


def route_next_hop(route: Mapping[str, Any]) -> Optional[str]:
    for field in _ROUTE_TARGET_FIELDS:
        if route.get(field):
            return route[field]
    return None


def classify_route_table(table: RouteTableView, cidr: str, next_hop: str) -> RouteDecision:
    """判定路由表中目标 CIDR 的状态：缺失 / 下一跳不一致 / 一致"""
    destination = normalize_cidr(cidr)
    decision = RouteDecision(
        route_table_id=table.route_table_id,
        route_table_name=table.name,
        destination_cidr=destination,
        desired_next_hop=next_hop,
        state=RouteState.MISSING,
    )
    for route_cidr, current in table.routes.items():
        if normalize_cidr(route_cidr) != destination:
            continue
        if current != next_hop:
            decision.state = RouteState.MISMATCHED
            decision.previous_next_hop = current
        else:
            decision.state = RouteState.MATCHING
        break
    return decision


class Ec2RouteTableGateway:
    """EC2 路由表读写"""

    def __init__(self, ec2_client=None):
        self.ec2 = ec2_client or get_aws_client("ec2")

    def list_route_tables(self, vpc_id: str) -> List[RouteTableView]:
        tables: List[RouteTableView] = []
        paginator = self.ec2.get_paginator("describe_route_tables")
        for page in paginator.paginate(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]):
            for table in page.get("RouteTables", []):
                routes: Dict[str, Optional[str]] = {}
                for route in table.get("Routes", []):
                    cidr = route.get("DestinationCidrBlock") or route.get("DestinationIpv6CidrBlock")
                    # 前缀列表路由没有 CIDR
                    if cidr:
                        routes[cidr] = route_next_hop(route)
                tables.append(
                    RouteTableView(
                        route_table_id=table["RouteTableId"],
                        name=get_name_from_tags(table.get("Tags")),
                        routes=routes,
                    )
                )
        return tables

    def _route_params(self, route_table_id: str, cidr: str, next_hop: str) -> Dict[str, str]:
        destination_key = (
            "DestinationIpv6CidrBlock" if ipaddress.ip_network(cidr).version == 6 else "DestinationCidrBlock"
        )
        return {
            "RouteTableId": route_table_id,
            destination_key: cidr,
            next_hop_parameter(next_hop): next_hop,
        }

    def create_route(self, route_table_id: str, cidr: str, next_hop: str) -> None:
        self.ec2.create_route(**self._route_params(route_table_id, cidr, next_hop))

    def replace_route(self, route_table_id: str, cidr: str, next_hop: str) -> None:
        self.ec2.replace_route(**self._route_params(route_table_id, cidr, next_hop))


class RouteReconcilerService:
    """路由对账：对 VPC 的每个路由表创建、替换或跳过目标路由"""

    def __init__(self, gateway: Ec2RouteTableGateway, deadline: Optional[Deadline] = None):
        self.gateway = gateway
        self.deadline = deadline or Deadline.unbounded()

    def _describe(self, decision: RouteDecision, dry_run: bool) -> str:
        table = f'route table "{decision.route_table_name}" (ID: {decision.route_table_id})'
        cidr = decision.destination_cidr
        hop = decision.desired_next_hop
        if decision.action == RouteAction.CREATE:
            if dry_run:
                return f"[DRY RUN] Would add route for CIDR {cidr} to {table} with next hop {hop}"
            return f"[SUCCESS] Route for CIDR {cidr} added to {table} with next hop {hop}"
        if decision.action == RouteAction.REPLACE:
            change = f"from next hop {decision.previous_display} to next hop {hop}"
            if dry_run:
                return f"[DRY RUN] Would update route for CIDR {cidr} in {table} {change}"
            return f"[SUCCESS] Route for CIDR {cidr} updated in {table} {change}"
        return f"Route for CIDR {cidr} already exists in {table} with next hop {hop}, skipping"

    def reconcile(self, vpc_id: str, cidr: str, next_hop: str, dry_run: bool = False) -> RouteReconcileReport:
        destination = normalize_cidr(cidr)
        next_hop_parameter(next_hop)
        report = RouteReconcileReport(
            vpc_id=vpc_id, destination_cidr=destination, desired_next_hop=next_hop, dry_run=dry_run
        )

        self.deadline.check(f"describing route tables of {vpc_id}")
        try:
            tables = self.gateway.list_route_tables(vpc_id)
        except (ClientError, BotoCoreError) as exc:
            raise RemoteProtocolError(
                f"failed to describe route tables for VPC {vpc_id}: {exc}", vpc_id=vpc_id
            ) from exc

        if not tables:
            logger.info(f"No route tables found for VPC {vpc_id}")
            return report
        logger.info(f"Found {len(tables)} route tables for VPC {vpc_id}")

        for table in tables:
            self.deadline.check(f"reconciling route table {table.route_table_id}")
            decision = classify_route_table(table, destination, next_hop)
            outcome = RouteOutcome(decision=decision)
            if decision.action != RouteAction.SKIP and not dry_run:
                try:
                    if decision.action == RouteAction.CREATE:
                        self.gateway.create_route(table.route_table_id, destination, next_hop)
                    else:
                        self.gateway.replace_route(table.route_table_id, destination, next_hop)
                except (ClientError, BotoCoreError) as exc:
                    verb = "create" if decision.action == RouteAction.CREATE else "replace"
                    logger.error(f"路由变更失败: 路由表={table.route_table_id}, 操作={verb}, 错误={exc}")
                    raise RouteMutationFailed(
                        f'failed to {verb} route for CIDR {destination} in route table "{table.name}": {exc}',
                        route_table_id=table.route_table_id,
                        vpc_id=vpc_id,
                    ) from exc
                outcome.applied = True
            outcome.message = self._describe(decision, dry_run)
            logger.info(outcome.message)
            report.outcomes.append(outcome)
        return report
