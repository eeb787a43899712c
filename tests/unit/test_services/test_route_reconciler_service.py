"""
Test Route Reconciler Service
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from msk.core.deadline import Deadline
from msk.core.exceptions import RemoteProtocolError, RouteMutationFailed, RunCancelled, ValidationFailed
from msk.schemas.route import RouteAction, RouteState, RouteTableView
from msk.services.route_reconciler_service import (
    Ec2RouteTableGateway,
    RouteReconcilerService,
    classify_route_table,
    next_hop_parameter,
)

CIDR = "10.10.0.0/16"
PEER = "pcx-new"


def _client_error(operation):
    return ClientError({"Error": {"Code": "InvalidParameterValue", "Message": "nope"}}, operation)


class FakeGateway:
    def __init__(self, tables, fail_on=None):
        self.tables = tables
        self.fail_on = fail_on
        self.calls = []

    def list_route_tables(self, vpc_id):
        return list(self.tables)

    def create_route(self, route_table_id, cidr, next_hop):
        self._mutate("create", route_table_id, cidr, next_hop)

    def replace_route(self, route_table_id, cidr, next_hop):
        self._mutate("replace", route_table_id, cidr, next_hop)

    def _mutate(self, verb, route_table_id, cidr, next_hop):
        if route_table_id == self.fail_on:
            raise _client_error(f"{verb.title()}Route")
        self.calls.append((verb, route_table_id, cidr, next_hop))


def _tables():
    return [
        RouteTableView(route_table_id="rtb-missing", name="public", routes={"10.0.0.0/16": "local"}),
        RouteTableView(route_table_id="rtb-old", name="private", routes={CIDR: "pcx-old"}),
        RouteTableView(route_table_id="rtb-unset", name="", routes={CIDR: None}),
        RouteTableView(route_table_id="rtb-ok", name="db", routes={CIDR: PEER}),
    ]


def test_classify_route_table_states():
    """测试三种判定结果"""
    missing, old, unset, ok = [classify_route_table(t, CIDR, PEER) for t in _tables()]

    assert missing.state == RouteState.MISSING
    assert missing.action == RouteAction.CREATE
    assert old.state == RouteState.MISMATCHED
    assert old.previous_next_hop == "pcx-old"
    assert unset.state == RouteState.MISMATCHED
    assert unset.previous_display == "unset"
    assert ok.state == RouteState.MATCHING
    assert ok.action == RouteAction.SKIP


def test_classify_normalizes_cidr():
    """测试 CIDR 规范化后比较"""
    table = RouteTableView(route_table_id="rtb-1", routes={"10.10.0.0/16": PEER})
    assert classify_route_table(table, "10.10.1.0/16", PEER).state == RouteState.MATCHING


def test_next_hop_parameter():
    """测试下一跳参数映射"""
    assert next_hop_parameter("pcx-1") == "VpcPeeringConnectionId"
    assert next_hop_parameter("tgw-1") == "TransitGatewayId"
    assert next_hop_parameter("i-0abc") == "InstanceId"
    assert next_hop_parameter("igw-1") == "GatewayId"
    with pytest.raises(ValidationFailed):
        next_hop_parameter("unknown-1")


def test_reconcile_applies_minimal_changes():
    """测试只对缺失和不一致的路由表执行变更"""
    gateway = FakeGateway(_tables())

    report = RouteReconcilerService(gateway).reconcile("vpc-1", CIDR, PEER)

    assert gateway.calls == [
        ("create", "rtb-missing", CIDR, PEER),
        ("replace", "rtb-old", CIDR, PEER),
        ("replace", "rtb-unset", CIDR, PEER),
    ]
    assert report.count(RouteAction.CREATE) == 1
    assert report.count(RouteAction.REPLACE) == 2
    assert report.count(RouteAction.SKIP) == 1
    assert report.outcomes[0].message.startswith("[SUCCESS] Route for CIDR 10.10.0.0/16 added")
    assert "from next hop unset to next hop pcx-new" in report.outcomes[2].message
    assert report.outcomes[3].message.endswith("skipping")
    assert report.outcomes[3].applied is False


def test_reconcile_is_idempotent():
    """测试路由已一致时不做任何变更"""
    tables = [RouteTableView(route_table_id=f"rtb-{i}", routes={CIDR: PEER}) for i in range(3)]
    gateway = FakeGateway(tables)

    report = RouteReconcilerService(gateway).reconcile("vpc-1", CIDR, PEER)

    assert gateway.calls == []
    assert report.count(RouteAction.SKIP) == 3


def test_dry_run_never_mutates():
    """测试 dry-run 只报告"""
    gateway = FakeGateway(_tables())

    report = RouteReconcilerService(gateway).reconcile("vpc-1", CIDR, PEER, dry_run=True)

    assert gateway.calls == []
    assert report.dry_run is True
    assert report.outcomes[0].message.startswith("[DRY RUN] Would add route")
    assert "[DRY RUN] Would update route" in report.outcomes[1].message
    assert "from next hop pcx-old to next hop pcx-new" in report.outcomes[1].message
    assert all(not outcome.applied for outcome in report.outcomes)


def test_mutation_failure_stops_without_rollback():
    """测试某个路由表失败后立即中断，之前的变更保留"""
    gateway = FakeGateway(_tables(), fail_on="rtb-old")

    with pytest.raises(RouteMutationFailed) as exc_info:
        RouteReconcilerService(gateway).reconcile("vpc-1", CIDR, PEER)

    assert exc_info.value.context["route_table_id"] == "rtb-old"
    assert gateway.calls == [("create", "rtb-missing", CIDR, PEER)]


def test_no_route_tables():
    """测试 VPC 没有路由表"""
    report = RouteReconcilerService(FakeGateway([])).reconcile("vpc-1", CIDR, PEER)
    assert report.outcomes == []


def test_read_failure():
    """测试读取路由表失败"""
    gateway = MagicMock()
    gateway.list_route_tables.side_effect = _client_error("DescribeRouteTables")

    with pytest.raises(RemoteProtocolError):
        RouteReconcilerService(gateway).reconcile("vpc-1", CIDR, PEER)


def test_deadline_is_checked_per_table():
    """测试时限耗尽时不再处理路由表"""
    deadline = Deadline(60)
    deadline.cancel()
    gateway = FakeGateway(_tables())

    with pytest.raises(RunCancelled):
        RouteReconcilerService(gateway, deadline=deadline).reconcile("vpc-1", CIDR, PEER)
    assert gateway.calls == []


def test_ec2_gateway_reads_and_writes():
    """测试 EC2 路由表读取与写入参数"""
    ec2 = MagicMock()
    ec2.get_paginator.return_value.paginate.return_value = [
        {
            "RouteTables": [
                {
                    "RouteTableId": "rtb-1",
                    "Tags": [{"Key": "Name", "Value": "main"}],
                    "Routes": [
                        {"DestinationCidrBlock": "10.0.0.0/16", "GatewayId": "local"},
                        {"DestinationCidrBlock": CIDR, "VpcPeeringConnectionId": "pcx-old"},
                        {"DestinationPrefixListId": "pl-1", "GatewayId": "vpce-1"},
                    ],
                }
            ]
        }
    ]
    gateway = Ec2RouteTableGateway(ec2)

    tables = gateway.list_route_tables("vpc-1")
    gateway.create_route("rtb-1", CIDR, PEER)
    gateway.replace_route("rtb-1", CIDR, "tgw-1")

    ec2.get_paginator.assert_called_once_with("describe_route_tables")
    ec2.get_paginator.return_value.paginate.assert_called_once_with(
        Filters=[{"Name": "vpc-id", "Values": ["vpc-1"]}]
    )
    assert tables == [
        RouteTableView(route_table_id="rtb-1", name="main", routes={"10.0.0.0/16": "local", CIDR: "pcx-old"})
    ]
    ec2.create_route.assert_called_once_with(
        RouteTableId="rtb-1", DestinationCidrBlock=CIDR, VpcPeeringConnectionId=PEER
    )
    ec2.replace_route.assert_called_once_with(
        RouteTableId="rtb-1", DestinationCidrBlock=CIDR, TransitGatewayId="tgw-1"
    )
