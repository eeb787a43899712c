"""
VPC lookups and VPC peering acceptance.
"""

from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError

from msk.core.exceptions import RemoteProtocolError, ResourceNotFound
from msk.core.logging import logger
from msk.schemas.vpc import PeeringResult, VpcInfo
from msk.utils.aws_utils import get_aws_client

PENDING_ACCEPTANCE = "pending-acceptance"
ACTIVE = "active"


class VpcService:
    """VPC 信息查询与对等连接接受"""

    def __init__(self, ec2_client=None, sts_client=None):
        self.ec2 = ec2_client or get_aws_client("ec2")
        self._sts = sts_client

    @property
    def sts(self):
        if self._sts is None:
            self._sts = get_aws_client("sts")
        return self._sts

    def fetch_vpc_info(self, vpc_id: str) -> VpcInfo:
        """VPC 主 IPv4 CIDR 以及调用方账号"""
        try:
            vpcs = self.ec2.describe_vpcs(VpcIds=[vpc_id]).get("Vpcs", [])
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "InvalidVpcID.NotFound":
                raise ResourceNotFound(f"no VPC found with ID: {vpc_id}", vpc_id=vpc_id) from exc
            raise RemoteProtocolError(f"unable to describe VPCs: {exc}", vpc_id=vpc_id) from exc
        except BotoCoreError as exc:
            raise RemoteProtocolError(f"unable to describe VPCs: {exc}", vpc_id=vpc_id) from exc
        if not vpcs:
            raise ResourceNotFound(f"no VPC found with ID: {vpc_id}", vpc_id=vpc_id)

        try:
            account_id = self.sts.get_caller_identity()["Account"]
        except (ClientError, BotoCoreError) as exc:
            raise RemoteProtocolError(f"failed to get AWS account ID: {exc}") from exc

        return VpcInfo(
            vpc_id=vpc_id,
            cidr_block=vpcs[0].get("CidrBlock", ""),
            account_id=account_id,
            region=self.ec2.meta.region_name,
        )

    def accept_peering(self, peering_id: str, check_only: bool = False, dry_run: bool = False) -> PeeringResult:
        """接受处于 pending-acceptance 的对等连接；check_only/dry_run 时只报告"""
        try:
            connections = self.ec2.describe_vpc_peering_connections(
                VpcPeeringConnectionIds=[peering_id]
            ).get("VpcPeeringConnections", [])
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "InvalidVpcPeeringConnectionID.NotFound":
                raise ResourceNotFound(
                    f"no VPC peering connection found with ID: {peering_id}", peering_id=peering_id
                ) from exc
            raise RemoteProtocolError(
                f"failed to describe VPC peering connection: {exc}", peering_id=peering_id
            ) from exc
        except BotoCoreError as exc:
            raise RemoteProtocolError(
                f"failed to describe VPC peering connection: {exc}", peering_id=peering_id
            ) from exc
        if not connections:
            raise ResourceNotFound(
                f"no VPC peering connection found with ID: {peering_id}", peering_id=peering_id
            )

        state = connections[0].get("Status", {}).get("Code", "")
        if state == PENDING_ACCEPTANCE:
            if check_only:
                return PeeringResult(
                    peering_id=peering_id,
                    status=state,
                    action="would_accept",
                    message=f'[CHECK] VPC peering connection {peering_id} is in "{state}".',
                )
            if dry_run:
                return PeeringResult(
                    peering_id=peering_id,
                    status=state,
                    action="would_accept",
                    message=f"[DRY RUN] Would accept VPC peering connection {peering_id}.",
                )
            logger.info(f"Accepting VPC peering connection {peering_id}...")
            try:
                self.ec2.accept_vpc_peering_connection(VpcPeeringConnectionId=peering_id)
            except (ClientError, BotoCoreError) as exc:
                raise RemoteProtocolError(
                    f"failed to accept VPC peering connection: {exc}", peering_id=peering_id
                ) from exc
            return PeeringResult(
                peering_id=peering_id,
                status=state,
                action="accepted",
                message=f"[SUCCESS] VPC peering connection {peering_id} accepted.",
            )
        if state == ACTIVE:
            return PeeringResult(
                peering_id=peering_id,
                status=state,
                action="already_active",
                message=f'[SKIP] VPC peering connection {peering_id} is already "{state}".',
            )
        return PeeringResult(
            peering_id=peering_id,
            status=state,
            action="skipped",
            message=f'[SKIP] VPC peering connection {peering_id} is in the state "{state}". No action taken.',
        )
