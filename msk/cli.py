"""
Command line entry point.
"""

from __future__ import annotations

import argparse
import ipaddress
import json
import sys
from typing import Any, Callable, List, Optional

import yaml

from msk.config.database import SessionLocal, init_database, ping_database
from msk.config.settings import settings
from msk.core.deadline import Deadline
from msk.core.exceptions import CustomException
from msk.core.logging import logger
from msk.core.pagination import MAX_PAGE_SIZE
from msk.schemas.route import RouteAction, RouteReconcileReport
from msk.schemas.sync import SyncSummary
from msk.services.route_reconciler_service import Ec2RouteTableGateway, RouteReconcilerService
from msk.services.sync_service import sync_clusters, sync_projects
from msk.services.tidbcloud_service import TiDBCloudClient
from msk.services.vpc_service import VpcService
from msk.utils.date_utils import format_datetime


def _page_size(value: str) -> int:
    size = int(value)
    if size < 1 or size > MAX_PAGE_SIZE:
        raise argparse.ArgumentTypeError(f"page size must be between 1 and {MAX_PAGE_SIZE}")
    return size


def _positive_seconds(value: str) -> float:
    seconds = float(value)
    if seconds <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive")
    return seconds


def _prefixed(prefix: str) -> Callable[[str], str]:
    def validate(value: str) -> str:
        if not value.startswith(prefix):
            raise argparse.ArgumentTypeError(f"must start with '{prefix}'")
        return value
    return validate


def _cidr(value: str) -> str:
    try:
        return str(ipaddress.ip_network(value, strict=True))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid CIDR '{value}': {exc}")


def _add_sync_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--page-size", type=_page_size, default=settings.MSK_PAGE_SIZE, help="Items per API page (1-100)")
    parser.add_argument(
        "--http-timeout",
        type=_positive_seconds,
        default=settings.MSK_HTTP_TIMEOUT_SECONDS,
        help="Timeout in seconds for a single API request",
    )
    parser.add_argument(
        "--job-timeout",
        type=_positive_seconds,
        default=settings.MSK_JOB_TIMEOUT_SECONDS,
        help="Time limit in seconds for the whole run",
    )
    parser.add_argument("--dry-run", action="store_true", help="Fetch and report without writing to the database")
    parser.add_argument("--output", choices=["text", "json"], default="text")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="msk", description="TiDB Cloud inventory sync and AWS network helpers")
    subparsers = parser.add_subparsers(dest="command", required=True)

    projects = subparsers.add_parser("fetch-projects", help="Sync all projects visible to the API key")
    _add_sync_options(projects)

    clusters = subparsers.add_parser("fetch-clusters", help="Sync clusters of one or more projects")
    scope = clusters.add_mutually_exclusive_group(required=True)
    scope.add_argument("--project-id", action="append", dest="project_ids", help="Project ID (repeatable)")
    scope.add_argument("--all", action="store_true", help="All stored projects that have clusters")
    _add_sync_options(clusters)

    routes = subparsers.add_parser("update-routes", help="Ensure a route exists in every route table of a VPC")
    routes.add_argument("--vpc-id", required=True, type=_prefixed("vpc-"))
    routes.add_argument("--cidr", required=True, type=_cidr, help="Destination CIDR block")
    routes.add_argument("--peer-id", required=True, type=_prefixed("pcx-"), help="VPC peering connection ID")
    routes.add_argument("--dry-run", action="store_true", help="Report the changes without applying them")
    routes.add_argument("--job-timeout", type=_positive_seconds, default=settings.MSK_JOB_TIMEOUT_SECONDS)
    routes.add_argument("--output", choices=["text", "json"], default="text")

    vpc_info = subparsers.add_parser("show-vpc-info", help="Show VPC CIDR and AWS account ID")
    vpc_info.add_argument("--vpc-id", required=True, type=_prefixed("vpc-"))
    vpc_info.add_argument("--output", choices=["text", "json", "yaml"], default="text")

    peering = subparsers.add_parser("accept-peering", help="Accept a pending VPC peering connection")
    peering.add_argument("--peering-id", required=True, type=_prefixed("pcx-"))
    mode = peering.add_mutually_exclusive_group()
    mode.add_argument("--check-only", action="store_true", help="Only report the peering state")
    mode.add_argument("--dry-run", action="store_true", help="Report what would be done")

    init_db = subparsers.add_parser("init-db", help="Create the database tables")
    init_db.add_argument("--drop", action="store_true", help="Drop the tables instead")
    return parser


def _open_session():
    db = SessionLocal()
    try:
        ping_database(db)
    except CustomException:
        db.close()
        raise
    return db


def _tidbcloud_client(args: argparse.Namespace, deadline: Deadline) -> TiDBCloudClient:
    return TiDBCloudClient(timeout=args.http_timeout, deadline=deadline)


def _route_gateway() -> Ec2RouteTableGateway:
    return Ec2RouteTableGateway()


def _vpc_service() -> VpcService:
    return VpcService()


def _print(text: str) -> None:
    sys.stdout.write(text.rstrip("\n") + "\n")


def render_summary(summary: SyncSummary) -> str:
    prefix = "[DRY RUN] " if summary.dry_run else ""
    lines = [
        f"{prefix}Synced {summary.items_processed} {summary.resource} across "
        f"{summary.parents_processed} parent(s); {summary.items_marked_stale} marked as deleted"
    ]
    for parent in summary.parents:
        stale = len(parent.would_mark_stale) if parent.dry_run else parent.items_marked_stale
        lines.append(
            f"  {parent.parent_key}: pages={parent.pages_fetched} items={parent.items_processed} "
            f"deleted={stale} epoch={format_datetime(parent.sync_epoch)}"
        )
        for change in parent.would_change:
            lines.append(f"    would {change.action}: {change.record_id} ({change.describe()})")
        for stale_id in parent.would_mark_stale:
            lines.append(f"    would mark deleted: {stale_id}")
    return "\n".join(lines)


def render_route_report(report: RouteReconcileReport) -> str:
    if not report.outcomes:
        return f"No route tables found for VPC {report.vpc_id}"
    lines = [f"Found {len(report.outcomes)} route tables for VPC {report.vpc_id}"]
    lines.extend(outcome.message for outcome in report.outcomes)
    lines.append(
        f"created={report.count(RouteAction.CREATE)} replaced={report.count(RouteAction.REPLACE)} "
        f"skipped={report.count(RouteAction.SKIP)}"
    )
    return "\n".join(lines)


def _dump(payload: Any, output: str) -> str:
    if output == "yaml":
        return yaml.safe_dump(payload, sort_keys=False)
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _run_sync(args: argparse.Namespace) -> int:
    deadline = Deadline(args.job_timeout)
    db = _open_session()
    try:
        with _tidbcloud_client(args, deadline) as client:
            if args.command == "fetch-projects":
                summary = sync_projects(
                    db, client, page_size=args.page_size, deadline=deadline, dry_run=args.dry_run
                )
            else:
                summary = sync_clusters(
                    db,
                    client,
                    project_ids=None if args.all else args.project_ids,
                    page_size=args.page_size,
                    deadline=deadline,
                    dry_run=args.dry_run,
                )
    finally:
        db.close()
    if args.output == "json":
        _print(_dump(summary.model_dump(mode="json"), "json"))
    else:
        _print(render_summary(summary))
    return 0


def _run_update_routes(args: argparse.Namespace) -> int:
    service = RouteReconcilerService(_route_gateway(), deadline=Deadline(args.job_timeout))
    report = service.reconcile(args.vpc_id, args.cidr, args.peer_id, dry_run=args.dry_run)
    if args.output == "json":
        _print(_dump(report.model_dump(mode="json"), "json"))
    else:
        _print(render_route_report(report))
    return 0


def _run_show_vpc_info(args: argparse.Namespace) -> int:
    info = _vpc_service().fetch_vpc_info(args.vpc_id)
    if args.output == "text":
        _print(f"VPC ID: {info.vpc_id}, CIDR Block: {info.cidr_block}, AWS Account ID: {info.account_id}")
    else:
        payload = {"vpc_id": info.vpc_id, "cidr_block": info.cidr_block, "aws_account_id": info.account_id}
        _print(_dump(payload, args.output))
    return 0


def _run_accept_peering(args: argparse.Namespace) -> int:
    result = _vpc_service().accept_peering(args.peering_id, check_only=args.check_only, dry_run=args.dry_run)
    _print(result.message)
    return 0


def _run_init_db(args: argparse.Namespace) -> int:
    init_database(drop=args.drop)
    _print("database tables dropped" if args.drop else "database tables created")
    return 0


COMMANDS = {
    "fetch-projects": _run_sync,
    "fetch-clusters": _run_sync,
    "update-routes": _run_update_routes,
    "show-vpc-info": _run_show_vpc_info,
    "accept-peering": _run_accept_peering,
    "init-db": _run_init_db,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.command](args)
    except CustomException as exc:
        logger.error(f"命令执行失败: command={args.command}, code={exc.code}, {exc}")
        sys.stderr.write(f"Error: {exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
