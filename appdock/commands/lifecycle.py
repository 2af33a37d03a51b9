"""Lifecycle commands: status, list, stats, stop, destroy, retry, reconcile."""

import asyncio
import logging
import sys

from appdock.commands.common import add_common_args, build_orchestrator, log_deployment
from appdock.errors import AdmissionRejected, DeploymentSuperseded, NotFoundError, StepTimeoutError, ValidationError
from appdock.state.types import DeploymentStatus

logger = logging.getLogger(__name__)


async def _run(args, action):
    orchestrator = build_orchestrator(args)
    try:
        return await action(orchestrator)
    except (NotFoundError, ValidationError, AdmissionRejected, DeploymentSuperseded, StepTimeoutError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


def handle_status(args):
    async def action(orch):
        log_deployment(await orch.get(args.deployment_id))

    asyncio.run(_run(args, action))


def handle_list(args):
    async def action(orch):
        deployments = await orch.history(owner_id=args.owner, status=args.status, limit=args.limit)
        if not deployments:
            logger.info("No deployments.")
            return
        for d in deployments:
            endpoint = d.endpoint or ""
            logger.info(f"{d.id}  {d.status.value:<16} {d.owner_id:<12} {d.created_at:%Y-%m-%d %H:%M:%S}  {endpoint}")

    asyncio.run(_run(args, action))


def handle_stats(args):
    async def action(orch):
        stats = await orch.stats(owner_id=args.owner)
        logger.info(f"Deployments: {stats['total']} ({stats['active']} in progress)")
        for status, count in sorted(stats["by_status"].items()):
            logger.info(f"  {status:<16} {count}")
        if args.owner is None:
            for owner, count in sorted(stats["by_owner"].items()):
                logger.info(f"  owner {owner:<12} {count}")
        if stats["success_rate"] is not None:
            logger.info(f"Success rate: {stats['success_rate']:.0%}")
        if stats["average_time_to_running"] is not None:
            logger.info(f"Average time to running: {stats['average_time_to_running']:.1f}s")

    asyncio.run(_run(args, action))


def _lifecycle_handler(method_name):
    def handler(args):
        async def action(orch):
            handle = await getattr(orch, method_name)(args.deployment_id)
            log_deployment(await orch.get(handle.id))
            if handle.status == DeploymentStatus.FAILED:
                sys.exit(1)

        asyncio.run(_run(args, action))

    return handler


handle_stop = _lifecycle_handler("stop")
handle_destroy = _lifecycle_handler("destroy")
handle_retry = _lifecycle_handler("retry")


def handle_reconcile(args):
    async def action(orch):
        report = await orch.reconcile(stale_after=args.stale_after, max_age=args.max_age, owner_id=args.owner)
        for dep_id in report.interrupted:
            logger.info(f"  interrupted: {dep_id}")
        for dep_id in report.expired:
            logger.info(f"  expired:     {dep_id}")
        for dep_id in report.destroyed:
            logger.info(f"  destroyed:   {dep_id}")
        for dep_id, error in report.errors.items():
            logger.info(f"  error:       {dep_id}: {error}")
        if report.clean:
            logger.info("Reconcile complete.")
        else:
            sys.exit(1)

    asyncio.run(_run(args, action))


def register_lifecycle_commands(subparsers):
    """Register status, list, stats, stop, destroy, retry and reconcile."""
    for name, handler, help_text in (
        ("status", handle_status, "Show one deployment"),
        ("stop", handle_stop, "Stop a running deployment's application"),
        ("destroy", handle_destroy, "Destroy a deployment's sandbox"),
        ("retry", handle_retry, "Redeploy a failed deployment's config as a new deployment"),
    ):
        parser = subparsers.add_parser(name, help=help_text)
        parser.add_argument("deployment_id", help="Deployment id (dep_...)")
        add_common_args(parser)
        parser.set_defaults(func=handler)

    parser = subparsers.add_parser("list", help="List deployments, newest first")
    parser.add_argument("--status", default=None, choices=[s.value for s in DeploymentStatus], help="Filter by status")
    parser.add_argument("--owner", default=None, help="Only this owner's deployments")
    parser.add_argument("--limit", type=int, default=None, help="Show at most N deployments")
    add_common_args(parser)
    parser.set_defaults(func=handle_list)

    parser = subparsers.add_parser("stats", help="Deployment counts and success rate")
    parser.add_argument("--owner", default=None, help="Only this owner's deployments")
    add_common_args(parser)
    parser.set_defaults(func=handle_stats)

    parser = subparsers.add_parser("reconcile", help="Fail orphaned deployments and destroy leaked or expired sandboxes")
    parser.add_argument(
        "--stale-after",
        type=float,
        default=None,
        help="Seconds an in-progress deployment must be idle before it counts as orphaned (default: from policy)",
    )
    parser.add_argument(
        "--max-age",
        type=float,
        default=None,
        help="Destroy running/stopped deployments older than this many seconds (default: policy cleanup.max_age)",
    )
    parser.add_argument("--owner", default=None, help="Only sweep this owner's deployments")
    add_common_args(parser)
    parser.set_defaults(func=handle_reconcile)
