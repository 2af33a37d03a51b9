"""Shared CLI plumbing: common flags and orchestrator construction."""

import logging
import os
import sys

from appdock.config import load_policy
from appdock.deploy.orchestrate import DeploymentOrchestrator
from appdock.provisioning.dryrun import DryRunProvisioningClient
from appdock.provisioning.sandbox_api import DEFAULT_API_URL, SandboxApiClient
from appdock.state.store import JsonFileStateStore

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = os.path.join(".appdock", "state.json")


def add_common_args(parser):
    parser.add_argument(
        "--state-file",
        default=os.environ.get("APPDOCK_STATE_FILE", DEFAULT_STATE_FILE),
        help=f"Deployment state file (default: $APPDOCK_STATE_FILE or {DEFAULT_STATE_FILE})",
    )
    parser.add_argument("--config", default=None, help="Orchestration policy YAML file")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("SANDBOX_API_URL", DEFAULT_API_URL),
        help="Sandbox provider API URL (default: $SANDBOX_API_URL)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Log provider calls instead of making them")


def build_orchestrator(args) -> DeploymentOrchestrator:
    """Wire policy, provider client and state store from CLI args."""
    try:
        policy = load_policy(args.config)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    if args.dry_run:
        client = DryRunProvisioningClient()
    else:
        api_key = os.environ.get("SANDBOX_API_KEY") or os.environ.get("APPDOCK_API_KEY")
        if not api_key:
            logger.error("Error: SANDBOX_API_KEY env var required (or use --dry-run)")
            sys.exit(1)
        client = SandboxApiClient(api_key=api_key, api_url=args.api_url)

    return DeploymentOrchestrator(client, JsonFileStateStore(args.state_file), policy=policy)


def log_deployment(d) -> None:
    """Print a deployment record in human-readable form."""
    logger.info(f"Deployment: {d.id}")
    logger.info(f"  Owner:     {d.owner_id}")
    logger.info(f"  Status:    {d.status.value}")
    if d.project_kind:
        logger.info(f"  Project:   {d.project_kind} ({d.framework})")
    if d.endpoint:
        logger.info(f"  Endpoint:  {d.endpoint}")
    if d.provider_handle:
        logger.info(f"  Sandbox:   {d.provider_handle.sandbox_id} ({d.provider_handle.provider})")
    if d.error:
        logger.info(f"  Error:     [{d.error.kind}] {d.error.message}")
    logger.info(f"  History:   {' -> '.join(d.history)}")
    logger.info(f"  Updated:   {d.updated_at.isoformat()}")
