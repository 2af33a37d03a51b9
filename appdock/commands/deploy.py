"""Deploy command: submit a project directory (or a spec file) to a sandbox."""

import asyncio
import logging
import os
import sys

from appdock.commands.common import add_common_args, build_orchestrator, log_deployment
from appdock.errors import AdmissionRejected, ValidationError
from appdock.project.detect import SPEC_FILENAMES
from appdock.project.files import FileSet, load_directory
from appdock.resilience.admission import Priority
from appdock.state.types import DeploymentConfig, DeploymentStatus

logger = logging.getLogger(__name__)


def parse_env_pairs(pairs) -> dict:
    """['KEY=VAL', ...] -> {'KEY': 'VAL'}"""
    env = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValueError(f"Invalid --env '{pair}', expected KEY=VALUE")
        key, value = pair.split("=", 1)
        if not key:
            raise ValueError(f"Invalid --env '{pair}', empty key")
        env[key] = value
    return env


def load_project(path) -> FileSet:
    """A directory is loaded as-is; a single YAML file is deployed as a spec."""
    if os.path.isfile(path):
        with open(path, encoding="utf-8") as f:
            source = f.read()
        files = FileSet()
        files.add(SPEC_FILENAMES[0], source)
        return files
    return load_directory(path)


def handle_deploy(args):
    """Handle the deploy command."""
    asyncio.run(_handle_deploy(args))


async def _handle_deploy(args):
    try:
        files = load_project(args.path)
        env = parse_env_pairs(args.env)
        config = DeploymentConfig.from_files(files, env=env, timeout=args.timeout, port=args.port)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    for warning in files.warnings:
        logger.warning(f"Warning: {warning}")

    orchestrator = build_orchestrator(args)
    try:
        handle = await orchestrator.deploy(args.owner, config, priority=args.priority)
    except ValidationError as e:
        logger.error(f"Invalid project: {e}")
        sys.exit(1)
    except AdmissionRejected as e:
        logger.error(f"Error: {e}")
        sys.exit(2)

    log_deployment(await orchestrator.get(handle.id))
    if handle.status != DeploymentStatus.RUNNING:
        sys.exit(1)


def register_deploy_command(subparsers):
    """Register the deploy subcommand."""
    parser = subparsers.add_parser("deploy", help="Deploy a project directory or spec file to a sandbox")
    parser.add_argument("path", help="Project directory, or a spec YAML file")
    parser.add_argument("--owner", default=os.environ.get("USER", "local"), help="Owner id (default: $USER)")
    parser.add_argument("--env", action="append", default=[], metavar="KEY=VALUE", help="Environment variable (repeatable)")
    parser.add_argument("--port", type=int, default=None, help="Application port (default: from policy)")
    parser.add_argument("--timeout", type=float, default=None, help="Aggregate deployment timeout in seconds")
    parser.add_argument(
        "--priority",
        default="normal",
        choices=[p.name.lower() for p in Priority],
        help="Admission priority (default: normal)",
    )
    add_common_args(parser)
    parser.set_defaults(func=handle_deploy)
