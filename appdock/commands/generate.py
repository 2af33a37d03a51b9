"""Generate and classify commands: work on local files, no provider involved."""

import logging
import os
import sys

from appdock.codegen import generate
from appdock.errors import NotFoundError, ValidationError
from appdock.project.detect import classify, start_command
from appdock.project.files import load_directory, write_directory
from appdock.spec.templates import get_template, list_templates

logger = logging.getLogger(__name__)


def handle_generate(args):
    """Handle the generate command."""
    if args.list_templates:
        for t in list_templates():
            logger.info(f"{t.id:<18} {t.name} ({t.complexity}): {t.description}")
        return

    if args.template:
        try:
            source = get_template(args.template).source
        except NotFoundError as e:
            logger.error(f"Error: {e}")
            sys.exit(1)
    elif args.spec:
        if not os.path.isfile(args.spec):
            logger.error(f"Error: spec file not found: {args.spec}")
            sys.exit(1)
        with open(args.spec, encoding="utf-8") as f:
            source = f.read()
    else:
        logger.error("Error: give a spec file or --template")
        sys.exit(1)

    try:
        files = generate(source, port=args.port)
    except ValidationError as e:
        logger.error(f"Invalid spec: {e}")
        sys.exit(1)

    for warning in files.warnings:
        logger.warning(f"Warning: {warning}")

    if args.out is None:
        for entry in files:
            logger.info(f"{entry.path} ({len(entry.content)} bytes)")
        return

    if os.path.isdir(args.out) and os.listdir(args.out) and not args.force:
        logger.error(f"Error: {args.out} is not empty (use --force to overwrite)")
        sys.exit(1)
    for path in write_directory(files, args.out):
        logger.info(f"  wrote {path}")


def handle_classify(args):
    """Handle the classify command."""
    try:
        files = load_directory(args.path)
    except FileNotFoundError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    result = classify(files)
    logger.info(f"Kind:       {result.kind}")
    logger.info(f"Framework:  {result.framework}")
    logger.info(f"Complexity: {result.complexity}")
    if result.spec_path:
        logger.info(f"Spec file:  {result.spec_path}")
    logger.info(f"Start:      {start_command(result, files, args.port)}")
    for note in result.evidence:
        logger.info(f"  - {note}")


def register_generate_command(subparsers):
    """Register the generate subcommand."""
    parser = subparsers.add_parser("generate", help="Generate a FastAPI backend from a spec")
    parser.add_argument("spec", nargs="?", default=None, help="Spec YAML file")
    parser.add_argument("--template", default=None, help="Use a built-in template instead of a file")
    parser.add_argument("--list-templates", action="store_true", help="List built-in templates and exit")
    parser.add_argument("--out", default=None, help="Output directory (default: list files only)")
    parser.add_argument("--force", action="store_true", help="Write into a non-empty output directory")
    parser.add_argument("--port", type=int, default=8000, help="Port written to .env (default: 8000)")
    parser.set_defaults(func=handle_generate)


def register_classify_command(subparsers):
    """Register the classify subcommand."""
    parser = subparsers.add_parser("classify", help="Show how a project directory would be deployed")
    parser.add_argument("path", help="Project directory")
    parser.add_argument("--port", type=int, default=8000, help="Port for the start command (default: 8000)")
    parser.set_defaults(func=handle_classify)
