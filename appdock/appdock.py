#!/usr/bin/env python3
"""appdock: deploy projects and generated backends to sandboxes - CLI entrypoint."""

import argparse

from appdock.commands.deploy import register_deploy_command
from appdock.commands.generate import register_classify_command, register_generate_command
from appdock.commands.lifecycle import register_lifecycle_commands
from appdock.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Deploy projects and spec-generated backends to sandboxes")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging with logger names")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_deploy_command(subparsers)
    register_generate_command(subparsers)
    register_classify_command(subparsers)
    register_lifecycle_commands(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
