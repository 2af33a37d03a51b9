"""CLI logging setup."""

import logging
import sys

from appdock.redact import SecretRedactingFilter

VERBOSE_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def setup_cli_logging(verbose=False):
    """Configure the root logger for CLI commands.

    Plain ``%(message)s`` output by default; with *verbose*, DEBUG level and a
    timestamped format carrying the logger name.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT if verbose else "%(message)s"))
    # Filters on a logger don't apply to records propagated from children
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
