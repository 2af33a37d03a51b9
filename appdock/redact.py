"""Secret redaction for log output: provider keys and user-supplied env values."""

import logging
import os
import re

# Env vars whose values should be redacted from all output
_SECRET_ENV_VARS = [
    "APPDOCK_API_KEY",
    "SANDBOX_API_KEY",
]

_MIN_SECRET_LENGTH = 8  # skip short values to avoid false positives

# Values registered at runtime, e.g. the env of a deployment config
_registered: set[str] = set()


def _collect_secret_values() -> set[str]:
    values = {v for v in _registered}
    for var in _SECRET_ENV_VARS:
        val = os.environ.get(var, "")
        if len(val) >= _MIN_SECRET_LENGTH:
            values.add(val)
    return values


def _build_patterns(values: set[str]) -> list[re.Pattern]:
    # Longer values first so a secret containing another is fully masked
    return [re.compile(re.escape(v)) for v in sorted(values, key=len, reverse=True)]


_patterns: list[re.Pattern] | None = None


def _get_patterns() -> list[re.Pattern]:
    global _patterns
    if _patterns is None:
        _patterns = _build_patterns(_collect_secret_values())
    return _patterns


def register_secrets(values) -> None:
    """Add values (e.g. deployment env values) to the redaction set."""
    global _patterns
    added = {v for v in values if isinstance(v, str) and len(v) >= _MIN_SECRET_LENGTH}
    if added - _registered:
        _registered.update(added)
        _patterns = None


def reset_secrets() -> None:
    """Forget registered values and re-read env vars on next use."""
    global _patterns
    _registered.clear()
    _patterns = None


def _apply(text: str, patterns: list[re.Pattern]) -> str:
    for p in patterns:
        text = p.sub("***", text)
    return text


def redact_secrets(text: str) -> str:
    """Replace known secret values with '***'."""
    return _apply(text, _get_patterns())


class SecretRedactingFilter(logging.Filter):
    """Logging filter that replaces secret values in log records with '***'.

    Handles both f-string messages (msg is pre-formatted) and
    %-style messages (msg + args).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        patterns = _get_patterns()
        if patterns:
            record.msg = _apply(str(record.msg), patterns)
            if record.args:
                if isinstance(record.args, dict):
                    record.args = {k: _apply(v, patterns) if isinstance(v, str) else v for k, v in record.args.items()}
                elif isinstance(record.args, tuple):
                    record.args = tuple(_apply(a, patterns) if isinstance(a, str) else a for a in record.args)
        return True
