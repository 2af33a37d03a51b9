"""Orchestration policy: limits, breaker, retry, health checks and timeouts.

Defaults can be overridden by a YAML file and then by ``APPDOCK_*`` env vars.
"""

import logging
import os
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)

COMPLEXITIES = ("simple", "complex", "enterprise")


def deep_merge(base, override):
    """Recursive dict merge. Override wins for scalars."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _positive(name, value, allow_zero=False):
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"'{name}' must be {'non-negative' if allow_zero else 'positive'}, got {value}")
    return value


@dataclass
class LimitsConfig:
    max_concurrent_global: int = 100
    max_concurrent_per_owner: int = 3
    max_queue_depth: int = 50
    admission_timeout: float = 60.0

    @classmethod
    def from_dict(cls, data: dict) -> "LimitsConfig":
        return cls(
            max_concurrent_global=_positive("max_concurrent_global", int(data.get("max_concurrent_global", 100))),
            max_concurrent_per_owner=_positive("max_concurrent_per_owner", int(data.get("max_concurrent_per_owner", 3))),
            max_queue_depth=_positive("max_queue_depth", int(data.get("max_queue_depth", 50)), allow_zero=True),
            admission_timeout=_positive("admission_timeout", float(data.get("admission_timeout", 60.0))),
        )


@dataclass
class BreakerConfig:
    failure_threshold: int = 3
    cooldown: float = 30.0
    half_open_successes: int = 2

    @classmethod
    def from_dict(cls, data: dict) -> "BreakerConfig":
        return cls(
            failure_threshold=_positive("failure_threshold", int(data.get("failure_threshold", 3))),
            cooldown=_positive("cooldown", float(data.get("cooldown", 30.0)), allow_zero=True),
            half_open_successes=_positive("half_open_successes", int(data.get("half_open_successes", 2))),
        )


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_dict(cls, data: dict) -> "RetryConfig":
        return cls(
            max_attempts=_positive("max_attempts", int(data.get("max_attempts", 3))),
            base_delay=_positive("base_delay", float(data.get("base_delay", 1.0)), allow_zero=True),
            multiplier=_positive("multiplier", float(data.get("multiplier", 2.0))),
            max_delay=_positive("max_delay", float(data.get("max_delay", 30.0)), allow_zero=True),
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


@dataclass
class HealthCheckConfig:
    attempts: int = 10
    interval: float = 2.0
    backoff: float = 1.5
    max_interval: float = 15.0
    path: str = "/health"
    probe_timeout: float = 10.0

    @classmethod
    def from_dict(cls, data: dict) -> "HealthCheckConfig":
        path = str(data.get("path", "/health"))
        if not path.startswith("/"):
            path = "/" + path
        return cls(
            attempts=_positive("attempts", int(data.get("attempts", 10))),
            interval=_positive("interval", float(data.get("interval", 2.0)), allow_zero=True),
            backoff=_positive("backoff", float(data.get("backoff", 1.5))),
            max_interval=_positive("max_interval", float(data.get("max_interval", 15.0)), allow_zero=True),
            path=path,
            probe_timeout=_positive("probe_timeout", float(data.get("probe_timeout", 10.0))),
        )


@dataclass
class TimeoutsConfig:
    """Per-step ceilings and aggregate deployment budgets (seconds)."""

    create: float = 120.0
    write_files: float = 120.0
    run_command: float = 60.0
    destroy: float = 60.0
    store: float = 30.0
    aggregate: dict = field(default_factory=lambda: {"simple": 300.0, "complex": 600.0, "enterprise": 900.0})

    @classmethod
    def from_dict(cls, data: dict) -> "TimeoutsConfig":
        aggregate = {"simple": 300.0, "complex": 600.0, "enterprise": 900.0}
        for key, value in (data.get("aggregate") or {}).items():
            if key not in COMPLEXITIES:
                raise ValueError(f"Unknown complexity '{key}' in timeouts.aggregate. Expected one of: {', '.join(COMPLEXITIES)}")
            aggregate[key] = _positive(f"aggregate.{key}", float(value))
        return cls(
            create=_positive("create", float(data.get("create", 120.0))),
            write_files=_positive("write_files", float(data.get("write_files", 120.0))),
            run_command=_positive("run_command", float(data.get("run_command", 60.0))),
            destroy=_positive("destroy", float(data.get("destroy", 60.0))),
            store=_positive("store", float(data.get("store", 30.0))),
            aggregate=aggregate,
        )

    def for_step(self, operation: str) -> float:
        return getattr(self, operation)

    def aggregate_for(self, complexity: str) -> float:
        return self.aggregate.get(complexity, self.aggregate["simple"])


def _optional_positive(name, value):
    return None if value is None else _positive(name, float(value))


@dataclass
class CleanupConfig:
    """Reconcile thresholds (seconds).

    ``stale_after``: how long an in-flight record may sit in one status before
    a sweep treats its workflow as dead. None derives it from the timeouts.
    ``max_age``: running or stopped deployments older than this are destroyed
    by a sweep. None disables age-based cleanup.
    """

    stale_after: float | None = None
    max_age: float | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CleanupConfig":
        return cls(
            stale_after=_optional_positive("stale_after", data.get("stale_after")),
            max_age=_optional_positive("max_age", data.get("max_age")),
        )


@dataclass
class OrchestrationPolicy:
    """Top-level policy handed to the orchestrator."""

    limits: LimitsConfig = field(default_factory=LimitsConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    default_port: int = 8000
    sandbox_template: str = "base"
    stop_command: str = "pkill -f -- '--port {port}' || true"

    @classmethod
    def from_dict(cls, data: dict) -> "OrchestrationPolicy":
        port = int(data.get("default_port", 8000))
        if not 0 < port < 65536:
            raise ValueError(f"default_port out of range: {port}")
        return cls(
            limits=LimitsConfig.from_dict(data.get("limits") or {}),
            breaker=BreakerConfig.from_dict(data.get("breaker") or {}),
            retry=RetryConfig.from_dict(data.get("retry") or {}),
            health_check=HealthCheckConfig.from_dict(data.get("health_check") or {}),
            timeouts=TimeoutsConfig.from_dict(data.get("timeouts") or {}),
            cleanup=CleanupConfig.from_dict(data.get("cleanup") or {}),
            default_port=port,
            sandbox_template=str(data.get("sandbox_template", "base")),
            stop_command=str(data.get("stop_command", "pkill -f -- '--port {port}' || true")),
        )

    def stale_after(self) -> float:
        """Age after which an in-flight record no live workflow touches is orphaned.

        Defaults to the longest aggregate budget plus the admission wait and
        one teardown, the longest a healthy workflow can stay in one status.
        """
        if self.cleanup.stale_after is not None:
            return self.cleanup.stale_after
        return max(self.timeouts.aggregate.values()) + self.limits.admission_timeout + self.timeouts.destroy


# env var -> (section, key)
_ENV_OVERRIDES = {
    "APPDOCK_MAX_CONCURRENT_GLOBAL": ("limits", "max_concurrent_global"),
    "APPDOCK_MAX_CONCURRENT_PER_OWNER": ("limits", "max_concurrent_per_owner"),
    "APPDOCK_MAX_QUEUE_DEPTH": ("limits", "max_queue_depth"),
    "APPDOCK_ADMISSION_TIMEOUT": ("limits", "admission_timeout"),
    "APPDOCK_FAILURE_THRESHOLD": ("breaker", "failure_threshold"),
    "APPDOCK_COOLDOWN": ("breaker", "cooldown"),
    "APPDOCK_HEALTH_CHECK_ATTEMPTS": ("health_check", "attempts"),
    "APPDOCK_STORE_TIMEOUT": ("timeouts", "store"),
    "APPDOCK_STALE_AFTER": ("cleanup", "stale_after"),
    "APPDOCK_MAX_AGE": ("cleanup", "max_age"),
    "APPDOCK_DEFAULT_PORT": (None, "default_port"),
}


def _env_overrides(environ) -> dict:
    overrides = {}
    for var, (section, key) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"{var} must be a number, got '{raw}'") from None
        if section is None:
            overrides[key] = value
        else:
            overrides.setdefault(section, {})[key] = value
    return overrides


def load_policy(path=None, environ=None) -> OrchestrationPolicy:
    """Build the orchestration policy.

    Reads *path* (YAML) if given, deep-merges env overrides on top and
    validates the result.

    Raises:
        FileNotFoundError: *path* does not exist.
        ValueError: a value is out of range or not a number.
    """
    data = {}
    if path is not None:
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Policy file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Policy file {path} must contain a mapping")
        logger.debug(f"Loaded policy from {path}")

    overrides = _env_overrides(os.environ if environ is None else environ)
    if overrides:
        logger.debug(f"Policy env overrides: {overrides}")
        data = deep_merge(data, overrides)
    return OrchestrationPolicy.from_dict(data)
