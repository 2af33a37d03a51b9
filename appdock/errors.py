"""Error taxonomy shared by the generator, the resilience layer and the orchestrator."""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class AppdockError(Exception):
    """Base class for all appdock errors."""

    kind = "internal"

    def details(self) -> dict:
        return {}


class ValidationError(AppdockError):
    """Input (spec, config, file set) is malformed. Never retried."""

    kind = "validation"

    def __init__(self, reason: str, location: str | None = None):
        self.reason = reason
        self.location = location
        message = f"{location}: {reason}" if location else reason
        super().__init__(message)

    def details(self) -> dict:
        return {"reason": self.reason, "location": self.location}


class ProviderError(AppdockError):
    """A call to the provisioning provider failed.

    ``transient`` decides whether the retry policy may try the call again.
    """

    kind = "provider"

    def __init__(self, message: str, operation: str | None = None, transient: bool = False, status_code: int | None = None):
        self.operation = operation
        self.transient = transient
        self.status_code = status_code
        super().__init__(message)

    def details(self) -> dict:
        return {"operation": self.operation, "transient": self.transient, "status_code": self.status_code}


class TransientProviderError(ProviderError):
    def __init__(self, message: str, operation: str | None = None, status_code: int | None = None):
        super().__init__(message, operation=operation, transient=True, status_code=status_code)


class PermanentProviderError(ProviderError):
    def __init__(self, message: str, operation: str | None = None, status_code: int | None = None):
        super().__init__(message, operation=operation, transient=False, status_code=status_code)


class AdmissionRejected(AppdockError):
    """No admission slot could be granted (queue full or wait timed out)."""

    kind = "admission"

    def __init__(self, reason: str, retry_after: float | None = None):
        self.reason = reason
        self.retry_after = retry_after
        msg = f"Admission rejected: {reason}"
        if retry_after is not None:
            msg += f" (retry after {retry_after:.0f}s)"
        super().__init__(msg)

    def details(self) -> dict:
        return {"reason": self.reason, "retry_after": self.retry_after}


class CircuitOpenError(AppdockError):
    """The circuit for *operation* is open; the call was not attempted."""

    kind = "circuit_open"

    def __init__(self, operation: str, remaining: float):
        self.operation = operation
        self.remaining = remaining
        super().__init__(f"Circuit open for '{operation}', retry in {remaining:.1f}s")

    def details(self) -> dict:
        return {"operation": self.operation, "remaining": round(self.remaining, 3)}


class StepTimeoutError(AppdockError, TimeoutError):
    """A step (or the whole deployment) ran past its time budget."""

    kind = "timeout"

    def __init__(self, step: str, budget: float):
        self.step = step
        self.budget = budget
        super().__init__(f"Step '{step}' exceeded its {budget:.1f}s budget")

    def details(self) -> dict:
        return {"step": self.step, "budget": self.budget}


class DeploymentCancelled(AppdockError):
    kind = "cancelled"

    def __init__(self, message: str = "Cancelled"):
        super().__init__(message)


class DeploymentSuperseded(AppdockError):
    """The stored record moved on without this workflow (e.g. a reconcile in another process)."""

    kind = "interrupted"

    def __init__(self, deployment_id: str, stored_status: str):
        self.deployment_id = deployment_id
        self.stored_status = stored_status
        super().__init__(f"Deployment {deployment_id} was already marked '{stored_status}' elsewhere")

    def details(self) -> dict:
        return {"stored_status": self.stored_status}


class InternalError(AppdockError):
    """A bug: e.g. an illegal status transition."""

    kind = "internal"


class NotFoundError(AppdockError, KeyError):
    kind = "not_found"

    def __init__(self, what: str):
        self.what = what
        super().__init__(what)

    def __str__(self):
        return f"Not found: {self.what}"


@dataclass
class DeploymentErrorInfo:
    """Structured error persisted on a failed deployment."""

    kind: str
    message: str
    details: dict = field(default_factory=dict)
    step: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, step: str | None = None) -> "DeploymentErrorInfo":
        if isinstance(exc, AppdockError):
            return cls(kind=exc.kind, message=str(exc), details=exc.details(), step=step)
        logger.error(f"Unexpected error during '{step}': {exc!r}", exc_info=exc)
        return cls(kind="internal", message=f"{type(exc).__name__}: {exc}", step=step)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": dict(self.details), "step": self.step}

    @classmethod
    def from_dict(cls, data: dict) -> "DeploymentErrorInfo":
        return cls(
            kind=data["kind"],
            message=data.get("message", ""),
            details=data.get("details") or {},
            step=data.get("step"),
        )
