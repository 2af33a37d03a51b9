"""Deployment records and the status state machine."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from appdock.errors import DeploymentErrorInfo, InternalError, ValidationError
from appdock.project.files import FileEntry, normalize_path
from appdock.provisioning.types import ProviderHandle


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    PROVISIONING = "provisioning"
    CONFIGURING = "configuring"
    STARTING = "starting"
    HEALTH_CHECKING = "health_checking"
    RUNNING = "running"
    FAILED = "failed"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"

    @property
    def in_flight(self) -> bool:
        return self in IN_FLIGHT


S = DeploymentStatus

IN_FLIGHT = frozenset({S.PENDING, S.ANALYZING, S.GENERATING, S.PROVISIONING, S.CONFIGURING, S.STARTING, S.HEALTH_CHECKING})

_TRANSITIONS = {
    S.PENDING: {S.ANALYZING},
    S.ANALYZING: {S.GENERATING, S.PROVISIONING},
    S.GENERATING: {S.PROVISIONING},
    S.PROVISIONING: {S.CONFIGURING},
    S.CONFIGURING: {S.STARTING},
    S.STARTING: {S.HEALTH_CHECKING},
    S.HEALTH_CHECKING: {S.RUNNING},
    S.RUNNING: {S.STOPPING, S.DESTROYING},
    S.STOPPING: {S.STOPPED},
    S.STOPPED: {S.DESTROYING},
    S.FAILED: {S.DESTROYING},
    S.DESTROYING: {S.DESTROYED},
    S.DESTROYED: set(),
}
# failed is reachable from every non-terminal status
for _status in (*IN_FLIGHT, S.STOPPING, S.DESTROYING):
    _TRANSITIONS[_status] = _TRANSITIONS[_status] | {S.FAILED}


def can_transition(current: DeploymentStatus, new: DeploymentStatus) -> bool:
    return new in _TRANSITIONS[current]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_deployment_id() -> str:
    return f"dep_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class DeploymentConfig:
    """Immutable snapshot of what was submitted."""

    files: tuple[FileEntry, ...] = ()
    env: dict = field(default_factory=dict)
    timeout: float | None = None
    port: int | None = None

    def __post_init__(self):
        paths = [e.path for e in self.files]
        dupes = sorted({p for p in paths if paths.count(p) > 1})
        if dupes:
            raise ValidationError(f"duplicate file paths: {', '.join(dupes)}", location="config.files")
        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError("timeout must be positive", location="config.timeout")
        if self.port is not None and not 0 < self.port < 65536:
            raise ValidationError(f"port out of range: {self.port}", location="config.port")

    @classmethod
    def from_files(cls, files, env=None, timeout=None, port=None) -> "DeploymentConfig":
        """Build from a FileSet, a list of FileEntry or a {path: content} mapping."""
        if isinstance(files, dict):
            entries = tuple(FileEntry(normalize_path(p), c) for p, c in files.items())
        else:
            entries = tuple(files)
        return cls(files=entries, env=dict(env or {}), timeout=timeout, port=port)

    def to_dict(self) -> dict:
        return {
            "files": [{"path": e.path, "content": e.content} for e in self.files],
            "env": dict(self.env),
            "timeout": self.timeout,
            "port": self.port,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DeploymentConfig":
        return cls(
            files=tuple(FileEntry(f["path"], f["content"]) for f in d.get("files", [])),
            env=dict(d.get("env") or {}),
            timeout=d.get("timeout"),
            port=d.get("port"),
        )


@dataclass
class Deployment:
    id: str
    owner_id: str
    config: DeploymentConfig
    status: DeploymentStatus = DeploymentStatus.PENDING
    endpoint: str | None = None
    provider_handle: ProviderHandle | None = None
    error: DeploymentErrorInfo | None = None
    project_kind: str | None = None
    framework: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    history: list[str] = field(default_factory=list)

    @classmethod
    def new(cls, owner_id: str, config: DeploymentConfig) -> "Deployment":
        return cls(id=new_deployment_id(), owner_id=owner_id, config=config, history=[DeploymentStatus.PENDING.value])

    def advance(self, new: DeploymentStatus) -> None:
        """Move to *new*, enforcing the transition table and the endpoint invariant."""
        if not can_transition(self.status, new):
            raise InternalError(f"Illegal transition for {self.id}: {self.status.value} -> {new.value}")
        self.status = new
        if new != DeploymentStatus.RUNNING:
            self.endpoint = None
        self.history.append(new.value)
        self.updated_at = _utcnow()

    def copy(self) -> "Deployment":
        return replace(self, history=list(self.history))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "endpoint": self.endpoint,
            "config": self.config.to_dict(),
            "provider_handle": self.provider_handle.to_dict() if self.provider_handle else None,
            "error": self.error.to_dict() if self.error else None,
            "project_kind": self.project_kind,
            "framework": self.framework,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "history": list(self.history),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Deployment":
        handle = d.get("provider_handle")
        error = d.get("error")
        return cls(
            id=d["id"],
            owner_id=d["owner_id"],
            config=DeploymentConfig.from_dict(d.get("config") or {}),
            status=DeploymentStatus(d["status"]),
            endpoint=d.get("endpoint"),
            provider_handle=ProviderHandle.from_dict(handle) if handle else None,
            error=DeploymentErrorInfo.from_dict(error) if error else None,
            project_kind=d.get("project_kind"),
            framework=d.get("framework"),
            created_at=datetime.fromisoformat(d["created_at"]),
            updated_at=datetime.fromisoformat(d["updated_at"]),
            history=list(d.get("history") or []),
        )


@dataclass(frozen=True)
class DeploymentHandle:
    """What callers get back from deploy/submit."""

    id: str
    status: DeploymentStatus
    endpoint: str | None = None
    error: DeploymentErrorInfo | None = None

    @classmethod
    def of(cls, deployment: Deployment) -> "DeploymentHandle":
        return cls(id=deployment.id, status=deployment.status, endpoint=deployment.endpoint, error=deployment.error)
