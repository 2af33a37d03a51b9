"""Shared data types for sandbox providers."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SandboxSpec:
    """What to ask the provider for."""

    template: str = "base"
    ports: tuple[int, ...] = ()
    labels: dict = field(default_factory=dict)
    lifetime: float | None = None  # seconds before the provider reaps it


@dataclass(frozen=True)
class ProviderHandle:
    """Opaque reference to a provisioned sandbox. Persisted on the deployment."""

    provider: str
    sandbox_id: str
    domain: str = ""

    def to_dict(self) -> dict:
        return {"provider": self.provider, "sandbox_id": self.sandbox_id, "domain": self.domain}

    @classmethod
    def from_dict(cls, d: dict) -> "ProviderHandle":
        return cls(provider=d["provider"], sandbox_id=d["sandbox_id"], domain=d.get("domain", ""))


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
