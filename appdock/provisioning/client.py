"""ProvisioningClient interface."""

from typing import Protocol, runtime_checkable

from appdock.project.files import FileEntry
from appdock.provisioning.types import CommandResult, ProviderHandle, SandboxSpec


@runtime_checkable
class ProvisioningClient(Protocol):
    """Async access to an isolated execution environment provider.

    Implementations raise ``ProviderError`` with ``transient`` set for
    failures worth retrying (timeouts, 5xx, rate limits).
    """

    async def create(self, spec: SandboxSpec) -> ProviderHandle: ...

    async def write_files(self, handle: ProviderHandle, files: list[FileEntry]) -> None: ...

    async def run_command(
        self,
        handle: ProviderHandle,
        command: str,
        *,
        background: bool = False,
        env: dict | None = None,
        timeout: float | None = None,
    ) -> CommandResult: ...

    def get_public_endpoint(self, handle: ProviderHandle, port: int) -> str: ...

    async def destroy(self, handle: ProviderHandle) -> None:
        """Idempotent: destroying an unknown or already destroyed handle succeeds."""
        ...
