"""Dry-run provider: logs what would happen, provisions nothing."""

import itertools
import logging

from appdock.provisioning.types import CommandResult, ProviderHandle, SandboxSpec

logger = logging.getLogger(__name__)


class DryRunProvisioningClient:
    """ProvisioningClient that never talks to a provider. Every command succeeds."""

    def __init__(self):
        self._ids = itertools.count(1)

    async def create(self, spec: SandboxSpec) -> ProviderHandle:
        sandbox_id = f"dry-run-{next(self._ids)}"
        logger.info(f"[dry-run] create sandbox template={spec.template} ports={list(spec.ports)} -> {sandbox_id}")
        return ProviderHandle(provider="dry-run", sandbox_id=sandbox_id, domain="dry-run.invalid")

    async def write_files(self, handle, files) -> None:
        files = list(files)
        logger.info(f"[dry-run] write {len(files)} file(s) to {handle.sandbox_id}")
        for f in files:
            logger.info(f"[dry-run]   {f.path} ({len(f.content)} bytes)")

    async def run_command(self, handle, command, *, background=False, env=None, timeout=None) -> CommandResult:
        mode = "background" if background else "foreground"
        logger.info(f"[dry-run] {handle.sandbox_id} ({mode}): {command}")
        return CommandResult(exit_code=0)

    def get_public_endpoint(self, handle, port) -> str:
        return f"http://{handle.sandbox_id}.{handle.domain}:{port}"

    async def destroy(self, handle) -> None:
        logger.info(f"[dry-run] destroy sandbox {handle.sandbox_id}")
