"""Sandbox provisioning: client interface, REST provider, dry-run provider."""

from appdock.provisioning.client import ProvisioningClient
from appdock.provisioning.dryrun import DryRunProvisioningClient
from appdock.provisioning.sandbox_api import SandboxApiClient
from appdock.provisioning.types import CommandResult, ProviderHandle, SandboxSpec

__all__ = [
    "CommandResult",
    "DryRunProvisioningClient",
    "ProviderHandle",
    "ProvisioningClient",
    "SandboxApiClient",
    "SandboxSpec",
]
