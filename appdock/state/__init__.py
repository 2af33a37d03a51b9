"""Deployment records and their stores."""

from appdock.state.store import DeploymentStateStore, JsonFileStateStore, MemoryStateStore
from appdock.state.types import (
    IN_FLIGHT,
    Deployment,
    DeploymentConfig,
    DeploymentHandle,
    DeploymentStatus,
    can_transition,
)

__all__ = [
    "IN_FLIGHT",
    "Deployment",
    "DeploymentConfig",
    "DeploymentHandle",
    "DeploymentStateStore",
    "DeploymentStatus",
    "JsonFileStateStore",
    "MemoryStateStore",
    "can_transition",
]
