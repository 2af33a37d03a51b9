"""Deployment orchestration and reconciliation."""

from appdock.deploy.orchestrate import DeploymentOrchestrator, PreparedDeployment, render_env_file
from appdock.deploy.reconcile import ReconcileReport, reconcile

__all__ = [
    "DeploymentOrchestrator",
    "PreparedDeployment",
    "ReconcileReport",
    "reconcile",
    "render_env_file",
]
