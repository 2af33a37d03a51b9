"""Deployment state stores: interface, in-memory and JSON file implementations."""

import asyncio
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from appdock.errors import NotFoundError, StepTimeoutError
from appdock.state.types import Deployment, DeploymentStatus

logger = logging.getLogger(__name__)

STATE_FILE_VERSION = 1


@runtime_checkable
class DeploymentStateStore(Protocol):
    """Durable deployment records. ``upsert`` must be visible to ``get`` once it returns."""

    async def upsert(self, deployment: Deployment) -> None: ...

    async def get(self, deployment_id: str) -> Deployment: ...

    async def list_by_status(self, status: DeploymentStatus) -> list[Deployment]: ...


class MemoryStateStore:
    """Keeps copies so callers can't mutate stored records behind the store's back."""

    def __init__(self):
        self._records: dict[str, Deployment] = {}

    async def upsert(self, deployment: Deployment) -> None:
        self._records[deployment.id] = deployment.copy()

    async def get(self, deployment_id: str) -> Deployment:
        try:
            return self._records[deployment_id].copy()
        except KeyError:
            raise NotFoundError(f"deployment {deployment_id}") from None

    async def list_by_status(self, status: DeploymentStatus) -> list[Deployment]:
        return [d.copy() for d in self._records.values() if d.status == status]


class JsonFileStateStore:
    """All deployments in one JSON file, rewritten atomically on every upsert.

    File layout::

        {"version": 1, "updated_at": "...", "deployments": {"<id>": {...}}}
    """

    def __init__(self, path):
        self.path = str(path)
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path) as f:
            data = json.load(f)
        return data.get("deployments", {})

    def _write(self, records: dict) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        payload = {
            "version": STATE_FILE_VERSION,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "deployments": records,
        }
        tmp = f"{self.path}.tmp"
        with open(tmp, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp, self.path)

    def _upsert_sync(self, record: dict) -> None:
        with self._lock:
            records = self._load()
            records[record["id"]] = record
            self._write(records)

    def _read_sync(self) -> dict:
        with self._lock:
            return self._load()

    async def upsert(self, deployment: Deployment) -> None:
        await asyncio.to_thread(self._upsert_sync, deployment.to_dict())
        logger.debug(f"Saved {deployment.id} ({deployment.status.value}) to {self.path}")

    async def get(self, deployment_id: str) -> Deployment:
        records = await asyncio.to_thread(self._read_sync)
        if deployment_id not in records:
            raise NotFoundError(f"deployment {deployment_id}")
        return Deployment.from_dict(records[deployment_id])

    async def list_by_status(self, status: DeploymentStatus) -> list[Deployment]:
        records = await asyncio.to_thread(self._read_sync)
        return [Deployment.from_dict(r) for r in records.values() if r["status"] == status.value]


# ── helpers over any store ──────────────────────────────────────


async def bounded(awaitable, timeout: float | None):
    """Await a store call, turning an expired *timeout* into ``StepTimeoutError("store")``."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise StepTimeoutError("store", timeout) from None


async def list_statuses(store, statuses, timeout: float | None = None) -> list[Deployment]:
    """Records in any of *statuses*, gathered through ``list_by_status`` only."""
    records = []
    for status in statuses:
        records.extend(await bounded(store.list_by_status(status), timeout))
    return records
