"""Admission control: global and per-owner concurrency ceilings with a priority queue."""

import asyncio
import itertools
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import IntEnum

from appdock.errors import AdmissionRejected

logger = logging.getLogger(__name__)


class Priority(IntEnum):
    """Lower value is served first."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3

    @classmethod
    def parse(cls, value) -> "Priority":
        if isinstance(value, Priority):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValueError(f"Unknown priority '{value}'. Expected one of: {', '.join(p.name.lower() for p in cls)}") from None


@dataclass
class AdmissionSlot:
    id: str
    owner_id: str
    priority: Priority
    granted_at: float
    released: bool = False


@dataclass
class _Waiter:
    owner_id: str
    priority: Priority
    future: asyncio.Future


class AdmissionController:
    """Bounds concurrent provisioning globally and per owner.

    Requests that cannot be granted wait in priority bands, FIFO within a
    band. A waiter whose owner is at its own ceiling is skipped so other
    owners' work behind it can proceed.
    """

    def __init__(self, max_global=100, max_per_owner=3, max_queue_depth=50, retry_after=5.0, clock=time.monotonic):
        self.max_global = max_global
        self.max_per_owner = max_per_owner
        self.max_queue_depth = max_queue_depth
        self.retry_after = retry_after
        self._clock = clock
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._active: dict[str, AdmissionSlot] = {}
        self._per_owner: dict[str, int] = {}
        self._queues = {p: deque() for p in Priority}

    @classmethod
    def from_config(cls, limits) -> "AdmissionController":
        return cls(limits.max_concurrent_global, limits.max_concurrent_per_owner, limits.max_queue_depth)

    @property
    def in_flight(self) -> int:
        return len(self._active)

    @property
    def queued_count(self) -> int:
        return sum(1 for q in self._queues.values() for w in q if not w.future.done())

    def owner_in_flight(self, owner_id: str) -> int:
        return self._per_owner.get(owner_id, 0)

    def stats(self) -> dict:
        return {
            "in_flight": self.in_flight,
            "queued": self.queued_count,
            "per_owner": dict(self._per_owner),
            "queued_by_priority": {p.name.lower(): sum(1 for w in q if not w.future.done()) for p, q in self._queues.items()},
        }

    def _has_headroom(self, owner_id: str) -> bool:
        return self.in_flight < self.max_global and self.owner_in_flight(owner_id) < self.max_per_owner

    def _grant(self, owner_id: str, priority: Priority) -> AdmissionSlot:
        slot = AdmissionSlot(id=f"slot-{next(self._ids)}", owner_id=owner_id, priority=priority, granted_at=self._clock())
        self._active[slot.id] = slot
        self._per_owner[owner_id] = self._per_owner.get(owner_id, 0) + 1
        logger.debug(f"Granted {slot.id} to {owner_id} ({self.in_flight}/{self.max_global} in flight)")
        return slot

    def _return(self, slot: AdmissionSlot) -> None:
        slot.released = True
        del self._active[slot.id]
        remaining = self._per_owner[slot.owner_id] - 1
        if remaining:
            self._per_owner[slot.owner_id] = remaining
        else:
            del self._per_owner[slot.owner_id]

    def _dispatch(self) -> None:
        for priority in Priority:
            queue = self._queues[priority]
            i = 0
            while i < len(queue) and self.in_flight < self.max_global:
                waiter = queue[i]
                if waiter.future.done():
                    del queue[i]
                    continue
                if self.owner_in_flight(waiter.owner_id) >= self.max_per_owner:
                    i += 1
                    continue
                del queue[i]
                waiter.future.set_result(self._grant(waiter.owner_id, priority))

    def _abandon(self, waiter: _Waiter) -> None:
        """Drop a waiter that stopped waiting; give back a slot granted in the meantime."""
        fut = waiter.future
        if fut.done() and not fut.cancelled():
            self._return(fut.result())
            self._dispatch()
        else:
            fut.cancel()
            try:
                self._queues[waiter.priority].remove(waiter)
            except ValueError:
                pass

    async def acquire(self, owner_id: str, priority=Priority.NORMAL, timeout=None) -> AdmissionSlot:
        """Wait for an admission slot.

        Raises:
            AdmissionRejected: queue is full (``queue_full``) or *timeout*
                expired before a slot was granted (``timeout``).
        """
        priority = Priority.parse(priority)
        async with self._lock:
            if self._has_headroom(owner_id):
                return self._grant(owner_id, priority)
            if self.queued_count >= self.max_queue_depth:
                logger.warning(f"Admission queue full ({self.max_queue_depth}), rejecting {owner_id}")
                raise AdmissionRejected("queue_full", retry_after=self.retry_after)
            waiter = _Waiter(owner_id, priority, asyncio.get_running_loop().create_future())
            self._queues[priority].append(waiter)
            logger.info(f"Queued {owner_id} at {priority.name.lower()} priority ({self.queued_count} waiting)")

        try:
            if timeout is None:
                return await asyncio.shield(waiter.future)
            return await asyncio.wait_for(asyncio.shield(waiter.future), timeout)
        except asyncio.TimeoutError:
            async with self._lock:
                if waiter.future.done() and not waiter.future.cancelled():
                    return waiter.future.result()
                self._abandon(waiter)
            raise AdmissionRejected("timeout", retry_after=self.retry_after) from None
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise

    async def release(self, slot: AdmissionSlot) -> None:
        """Return *slot* and wake eligible waiters. Releasing twice is a no-op."""
        async with self._lock:
            if slot.released or slot.id not in self._active:
                logger.debug(f"{slot.id} already released")
                return
            self._return(slot)
            self._dispatch()

    @asynccontextmanager
    async def slot(self, owner_id: str, priority=Priority.NORMAL, timeout=None):
        """``async with controller.slot(owner) as slot:`` releases on every exit path."""
        granted = await self.acquire(owner_id, priority, timeout)
        try:
            yield granted
        finally:
            await self.release(granted)
