"""Reconciliation sweep: fail orphaned in-flight records, retry leaked teardowns, expire old sandboxes."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from appdock.errors import DeploymentErrorInfo
from appdock.state.store import bounded, list_statuses
from appdock.state.types import IN_FLIGHT, Deployment, DeploymentStatus

logger = logging.getLogger(__name__)

S = DeploymentStatus

# enum order, so a sweep visits records in a stable order
ORPHAN_STATUSES = tuple(s for s in S if s in IN_FLIGHT or s in (S.STOPPING, S.DESTROYING))
EXPIRABLE_STATUSES = (S.RUNNING, S.STOPPED)


@dataclass
class ReconcileReport:
    interrupted: list[str] = field(default_factory=list)  # in-flight records marked failed
    expired: list[str] = field(default_factory=list)  # running/stopped records past max_age
    destroyed: list[str] = field(default_factory=list)  # handles successfully torn down
    errors: dict[str, str] = field(default_factory=dict)  # id -> teardown error

    @property
    def clean(self) -> bool:
        return not self.errors


def _age(since: datetime, now: datetime) -> float:
    return (now - since).total_seconds()


def _is_stale(d: Deployment, now: datetime, stale_after: float) -> bool:
    """An in-flight record is orphaned once it has sat in one status past every budget it could be using."""
    if stale_after <= 0:
        return True
    threshold = max(stale_after, d.config.timeout or 0.0)
    return _age(d.updated_at, now) >= threshold


async def _destroy(client, d: Deployment, timeout: float, report: ReconcileReport) -> bool:
    handle = d.provider_handle
    try:
        await asyncio.wait_for(client.destroy(handle), timeout)
    except Exception as e:
        logger.warning(f"[{d.id}] destroy of {handle.sandbox_id} failed: {e}")
        report.errors[d.id] = str(e) or type(e).__name__
        return False
    d.provider_handle = None
    report.destroyed.append(d.id)
    logger.info(f"[{d.id}] destroyed sandbox {handle.sandbox_id}")
    return True


async def reconcile(
    store,
    client,
    live_ids=frozenset(),
    destroy_timeout=60.0,
    stale_after=0.0,
    max_age=None,
    owner_id=None,
    store_timeout=None,
    now=None,
) -> ReconcileReport:
    """One sweep over the store.

    - in-flight, stopping or destroying records no live workflow owns and
      untouched for ``stale_after`` seconds: in-flight and stopping ones are
      torn down and marked failed with kind ``interrupted``; destroying ones
      get their destroy retried and finish the transition;
    - failed records still holding a provider handle: retry destroy;
    - with ``max_age``: running or stopped records created more than
      ``max_age`` seconds ago are destroyed.

    ``owner_id`` limits the sweep to one owner's deployments. Records are
    read through ``list_by_status`` only.
    """
    now = now or datetime.now(timezone.utc)
    report = ReconcileReport()

    statuses = ORPHAN_STATUSES + (S.FAILED,) + (EXPIRABLE_STATUSES if max_age is not None else ())
    for d in await list_statuses(store, statuses, store_timeout):
        if d.id in live_ids or (owner_id is not None and d.owner_id != owner_id):
            continue

        if d.status in ORPHAN_STATUSES:
            if not _is_stale(d, now, stale_after):
                logger.debug(f"[{d.id}] {d.status.value} updated {_age(d.updated_at, now):.0f}s ago, leaving it")
                continue
            if d.status == S.DESTROYING:
                if d.provider_handle is None or await _destroy(client, d, destroy_timeout, report):
                    d.advance(S.DESTROYED)
                    await bounded(store.upsert(d), store_timeout)
                continue

            step = d.status.value
            if d.provider_handle is not None:
                await _destroy(client, d, destroy_timeout, report)
            d.error = DeploymentErrorInfo(
                kind="interrupted",
                message=f"Workflow interrupted during {step}",
                step=step,
            )
            d.advance(S.FAILED)
            await bounded(store.upsert(d), store_timeout)
            report.interrupted.append(d.id)
            logger.warning(f"[{d.id}] interrupted during {step}, marked failed")

        elif d.status == S.FAILED:
            if d.provider_handle is not None and await _destroy(client, d, destroy_timeout, report):
                await bounded(store.upsert(d), store_timeout)

        elif d.status in EXPIRABLE_STATUSES and _age(d.created_at, now) >= max_age:
            logger.info(f"[{d.id}] {d.status.value} for {_age(d.created_at, now):.0f}s, past max age {max_age:.0f}s")
            d.advance(S.DESTROYING)
            await bounded(store.upsert(d), store_timeout)
            report.expired.append(d.id)
            if d.provider_handle is None or await _destroy(client, d, destroy_timeout, report):
                d.advance(S.DESTROYED)
                await bounded(store.upsert(d), store_timeout)

    if report.interrupted or report.expired or report.destroyed or report.errors:
        logger.info(
            f"Reconcile: {len(report.interrupted)} interrupted, {len(report.expired)} expired, "
            f"{len(report.destroyed)} destroyed, {len(report.errors)} error(s)"
        )
    return report
