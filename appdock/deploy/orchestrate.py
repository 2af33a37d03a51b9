"""Deployment orchestration: analyze, generate, provision, configure, start, health-check."""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass

from appdock.codegen import generate
from appdock.config import OrchestrationPolicy
from appdock.deploy.reconcile import ReconcileReport, reconcile
from appdock.errors import (
    AdmissionRejected,
    AppdockError,
    DeploymentCancelled,
    DeploymentErrorInfo,
    DeploymentSuperseded,
    InternalError,
    NotFoundError,
    PermanentProviderError,
    StepTimeoutError,
    ValidationError,
)
from appdock.project.detect import ProjectClassification, classify, start_command
from appdock.project.files import FileEntry, FileSet, merge_files
from appdock.provisioning.types import ProviderHandle, SandboxSpec
from appdock.redact import register_secrets
from appdock.resilience.admission import AdmissionController, Priority
from appdock.resilience.breaker import CircuitBreaker
from appdock.resilience.retry import call_with_retries
from appdock.state.store import bounded, list_statuses
from appdock.state.types import IN_FLIGHT, Deployment, DeploymentConfig, DeploymentHandle, DeploymentStatus

logger = logging.getLogger(__name__)

S = DeploymentStatus

SETTLED = (S.FAILED, S.DESTROYED)


@dataclass
class PreparedDeployment:
    """Everything the provisioning phase needs, computed synchronously up front."""

    files: FileSet
    classification: ProjectClassification
    command: str
    env: dict
    port: int
    budget: float


def render_env_file(existing: str | None, env: dict) -> str:
    """Merge *env* over KEY=VALUE lines of an existing .env file."""
    merged = {}
    for line in (existing or "").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        merged[key.strip()] = value
    merged.update({str(k): str(v) for k, v in env.items()})
    return "".join(f"{k}={v}\n" for k, v in merged.items())


class DeploymentOrchestrator:
    """Drives deployments through the status state machine.

    All collaborators are injected. Every status change is validated and
    persisted before the next step starts. On failure the sandbox is torn
    down, the admission slot released and only then is ``failed`` persisted.
    """

    def __init__(self, client, store, breaker=None, admission=None, policy=None, sleep=asyncio.sleep):
        self.client = client
        self.store = store
        self.policy = policy or OrchestrationPolicy()
        self.breaker = breaker or CircuitBreaker.from_config(self.policy.breaker)
        self.admission = admission or AdmissionController.from_config(self.policy.limits)
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}
        self._live: set[str] = set()
        self._cancel_requested: set[str] = set()

    # ── public API ────────────────────────────────────────────────

    async def deploy(self, owner_id: str, config: DeploymentConfig, priority=Priority.NORMAL) -> DeploymentHandle:
        """Run the whole workflow and return the final handle.

        Raises:
            ValidationError: spec or config invalid (persisted as failed first).
            AdmissionRejected: no slot (cleaned up and persisted as failed first).
        Provider failures, timeouts and cancellation come back as a
        ``failed`` handle carrying the persisted error.
        """
        deployment, prepared = await self._prepare(owner_id, config)
        await self._provision(deployment, prepared, Priority.parse(priority), raise_errors=True)
        return DeploymentHandle.of(deployment)

    async def submit(self, owner_id: str, config: DeploymentConfig, priority=Priority.NORMAL) -> DeploymentHandle:
        """Analyze/generate now, provision in the background.

        Validation errors are raised here; everything later is only visible
        through the persisted status.
        """
        priority = Priority.parse(priority)
        deployment, prepared = await self._prepare(owner_id, config)
        task = asyncio.create_task(self._provision(deployment, prepared, priority, raise_errors=False))
        self._tasks[deployment.id] = task
        task.add_done_callback(lambda _t, dep_id=deployment.id: self._tasks.pop(dep_id, None))
        return DeploymentHandle.of(deployment)

    async def wait(self, deployment_id: str) -> DeploymentHandle:
        """Wait for a submitted workflow to finish; returns the persisted handle."""
        task = self._tasks.get(deployment_id)
        if task is not None:
            await asyncio.wait({task})
        return DeploymentHandle.of(await self._store(self.store.get(deployment_id)))

    async def get(self, deployment_id: str) -> Deployment:
        return await self._store(self.store.get(deployment_id))

    async def history(self, owner_id: str | None = None, status=None, limit: int | None = None) -> list[Deployment]:
        """Deployments newest first, optionally for one owner and/or one status."""
        statuses = [DeploymentStatus(status)] if status is not None else list(DeploymentStatus)
        records = await list_statuses(self.store, statuses, self.policy.timeouts.store)
        if owner_id is not None:
            records = [d for d in records if d.owner_id == owner_id]
        records.sort(key=lambda d: d.created_at, reverse=True)
        return records[:limit] if limit is not None else records

    async def stats(self, owner_id: str | None = None) -> dict:
        """Counts over stored deployments plus live admission and breaker state."""
        records = await self.history(owner_id=owner_id)
        finished = [d for d in records if S.RUNNING.value in d.history or d.status == S.FAILED]
        succeeded = [d for d in finished if S.RUNNING.value in d.history]
        # updated_at marks the running transition only while a record is still running
        to_running = [(d.updated_at - d.created_at).total_seconds() for d in records if d.status == S.RUNNING]
        return {
            "total": len(records),
            "active": sum(1 for d in records if d.status in IN_FLIGHT),
            "by_status": dict(Counter(d.status.value for d in records)),
            "by_owner": dict(Counter(d.owner_id for d in records)),
            "success_rate": len(succeeded) / len(finished) if finished else None,
            "average_time_to_running": sum(to_running) / len(to_running) if to_running else None,
            "admission": self.admission.stats(),
            "breaker": {s.operation: s.state for s in self.breaker.snapshots()},
        }

    def cancel(self, deployment_id: str) -> bool:
        """Ask a live workflow to stop at its next step boundary."""
        if deployment_id not in self._live:
            return False
        logger.info(f"[{deployment_id}] cancellation requested")
        self._cancel_requested.add(deployment_id)
        return True

    async def stop(self, deployment_id: str) -> DeploymentHandle:
        """Stop the application process; the sandbox is kept."""
        d = await self._get_idle(deployment_id)
        if d.status != S.RUNNING:
            raise ValidationError(f"cannot stop a deployment in status '{d.status.value}'", location="status")
        await self._transition(d, S.STOPPING)
        port = d.config.port or self.policy.default_port
        try:
            await self._call("run_command", self.client.run_command, d.provider_handle, self.policy.stop_command.format(port=port))
        except Exception as e:
            if d.provider_handle is not None:
                await self._teardown(d, d.provider_handle)
            await self._fail(d, e)
            return DeploymentHandle.of(d)
        await self._transition(d, S.STOPPED)
        return DeploymentHandle.of(d)

    async def destroy(self, deployment_id: str) -> DeploymentHandle:
        """Tear down the sandbox of a running, stopped or failed deployment."""
        d = await self._get_idle(deployment_id)
        if d.status not in (S.RUNNING, S.STOPPED, S.FAILED):
            raise ValidationError(f"cannot destroy a deployment in status '{d.status.value}'", location="status")
        await self._transition(d, S.DESTROYING)
        if d.provider_handle is not None:
            try:
                await self._call("destroy", self.client.destroy, d.provider_handle)
            except Exception as e:
                await self._fail(d, e)
                return DeploymentHandle.of(d)
            d.provider_handle = None
        await self._transition(d, S.DESTROYED)
        return DeploymentHandle.of(d)

    async def retry(self, deployment_id: str, priority=Priority.NORMAL) -> DeploymentHandle:
        """Start a new deployment from a failed one's config snapshot."""
        d = await self._store(self.store.get(deployment_id))
        if d.status != S.FAILED:
            raise ValidationError(f"only failed deployments can be retried (status '{d.status.value}')", location="status")
        logger.info(f"Retrying {d.id} as a new deployment")
        return await self.deploy(d.owner_id, d.config, priority)

    async def reconcile(self, stale_after=None, max_age=None, owner_id=None) -> ReconcileReport:
        """Clean up records no live workflow owns.

        In-flight records are only treated as orphaned once they are older
        than ``stale_after`` (default: the policy's), so workflows running in
        other processes sharing the store are left alone.
        """
        return await reconcile(
            self.store,
            self.client,
            live_ids=frozenset(self._live),
            destroy_timeout=self.policy.timeouts.destroy,
            stale_after=self.policy.stale_after() if stale_after is None else stale_after,
            max_age=self.policy.cleanup.max_age if max_age is None else max_age,
            owner_id=owner_id,
            store_timeout=self.policy.timeouts.store,
        )

    async def shutdown(self) -> None:
        """Cancel background workflows; each runs its cleanup path."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── workflow ──────────────────────────────────────────────────

    async def _prepare(self, owner_id: str, config: DeploymentConfig):
        deployment = Deployment.new(owner_id, config)
        register_secrets(config.env.values())
        self._live.add(deployment.id)
        try:
            await self._persist(deployment)
            logger.info(f"[{deployment.id}] accepted for {owner_id} ({len(config.files)} file(s))")

            await self._transition(deployment, S.ANALYZING)
            classification = classify(config.files)
            deployment.project_kind = classification.kind
            deployment.framework = classification.framework
            for note in classification.evidence:
                logger.debug(f"[{deployment.id}] {note}")

            port = config.port or self.policy.default_port
            files = FileSet(list(config.files))
            if classification.is_spec:
                await self._transition(deployment, S.GENERATING)
                generated = generate(files.get(classification.spec_path), port=port)
                files = merge_files(generated, files)
                for warning in files.warnings:
                    logger.warning(f"[{deployment.id}] {warning}")

            env = {**config.env, "PORT": str(port)}
            if config.env:
                files = _with_env_file(files, config.env)
            prepared = PreparedDeployment(
                files=files,
                classification=classification,
                command=start_command(classification, files, port),
                env=env,
                port=port,
                budget=config.timeout or self.policy.timeouts.aggregate_for(classification.complexity),
            )
        except BaseException as e:
            await self._fail(deployment, e)
            self._forget(deployment.id)
            raise
        return deployment, prepared

    async def _provision(self, d: Deployment, prepared: PreparedDeployment, priority: Priority, raise_errors: bool):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + prepared.budget
        try:
            await self._transition(d, S.PROVISIONING)
            admission_timeout = max(0.0, min(self.policy.limits.admission_timeout, deadline - loop.time()))
            async with self.admission.slot(d.owner_id, priority, timeout=admission_timeout):
                async with self._sandbox(d, prepared, deadline) as handle:
                    await self._transition(d, S.CONFIGURING)
                    await self._call("write_files", self.client.write_files, handle, list(prepared.files), deadline=deadline)

                    await self._transition(d, S.STARTING)
                    logger.info(f"[{d.id}] starting: {prepared.command}")
                    result = await self._call(
                        "run_command",
                        self.client.run_command,
                        handle,
                        prepared.command,
                        background=True,
                        env=prepared.env,
                        deadline=deadline,
                    )
                    if not result.ok:
                        raise PermanentProviderError(
                            f"start command exited with {result.exit_code}: {result.stderr.strip()[:200]}",
                            operation="run_command",
                        )

                    await self._transition(d, S.HEALTH_CHECKING)
                    await self._wait_healthy(d, handle, prepared.port, deadline)

                    endpoint = self.client.get_public_endpoint(handle, prepared.port)
                    await self._transition(d, S.RUNNING, endpoint=endpoint)
                    logger.info(f"[{d.id}] running at {endpoint}")
        except asyncio.CancelledError as e:
            await self._fail(d, e)
            raise
        except Exception as e:
            await self._fail(d, e)
            if raise_errors and isinstance(e, (AdmissionRejected, InternalError)):
                raise
            if raise_errors and not isinstance(e, AppdockError):
                raise
        finally:
            self._forget(d.id)

    @asynccontextmanager
    async def _sandbox(self, d: Deployment, prepared: PreparedDeployment, deadline: float):
        """Create the sandbox; tear it down if the body raises."""
        spec = SandboxSpec(
            template=self.policy.sandbox_template,
            ports=(prepared.port,),
            labels={"deployment": d.id, "owner": d.owner_id},
        )
        handle = await self._call("create", self.client.create, spec, deadline=deadline)
        try:
            d.provider_handle = handle
            await self._persist(d)
            logger.info(f"[{d.id}] sandbox {handle.sandbox_id} created")
            yield handle
        except BaseException:
            await self._teardown(d, handle)
            raise

    async def _wait_healthy(self, d: Deployment, handle: ProviderHandle, port: int, deadline: float) -> None:
        hc = self.policy.health_check
        loop = asyncio.get_running_loop()
        url = f"http://localhost:{port}{hc.path}"
        interval = hc.interval
        started = loop.time()
        for attempt in range(1, hc.attempts + 1):
            self._check_cancelled(d)
            result = await self._call(
                "run_command", self.client.run_command, handle, f"curl -sf {url}", timeout=hc.probe_timeout, deadline=deadline
            )
            if result.ok:
                logger.info(f"[{d.id}] healthy after {attempt} probe(s)")
                return
            logger.info(f"[{d.id}] health check {attempt}/{hc.attempts}: not ready")
            if attempt == hc.attempts:
                break
            if loop.time() + interval >= deadline:
                raise StepTimeoutError("health_checking", loop.time() - started)
            await self._sleep(interval)
            interval = min(interval * hc.backoff, hc.max_interval)
        raise StepTimeoutError("health_checking", loop.time() - started)

    # ── helpers ───────────────────────────────────────────────────

    async def _call(self, operation, func, *args, deadline=None, **kwargs):
        return await call_with_retries(
            operation,
            func,
            *args,
            breaker=self.breaker,
            retry=self.policy.retry,
            step_timeout=self.policy.timeouts.for_step(operation),
            deadline=deadline,
            sleep=self._sleep,
            **kwargs,
        )

    async def _transition(self, d: Deployment, status: DeploymentStatus, endpoint: str | None = None) -> None:
        self._check_cancelled(d)
        staged = d.copy()
        staged.advance(status)
        if endpoint is not None:
            staged.endpoint = endpoint
        # d only moves once the new status is durable
        await self._persist(staged)
        _take_status(d, staged)
        logger.info(f"[{d.id}] {status.value}")

    async def _store(self, awaitable):
        return await bounded(awaitable, self.policy.timeouts.store)

    async def _persist(self, d: Deployment) -> None:
        """Upsert *d* unless the stored record has moved on without this workflow.

        The stored history must be a prefix of ours, and a failed or destroyed
        record is never overwritten with a history no longer than its own.

        Raises:
            DeploymentSuperseded: e.g. a reconcile in another process already
                marked the record failed.
            StepTimeoutError: the store did not answer within ``timeouts.store``.
        """
        try:
            stored = await self._store(self.store.get(d.id))
        except NotFoundError:
            stored = None
        if stored is not None:
            seen = len(stored.history)
            if d.history[:seen] != stored.history or (stored.status in SETTLED and seen >= len(d.history)):
                raise DeploymentSuperseded(d.id, stored.status.value)
        await self._store(self.store.upsert(d))

    def _check_cancelled(self, d: Deployment) -> None:
        if d.id in self._cancel_requested:
            raise DeploymentCancelled()

    async def _teardown(self, d: Deployment, handle: ProviderHandle) -> None:
        """Best-effort destroy. Failures are logged and the handle kept for reconciliation."""
        try:
            await self._call("destroy", self.client.destroy, handle)
        except Exception as e:
            logger.warning(f"[{d.id}] teardown of {handle.sandbox_id} failed, leaving it for reconciliation: {e}")
            return
        d.provider_handle = None
        logger.info(f"[{d.id}] sandbox {handle.sandbox_id} destroyed")

    async def _fail(self, d: Deployment, exc: BaseException) -> None:
        step = d.status.value
        if isinstance(exc, asyncio.CancelledError):
            info = DeploymentErrorInfo(kind="cancelled", message="Workflow cancelled", step=step)
        else:
            info = DeploymentErrorInfo.from_exception(exc, step=step)
        d.error = info
        if d.status != S.FAILED:
            d.advance(S.FAILED)
        try:
            await self._persist(d)
        except DeploymentSuperseded as e:
            logger.warning(f"[{d.id}] {e}; keeping the stored record")
            await self._keep_stored(d)
            return
        except StepTimeoutError as e:
            logger.error(f"[{d.id}] failed during {step} ({info.message}) but the failure could not be saved: {e}")
            return
        logger.error(f"[{d.id}] failed during {step}: {info.message}")

    async def _keep_stored(self, d: Deployment) -> None:
        """Adopt the record another process settled, handing it any sandbox we could not tear down."""
        stored = await self._store(self.store.get(d.id))
        if d.provider_handle is not None and stored.provider_handle is None and stored.status == S.FAILED:
            stored.provider_handle = d.provider_handle
            await self._store(self.store.upsert(stored))
            logger.warning(f"[{d.id}] sandbox {d.provider_handle.sandbox_id} recorded for reconciliation")
        _take_status(d, stored)
        d.provider_handle = stored.provider_handle

    async def _get_idle(self, deployment_id: str) -> Deployment:
        if deployment_id in self._live:
            raise ValidationError(f"deployment {deployment_id} is still in progress; cancel it first", location="status")
        return await self._store(self.store.get(deployment_id))

    def _forget(self, deployment_id: str) -> None:
        self._live.discard(deployment_id)
        self._cancel_requested.discard(deployment_id)


def _with_env_file(files: FileSet, env: dict) -> FileSet:
    """Replace (or add) .env with *env* merged over its current entries."""
    merged = render_env_file(files.get(".env"), env)
    entries = [e for e in files if e.path != ".env"]
    entries.append(FileEntry(".env", merged))
    return FileSet(entries, warnings=list(files.warnings))


def _take_status(d: Deployment, source: Deployment) -> None:
    d.status = source.status
    d.endpoint = source.endpoint
    d.error = source.error
    d.history = list(source.history)
    d.updated_at = source.updated_at
