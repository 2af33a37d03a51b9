"""Shared pytest fixtures for all test modules."""

import asyncio
import itertools
import os
import subprocess
import sys

import pytest

from appdock.config import OrchestrationPolicy
from appdock.deploy.orchestrate import DeploymentOrchestrator
from appdock.provisioning.types import CommandResult, ProviderHandle
from appdock.resilience.admission import AdmissionController
from appdock.resilience.breaker import CircuitBreaker
from appdock.state.store import MemoryStateStore

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))

TASK_SPEC = """\
name: Task Tracker
version: 1.0.0
entities:
  - name: Task
    fields:
      - {name: title, type: text, required: true}
      - {name: done, type: boolean}
"""


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the appdock CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "appdock.appdock", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env={**os.environ, **(env or {})},
        )
        return result.returncode, result.stdout, result.stderr

    return _run


@pytest.fixture
def task_spec():
    return TASK_SPEC


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


class FakeProvisioningClient:
    """In-memory ProvisioningClient.

    ``fail(op, *excs)`` queues exceptions raised by the next calls to *op*;
    ``health_failures`` is the number of health probes answered "not ready".
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.health_failures = 0
        self.created = []
        self.destroyed = []
        self.written = {}
        self.commands = []
        self.create_gate = None
        self._ids = itertools.count(1)

    def fail(self, op, *excs):
        self.failures.setdefault(op, []).extend(excs)

    def _record(self, op):
        self.calls.append(op)
        queue = self.failures.get(op)
        if queue:
            raise queue.pop(0)

    async def create(self, spec):
        if self.create_gate is not None:
            await self.create_gate.wait()
        self._record("create")
        handle = ProviderHandle(provider="fake", sandbox_id=f"sb-{next(self._ids)}", domain="fake.test")
        self.created.append(handle)
        return handle

    async def write_files(self, handle, files):
        self._record("write_files")
        self.written[handle.sandbox_id] = {f.path: f.content for f in files}

    async def run_command(self, handle, command, *, background=False, env=None, timeout=None):
        self._record("run_command")
        self.commands.append((handle.sandbox_id, command, background, env))
        if command.startswith("curl"):
            if self.health_failures > 0:
                self.health_failures -= 1
                return CommandResult(exit_code=7, stderr="connection refused")
            return CommandResult(exit_code=0, stdout='{"status": "ok"}')
        return CommandResult(exit_code=0)

    def get_public_endpoint(self, handle, port):
        return f"https://{port}-{handle.sandbox_id}.{handle.domain}"

    async def destroy(self, handle):
        self._record("destroy")
        self.destroyed.append(handle.sandbox_id)


@pytest.fixture
def fake_client():
    return FakeProvisioningClient()


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def sleeps():
    """Records requested sleep durations without sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)
        await asyncio.sleep(0)

    return _sleep


@pytest.fixture
def policy():
    return OrchestrationPolicy.from_dict(
        {
            "limits": {"max_concurrent_global": 5, "max_concurrent_per_owner": 2, "max_queue_depth": 3, "admission_timeout": 5},
            "retry": {"max_attempts": 3, "base_delay": 0.5, "multiplier": 2, "max_delay": 4},
            "health_check": {"attempts": 3, "interval": 1, "backoff": 2, "max_interval": 5},
        }
    )


@pytest.fixture
def make_orchestrator(fake_client, store, policy, fake_sleep, clock):
    """Factory for an orchestrator wired to the fakes; keyword overrides allowed."""

    def _make(**overrides):
        kwargs = {
            "client": fake_client,
            "store": store,
            "breaker": CircuitBreaker.from_config(policy.breaker, clock=clock),
            "admission": AdmissionController.from_config(policy.limits),
            "policy": policy,
            "sleep": fake_sleep,
        }
        kwargs.update(overrides)
        return DeploymentOrchestrator(**kwargs)

    return _make
