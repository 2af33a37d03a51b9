"""Unit tests for retrying provider calls under a step budget."""

import asyncio

import pytest

from appdock.config import RetryConfig
from appdock.errors import CircuitOpenError, PermanentProviderError, StepTimeoutError, TransientProviderError
from appdock.resilience.breaker import CircuitBreaker
from appdock.resilience.retry import call_with_retries, is_transient, step_budget

RETRY = RetryConfig(max_attempts=3, base_delay=0.5, multiplier=2.0, max_delay=4.0)


class Scripted:
    """Async callable raising queued exceptions, then returning "ok"."""

    def __init__(self, *excs):
        self.excs = list(excs)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.excs:
            raise self.excs.pop(0)
        return "ok"


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=10, cooldown=30.0, clock=clock)


def _call(func, breaker, fake_sleep, step_timeout=10.0, **kwargs):
    return call_with_retries("create", func, breaker=breaker, retry=RETRY, step_timeout=step_timeout, sleep=fake_sleep, **kwargs)


def test_is_transient():
    assert is_transient(TransientProviderError("x"))
    assert not is_transient(PermanentProviderError("x"))
    assert not is_transient(RuntimeError("x"))


def test_step_budget():
    assert step_budget(60, None, now=0) == 60
    assert step_budget(60, deadline=30, now=0) == 30
    assert step_budget(60, deadline=10, now=20) == 0.0


def test_delay_for_is_capped():
    assert [RETRY.delay_for(n) for n in (1, 2, 3, 4, 5)] == [0.5, 1.0, 2.0, 4.0, 4.0]


async def test_transient_failures_are_retried(breaker, fake_sleep, sleeps):
    func = Scripted(TransientProviderError("503"), TransientProviderError("503"))
    assert await _call(func, breaker, fake_sleep) == "ok"
    assert func.calls == 3
    assert sleeps == [0.5, 1.0]


async def test_permanent_failure_not_retried(breaker, fake_sleep, sleeps):
    func = Scripted(PermanentProviderError("400"))
    with pytest.raises(PermanentProviderError):
        await _call(func, breaker, fake_sleep)
    assert func.calls == 1
    assert sleeps == []


async def test_gives_up_after_max_attempts(breaker, fake_sleep, sleeps):
    func = Scripted(*(TransientProviderError("503") for _ in range(5)))
    with pytest.raises(TransientProviderError):
        await _call(func, breaker, fake_sleep)
    assert func.calls == 3
    assert sleeps == [0.5, 1.0]


async def test_open_circuit_not_retried(clock, fake_sleep, sleeps):
    breaker = CircuitBreaker(failure_threshold=1, cooldown=30.0, clock=clock)
    with pytest.raises(TransientProviderError):
        await breaker.call("create", Scripted(TransientProviderError("503")))

    func = Scripted()
    with pytest.raises(CircuitOpenError):
        await _call(func, breaker, fake_sleep)
    assert func.calls == 0
    assert sleeps == []


async def test_hung_call_times_out(breaker, fake_sleep):
    async def hang():
        await asyncio.sleep(10)

    with pytest.raises(StepTimeoutError) as exc:
        await _call(hang, breaker, fake_sleep, step_timeout=0.05)
    assert exc.value.step == "create"
    # The timeout counts as a failure for the circuit.
    assert breaker.snapshot("create").failure_count == 1


async def test_no_retry_when_backoff_exceeds_budget(breaker, fake_sleep, sleeps):
    slow_retry = RetryConfig(max_attempts=3, base_delay=5.0)
    func = Scripted(TransientProviderError("503"))
    with pytest.raises(TransientProviderError):
        await call_with_retries("create", func, breaker=breaker, retry=slow_retry, step_timeout=1.0, sleep=fake_sleep)
    assert func.calls == 1
    assert sleeps == []


async def test_exhausted_aggregate_deadline(breaker, fake_sleep):
    loop = asyncio.get_running_loop()
    func = Scripted()
    with pytest.raises(StepTimeoutError):
        await _call(func, breaker, fake_sleep, deadline=loop.time() - 1)
    assert func.calls == 0
