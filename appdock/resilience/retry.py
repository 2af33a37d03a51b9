"""Retry transient provider failures within a step's time budget."""

import asyncio
import logging

from appdock.errors import ProviderError, StepTimeoutError

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.transient


def step_budget(step_timeout: float, deadline: float | None, now: float) -> float:
    """Time allowed for a step: its own ceiling, capped by what is left of the aggregate."""
    if deadline is None:
        return step_timeout
    return max(0.0, min(step_timeout, deadline - now))


async def call_with_retries(operation, func, *args, breaker, retry, step_timeout, deadline=None, sleep=asyncio.sleep, **kwargs):
    """Await ``func(*args, **kwargs)`` through *breaker*, retrying transient failures.

    Every attempt and every backoff sleep fits inside the step budget
    (``min(step_timeout, deadline - now)``); the budget is never extended.

    Args:
        operation: breaker operation name (e.g. "create").
        breaker: CircuitBreaker instance.
        retry: RetryConfig (max_attempts, backoff parameters).
        step_timeout: per-step ceiling in seconds.
        deadline: absolute event-loop time for the aggregate budget, or None.

    Raises:
        CircuitOpenError: immediately, never retried.
        ProviderError: permanent failure, or transient after exhausting attempts.
        StepTimeoutError: the step budget ran out.
    """
    loop = asyncio.get_running_loop()
    step_deadline = loop.time() + step_budget(step_timeout, deadline, loop.time())

    async def _attempt(remaining):
        try:
            return await asyncio.wait_for(func(*args, **kwargs), remaining)
        except asyncio.TimeoutError:
            raise StepTimeoutError(operation, step_timeout) from None

    attempt = 0
    while True:
        attempt += 1
        remaining = step_deadline - loop.time()
        if remaining <= 0:
            raise StepTimeoutError(operation, step_timeout)
        try:
            return await breaker.call(operation, _attempt, remaining)
        except ProviderError as e:
            if not e.transient or attempt >= retry.max_attempts:
                raise
            delay = retry.delay_for(attempt)
            if loop.time() + delay >= step_deadline:
                logger.warning(f"{operation}: no budget left to retry after: {e}")
                raise
            logger.warning(f"{operation} failed (attempt {attempt}/{retry.max_attempts}): {e}. Retrying in {delay:.1f}s")
            await sleep(delay)
