"""Per-operation circuit breaker for provider calls."""

import logging
import threading
import time
from dataclasses import dataclass

from appdock.errors import CircuitOpenError

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    failure_count: int = 0
    state: str = CLOSED
    last_failure_time: float | None = None
    half_open_successes: int = 0
    transition_count: int = 0


@dataclass(frozen=True)
class CircuitSnapshot:
    """Read-only view of one operation's circuit."""

    operation: str
    state: str
    failure_count: int
    last_failure_time: float | None
    half_open_successes: int
    transition_count: int


class CircuitBreaker:
    """Tracks failures per operation name and short-circuits while open.

    closed -> open after ``failure_threshold`` consecutive failures;
    open -> half_open on the first call after ``cooldown`` seconds;
    half_open -> closed after ``half_open_successes`` successes, or back
    to open on any failure.
    """

    def __init__(self, failure_threshold=3, cooldown=30.0, half_open_successes=2, clock=time.monotonic):
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.half_open_successes = half_open_successes
        self._clock = clock
        self._lock = threading.Lock()
        self._circuits: dict[str, CircuitState] = {}

    @classmethod
    def from_config(cls, config, clock=time.monotonic) -> "CircuitBreaker":
        return cls(config.failure_threshold, config.cooldown, config.half_open_successes, clock=clock)

    def _transition(self, operation: str, circuit: CircuitState, new_state: str) -> None:
        logger.info(f"Circuit '{operation}': {circuit.state} -> {new_state}")
        circuit.state = new_state
        circuit.transition_count += 1
        if new_state == HALF_OPEN:
            circuit.half_open_successes = 0

    def _before_call(self, operation: str) -> None:
        with self._lock:
            circuit = self._circuits.setdefault(operation, CircuitState())
            if circuit.state != OPEN:
                return
            elapsed = self._clock() - circuit.last_failure_time
            if elapsed < self.cooldown:
                raise CircuitOpenError(operation, self.cooldown - elapsed)
            self._transition(operation, circuit, HALF_OPEN)

    def _on_success(self, operation: str) -> None:
        with self._lock:
            circuit = self._circuits[operation]
            if circuit.state == HALF_OPEN:
                circuit.half_open_successes += 1
                if circuit.half_open_successes >= self.half_open_successes:
                    circuit.failure_count = 0
                    self._transition(operation, circuit, CLOSED)
            else:
                circuit.failure_count = 0

    def _on_failure(self, operation: str) -> None:
        with self._lock:
            circuit = self._circuits[operation]
            circuit.failure_count += 1
            circuit.last_failure_time = self._clock()
            if circuit.state == HALF_OPEN:
                self._transition(operation, circuit, OPEN)
            elif circuit.state == CLOSED and circuit.failure_count >= self.failure_threshold:
                logger.warning(f"Circuit '{operation}' opening after {circuit.failure_count} consecutive failures")
                self._transition(operation, circuit, OPEN)

    async def call(self, operation: str, func, *args, **kwargs):
        """Await ``func(*args, **kwargs)`` under the circuit for *operation*.

        Raises:
            CircuitOpenError: the circuit is open and still cooling down.
            Exception: whatever *func* raised, with a ``circuit`` snapshot attached.
        """
        self._before_call(operation)
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._on_failure(operation)
            e.circuit = self.snapshot(operation)
            raise
        self._on_success(operation)
        return result

    def snapshot(self, operation: str) -> CircuitSnapshot:
        with self._lock:
            c = self._circuits.get(operation) or CircuitState()
            return CircuitSnapshot(
                operation=operation,
                state=c.state,
                failure_count=c.failure_count,
                last_failure_time=c.last_failure_time,
                half_open_successes=c.half_open_successes,
                transition_count=c.transition_count,
            )

    def snapshots(self) -> list[CircuitSnapshot]:
        with self._lock:
            names = sorted(self._circuits)
        return [self.snapshot(name) for name in names]

    def reset(self, operation: str | None = None) -> None:
        """Forget state for one operation, or all of them."""
        with self._lock:
            if operation is None:
                self._circuits.clear()
            else:
                self._circuits.pop(operation, None)
