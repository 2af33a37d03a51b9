"""Resilience primitives: circuit breaker, admission control, retries."""

from appdock.resilience.admission import AdmissionController, AdmissionSlot, Priority
from appdock.resilience.breaker import CircuitBreaker, CircuitSnapshot, CircuitState
from appdock.resilience.retry import call_with_retries, is_transient, step_budget

__all__ = [
    "AdmissionController",
    "AdmissionSlot",
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "Priority",
    "call_with_retries",
    "is_transient",
    "step_budget",
]
