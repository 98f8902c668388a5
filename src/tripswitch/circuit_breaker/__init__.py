"""Thread-safe circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - State is in-memory and per instance. There is no background timer: the
    ``OPEN`` -> ``HALF_OPEN`` move happens lazily on the next admission check
    or stats query once ``reset_timeout`` has elapsed since the last failure.
  - ``half_open_trial_limit`` gates admission as well as recovery: at most that
    many trial calls are admitted per half-open window, and that many
    successes close the circuit. One half-open failure reopens it.
  - Rejected calls are never recorded as failures.
"""

from tripswitch.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from tripswitch.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from tripswitch.circuit_breaker.metrics import BreakerListener
from tripswitch.circuit_breaker.registry import (
    DEFAULT_CONFIG,
    SLOW_RECOVERY_CONFIG,
    BreakerRegistry,
)
from tripswitch.circuit_breaker.state import BreakerStats, CircuitState

__all__ = [
    "DEFAULT_CONFIG",
    "SLOW_RECOVERY_CONFIG",
    "BreakerListener",
    "BreakerRegistry",
    "BreakerStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
]
