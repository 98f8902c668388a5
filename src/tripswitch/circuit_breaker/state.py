"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerStats:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current phase, after any pending ``OPEN`` -> ``HALF_OPEN`` move.
        consecutive_failures: Failures counted in a row while ``CLOSED``.
        last_failure_at: Timestamp of the last recorded failure, if any.
        trial_successes: Successful trials since entering ``HALF_OPEN``.
        admitted_trials: Trials admitted since entering ``HALF_OPEN``.
    """

    name: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: datetime | None
    trial_successes: int = 0
    admitted_trials: int = 0
