"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open or its half-open trial
    slots are exhausted (``CircuitOpenError``).
  - A failure of the protected call itself, which is re-raised unchanged.
"""

from tripswitch.errors import TripswitchError


class CircuitBreakerError(TripswitchError):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because admission was denied.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted. ``0.0``
            when the breaker is half-open and every trial slot is taken.
    """

    def __init__(self, breaker_name: str, retry_after: float) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
        """
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(f"circuit_open: {breaker_name} retry_after={retry_after:g}s")
