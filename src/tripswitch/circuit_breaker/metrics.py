"""Observability hooks for circuit breakers."""

from typing import Protocol

from tripswitch.circuit_breaker.state import CircuitState


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Hooks run after the breaker lock is released, so a listener may query
        the breaker it observes. Hooks should return quickly; they run on the
        caller's thread.
    """

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        """Handle circuit state transitions."""

    def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while admission is denied."""

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    def on_call_failed(self, name: str, exc: BaseException, elapsed: float) -> None:
        """Handle failed protected call completion."""
