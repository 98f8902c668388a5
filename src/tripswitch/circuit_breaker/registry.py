"""Named breaker registry.

A registry is owned by whatever component issues the protected calls and is
created once at startup. Breakers are never removed; ``reset_all`` is the
operator escape hatch.
"""

import threading
from collections.abc import Sequence

from tripswitch.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from tripswitch.circuit_breaker.metrics import BreakerListener
from tripswitch.circuit_breaker.state import BreakerStats
from tripswitch.logging import LoggerLike

DEFAULT_CONFIG = CircuitBreakerConfig()
SLOW_RECOVERY_CONFIG = CircuitBreakerConfig(
    failure_threshold=3,
    reset_timeout=300.0,
    half_open_trial_limit=1,
)


class BreakerRegistry:
    """Lock-guarded mapping of dependency name to its breaker."""

    def __init__(
        self,
        *,
        default_config: CircuitBreakerConfig | None = None,
        logger: LoggerLike | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Create an empty registry.

        Args:
            default_config: Config for breakers created without one.
            logger: Logger handed to every breaker this registry creates.
            listeners: Listeners handed to every breaker this registry creates.
        """
        self._default_config = (
            DEFAULT_CONFIG if default_config is None else default_config
        )
        self._logger = logger
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_or_create(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use.

        ``config`` only applies on creation; an existing breaker keeps the
        config it was built with.
        """
        key = name.strip()
        if not key:
            raise ValueError("breaker name must be non-empty")
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    config=self._default_config if config is None else config,
                    logger=self._logger,
                    listeners=self._listeners,
                )
                self._breakers[key] = breaker
            return breaker

    def get(self, name: str) -> CircuitBreaker:
        """Return an existing breaker or raise ``KeyError``."""
        with self._lock:
            return self._breakers[name.strip()]

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        with self._lock:
            return name.strip() in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def names(self) -> tuple[str, ...]:
        """Return registered breaker names in creation order."""
        with self._lock:
            return tuple(self._breakers)

    def _snapshot(self) -> tuple[CircuitBreaker, ...]:
        with self._lock:
            return tuple(self._breakers.values())

    def stats(self) -> tuple[BreakerStats, ...]:
        """Return current stats for every registered breaker."""
        return tuple(breaker.get_stats() for breaker in self._snapshot())

    def reset_all(self) -> None:
        """Force every registered breaker back to ``CLOSED``."""
        for breaker in self._snapshot():
            breaker.force_reset()
