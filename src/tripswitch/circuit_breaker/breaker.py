"""Core circuit breaker implementation."""

import asyncio
import functools
import inspect
import threading
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ParamSpec, TypeVar

from tripswitch.circuit_breaker.exceptions import CircuitOpenError
from tripswitch.circuit_breaker.metrics import BreakerListener
from tripswitch.circuit_breaker.state import BreakerStats, CircuitState
from tripswitch.logging import (
    LoggerLike,
    get_logger,
    log_debug,
    log_exception,
    log_warning,
)

T = TypeVar("T")
P = ParamSpec("P")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures while ``CLOSED`` before opening.
        reset_timeout: Seconds to stay ``OPEN`` after the last failure before a
            move to ``HALF_OPEN`` is allowed.
        half_open_trial_limit: Successes required while ``HALF_OPEN`` to close,
            and the number of trial calls admitted while ``HALF_OPEN``.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    failure_threshold: int = 5
    reset_timeout: float = 30.0
    half_open_trial_limit: int = 2
    expected_exceptions: tuple[type[BaseException], ...] = (Exception,)
    excluded_exceptions: tuple[type[BaseException], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout <= 0:
            raise ValueError("reset_timeout must be > 0")
        if self.half_open_trial_limit < 1:
            raise ValueError("half_open_trial_limit must be >= 1")


@dataclass(frozen=True, slots=True)
class _Transition:
    old: CircuitState
    new: CircuitState
    fields: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class _Admission:
    admitted: bool
    is_trial: bool
    window: int
    retry_after: float = 0.0


class CircuitBreaker:
    """Thread-safe admission policy around calls to one remote dependency.

    The breaker never owns a thread or timer. The ``OPEN`` -> ``HALF_OPEN``
    move is evaluated lazily on every admission check and stats query.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        logger: LoggerLike | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Label used in logs, stats and errors only.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            logger: Sink for transition records. Defaults to a structlog
                logger for this module.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._logger = get_logger(__name__) if logger is None else logger
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_successes = 0
        self._admitted_trials = 0
        self._last_failure_at: datetime | None = None
        # Bumped on every phase change so stale trial slots are not handed back.
        self._window = 0

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._state.value!r})"

    # Helpers below prefixed with ``_locked`` expect ``self._lock`` to be held.

    def _locked_move_to(
        self,
        new: CircuitState,
        pending: list[_Transition],
        **fields: object,
    ) -> None:
        old = self._state
        self._state = new
        self._consecutive_failures = 0
        self._trial_successes = 0
        self._admitted_trials = 0
        self._window += 1
        pending.append(_Transition(old, new, fields))

    def _locked_retry_after(self, now: datetime) -> float:
        last_failure_at = self._last_failure_at or now
        elapsed = (now - last_failure_at).total_seconds()
        return max(self.config.reset_timeout - elapsed, 0.0)

    def _locked_refresh(self, now: datetime, pending: list[_Transition]) -> None:
        if self._state == CircuitState.OPEN and self._locked_retry_after(now) <= 0:
            self._locked_move_to(CircuitState.HALF_OPEN, pending)

    def _locked_has_capacity(self) -> bool:
        if self._state == CircuitState.CLOSED:
            return True
        if self._state == CircuitState.HALF_OPEN:
            return self._admitted_trials < self.config.half_open_trial_limit
        return False

    def _locked_stats(self) -> BreakerStats:
        return BreakerStats(
            name=self.name,
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            last_failure_at=self._last_failure_at,
            trial_successes=self._trial_successes,
            admitted_trials=self._admitted_trials,
        )

    def _notify(self, hook: str, *args: Any) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, hook)(self.name, *args)
            except Exception:
                log_exception(
                    self._logger,
                    "circuit_breaker.listener_failed",
                    breaker_name=self.name,
                    hook=hook,
                )

    def _publish(self, pending: Sequence[_Transition]) -> None:
        for transition in pending:
            if transition.new == CircuitState.OPEN:
                log_warning(
                    self._logger,
                    "circuit_breaker.opened",
                    breaker_name=self.name,
                    previous_state=transition.old.value,
                    reset_timeout=self.config.reset_timeout,
                    **transition.fields,
                )
            elif transition.new == CircuitState.HALF_OPEN:
                log_debug(
                    self._logger,
                    "circuit_breaker.half_open",
                    breaker_name=self.name,
                    trial_limit=self.config.half_open_trial_limit,
                )
            else:
                log_debug(
                    self._logger,
                    "circuit_breaker.closed",
                    breaker_name=self.name,
                    previous_state=transition.old.value,
                )
            self._notify("on_state_change", transition.old, transition.new)

    @property
    def state(self) -> CircuitState:
        """Current phase, after any pending ``OPEN`` -> ``HALF_OPEN`` move."""
        return self.get_stats().state

    def can_execute(self) -> bool:
        """Return whether a call would be admitted right now.

        This is a query: it does not take a half-open trial slot. Use
        ``try_acquire`` when the answer is acted on by concurrent callers.
        """
        pending: list[_Transition] = []
        with self._lock:
            self._locked_refresh(_utcnow(), pending)
            allowed = self._locked_has_capacity()
        self._publish(pending)
        return allowed

    def _admit(self) -> _Admission:
        pending: list[_Transition] = []
        with self._lock:
            now = _utcnow()
            self._locked_refresh(now, pending)
            if self._state == CircuitState.CLOSED:
                admission = _Admission(True, False, self._window)
            elif self._state == CircuitState.HALF_OPEN:
                if self._locked_has_capacity():
                    self._admitted_trials += 1
                    admission = _Admission(True, True, self._window)
                else:
                    admission = _Admission(False, False, self._window)
            else:
                admission = _Admission(
                    False,
                    False,
                    self._window,
                    retry_after=self._locked_retry_after(now),
                )
        self._publish(pending)
        if not admission.admitted:
            self._notify("on_call_rejected")
        return admission

    def try_acquire(self) -> bool:
        """Atomically check admission and take a half-open trial slot if needed.

        Callers that get ``True`` must report the outcome with
        ``record_success`` or ``record_failure``.
        """
        return self._admit().admitted

    def record_success(self) -> None:
        """Record a successful call outcome."""
        pending: list[_Transition] = []
        with self._lock:
            if self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0
            elif self._state == CircuitState.HALF_OPEN:
                if self._trial_successes + 1 >= self.config.half_open_trial_limit:
                    self._locked_move_to(CircuitState.CLOSED, pending)
                else:
                    self._trial_successes += 1
        self._publish(pending)

    def record_failure(self) -> None:
        """Record a failed call outcome.

        A failure reported while ``OPEN`` (for example a slow call admitted
        before the trip) only restarts the cooldown.
        """
        pending: list[_Transition] = []
        with self._lock:
            self._last_failure_at = _utcnow()
            if self._state == CircuitState.CLOSED:
                failures = self._consecutive_failures + 1
                if failures >= self.config.failure_threshold:
                    self._locked_move_to(
                        CircuitState.OPEN,
                        pending,
                        reason="failure_threshold",
                        failure_count=failures,
                    )
                else:
                    self._consecutive_failures = failures
            elif self._state == CircuitState.HALF_OPEN:
                self._locked_move_to(
                    CircuitState.OPEN,
                    pending,
                    reason="half_open_failure",
                )
        self._publish(pending)

    def force_reset(self) -> None:
        """Return to ``CLOSED`` with every counter zeroed, whatever the phase."""
        pending: list[_Transition] = []
        with self._lock:
            previous = self._state
            self._locked_move_to(CircuitState.CLOSED, pending)
        log_debug(
            self._logger,
            "circuit_breaker.force_reset",
            breaker_name=self.name,
            previous_state=previous.value,
        )
        if previous != CircuitState.CLOSED:
            self._notify("on_state_change", previous, CircuitState.CLOSED)

    def get_stats(self) -> BreakerStats:
        """Return a read-only snapshot, applying any pending lazy transition."""
        pending: list[_Transition] = []
        with self._lock:
            self._locked_refresh(_utcnow(), pending)
            stats = self._locked_stats()
        self._publish(pending)
        return stats

    def _enter(self) -> _Admission:
        admission = self._admit()
        if not admission.admitted:
            raise CircuitOpenError(self.name, retry_after=admission.retry_after)
        return admission

    def _discard(self, admission: _Admission) -> None:
        """Hand back a trial slot whose call ended with an uncounted outcome."""
        if not admission.is_trial:
            return
        with self._lock:
            if (
                self._state == CircuitState.HALF_OPEN
                and self._window == admission.window
                and self._admitted_trials > 0
            ):
                self._admitted_trials -= 1

    def _succeeded(self, start: float) -> None:
        self.record_success()
        self._notify("on_call_succeeded", max(time.monotonic() - start, 0.0))

    def _failed(self, exc: BaseException, start: float) -> None:
        self.record_failure()
        self._notify("on_call_failed", exc, max(time.monotonic() - start, 0.0))

    def execute(
        self,
        func: Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke a callable under circuit breaker protection.

        Args:
            func: Dangerous callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when admitted and successful.

        Raises:
            CircuitOpenError: When admission is denied. ``func`` is not called.
            Exception: The original exception from ``func``, unchanged.
        """
        admission = self._enter()
        start = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except self.config.excluded_exceptions:
            self._discard(admission)
            raise
        except self.config.expected_exceptions as exc:
            self._failed(exc, start)
            raise
        except BaseException:
            self._discard(admission)
            raise
        self._succeeded(start)
        return result

    async def execute_async(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Await an async callable under circuit breaker protection.

        Cancellation of the awaited call counts as a failure before the
        ``CancelledError`` is re-raised.

        Raises:
            CircuitOpenError: When admission is denied. ``func`` is not called.
            Exception: The original exception from ``func``, unchanged.
        """
        admission = self._enter()
        start = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            self._discard(admission)
            raise
        except asyncio.CancelledError as exc:
            self._failed(exc, start)
            raise
        except self.config.expected_exceptions as exc:
            self._failed(exc, start)
            raise
        except BaseException:
            self._discard(admission)
            raise
        self._succeeded(start)
        return result

    def __call__(self, func: Callable[P, Any]) -> Callable[P, Any]:
        """Decorate a sync or async function so every call goes through the breaker."""
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def _async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                return await self.execute_async(func, *args, **kwargs)

            return _async_wrapper

        @functools.wraps(func)
        def _wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
            return self.execute(func, *args, **kwargs)

        return _wrapper
