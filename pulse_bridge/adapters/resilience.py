"""
Command guard for outgoing REST calls: execution timeout, bulkhead and
circuit breaker.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Failing, calls rejected immediately
- HALF_OPEN: Testing recovery, a limited number of calls allowed

Usage:
    guard = CommandGuard("PulsePOSTCallRoute", timeout_ms=3000, maximum_size=10)
    response = await guard.execute(lambda: client.send(request))
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from ..domain.ports import CommandRuntimeError, HttpOperationFailedError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Consecutive failures before opening circuit
    failure_threshold: int = 20

    # Successes in half-open before closing
    success_threshold: int = 1

    # Seconds to wait in open state before testing
    timeout_seconds: float = 5.0

    # Max concurrent calls allowed in half-open
    half_open_max_calls: int = 1


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    current_state: str = "closed"


class CircuitBreaker:
    """Consecutive-failure circuit breaker. Thread-safe."""

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_calls = 0

        self._stats = CircuitStats()
        self._lock = threading.RLock()

    @property
    def state(self) -> CircuitState:
        """Current circuit state (may transition on access)."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def stats(self) -> CircuitStats:
        with self._lock:
            self._check_state_transition()
            return CircuitStats(
                total_calls=self._stats.total_calls,
                successful_calls=self._stats.successful_calls,
                failed_calls=self._stats.failed_calls,
                rejected_calls=self._stats.rejected_calls,
                state_changes=self._stats.state_changes,
                current_state=self._state.value
            )

    def allow_request(self) -> bool:
        """Return True if a call may proceed; counts the call when it may."""
        with self._lock:
            self._check_state_transition()

            if self._state == CircuitState.OPEN:
                self._stats.rejected_calls += 1
                return False

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    self._stats.rejected_calls += 1
                    return False
                self._half_open_calls += 1

            self._stats.total_calls += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_calls += 1
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self, exc: BaseException) -> None:
        with self._lock:
            self._stats.failed_calls += 1
            self._last_failure_time = time.time()

            if self._state == CircuitState.HALF_OPEN:
                logger.debug(
                    f"Circuit breaker failure in half-open: circuit_name={self.name}, "
                    f"error_type={type(exc).__name__}"
                )
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._last_failure_time = None

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = time.time() - self._last_failure_time
            if elapsed >= self.config.timeout_seconds:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._stats.state_changes += 1
        self._stats.current_state = new_state.value

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
            logger.info(f"Circuit closed: circuit_name={self.name}")
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0
            logger.info(f"Circuit half-open: circuit_name={self.name}")
        else:
            self._success_count = 0
            logger.warning(
                f"Circuit open: circuit_name={self.name}, "
                f"timeout_seconds={self.config.timeout_seconds}"
            )


class CommandGuard:
    """
    Runs an async operation with a timeout inside a bounded bulkhead,
    behind a circuit breaker.

    The bulkhead admits ``maximum_size`` concurrent calls. With
    ``max_queue_size`` of -1 there is no waiting room and a call that finds
    the bulkhead full is rejected; otherwise up to
    ``queue_rejection_threshold`` calls may wait for a slot.
    """

    def __init__(
        self,
        name: str,
        timeout_ms: int = 3000,
        maximum_size: int = 10,
        max_queue_size: int = -1,
        queue_rejection_threshold: int = 5,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self.name = name
        self.timeout = timeout_ms / 1000.0
        self.maximum_size = maximum_size
        self.queue_limit = min(queue_rejection_threshold, max_queue_size) if max_queue_size >= 0 else 0
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name)

        self._semaphore = asyncio.Semaphore(maximum_size)
        self._waiting = 0

    @classmethod
    def from_config(cls, name: str, rest_config) -> "CommandGuard":
        """Build a guard from a RestConfig section."""
        breaker = CircuitBreaker(
            name,
            CircuitBreakerConfig(
                failure_threshold=rest_config.circuit_failure_threshold,
                success_threshold=rest_config.circuit_success_threshold,
                timeout_seconds=rest_config.circuit_open_seconds
            )
        )
        maximum_size = rest_config.maximum_size if rest_config.allow_maximum_size_to_diverge \
            else rest_config.core_pool_size
        return cls(
            name,
            timeout_ms=rest_config.timeout_ms,
            maximum_size=maximum_size,
            max_queue_size=rest_config.max_queue_size,
            queue_rejection_threshold=rest_config.queue_rejection_threshold,
            circuit_breaker=breaker
        )

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run the operation under the guard.

        Raises:
            CommandRuntimeError: On open circuit, bulkhead rejection, timeout,
                or an unexpected error inside the operation
            HttpOperationFailedError: When the operation reports a failed HTTP call
        """
        if not self.circuit_breaker.allow_request():
            raise CommandRuntimeError(
                self.name, CommandRuntimeError.SHORTCIRCUIT, "short-circuited and no fallback available."
            )

        if self._semaphore.locked() and self._waiting >= self.queue_limit:
            logger.warning(
                f"Command rejected, bulkhead full: {self.name}",
                extra={"component": "command_guard", "maximum_size": self.maximum_size}
            )
            raise CommandRuntimeError(
                self.name, CommandRuntimeError.REJECTED, "could not be queued for execution and no fallback available."
            )

        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1

        try:
            result = await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self.circuit_breaker.record_failure(e)
            raise CommandRuntimeError(
                self.name, CommandRuntimeError.TIMEOUT, "timed-out and no fallback available.", e
            ) from e
        except HttpOperationFailedError as e:
            self.circuit_breaker.record_failure(e)
            raise
        except Exception as e:
            self.circuit_breaker.record_failure(e)
            raise CommandRuntimeError(
                self.name, CommandRuntimeError.COMMAND_EXCEPTION, "failed and no fallback available.", e
            ) from e
        finally:
            self._semaphore.release()

        self.circuit_breaker.record_success()
        return result
