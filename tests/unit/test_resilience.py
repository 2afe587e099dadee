import asyncio

import pytest

from pulse_bridge.adapters.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CommandGuard
)
from pulse_bridge.config import RestConfig
from pulse_bridge.domain.ports import CommandRuntimeError, HttpOperationFailedError


async def _ok() -> str:
    return "ok"


async def _http_failure() -> str:
    raise HttpOperationFailedError("http://pulse/events", 503, "Service Unavailable")


class TestCircuitBreaker:
    def test_opens_after_consecutive_failures(self) -> None:
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=3, timeout_seconds=60))

        for _ in range(3):
            assert breaker.allow_request()
            breaker.record_failure(RuntimeError("boom"))

        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()
        assert breaker.stats.rejected_calls == 1

    def test_success_resets_failure_count(self) -> None:
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=2, timeout_seconds=60))

        breaker.record_failure(RuntimeError("boom"))
        breaker.record_success()
        breaker.record_failure(RuntimeError("boom"))

        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout_then_closes_on_success(self) -> None:
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=0))

        breaker.record_failure(RuntimeError("boom"))

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()
        assert not breaker.allow_request()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_failure_in_half_open_reopens(self) -> None:
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=0.05))
        breaker.record_failure(RuntimeError("boom"))
        breaker._last_failure_time -= 1

        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_failure(RuntimeError("again"))

        assert breaker._state == CircuitState.OPEN

    def test_reset(self) -> None:
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=60))
        breaker.record_failure(RuntimeError("boom"))

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED


class TestCommandGuard:
    @pytest.mark.asyncio
    async def test_returns_operation_result(self) -> None:
        guard = CommandGuard("PulseGETCallRoute")

        assert await guard.execute(_ok) == "ok"
        assert guard.circuit_breaker.stats.successful_calls == 1

    @pytest.mark.asyncio
    async def test_timeout_raises_command_runtime_error(self) -> None:
        guard = CommandGuard("PulseGETCallRoute", timeout_ms=10)

        async def slow() -> None:
            await asyncio.sleep(1)

        with pytest.raises(CommandRuntimeError) as exc_info:
            await guard.execute(slow)

        assert exc_info.value.failure_type == CommandRuntimeError.TIMEOUT
        assert "PulseGETCallRoute timed-out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_failure_propagates_unwrapped(self) -> None:
        guard = CommandGuard("PulsePOSTCallRoute")

        with pytest.raises(HttpOperationFailedError):
            await guard.execute(_http_failure)

        assert guard.circuit_breaker.stats.failed_calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self) -> None:
        guard = CommandGuard("PulsePOSTCallRoute")

        async def broken() -> None:
            raise ValueError("bad")

        with pytest.raises(CommandRuntimeError) as exc_info:
            await guard.execute(broken)

        assert exc_info.value.failure_type == CommandRuntimeError.COMMAND_EXCEPTION
        assert isinstance(exc_info.value.cause, ValueError)

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits(self) -> None:
        breaker = CircuitBreaker("PulseGETCallRoute", CircuitBreakerConfig(failure_threshold=1, timeout_seconds=60))
        guard = CommandGuard("PulseGETCallRoute", circuit_breaker=breaker)

        with pytest.raises(HttpOperationFailedError):
            await guard.execute(_http_failure)

        with pytest.raises(CommandRuntimeError) as exc_info:
            await guard.execute(_ok)

        assert exc_info.value.failure_type == CommandRuntimeError.SHORTCIRCUIT

    @pytest.mark.asyncio
    async def test_full_bulkhead_rejects_without_queue(self) -> None:
        guard = CommandGuard("PulseGETCallRoute", maximum_size=1, max_queue_size=-1)
        release = asyncio.Event()

        async def blocked() -> str:
            await release.wait()
            return "done"

        first = asyncio.create_task(guard.execute(blocked))
        await asyncio.sleep(0)

        with pytest.raises(CommandRuntimeError) as exc_info:
            await guard.execute(_ok)

        release.set()
        assert await first == "done"
        assert exc_info.value.failure_type == CommandRuntimeError.REJECTED

    @pytest.mark.asyncio
    async def test_queued_call_waits_for_slot(self) -> None:
        guard = CommandGuard("PulseGETCallRoute", maximum_size=1, max_queue_size=5, queue_rejection_threshold=1)
        release = asyncio.Event()

        async def blocked() -> str:
            await release.wait()
            return "first"

        first = asyncio.create_task(guard.execute(blocked))
        await asyncio.sleep(0)
        second = asyncio.create_task(guard.execute(_ok))
        await asyncio.sleep(0)

        release.set()
        assert await first == "first"
        assert await second == "ok"

    def test_from_config_uses_core_pool_size_unless_diverging(self) -> None:
        guard = CommandGuard.from_config("PulseGETCallRoute", RestConfig())

        assert guard.maximum_size == RestConfig().core_pool_size
        assert guard.timeout == RestConfig().timeout_ms / 1000.0

        diverging = CommandGuard.from_config(
            "PulseGETCallRoute",
            RestConfig(allow_maximum_size_to_diverge=True, maximum_size=25)
        )
        assert diverging.maximum_size == 25
