from __future__ import annotations

import pytest

from streamhub.core.errors import IntegrationUnavailableError, TransientProviderError
from streamhub.services.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    RetryPolicy,
    get_breaker,
    get_resilience_redis,
    retry_async,
)
from streamhub.services.telemetry import counters_snapshot


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TransientProviderError("502")
        return "ok"

    result = await retry_async(
        flaky,
        policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1),
    )
    assert result == "ok"
    assert calls["count"] == 2
    assert counters_snapshot()["external_retries_total"] == 1


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_open_breaker() -> None:
    calls = {"count": 0}

    async def blocked() -> None:
        calls["count"] += 1
        raise IntegrationUnavailableError("open")

    with pytest.raises(IntegrationUnavailableError):
        await retry_async(blocked, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_retry_async_propagates_non_transient() -> None:
    calls = {"count": 0}

    async def broken() -> None:
        calls["count"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await retry_async(broken, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_circuit_breaker_transitions() -> None:
    now = {"t": 0.0}

    def time_source() -> float:
        return now["t"]

    breaker = CircuitBreaker(
        "test.integration",
        redis=None,
        config=CircuitBreakerConfig(failure_threshold=2, open_seconds=10, half_open_trials=1),
        time_source=time_source,
    )
    await breaker.before_call()
    await breaker.record_failure()
    await breaker.record_failure()
    with pytest.raises(IntegrationUnavailableError):
        await breaker.before_call()

    now["t"] = 11.0
    await breaker.before_call()
    # Only one trial call is let through while half open.
    with pytest.raises(IntegrationUnavailableError):
        await breaker.before_call()
    await breaker.record_success()
    await breaker.before_call()
    assert counters_snapshot()["circuit_breaker_transition_total.test.integration.open"] == 1


@pytest.mark.asyncio
async def test_half_open_failure_reopens() -> None:
    now = {"t": 0.0}
    breaker = CircuitBreaker(
        "test.reopen",
        config=CircuitBreakerConfig(failure_threshold=1, open_seconds=5, half_open_trials=1),
        time_source=lambda: now["t"],
    )
    await breaker.record_failure()
    now["t"] = 6.0
    await breaker.before_call()
    await breaker.record_failure()
    with pytest.raises(IntegrationUnavailableError):
        await breaker.before_call()


@pytest.mark.asyncio
async def test_breakers_are_shared_per_integration() -> None:
    assert await get_resilience_redis() is None
    first = await get_breaker("video.cloudflare")
    assert await get_breaker("video.cloudflare") is first
    assert await get_breaker("video.bunny") is not first
