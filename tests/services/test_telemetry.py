import asyncio

import pytest

from services.telemetry import ResiliencePolicy, SourceUnavailable, Telemetry


def test_retries_until_success_and_marks_healthy():
    telemetry = Telemetry(policy=ResiliencePolicy(request_timeout=1.0, max_retries=2, retry_backoff=0.0))
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise ConnectionError("reset by peer")
        return 2401.5

    result = asyncio.run(telemetry.execute_with_resilience("ccxt:binance:PAXG/USDT", flaky))

    assert result == 2401.5
    assert attempts == 2
    snapshot = telemetry.health_snapshot()
    assert snapshot["status"] == "healthy"
    assert snapshot["services"]["ccxt:binance:PAXG/USDT"]["successes"] == 1


def test_last_error_is_reraised_after_retries():
    telemetry = Telemetry(policy=ResiliencePolicy(request_timeout=1.0, max_retries=1, retry_backoff=0.0))

    async def broken():
        raise RuntimeError("bad gateway")

    with pytest.raises(RuntimeError, match="bad gateway"):
        asyncio.run(telemetry.execute_with_resilience("alpha_vantage:MSFT", broken))

    assert telemetry.health_snapshot()["status"] == "degraded"


def test_timeouts_count_as_failures():
    telemetry = Telemetry(policy=ResiliencePolicy(request_timeout=0.01, max_retries=0, retry_backoff=0.0))

    async def slow():
        await asyncio.sleep(1.0)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(telemetry.execute_with_resilience("slow", slow))


def test_breaker_opens_after_repeated_failures():
    policy = ResiliencePolicy(request_timeout=1.0, max_retries=0, retry_backoff=0.0, failure_threshold=2, failure_reset_s=60)
    telemetry = Telemetry(policy=policy)
    calls = 0

    async def broken():
        nonlocal calls
        calls += 1
        raise RuntimeError("down")

    for _ in range(2):
        with pytest.raises(RuntimeError):
            asyncio.run(telemetry.execute_with_resilience("source", broken))
    with pytest.raises(SourceUnavailable):
        asyncio.run(telemetry.execute_with_resilience("source", broken))

    assert calls == 2


def test_policy_from_mapping_ignores_unknown_keys():
    policy = ResiliencePolicy.from_mapping({"max_retries": 4, "unused": True})

    assert policy.max_retries == 4
    assert policy.request_timeout == ResiliencePolicy().request_timeout
    assert ResiliencePolicy.from_mapping(None) == ResiliencePolicy()
