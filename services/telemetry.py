"""Resilience and health tracking for calls to external quote providers."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass
class ResiliencePolicy:
    """Timeout and retry budget applied to each upstream call."""

    request_timeout: float = 10.0
    max_retries: int = 1
    retry_backoff: float = 0.5
    failure_threshold: int = 3
    failure_reset_s: float = 60.0

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "ResiliencePolicy":
        if not payload:
            return cls()
        kwargs: Dict[str, Any] = {}
        for key in ("request_timeout", "max_retries", "retry_backoff", "failure_threshold", "failure_reset_s"):
            if key in payload:
                kwargs[key] = payload[key]
        return cls(**kwargs)


@dataclass
class SourceBreakerState:
    """Stop calling a source after repeated failures until ``reset_seconds`` pass."""

    threshold: int
    reset_seconds: float
    failure_count: int = 0
    opened_at: Optional[float] = None

    def is_open(self) -> bool:
        if self.opened_at is None:
            return False
        if (time.monotonic() - self.opened_at) >= self.reset_seconds:
            self.failure_count = 0
            self.opened_at = None
            return False
        return True

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.failure_count >= self.threshold and self.opened_at is None:
            self.opened_at = time.monotonic()

    def record_success(self) -> None:
        self.failure_count = 0
        self.opened_at = None


@dataclass
class ServiceStatus:
    status: str
    reason: Optional[str] = None
    last_success: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    failures: int = 0
    successes: int = 0


class SourceUnavailable(RuntimeError):
    """Raised without calling the source while its breaker is open."""


class Telemetry:
    """Track per-source health and run calls under a :class:`ResiliencePolicy`."""

    def __init__(self, *, policy: Optional[ResiliencePolicy] = None) -> None:
        self.policy = policy or ResiliencePolicy()
        self.service_status: Dict[str, ServiceStatus] = {}
        self._breakers: Dict[str, SourceBreakerState] = {}

    def _breaker_for(self, name: str) -> SourceBreakerState:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = SourceBreakerState(
                threshold=self.policy.failure_threshold,
                reset_seconds=self.policy.failure_reset_s,
            )
            self._breakers[name] = breaker
        return breaker

    def _status_for(self, name: str) -> ServiceStatus:
        status = self.service_status.get(name)
        if status is None:
            status = ServiceStatus(status="unknown")
            self.service_status[name] = status
        return status

    def mark_service_healthy(self, name: str) -> None:
        now = datetime.now(timezone.utc)
        status = self._status_for(name)
        status.status = "healthy"
        status.reason = None
        status.last_success = now
        status.last_checked = now
        status.successes += 1

    def mark_service_degraded(self, name: str, reason: str) -> None:
        status = self._status_for(name)
        status.status = "degraded"
        status.reason = reason
        status.last_checked = datetime.now(timezone.utc)
        status.failures += 1

    async def execute_with_resilience(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        *,
        policy: Optional[ResiliencePolicy] = None,
    ) -> Any:
        """Await ``func()`` with a timeout, bounded retries and a failure breaker."""

        selected = policy or self.policy
        breaker = self._breaker_for(name)
        if breaker.is_open():
            self.mark_service_degraded(name, "breaker_open")
            raise SourceUnavailable(f"{name} is cooling down after repeated failures")

        attempt = 0
        last_exc: Optional[BaseException] = None
        while attempt <= selected.max_retries:
            attempt += 1
            try:
                result = await asyncio.wait_for(func(), timeout=selected.request_timeout)
            except Exception as exc:
                last_exc = exc
                breaker.record_failure()
                self.mark_service_degraded(name, str(exc) or type(exc).__name__)
                logger.debug("%s attempt %s failed: %s", name, attempt, exc)
                if attempt > selected.max_retries or breaker.is_open():
                    break
                await asyncio.sleep(selected.retry_backoff * attempt)
                continue
            breaker.record_success()
            self.mark_service_healthy(name)
            return result

        assert last_exc is not None  # nosec - loop only exits here after a failure
        raise last_exc

    def health_snapshot(self) -> Dict[str, Any]:
        services: Dict[str, Any] = {}
        for name, status in self.service_status.items():
            services[name] = {
                "status": status.status,
                "reason": status.reason,
                "last_success": status.last_success.isoformat() if status.last_success else None,
                "last_checked": status.last_checked.isoformat() if status.last_checked else None,
                "failures": status.failures,
                "successes": status.successes,
            }
        overall = "healthy"
        if any(status.status != "healthy" for status in self.service_status.values()):
            overall = "degraded"
        return {"status": overall, "services": services}


__all__ = ["ResiliencePolicy", "SourceBreakerState", "SourceUnavailable", "Telemetry"]
