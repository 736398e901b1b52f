"""Top-level orchestration for the risk monitor loop."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Mapping, Optional

from rwa_risk.audit import AuditLogWriter
from rwa_risk.errors import EmptyObservationSetError
from rwa_risk.models import ObservationSet, RiskSnapshot

from .metrics import MetricRegistry
from .observation_fetcher import ObservationFetcher
from .orchestrator import RiskOrchestrator
from .report_emitter import ActuationRequest, ActuationResult, ReportEmitter
from .state_store import StateStore

logger = logging.getLogger(__name__)

AUDIT_ACTOR = "risk-monitor"


@dataclass(frozen=True)
class CycleOutcome:
    cycle: int
    snapshot: Optional[RiskSnapshot] = None
    actuation: Optional[ActuationResult] = None
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.snapshot is None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "snapshot": self.snapshot.to_payload() if self.snapshot else None,
            "actuation": self.actuation.to_payload() if self.actuation else None,
            "skipped_reason": self.skipped_reason,
        }


class SnapshotHistory:
    """Bounded, newest-last record of produced snapshots for the read-only API."""

    def __init__(self, maxlen: int = 100) -> None:
        self._items: Deque[RiskSnapshot] = deque(maxlen=maxlen)

    def append(self, snapshot: RiskSnapshot) -> None:
        self._items.append(snapshot)

    def latest(self) -> Optional[RiskSnapshot]:
        return self._items[-1] if self._items else None

    def recent(self, limit: int) -> List[RiskSnapshot]:
        if limit <= 0:
            return []
        return list(self._items)[-limit:]

    def __len__(self) -> int:
        return len(self._items)


async def evaluate_cycle(
    observation_sets: Mapping[str, ObservationSet],
    orchestrator: RiskOrchestrator,
    state_store: StateStore,
    emitter: ReportEmitter,
    *,
    cycle: int = 0,
    metrics: Optional[MetricRegistry] = None,
    audit: Optional[AuditLogWriter] = None,
    history: Optional[SnapshotHistory] = None,
    actuation_timeout: float = 15.0,
    now: Optional[datetime] = None,
) -> CycleOutcome:
    """Score already collected observations and dispatch any actuation.

    State is persisted only when evaluation succeeds; a skipped cycle leaves
    the stored history and baselines exactly as they were.
    """

    metrics = metrics or MetricRegistry()
    state = state_store.load()
    try:
        snapshot = orchestrator.evaluate(observation_sets, state, now=now)
    except EmptyObservationSetError as exc:
        metrics.inc("risk_cycles_total", labels={"outcome": "skipped"})
        logger.warning("Skipping risk cycle", extra={"cycle": cycle, "symbol": exc.symbol, "reason": str(exc)})
        if audit is not None:
            audit.log("risk.cycle_skipped", AUDIT_ACTOR, {"cycle": cycle, "symbol": exc.symbol, "reason": str(exc)})
        return CycleOutcome(cycle=cycle, skipped_reason=str(exc))

    state_store.save(state)
    if history is not None:
        history.append(snapshot)
    metrics.inc("risk_cycles_total", labels={"outcome": snapshot.alert.value})
    if audit is not None:
        audit.log("risk.snapshot", AUDIT_ACTOR, {"cycle": cycle, **snapshot.to_payload()})

    actuation: Optional[ActuationResult] = None
    if snapshot.actuation_requested:
        actuation = await _dispatch_actuation(emitter, snapshot, timeout=actuation_timeout)
        metrics.inc(
            "actuation_requests_total",
            labels={"emitter": actuation.emitter, "success": str(actuation.success).lower()},
        )
        if audit is not None:
            audit.log("risk.actuation", AUDIT_ACTOR, {"cycle": cycle, **actuation.to_payload()})
    return CycleOutcome(cycle=cycle, snapshot=snapshot, actuation=actuation)


async def _dispatch_actuation(emitter: ReportEmitter, snapshot: RiskSnapshot, *, timeout: float) -> ActuationResult:
    request = ActuationRequest.from_snapshot(snapshot)
    try:
        return await asyncio.wait_for(emitter.emit(request), timeout=timeout)
    except asyncio.TimeoutError:
        reason = f"no response within {timeout}s"
    except Exception as exc:
        reason = str(exc) or type(exc).__name__
    logger.critical(
        "Actuation request failed",
        extra={"emitter": emitter.name, "risk_score": snapshot.system_risk_score, "error": reason},
    )
    return ActuationResult(emitter=emitter.name, success=False, error=reason)


async def run_cycle(
    fetcher: ObservationFetcher,
    orchestrator: RiskOrchestrator,
    state_store: StateStore,
    emitter: ReportEmitter,
    *,
    cycle: int = 0,
    metrics: Optional[MetricRegistry] = None,
    audit: Optional[AuditLogWriter] = None,
    history: Optional[SnapshotHistory] = None,
    actuation_timeout: float = 15.0,
) -> CycleOutcome:
    """Run a single iteration of the risk pipeline.

    Steps:
    1. Fetch observations from every configured source (dropping any that fail).
    2. Evaluate them against the retained state via ``orchestrator``.
    3. Persist the advanced state and record the snapshot.
    4. Hand actuation requests to ``emitter`` under ``actuation_timeout``.
    """

    metrics = metrics or MetricRegistry()
    loop_start = time.perf_counter()
    observation_sets = await fetcher.fetch()
    outcome = await evaluate_cycle(
        observation_sets,
        orchestrator,
        state_store,
        emitter,
        cycle=cycle,
        metrics=metrics,
        audit=audit,
        history=history,
        actuation_timeout=actuation_timeout,
    )
    duration = time.perf_counter() - loop_start
    metrics.observe("risk_cycle_latency_seconds", duration)
    snapshot = outcome.snapshot
    logger.info(
        "Risk cycle completed",
        extra={
            "cycle": cycle,
            "skipped": outcome.skipped,
            "alert": snapshot.alert.value if snapshot else None,
            "risk_score": round(snapshot.system_risk_score, 2) if snapshot else None,
            "duration": duration,
        },
    )
    return outcome


async def risk_loop(
    fetcher: ObservationFetcher,
    orchestrator: RiskOrchestrator,
    state_store: StateStore,
    emitter: ReportEmitter,
    *,
    interval_seconds: float = 300.0,
    max_cycles: Optional[int] = None,
    metrics: Optional[MetricRegistry] = None,
    audit: Optional[AuditLogWriter] = None,
    history: Optional[SnapshotHistory] = None,
    actuation_timeout: float = 15.0,
) -> List[CycleOutcome]:
    """Repeat :func:`run_cycle` every ``interval_seconds`` until ``max_cycles`` is reached."""

    outcomes: List[CycleOutcome] = []
    cycle = 0
    while max_cycles is None or cycle < max_cycles:
        cycle += 1
        outcome = await run_cycle(
            fetcher,
            orchestrator,
            state_store,
            emitter,
            cycle=cycle,
            metrics=metrics,
            audit=audit,
            history=history,
            actuation_timeout=actuation_timeout,
        )
        if max_cycles is not None:
            outcomes.append(outcome)
            if cycle >= max_cycles:
                break
        await asyncio.sleep(interval_seconds)
    return outcomes
