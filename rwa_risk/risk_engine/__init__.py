"""Risk engine components for RWA vault protection.

The package keeps the pure scoring pieces (consensus, momentum, deviation
guard, orchestrator) separate from the side-effectful collaborators that
fetch quotes, persist state and emit actuation requests.
"""

from .consensus import ConsensusAggregator
from .deviation_guard import DeviationGuard, DeviationState, DeviationVerdict
from .metrics import MetricRegistry
from .momentum import MomentumPredictor, MomentumVerdict, VarianceHistory
from .observation_fetcher import ObservationFetcher, build_price_feeds
from .orchestrator import RiskOrchestrator
from .report_emitter import (
    ActuationRequest,
    ActuationResult,
    DryRunReportEmitter,
    ReportEmitter,
    TelegramReportEmitter,
    WebhookReportEmitter,
    build_report_emitter,
)
from .risk_loop import CycleOutcome, SnapshotHistory, evaluate_cycle, risk_loop, run_cycle
from .state_store import FileStateStore, InMemoryStateStore, MonitorState, StateStore

__all__ = [
    "ActuationRequest",
    "ActuationResult",
    "ConsensusAggregator",
    "CycleOutcome",
    "DeviationGuard",
    "DeviationState",
    "DeviationVerdict",
    "DryRunReportEmitter",
    "FileStateStore",
    "InMemoryStateStore",
    "MetricRegistry",
    "MomentumPredictor",
    "MomentumVerdict",
    "MonitorState",
    "ObservationFetcher",
    "ReportEmitter",
    "RiskOrchestrator",
    "SnapshotHistory",
    "StateStore",
    "TelegramReportEmitter",
    "VarianceHistory",
    "WebhookReportEmitter",
    "build_price_feeds",
    "build_report_emitter",
    "evaluate_cycle",
    "risk_loop",
    "run_cycle",
]
