"""Combine consensus, momentum and deviation signals into a risk snapshot."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from itertools import combinations
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from rwa_risk.config.models import RiskEngineConfig
from rwa_risk.errors import EmptyObservationSetError
from rwa_risk.models import AlertLevel, MarketMomentum, MedianConsensus, ObservationSet, RiskSnapshot

from .consensus import ConsensusAggregator
from .deviation_guard import DeviationGuard, DeviationVerdict
from .momentum import MomentumPredictor
from .state_store import MonitorState

logger = logging.getLogger(__name__)

MAX_RISK_SCORE = 10.0
HIGH_VOLATILITY_BUMP = 2.0
HIGH_VOLATILITY_BUMP_CEILING = 7.0
ACTUATION_SCORE = 9.0


def cross_asset_variance(consensus: Iterable[MedianConsensus]) -> float:
    """Largest absolute difference between any two assets' variance percentages."""

    variances = [item.variance_pct for item in consensus]
    return max((abs(a - b) for a, b in combinations(variances, 2)), default=0.0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskOrchestrator:
    """Evaluate one cycle against caller-owned :class:`MonitorState`.

    Signal precedence, lowest to highest: consensus tiers, cross-asset
    volatility, momentum, deviation circuit breaker. A tripped breaker
    overrides everything else.
    """

    def __init__(self, config: RiskEngineConfig, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._config = config.validate()
        self._aggregator = ConsensusAggregator(config.thresholds)
        self._clock = clock or _utcnow

    @property
    def config(self) -> RiskEngineConfig:
        return self._config

    def evaluate(
        self,
        observation_sets: Mapping[str, ObservationSet],
        state: MonitorState,
        *,
        anchor_symbol: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RiskSnapshot:
        config = self._config
        anchor = anchor_symbol or config.anchor_symbol
        if anchor != config.anchor_symbol:
            config = replace(config, anchor_symbol=anchor)
        guarded = config.deviation_symbols
        for symbol in guarded:
            if symbol not in observation_sets:
                raise EmptyObservationSetError(symbol, f"Guarded symbol {symbol} is missing from this cycle")

        # Every aggregation must succeed before retained state is touched.
        consensus: Dict[str, MedianConsensus] = {
            symbol: self._aggregator.aggregate(observations, symbol)
            for symbol, observations in observation_sets.items()
        }

        thresholds = config.thresholds
        protection = config.protection
        reasons: List[str] = []

        divergence = cross_asset_variance(consensus.values())
        score = sum(item.risk_score for item in consensus.values()) / len(consensus)
        for item in consensus.values():
            if item.risk_score > 0:
                reasons.append(f"{item.symbol} variance {item.variance_pct:.2f}% ({item.risk_tier.value})")

        alert = AlertLevel.NORMAL
        momentum = MarketMomentum.STABLE
        if divergence > thresholds.high_volatility_pct:
            alert = AlertLevel.HIGH_VOLATILITY
            if score < HIGH_VOLATILITY_BUMP_CEILING:
                score = min(MAX_RISK_SCORE, score + HIGH_VOLATILITY_BUMP)
            reasons.append(f"High volatility: cross-asset variance {divergence:.2f}%")
        elif divergence > thresholds.consensus_max_variance_pct:
            alert = AlertLevel.ELEVATED_VOLATILITY
            reasons.append(f"Elevated volatility: cross-asset variance {divergence:.2f}%")

        predictor = MomentumPredictor(
            state.variance_history,
            acceleration_threshold=protection.acceleration_threshold,
            risk_bonus=protection.predictive_risk_bonus,
        )
        verdict = predictor.update(divergence)
        if verdict.momentum is MarketMomentum.UNSTABLE:
            score = min(MAX_RISK_SCORE, score + verdict.risk_bonus)
            momentum = MarketMomentum.UNSTABLE
            reasons.append(f"Divergence accelerating ({verdict.acceleration:.2f})")

        guard = DeviationGuard(state.deviation_state, max_deviation_pct=protection.max_deviation_pct)
        verdicts: List[DeviationVerdict] = [guard.check(symbol, consensus[symbol].median_price) for symbol in guarded]
        tripped = [item for item in verdicts if item.triggered]
        if tripped:
            score = MAX_RISK_SCORE
            alert = AlertLevel.CRITICAL_HALT
            momentum = MarketMomentum.CRITICAL
            reasons = [
                f"Circuit breaker: {item.symbol} moved {item.deviation_pct:.2%} "
                f"(limit {protection.max_deviation_pct:.2%})"
                for item in tripped
            ]

        actuation_requested = alert is AlertLevel.CRITICAL_HALT or (
            score >= ACTUATION_SCORE and protection.circuit_breaker_enabled
        )
        state.cycles += 1

        snapshot = RiskSnapshot(
            per_asset_consensus=consensus,
            cross_asset_variance=divergence,
            system_risk_score=score,
            alert=alert,
            market_momentum=momentum,
            actuation_requested=actuation_requested,
            timestamp=now or self._clock(),
            anchor_symbol=anchor,
            acceleration=verdict.acceleration,
            deviations={item.symbol: item.deviation_pct for item in verdicts},
            rationale="; ".join(reasons) or "All signals within tolerance",
        )

        log_level = logging.INFO
        if alert is AlertLevel.CRITICAL_HALT:
            log_level = logging.ERROR
        elif alert is not AlertLevel.NORMAL or momentum is not MarketMomentum.STABLE:
            log_level = logging.WARNING
        logger.log(
            log_level,
            "Evaluated risk snapshot",
            extra={
                "anchor": anchor,
                "alert": alert.value,
                "momentum": momentum.value,
                "risk_score": round(score, 2),
                "cross_asset_variance": divergence,
                "actuation_requested": actuation_requested,
                "rationale": snapshot.rationale,
            },
        )
        return snapshot
