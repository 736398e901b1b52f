"""Reduce redundant price observations to a single trusted value per asset."""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional, Sequence

from rwa_risk.config.models import RiskThresholds
from rwa_risk.errors import EmptyObservationSetError
from rwa_risk.models import MedianConsensus, PriceObservation, RiskTier

logger = logging.getLogger(__name__)


def median(values: Sequence[float]) -> float:
    """Middle value of already sorted ``values``; mean of the two middles when even."""

    count = len(values)
    middle = count // 2
    if count % 2:
        return values[middle]
    return (values[middle - 1] + values[middle]) / 2.0


def classify_variance(variance_pct: float, thresholds: RiskThresholds) -> RiskTier:
    """Map a variance percentage to a tier. Boundaries do not escalate."""

    if variance_pct > thresholds.extreme_volatility_pct:
        return RiskTier.EXTREME
    if variance_pct > thresholds.high_volatility_pct:
        return RiskTier.HIGH
    if variance_pct > thresholds.consensus_max_variance_pct:
        return RiskTier.ELEVATED
    return RiskTier.NORMAL


class ConsensusAggregator:
    """Median, unweighted mean and population deviation over one symbol's quotes.

    ``PriceObservation.weight`` is validated upstream but intentionally ignored
    here: median, mean and deviation all treat every observation equally.
    """

    def __init__(self, thresholds: RiskThresholds) -> None:
        self._thresholds = thresholds

    def aggregate(
        self, observations: Iterable[PriceObservation], symbol: Optional[str] = None
    ) -> MedianConsensus:
        ordered: List[PriceObservation] = sorted(observations, key=lambda observation: observation.price)
        if not ordered:
            raise EmptyObservationSetError(symbol or "<unknown>")
        symbol = symbol or ordered[0].symbol
        mismatched = sorted({o.symbol for o in ordered if o.symbol != symbol})
        if mismatched:
            raise ValueError(f"Observation set for {symbol} contains foreign symbols: {', '.join(mismatched)}")

        prices = [observation.price for observation in ordered]
        count = len(prices)
        mean = math.fsum(prices) / count
        stdev = math.sqrt(math.fsum((price - mean) ** 2 for price in prices) / count)
        variance_pct = 0.0 if mean == 0 else stdev / mean * 100.0
        tier = classify_variance(variance_pct, self._thresholds)

        consensus = MedianConsensus(
            symbol=symbol,
            median_price=median(prices),
            mean_price=mean,
            standard_deviation=stdev,
            variance_pct=variance_pct,
            risk_tier=tier,
            source_count=count,
        )
        logger.debug(
            "Computed consensus",
            extra={
                "symbol": symbol,
                "median": consensus.median_price,
                "variance_pct": variance_pct,
                "tier": tier.value,
                "sources": count,
            },
        )
        return consensus
