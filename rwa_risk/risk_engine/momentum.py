"""Forecast instability from the curvature of cross-asset variance readings."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, Iterator, List, Optional

from rwa_risk.models import MarketMomentum

logger = logging.getLogger(__name__)

HISTORY_SIZE = 3


class VarianceHistory:
    """Bounded FIFO of the most recent cross-asset variance readings."""

    def __init__(self, readings: Iterable[float] = ()) -> None:
        self._readings: Deque[float] = deque(maxlen=HISTORY_SIZE)
        for reading in readings:
            self.append(reading)

    def append(self, reading: float) -> None:
        self._readings.append(float(reading))

    def clear(self) -> None:
        self._readings.clear()

    def values(self) -> List[float]:
        return list(self._readings)

    def __len__(self) -> int:
        return len(self._readings)

    def __iter__(self) -> Iterator[float]:
        return iter(self._readings)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VarianceHistory):
            return NotImplemented
        return self.values() == other.values()

    def __repr__(self) -> str:
        return f"VarianceHistory({self.values()!r})"


@dataclass(frozen=True)
class MomentumVerdict:
    acceleration_detected: bool
    momentum: MarketMomentum
    risk_bonus: float
    acceleration: Optional[float] = None
    growth: Optional[float] = None


class MomentumPredictor:
    """Second-difference detector over an injected :class:`VarianceHistory`."""

    def __init__(
        self,
        history: VarianceHistory,
        *,
        acceleration_threshold: float = 0.5,
        risk_bonus: float = 3.0,
    ) -> None:
        self.history = history
        self._threshold = acceleration_threshold
        self._risk_bonus = risk_bonus

    def update(self, cross_asset_variance: float) -> MomentumVerdict:
        self.history.append(cross_asset_variance)
        readings = self.history.values()

        if len(readings) < 2:
            logger.debug("Collecting momentum baseline", extra={"readings": readings})
            return MomentumVerdict(acceleration_detected=False, momentum=MarketMomentum.STABLE, risk_bonus=0.0)

        previous, current = readings[-2], readings[-1]
        growth = current - previous
        if len(readings) == 2:
            return MomentumVerdict(
                acceleration_detected=False, momentum=MarketMomentum.STABLE, risk_bonus=0.0, growth=growth
            )

        oldest = readings[0]
        acceleration = growth - (previous - oldest)
        if acceleration > self._threshold:
            logger.warning(
                "Divergence is accelerating",
                extra={"acceleration": acceleration, "threshold": self._threshold, "readings": readings},
            )
            return MomentumVerdict(
                acceleration_detected=True,
                momentum=MarketMomentum.UNSTABLE,
                risk_bonus=self._risk_bonus,
                acceleration=acceleration,
                growth=growth,
            )
        return MomentumVerdict(
            acceleration_detected=False,
            momentum=MarketMomentum.STABLE,
            risk_bonus=0.0,
            acceleration=acceleration,
            growth=growth,
        )
