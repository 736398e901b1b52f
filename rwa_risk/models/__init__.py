"""Domain records exchanged between the risk engine and its collaborators."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    return datetime.fromisoformat(str(value))


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


class RiskTier(str, Enum):
    NORMAL = "Normal"
    ELEVATED = "Elevated"
    HIGH = "High"
    EXTREME = "Extreme"

    @property
    def score(self) -> float:
        return _TIER_SCORES[self]


_TIER_SCORES: Dict[RiskTier, float] = {
    RiskTier.NORMAL: 0.0,
    RiskTier.ELEVATED: 4.0,
    RiskTier.HIGH: 7.0,
    RiskTier.EXTREME: 10.0,
}


class AlertLevel(str, Enum):
    NORMAL = "Normal"
    ELEVATED_VOLATILITY = "ElevatedVolatility"
    HIGH_VOLATILITY = "HighVolatility"
    CRITICAL_HALT = "CRITICAL_HALT"


class MarketMomentum(str, Enum):
    STABLE = "Stable"
    UNSTABLE = "Unstable"
    CRITICAL = "Critical"


@dataclass(frozen=True)
class PriceObservation:
    """A single quote for ``symbol`` reported by ``source``."""

    symbol: str
    price: float
    source: str
    timestamp: datetime = field(default_factory=_utcnow)
    weight: float = 1.0

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValueError("Price observations require a symbol")
        if not isinstance(self.price, (int, float)) or not math.isfinite(self.price) or self.price <= 0:
            raise ValueError(f"Price for {self.symbol} from {self.source} must be a positive number, got {self.price!r}")
        if not isinstance(self.weight, (int, float)) or not math.isfinite(self.weight) or self.weight < 0:
            raise ValueError(f"Weight for {self.symbol} from {self.source} must be non-negative, got {self.weight!r}")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "weight": self.weight,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, symbol: Optional[str] = None) -> "PriceObservation":
        timestamp = payload.get("timestamp")
        return cls(
            symbol=str(payload.get("symbol") or symbol or ""),
            price=float(payload["price"]),
            source=str(payload.get("source") or "unknown"),
            timestamp=parse_timestamp(timestamp) if timestamp is not None else _utcnow(),
            weight=float(payload.get("weight", 1.0)),
        )


ObservationSet = Sequence[PriceObservation]


@dataclass(frozen=True)
class MedianConsensus:
    """Trusted per-asset value derived from one cycle's observations."""

    symbol: str
    median_price: float
    mean_price: float
    standard_deviation: float
    variance_pct: float
    risk_tier: RiskTier
    source_count: int

    @property
    def risk_score(self) -> float:
        return self.risk_tier.score

    def to_payload(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "median_price": self.median_price,
            "mean_price": self.mean_price,
            "standard_deviation": self.standard_deviation,
            "variance_pct": self.variance_pct,
            "risk_tier": self.risk_tier.value,
            "source_count": self.source_count,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MedianConsensus":
        return cls(
            symbol=str(payload["symbol"]),
            median_price=float(payload["median_price"]),
            mean_price=float(payload["mean_price"]),
            standard_deviation=float(payload["standard_deviation"]),
            variance_pct=float(payload["variance_pct"]),
            risk_tier=RiskTier(payload["risk_tier"]),
            source_count=int(payload["source_count"]),
        )


@dataclass(frozen=True)
class RiskSnapshot:
    """Outcome of one evaluation cycle."""

    per_asset_consensus: Dict[str, MedianConsensus]
    cross_asset_variance: float
    system_risk_score: float
    alert: AlertLevel
    market_momentum: MarketMomentum
    actuation_requested: bool
    timestamp: datetime
    anchor_symbol: str = ""
    acceleration: Optional[float] = None
    deviations: Dict[str, Optional[float]] = field(default_factory=dict)
    rationale: str = ""

    @property
    def anchor_price(self) -> Optional[float]:
        consensus = self.per_asset_consensus.get(self.anchor_symbol)
        return consensus.median_price if consensus else None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "per_asset_consensus": {
                symbol: consensus.to_payload() for symbol, consensus in self.per_asset_consensus.items()
            },
            "cross_asset_variance": self.cross_asset_variance,
            "system_risk_score": self.system_risk_score,
            "alert": self.alert.value,
            "market_momentum": self.market_momentum.value,
            "actuation_requested": self.actuation_requested,
            "timestamp": self.timestamp.isoformat(),
            "anchor_symbol": self.anchor_symbol,
            "acceleration": self.acceleration,
            "deviations": dict(self.deviations),
            "rationale": self.rationale,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RiskSnapshot":
        consensus_raw = payload.get("per_asset_consensus") or {}
        deviations_raw = payload.get("deviations") or {}
        return cls(
            per_asset_consensus={
                str(symbol): MedianConsensus.from_payload(item) for symbol, item in consensus_raw.items()
            },
            cross_asset_variance=float(payload["cross_asset_variance"]),
            system_risk_score=float(payload["system_risk_score"]),
            alert=AlertLevel(payload["alert"]),
            market_momentum=MarketMomentum(payload["market_momentum"]),
            actuation_requested=bool(payload["actuation_requested"]),
            timestamp=parse_timestamp(payload["timestamp"]),
            anchor_symbol=str(payload.get("anchor_symbol") or ""),
            acceleration=_optional_float(payload.get("acceleration")),
            deviations={str(symbol): _optional_float(value) for symbol, value in deviations_raw.items()},
            rationale=str(payload.get("rationale") or ""),
        )


__all__ = [
    "AlertLevel",
    "MarketMomentum",
    "MedianConsensus",
    "ObservationSet",
    "PriceObservation",
    "RiskSnapshot",
    "RiskTier",
    "parse_timestamp",
]
