from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from rwa_risk.audit import AuditSettings
from rwa_risk.errors import ConfigurationError
from services.telemetry import ResiliencePolicy


@dataclass()
class RiskThresholds:
    """Variance thresholds, expressed in percent of the consensus mean."""

    consensus_max_variance_pct: float = 2.0
    high_volatility_pct: float = 5.0
    extreme_volatility_pct: float = 10.0


@dataclass()
class ProtectionConfig:
    """Circuit breaker and momentum parameters."""

    # Ratio of the previous anchor price, 0.05 == 5%.
    max_deviation_pct: float = 0.05
    acceleration_threshold: float = 0.5
    predictive_risk_bonus: float = 3.0
    circuit_breaker_enabled: bool = True


@dataclass()
class RiskEngineConfig:
    """Everything the orchestrator needs to score one cycle."""

    anchor_symbol: str
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    protection: ProtectionConfig = field(default_factory=ProtectionConfig)
    guarded_symbols: Tuple[str, ...] = ()

    @property
    def deviation_symbols(self) -> Tuple[str, ...]:
        """Anchor first, followed by any additionally guarded symbols."""

        ordered = [self.anchor_symbol, *self.guarded_symbols]
        return tuple(dict.fromkeys(symbol for symbol in ordered if symbol))

    def validate(self) -> "RiskEngineConfig":
        if not self.anchor_symbol or not str(self.anchor_symbol).strip():
            raise ConfigurationError("Risk configuration requires a non-empty 'anchor_symbol'.")
        t = self.thresholds
        p = self.protection
        for name, value in (
            ("consensus_max_variance_pct", t.consensus_max_variance_pct),
            ("high_volatility_pct", t.high_volatility_pct),
            ("extreme_volatility_pct", t.extreme_volatility_pct),
            ("max_deviation_pct", p.max_deviation_pct),
            ("acceleration_threshold", p.acceleration_threshold),
            ("predictive_risk_bonus", p.predictive_risk_bonus),
        ):
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"'{name}' must be a finite number, got {value!r}.")
        if t.consensus_max_variance_pct < 0:
            raise ConfigurationError("'consensus_max_variance_pct' must not be negative.")
        if not (t.consensus_max_variance_pct < t.high_volatility_pct < t.extreme_volatility_pct):
            raise ConfigurationError(
                "Variance thresholds must satisfy consensus_max_variance_pct < high_volatility_pct "
                f"< extreme_volatility_pct (got {t.consensus_max_variance_pct}, "
                f"{t.high_volatility_pct}, {t.extreme_volatility_pct})."
            )
        if not (0 < p.max_deviation_pct <= 1):
            raise ConfigurationError(
                f"'max_deviation_pct' must be a ratio in (0, 1], got {p.max_deviation_pct}."
            )
        if p.acceleration_threshold < 0:
            raise ConfigurationError("'acceleration_threshold' must not be negative.")
        if not (0 <= p.predictive_risk_bonus <= 10):
            raise ConfigurationError("'predictive_risk_bonus' must be between 0 and 10.")
        return self


@dataclass()
class SourceConfig:
    """A single upstream quote for an asset."""

    kind: str
    instrument: str
    exchange: Optional[str] = None
    label: Optional[str] = None
    weight: float = 1.0

    @property
    def source_label(self) -> str:
        if self.label:
            return self.label
        if self.exchange:
            return f"{self.kind}:{self.exchange}:{self.instrument}"
        return f"{self.kind}:{self.instrument}"


@dataclass()
class AssetConfig:
    symbol: str
    sources: List[SourceConfig] = field(default_factory=list)


@dataclass()
class ActuationConfig:
    """How actuation requests leave the process."""

    emitter: str = "dry_run"
    dry_run: bool = True
    timeout_seconds: float = 15.0
    telegram_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    webhook_url: Optional[str] = None


@dataclass()
class MonitorConfig:
    """Top level configuration for one monitored instance."""

    risk: RiskEngineConfig
    assets: List[AssetConfig] = field(default_factory=list)
    actuation: ActuationConfig = field(default_factory=ActuationConfig)
    resilience: ResiliencePolicy = field(default_factory=ResiliencePolicy)
    audit: Optional[AuditSettings] = None
    state_path: Optional[Path] = None
    interval_seconds: float = 300.0
    alpha_vantage_api_key: Optional[str] = None
    debug: int = 1
    config_path: Optional[Path] = None


__all__ = [
    "ActuationConfig",
    "AssetConfig",
    "MonitorConfig",
    "ProtectionConfig",
    "RiskEngineConfig",
    "RiskThresholds",
    "SourceConfig",
]
