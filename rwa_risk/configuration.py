"""Utilities for loading risk monitor configuration files."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Tuple

from rwa_risk.audit import DEFAULT_REDACT_FIELDS, AuditS3Settings, AuditSettings
from rwa_risk.config.models import (
    ActuationConfig,
    AssetConfig,
    MonitorConfig,
    ProtectionConfig,
    RiskEngineConfig,
    RiskThresholds,
    SourceConfig,
)
from rwa_risk.errors import ConfigurationError
from rwa_risk.logging_setup import configure_logging, debug_to_level
from services.telemetry import ResiliencePolicy

logger = logging.getLogger(__name__)

SUPPORTED_EMITTERS = ("dry_run", "telegram", "webhook")
SUPPORTED_SOURCE_KINDS = ("alpha_vantage", "ccxt")


def _ensure_logger_level(target: logging.Logger, level: int) -> None:
    """Ensure ``target`` and its handlers are set to at most ``level``."""

    if target.level in {logging.NOTSET} or target.level > level:
        target.setLevel(level)
    for handler in target.handlers:
        if handler.level in {logging.NOTSET} or handler.level > level:
            handler.setLevel(level)


def _configure_default_logging(debug_level: int = 1) -> bool:
    """Install the monitor's logging setup unless the host already did."""

    root_logger = logging.getLogger()
    already_configured = bool(root_logger.handlers)
    if not already_configured:
        configure_logging(debug=debug_level)

    desired_level = debug_to_level(debug_level)
    _ensure_logger_level(root_logger, desired_level)
    _ensure_logger_level(logging.getLogger("rwa_risk"), desired_level)
    return not already_configured


def _load_json(path: Path) -> Dict[str, Any]:
    """Return parsed JSON payload from ``path`` with helpful error messages."""

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in configuration file {path}: {exc}") from exc


def _ensure_mapping(payload: Any, *, description: str) -> MutableMapping[str, Any]:
    if isinstance(payload, MutableMapping):
        return payload
    if isinstance(payload, Mapping):
        return dict(payload)
    raise ConfigurationError(f"{description} must be a JSON object, not {type(payload).__name__}.")


def _resolve_path_relative_to(base: Path, candidate: Any) -> Path:
    path = Path(str(candidate)).expanduser()
    if not path.is_absolute():
        path = base / path
    return path.resolve()


def _coerce_bool(value: Any, default: bool = False) -> bool:
    """Return a boolean for ``value`` supporting common string representations."""

    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"", "default", "auto"}:
            return default
        if lowered in {"1", "true", "yes", "on", "enabled", "enable"}:
            return True
        if lowered in {"0", "false", "no", "off", "disabled", "disable"}:
            return False
    return bool(value)


def _lookup(mapping: Mapping[str, Any], *keys: str) -> Any:
    """Return the value of the first key present in ``mapping``."""

    for key in keys:
        if key in mapping and mapping[key] is not None:
            return mapping[key]
    return None


def _section(mapping: Mapping[str, Any], *keys: str) -> Mapping[str, Any]:
    value = _lookup(mapping, *keys)
    if value is None:
        return {}
    return _ensure_mapping(value, description=f"Configuration '{keys[0]}'")


def _required_float(section: Mapping[str, Any], name: str, *keys: str) -> float:
    value = _lookup(section, *keys)
    if value is None:
        raise ConfigurationError(f"Risk configuration is missing required parameter '{name}'.")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Risk parameter '{name}' must be a number, got {value!r}.") from exc


def _parse_risk(config: Mapping[str, Any]) -> RiskEngineConfig:
    risk_raw = _section(config, "risk") or config
    consensus = _section(risk_raw, "consensus")
    parameters = _section(risk_raw, "risk_parameters", "riskParameters")
    protection_raw = _section(risk_raw, "protection")

    anchor = _lookup(risk_raw, "anchor_symbol", "anchorSymbol")
    if not anchor or not str(anchor).strip():
        raise ConfigurationError("Risk configuration requires a non-empty 'anchor_symbol'.")

    thresholds = RiskThresholds(
        consensus_max_variance_pct=_required_float(
            consensus, "consensus.max_variance_pct", "max_variance_pct", "maxVariancePercent"
        ),
        high_volatility_pct=_required_float(
            parameters, "risk_parameters.high_volatility_pct", "high_volatility_pct", "highVolatilityThreshold"
        ),
        extreme_volatility_pct=_required_float(
            parameters,
            "risk_parameters.extreme_volatility_pct",
            "extreme_volatility_pct",
            "extremeVolatilityThreshold",
        ),
    )
    protection = ProtectionConfig(
        max_deviation_pct=_required_float(
            protection_raw, "protection.max_deviation_pct", "max_deviation_pct", "maxDeviationPercent"
        ),
        acceleration_threshold=_required_float(
            protection_raw,
            "protection.acceleration_threshold",
            "acceleration_threshold",
            "accelerationThreshold",
        ),
        predictive_risk_bonus=_required_float(
            protection_raw,
            "protection.predictive_risk_bonus",
            "predictive_risk_bonus",
            "predictiveRiskBonus",
        ),
        circuit_breaker_enabled=_coerce_bool(
            _lookup(protection_raw, "circuit_breaker_enabled", "circuitBreakerEnabled"), True
        ),
    )

    guarded_raw = _lookup(risk_raw, "guarded_symbols", "guardedSymbols") or []
    if isinstance(guarded_raw, (str, bytes)) or not isinstance(guarded_raw, Iterable):
        raise ConfigurationError("Risk configuration 'guarded_symbols' must be an array of symbols.")
    guarded: Tuple[str, ...] = tuple(str(symbol).strip() for symbol in guarded_raw if str(symbol).strip())

    return RiskEngineConfig(
        anchor_symbol=str(anchor).strip(),
        thresholds=thresholds,
        protection=protection,
        guarded_symbols=guarded,
    ).validate()


def _parse_sources(symbol: str, sources_raw: Any) -> List[SourceConfig]:
    if not sources_raw or isinstance(sources_raw, (Mapping, str, bytes)):
        raise ConfigurationError(f"Asset '{symbol}' must list at least one price source.")
    sources: List[SourceConfig] = []
    for entry in sources_raw:
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"Price sources for '{symbol}' must be objects.")
        kind = str(entry.get("kind") or "").strip().lower()
        if kind not in SUPPORTED_SOURCE_KINDS:
            raise ConfigurationError(
                f"Asset '{symbol}' uses unsupported source kind '{kind}' "
                f"(expected one of {', '.join(SUPPORTED_SOURCE_KINDS)})."
            )
        instrument = str(entry.get("instrument") or entry.get("symbol") or "").strip()
        if not instrument:
            raise ConfigurationError(f"Price source for '{symbol}' requires an 'instrument'.")
        exchange = entry.get("exchange")
        if kind == "ccxt" and not exchange:
            raise ConfigurationError(f"ccxt source '{instrument}' for '{symbol}' requires an 'exchange'.")
        try:
            weight = float(entry.get("weight", 1.0))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Source weight for '{symbol}' must be a number.") from exc
        if weight < 0:
            raise ConfigurationError(f"Source weight for '{symbol}' must not be negative.")
        label = entry.get("label")
        sources.append(
            SourceConfig(
                kind=kind,
                instrument=instrument,
                exchange=str(exchange).strip() if exchange else None,
                label=str(label).strip() if label else None,
                weight=weight,
            )
        )
    return sources


def _parse_assets(assets_raw: Any) -> List[AssetConfig]:
    if not assets_raw or isinstance(assets_raw, (str, bytes)):
        raise ConfigurationError("Configuration must include at least one asset entry.")
    if isinstance(assets_raw, Mapping):
        items = [{"symbol": symbol, "sources": sources} for symbol, sources in assets_raw.items()]
    else:
        items = list(assets_raw)
    assets: List[AssetConfig] = []
    seen = set()
    for raw in items:
        if not isinstance(raw, Mapping):
            raise ConfigurationError("Asset entries must be objects with 'symbol' and 'sources'.")
        symbol = str(raw.get("symbol") or "").strip()
        if not symbol:
            raise ConfigurationError("Asset entries require a non-empty 'symbol'.")
        if symbol in seen:
            raise ConfigurationError(f"Asset '{symbol}' is configured more than once.")
        seen.add(symbol)
        assets.append(AssetConfig(symbol=symbol, sources=_parse_sources(symbol, raw.get("sources"))))
    return assets


def _parse_actuation(settings: Mapping[str, Any]) -> ActuationConfig:
    emitter = str(settings.get("emitter") or "dry_run").strip().lower()
    if emitter not in SUPPORTED_EMITTERS:
        raise ConfigurationError(
            f"Unknown actuation emitter '{emitter}' (expected one of {', '.join(SUPPORTED_EMITTERS)})."
        )
    try:
        timeout = float(settings.get("timeout_seconds", 15.0))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("Actuation 'timeout_seconds' must be a number.") from exc
    if timeout <= 0:
        raise ConfigurationError("Actuation 'timeout_seconds' must be greater than zero.")
    if settings.get("telegram_token"):
        raise ConfigurationError("The telegram bot token must come from RWA_RISK_TELEGRAM_TOKEN, not the file.")
    return ActuationConfig(
        emitter=emitter,
        dry_run=_coerce_bool(settings.get("dry_run"), emitter == "dry_run"),
        timeout_seconds=timeout,
        telegram_chat_id=str(settings["telegram_chat_id"]) if settings.get("telegram_chat_id") else None,
        webhook_url=str(settings["webhook_url"]).strip() if settings.get("webhook_url") else None,
    )


def _parse_audit(settings: Any, *, base_dir: Path) -> Optional[AuditSettings]:
    if settings is None:
        return None
    settings = _ensure_mapping(settings, description="Configuration 'audit'")
    log_path_raw = settings.get("log_path")
    if not log_path_raw:
        raise ConfigurationError("Audit settings require a 'log_path'.")
    s3_raw = settings.get("s3")
    s3: Optional[AuditS3Settings] = None
    if s3_raw:
        s3_raw = _ensure_mapping(s3_raw, description="Configuration 'audit.s3'")
        if not s3_raw.get("bucket"):
            raise ConfigurationError("Audit S3 settings require a 'bucket'.")
        s3 = AuditS3Settings(
            bucket=str(s3_raw["bucket"]),
            prefix=str(s3_raw.get("prefix") or ""),
            region_name=s3_raw.get("region_name"),
            profile_name=s3_raw.get("profile_name"),
        )
    redact = settings.get("redact_fields")
    return AuditSettings(
        log_path=_resolve_path_relative_to(base_dir, log_path_raw),
        enabled=_coerce_bool(settings.get("enabled"), True),
        redact_fields=tuple(str(field) for field in redact) if redact else DEFAULT_REDACT_FIELDS,
        s3=s3,
    )


def load_monitor_payload(path: Path | str) -> tuple[MutableMapping[str, Any], Path]:
    """Load and return the raw monitor configuration mapping from disk."""

    path = Path(path).expanduser().resolve()
    payload = _load_json(path)
    return _ensure_mapping(payload, description="Monitor configuration"), path


def validate_monitor_config(config: Mapping[str, Any], *, source_path: Optional[Path] = None) -> MonitorConfig:
    """Validate and normalise a monitor configuration payload."""

    base_dir = source_path.parent.resolve() if source_path else Path.cwd()

    risk = _parse_risk(config)
    assets = _parse_assets(config.get("assets"))
    symbols = {asset.symbol for asset in assets}
    for symbol in risk.deviation_symbols:
        if symbol not in symbols:
            raise ConfigurationError(f"Guarded symbol '{symbol}' has no configured asset entry.")

    state_path_raw = config.get("state_path")
    interval_raw = config.get("interval_seconds", 300.0)
    try:
        interval = float(interval_raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("'interval_seconds' must be a number.") from exc
    if interval <= 0:
        raise ConfigurationError("'interval_seconds' must be greater than zero.")

    try:
        resilience = ResiliencePolicy.from_mapping(config.get("resilience"))
    except TypeError as exc:
        raise ConfigurationError(f"Invalid resilience settings: {exc}") from exc

    return MonitorConfig(
        risk=risk,
        assets=assets,
        actuation=_parse_actuation(_section(config, "actuation")),
        resilience=resilience,
        audit=_parse_audit(config.get("audit"), base_dir=base_dir),
        state_path=_resolve_path_relative_to(base_dir, state_path_raw) if state_path_raw else None,
        interval_seconds=interval,
        debug=int(config.get("debug", 1)),
        config_path=source_path,
    )


def _env_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Expected a number in environment override, got {value!r}.") from exc


def _env_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value.strip() == "":
        return None
    return _coerce_bool(value)


def apply_environment_overrides(config: MonitorConfig, env: Optional[Mapping[str, str]] = None) -> MonitorConfig:
    """Return a copy of ``config`` with ``RWA_RISK_*`` overrides and secrets applied."""

    env = os.environ if env is None else env
    protection = config.risk.protection
    actuation = config.actuation

    max_deviation = _env_float(env.get("RWA_RISK_MAX_DEVIATION_PCT"))
    if max_deviation is not None:
        protection = replace(protection, max_deviation_pct=max_deviation)
    breaker = _env_bool(env.get("RWA_RISK_CIRCUIT_BREAKER"))
    if breaker is not None:
        protection = replace(protection, circuit_breaker_enabled=breaker)

    dry_run = _env_bool(env.get("RWA_RISK_DRY_RUN"))
    if dry_run is not None:
        actuation = replace(actuation, dry_run=dry_run)
    telegram_token = env.get("RWA_RISK_TELEGRAM_TOKEN")
    if telegram_token:
        actuation = replace(actuation, telegram_token=telegram_token)
    telegram_chat_id = env.get("RWA_RISK_TELEGRAM_CHAT_ID")
    if telegram_chat_id:
        actuation = replace(actuation, telegram_chat_id=telegram_chat_id)
    webhook_url = env.get("RWA_RISK_WEBHOOK_URL")
    if webhook_url:
        actuation = replace(actuation, webhook_url=webhook_url)

    risk = replace(config.risk, protection=protection).validate()
    return replace(
        config,
        risk=risk,
        actuation=actuation,
        alpha_vantage_api_key=env.get("ALPHA_VANTAGE_API_KEY") or config.alpha_vantage_api_key,
    )


def check_credentials(config: MonitorConfig) -> MonitorConfig:
    """Fail fast when a configured source or emitter lacks its secret."""

    uses_alpha_vantage = any(
        source.kind == "alpha_vantage" for asset in config.assets for source in asset.sources
    )
    if uses_alpha_vantage and not config.alpha_vantage_api_key:
        raise ConfigurationError("Alpha Vantage sources require the ALPHA_VANTAGE_API_KEY environment variable.")
    actuation = config.actuation
    if not actuation.dry_run:
        if actuation.emitter == "telegram" and not (actuation.telegram_token and actuation.telegram_chat_id):
            raise ConfigurationError(
                "The telegram emitter requires RWA_RISK_TELEGRAM_TOKEN and a chat id."
            )
        if actuation.emitter == "webhook" and not actuation.webhook_url:
            raise ConfigurationError("The webhook emitter requires a 'webhook_url'.")
    return config


def load_monitor_config(
    path: Path | str,
    *,
    env: Optional[Mapping[str, str]] = None,
    require_credentials: bool = True,
) -> MonitorConfig:
    """Load, validate and apply environment overrides to a configuration file."""

    payload, resolved_path = load_monitor_payload(path)
    config = apply_environment_overrides(validate_monitor_config(payload, source_path=resolved_path), env)
    logger.debug(
        "Loaded monitor configuration",
        extra={"path": str(resolved_path), "assets": [asset.symbol for asset in config.assets]},
    )
    return check_credentials(config) if require_credentials else config


__all__ = [
    "apply_environment_overrides",
    "check_credentials",
    "load_monitor_config",
    "load_monitor_payload",
    "validate_monitor_config",
]
