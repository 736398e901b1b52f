"""Deliver actuation requests derived from a risk snapshot."""

from __future__ import annotations

import abc
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from rwa_risk.config.models import ActuationConfig
from rwa_risk.errors import ActuationFailure, ConfigurationError
from rwa_risk.models import RiskSnapshot
from services.notifications import post_json, send_telegram_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActuationRequest:
    system_risk_score: float
    alert: str
    rationale: str
    anchor_symbol: str
    anchor_price: Optional[float]
    timestamp: datetime

    @classmethod
    def from_snapshot(cls, snapshot: RiskSnapshot) -> "ActuationRequest":
        return cls(
            system_risk_score=snapshot.system_risk_score,
            alert=snapshot.alert.value,
            rationale=snapshot.rationale,
            anchor_symbol=snapshot.anchor_symbol,
            anchor_price=snapshot.anchor_price,
            timestamp=snapshot.timestamp,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


@dataclass(frozen=True)
class ActuationResult:
    """Execution status recorded next to, never inside, the snapshot."""

    emitter: str
    success: bool
    attempts: int = 1
    error: Optional[str] = None
    payload: Optional[Mapping[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["payload"] = dict(self.payload) if self.payload is not None else None
        return payload


class ReportEmitter(abc.ABC):
    name: str = "emitter"

    @abc.abstractmethod
    async def emit(self, request: ActuationRequest) -> ActuationResult:
        """Deliver ``request`` once. Raise :class:`ActuationFailure` when delivery fails."""


class DryRunReportEmitter(ReportEmitter):
    """Log the request instead of sending it anywhere."""

    name = "dry_run"

    async def emit(self, request: ActuationRequest) -> ActuationResult:
        logger.warning(
            "[DRY-RUN] Would request on-chain risk update",
            extra={"risk_score": request.system_risk_score, "alert": request.alert, "rationale": request.rationale},
        )
        return ActuationResult(emitter=self.name, success=True, attempts=0, payload=request.to_payload())


class WebhookReportEmitter(ReportEmitter):
    """POST the request as JSON to a settlement relay."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        request_func: Optional[Callable[[str, Mapping[str, Any]], Awaitable[Mapping[str, Any]]]] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._request_func = request_func

    async def emit(self, request: ActuationRequest) -> ActuationResult:
        body = request.to_payload()
        try:
            if self._request_func is not None:
                response = await self._request_func(self._url, body)
            else:
                response = await post_json(self._url, body, timeout=self._timeout)
        except Exception as exc:
            raise ActuationFailure(self.name, str(exc) or type(exc).__name__) from exc
        return ActuationResult(emitter=self.name, success=True, payload=response)


def format_actuation_message(request: ActuationRequest) -> str:
    price = f"${request.anchor_price:,.2f}" if request.anchor_price is not None else "n/a"
    return (
        f"*{request.alert}* risk {request.system_risk_score:.1f}/10\n"
        f"{request.anchor_symbol}: {price}\n"
        f"{request.rationale}"
    )


class TelegramReportEmitter(ReportEmitter):
    """Escalate the request to an operator chat."""

    name = "telegram"

    def __init__(self, token: str, chat_id: str, *, timeout: float = 10.0, request_func=None) -> None:
        self._token = token
        self._chat_id = chat_id
        self._timeout = timeout
        self._request_func = request_func

    async def emit(self, request: ActuationRequest) -> ActuationResult:
        result = await send_telegram_message(
            self._token,
            self._chat_id,
            format_actuation_message(request),
            request_func=self._request_func,
            timeout=self._timeout,
        )
        if not result.success:
            retryable = bool(result.error and result.error.retryable)
            raise ActuationFailure(self.name, result.failure_reason or "unknown error", retryable=retryable)
        return ActuationResult(emitter=self.name, success=True, attempts=result.attempts, payload=result.payload)


def build_report_emitter(config: ActuationConfig) -> ReportEmitter:
    if config.dry_run or config.emitter == "dry_run":
        return DryRunReportEmitter()
    if config.emitter == "webhook":
        if not config.webhook_url:
            raise ConfigurationError("The webhook emitter requires 'webhook_url'.")
        return WebhookReportEmitter(config.webhook_url, timeout=config.timeout_seconds)
    if config.emitter == "telegram":
        if not config.telegram_token or not config.telegram_chat_id:
            raise ConfigurationError("The telegram emitter requires a bot token and chat id.")
        return TelegramReportEmitter(config.telegram_token, config.telegram_chat_id, timeout=config.timeout_seconds)
    raise ConfigurationError(f"Unknown actuation emitter '{config.emitter}'.")
