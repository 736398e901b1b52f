"""Outcome records shared by outbound notification channels."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class NotificationError:
    """Why a channel gave up delivering a message."""

    channel: str
    reason: str
    retryable: bool
    attempts: int = 1
    error_type: Optional[str] = None

    def describe(self) -> str:
        noun = "attempt" if self.attempts == 1 else "attempts"
        return f"{self.reason} (after {self.attempts} {noun})"


@dataclass(frozen=True)
class NotificationResult:
    channel: str
    success: bool
    attempts: int
    error: Optional[NotificationError] = None
    payload: Optional[Mapping[str, Any]] = None

    @property
    def failure_reason(self) -> Optional[str]:
        if self.success:
            return None
        return self.error.describe() if self.error else "unknown error"


__all__ = ["NotificationError", "NotificationResult"]
