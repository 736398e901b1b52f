"""Retained cross-cycle state and its persistence."""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .deviation_guard import DeviationState
from .momentum import VarianceHistory

logger = logging.getLogger(__name__)


@dataclass
class MonitorState:
    """Everything one monitored instance carries from cycle to cycle.

    Each monitored vault or asset pair owns its own instance; nothing here is
    shared between instances.
    """

    variance_history: VarianceHistory = field(default_factory=VarianceHistory)
    deviation_state: DeviationState = field(default_factory=DeviationState)
    cycles: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "variance_history": self.variance_history.values(),
            "last_prices": dict(self.deviation_state.last_prices),
            "cycles": self.cycles,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MonitorState":
        history = VarianceHistory(float(value) for value in payload.get("variance_history") or [])
        last_prices = {str(k): float(v) for k, v in (payload.get("last_prices") or {}).items()}
        return cls(
            variance_history=history,
            deviation_state=DeviationState(last_prices=last_prices),
            cycles=int(payload.get("cycles") or 0),
        )


class StateStore:
    def load(self) -> MonitorState:  # pragma: no cover - interface
        raise NotImplementedError

    def save(self, state: MonitorState) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryStateStore(StateStore):
    """Keeps the live object; ``save`` simply replaces the reference."""

    def __init__(self, state: Optional[MonitorState] = None) -> None:
        self._state = state or MonitorState()

    def load(self) -> MonitorState:
        return self._state

    def save(self, state: MonitorState) -> None:
        self._state = state


class FileStateStore(StateStore):
    """JSON-backed persistence for a single monitored instance."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> MonitorState:
        if not self._path.exists():
            return MonitorState()
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, Mapping):
                raise ValueError("state file must contain a JSON object")
            return MonitorState.from_payload(payload)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Discarding unreadable risk state file %s: %s", self._path, exc)
            return MonitorState()

    def save(self, state: MonitorState) -> None:
        _atomic_write(self._path, json.dumps(state.to_payload(), indent=2))


def _atomic_write(path: Path, content: str) -> None:
    tmp = tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8")
    try:
        with tmp as f:
            f.write(content)
            f.flush()
        Path(tmp.name).replace(path)
    except Exception:
        Path(tmp.name).unlink(missing_ok=True)
        raise
