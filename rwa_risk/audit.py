"""Append-only, hash-chained audit trail for risk snapshots and actuations."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64

DEFAULT_REDACT_FIELDS: tuple[str, ...] = (
    "apikey",
    "api_key",
    "secret",
    "token",
    "password",
    "private_key",
)


@dataclass(frozen=True)
class AuditS3Settings:
    """Where to mirror audit records in S3."""

    bucket: str
    prefix: str = ""
    region_name: Optional[str] = None
    profile_name: Optional[str] = None


@dataclass(frozen=True)
class AuditSettings:
    log_path: Path
    enabled: bool = True
    redact_fields: Sequence[str] = DEFAULT_REDACT_FIELDS
    s3: Optional[AuditS3Settings] = None


class AuditSink:
    def write(self, payload: str) -> None:  # pragma: no cover - interface method
        raise NotImplementedError


class FileAuditSink(AuditSink):
    """JSONL file on local disk; the source of truth for the hash chain."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def last_hash(self) -> str:
        last_entry: Optional[Dict[str, Any]] = None
        for entry in iter_audit_entries(self._path):
            last_entry = entry
        if last_entry is None:
            return GENESIS_HASH
        return str(last_entry.get("hash") or GENESIS_HASH)

    def write(self, payload: str) -> None:
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(payload)


class S3AuditSink(AuditSink):
    """Mirror each audit record to S3 as an individual object."""

    def __init__(self, settings: AuditS3Settings) -> None:
        try:
            import boto3  # type: ignore[import]
        except ModuleNotFoundError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "S3 audit offloading requires the 'boto3' package. Install rwa-risk-monitor[s3]."
            ) from exc

        session_kwargs: Dict[str, Any] = {}
        if settings.profile_name:
            session_kwargs["profile_name"] = settings.profile_name
        session = boto3.session.Session(**session_kwargs)
        client_kwargs: Dict[str, Any] = {"service_name": "s3"}
        if settings.region_name:
            client_kwargs["region_name"] = settings.region_name
        self._client = session.client(**client_kwargs)
        self._settings = settings

    def write(self, payload: str) -> None:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S.%fZ")
        prefix = self._settings.prefix.rstrip("/")
        key = f"{prefix}/{timestamp}.json" if prefix else f"{timestamp}.json"
        self._client.put_object(
            Bucket=self._settings.bucket,
            Key=key,
            Body=payload.encode("utf-8"),
            ContentType="application/json",
        )


def _canonical(record: Mapping[str, Any]) -> str:
    return json.dumps(record, sort_keys=True, separators=(",", ":"))


def _record_hash(record: Mapping[str, Any]) -> str:
    return sha256(_canonical(record).encode("utf-8")).hexdigest()


class AuditLogWriter:
    """Append records whose hashes chain to the previous entry."""

    def __init__(
        self,
        *,
        file_sink: FileAuditSink,
        redact_fields: Sequence[str] = DEFAULT_REDACT_FIELDS,
        extra_sinks: Sequence[AuditSink] = (),
    ) -> None:
        self._file_sink = file_sink
        self._extra_sinks = list(extra_sinks)
        self._lock = threading.Lock()
        self._redact_keys = {self._normalise_key(field) for field in redact_fields}
        self._last_hash = file_sink.last_hash()

    @staticmethod
    def _normalise_key(key: str) -> str:
        return key.replace(" ", "").replace("-", "_").lower()

    def _redact(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            redacted: Dict[str, Any] = {}
            for key, item in value.items():
                norm_key = self._normalise_key(str(key))
                if any(field in norm_key for field in self._redact_keys):
                    redacted[key] = "<redacted>"
                else:
                    redacted[key] = self._redact(item)
            return redacted
        if isinstance(value, (list, tuple, set)):
            return [self._redact(item) for item in value]
        return value

    @property
    def log_path(self) -> Path:
        return self._file_sink.path

    @property
    def last_hash(self) -> str:
        return self._last_hash

    def log(self, action: str, actor: str, details: Mapping[str, Any] | None = None) -> str:
        """Append an audit record and return its hash."""

        with self._lock:
            record: Dict[str, Any] = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "action": str(action),
                "actor": str(actor),
                "details": self._redact(dict(details or {})),
                "prev_hash": self._last_hash,
            }
            record["hash"] = _record_hash(record)
            line = json.dumps(record, sort_keys=True) + "\n"
            # The chain must stay consistent on disk, so local write failures propagate.
            self._file_sink.write(line)
            for sink in self._extra_sinks:
                try:
                    sink.write(line)
                except Exception as exc:  # pragma: no cover - network errors hard to reproduce
                    logger.warning("Failed to mirror audit record via %s: %s", type(sink).__name__, exc)
            self._last_hash = record["hash"]
            return record["hash"]


def iter_audit_entries(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield parsed audit records from ``path``, skipping corrupt lines."""

    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping invalid audit record in %s", path)
    except FileNotFoundError:
        return


def read_audit_entries(
    path: Path, *, limit: Optional[int] = None, action: Optional[str] = None
) -> list[Dict[str, Any]]:
    action_norm = action.lower() if action else None
    results = [
        entry
        for entry in iter_audit_entries(path)
        if not action_norm or str(entry.get("action", "")).lower() == action_norm
    ]
    if limit is not None:
        return results[-limit:]
    return results


def verify_audit_chain(path: Path) -> bool:
    """Return ``True`` when every record's hash and back-link are intact."""

    previous = GENESIS_HASH
    for entry in iter_audit_entries(path):
        stored_hash = entry.get("hash")
        body = {key: value for key, value in entry.items() if key != "hash"}
        if entry.get("prev_hash") != previous or _record_hash(body) != stored_hash:
            logger.error("Audit chain broken", extra={"path": str(path), "hash": stored_hash})
            return False
        previous = str(stored_hash)
    return True


def build_audit_logger(settings: Optional[AuditSettings]) -> Optional[AuditLogWriter]:
    """Return an :class:`AuditLogWriter` for ``settings`` or ``None`` when disabled."""

    if settings is None or not settings.enabled:
        return None
    extra_sinks: list[AuditSink] = []
    if settings.s3:
        try:
            extra_sinks.append(S3AuditSink(settings.s3))
        except Exception as exc:
            logger.warning("Unable to initialise S3 audit sink: %s", exc)
    return AuditLogWriter(
        file_sink=FileAuditSink(settings.log_path),
        redact_fields=settings.redact_fields,
        extra_sinks=tuple(extra_sinks),
    )


__all__ = [
    "AuditLogWriter",
    "AuditS3Settings",
    "AuditSettings",
    "FileAuditSink",
    "S3AuditSink",
    "build_audit_logger",
    "iter_audit_entries",
    "read_audit_entries",
    "verify_audit_chain",
]
