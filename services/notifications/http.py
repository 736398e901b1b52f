"""Minimal JSON-over-HTTP helpers shared by outbound notification channels."""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Awaitable, Callable, Mapping, Optional

from .types import NotificationError, NotificationResult

logger = logging.getLogger(__name__)


def _post_json_sync(
    url: str, payload: Mapping[str, Any], timeout: float, headers: Optional[Mapping[str, str]] = None
) -> Mapping[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
    request_headers.update(headers or {})
    request = urllib.request.Request(url, data=body, headers=request_headers, method="POST")
    with urllib.request.urlopen(request, timeout=timeout) as response:  # nosec B310
        content = response.read()
        if response.status >= 400:
            raise RuntimeError(f"{url} responded with {response.status}")
        if not content:
            return {}
        try:
            data = json.loads(content.decode("utf-8"))
        except json.JSONDecodeError:
            return {"raw": content.decode("utf-8", errors="replace")}
        return data if isinstance(data, Mapping) else {"data": data}


async def post_json(
    url: str,
    payload: Mapping[str, Any],
    *,
    timeout: float = 10.0,
    headers: Optional[Mapping[str, str]] = None,
) -> Mapping[str, Any]:
    """POST ``payload`` as JSON without blocking the event loop."""

    return await asyncio.to_thread(_post_json_sync, url, payload, timeout, headers)


async def execute_with_retries(
    channel: str,
    operation: Callable[[], Awaitable[Mapping[str, Any]]],
    *,
    max_retries: int,
    backoff_seconds: float,
) -> NotificationResult:
    attempts = 0
    last_error: Optional[Exception] = None
    while attempts <= max_retries:
        attempts += 1
        try:
            payload = await operation()
            return NotificationResult(channel=channel, success=True, attempts=attempts, payload=payload)
        except Exception as exc:
            last_error = exc
            logger.debug("%s notification attempt %s failed: %s", channel, attempts, exc)
            if attempts > max_retries:
                break
            await asyncio.sleep(backoff_seconds * attempts)

    assert last_error is not None  # nosec - guarded by loop condition
    retryable = isinstance(last_error, (urllib.error.URLError, TimeoutError, ConnectionError))
    error = NotificationError(
        channel=channel,
        reason=str(last_error) or type(last_error).__name__,
        retryable=retryable,
        attempts=attempts,
        error_type=type(last_error).__name__,
    )
    return NotificationResult(channel=channel, success=False, attempts=attempts, error=error)
