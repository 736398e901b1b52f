from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional

from .http import execute_with_retries, post_json
from .types import NotificationResult

RequestFunc = Callable[[str, Mapping[str, Any]], Awaitable[Mapping[str, Any]]]


async def send_telegram_message(
    token: str,
    chat_id: str,
    message: str,
    *,
    parse_mode: str = "Markdown",
    request_func: Optional[RequestFunc] = None,
    max_retries: int = 0,
    backoff_seconds: float = 0.5,
    timeout: float = 10.0,
) -> NotificationResult:
    """Send a Telegram message; retries only when ``max_retries`` is raised."""

    url = f"https://api.telegram.org/bot{token}/sendMessage"
    payload = {"chat_id": chat_id, "text": message, "parse_mode": parse_mode}

    async def _dispatch() -> Mapping[str, Any]:
        if request_func is not None:
            data = await request_func(url, payload)
        else:
            data = await post_json(url, payload, timeout=timeout)
        if isinstance(data, Mapping) and data.get("ok") is False:
            raise RuntimeError(f"telegram returned failure: {data.get('description', 'unknown error')}")
        return data

    return await execute_with_retries(
        "telegram",
        _dispatch,
        max_retries=max_retries,
        backoff_seconds=backoff_seconds,
    )
