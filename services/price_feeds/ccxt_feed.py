"""Ticker feed for tokenized assets listed on ccxt-supported exchanges."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from rwa_risk.errors import PriceFeedError

from .base import PriceFeed, first_price

logger = logging.getLogger(__name__)


def _instantiate_ccxt_client(exchange_id: str, options: Optional[Mapping[str, Any]] = None) -> Any:
    """Create a public (unauthenticated) ccxt async client for ``exchange_id``."""

    try:
        import ccxt.async_support as ccxt_async  # type: ignore[import]
    except ModuleNotFoundError as exc:  # pragma: no cover - depends on runtime environment
        raise RuntimeError(
            "ccxt is required for exchange ticker sources. Install it via 'pip install ccxt'."
        ) from exc
    normalized = exchange_id.strip().lower()
    try:
        exchange_class = getattr(ccxt_async, normalized)
    except AttributeError as exc:
        raise ValueError(f"Exchange '{exchange_id}' is not supported by ccxt.") from exc
    return exchange_class({"enableRateLimit": True, **dict(options or {})})


class CcxtTickerFeed(PriceFeed):
    """Quote ``instrument`` from a ccxt exchange's public ticker endpoint."""

    def __init__(
        self,
        exchange_id: str,
        *,
        client: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.exchange_id = exchange_id
        self.name = f"ccxt:{exchange_id}"
        self.client = client if client is not None else _instantiate_ccxt_client(exchange_id)
        self._params = dict(params or {})
        self._markets_lock: Optional[asyncio.Lock] = None

    async def _ensure_markets(self) -> None:
        lock = self._markets_lock
        if lock is None:
            lock = asyncio.Lock()
            self._markets_lock = lock
        async with lock:
            if getattr(self.client, "markets", None):
                return
            if hasattr(self.client, "load_markets"):
                await self.client.load_markets()

    async def quote(self, instrument: str) -> float:
        await self._ensure_markets()
        ticker = await self.client.fetch_ticker(instrument, self._params)
        if not isinstance(ticker, Mapping):
            raise PriceFeedError(self.name, instrument, "malformed ticker")
        price = first_price(self.name, instrument, ticker, "last", "close")
        if price is not None:
            return price
        bid = first_price(self.name, instrument, ticker, "bid")
        ask = first_price(self.name, instrument, ticker, "ask")
        if bid is not None and ask is not None:
            return (bid + ask) / 2.0
        raise PriceFeedError(self.name, instrument, "ticker has no last, close or bid/ask")

    async def close(self) -> None:
        closer = getattr(self.client, "close", None)
        if closer is None:
            return
        try:
            await closer()
        except Exception as exc:  # pragma: no cover - best effort shutdown
            logger.warning("Failed to close ccxt client %s: %s", self.exchange_id, exc)
