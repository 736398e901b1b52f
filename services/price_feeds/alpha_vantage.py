"""Alpha Vantage GLOBAL_QUOTE feed for exchange-traded RWA proxies."""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
import urllib.request
from typing import Any, Awaitable, Callable, Mapping, Optional

from rwa_risk.errors import PriceFeedError

from .base import PriceFeed, coerce_price

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.alphavantage.co/query"

RequestFunc = Callable[[str], Awaitable[Mapping[str, Any]]]


def _get_json_sync(url: str, timeout: float) -> Mapping[str, Any]:
    request = urllib.request.Request(url, headers={"Accept": "application/json"}, method="GET")
    with urllib.request.urlopen(request, timeout=timeout) as response:  # nosec B310
        content = response.read()
        if response.status >= 400:
            raise RuntimeError(f"alpha vantage responded with {response.status}")
        return json.loads(content.decode("utf-8"))


class AlphaVantageQuoteFeed(PriceFeed):
    """Quote feed backed by the Alpha Vantage ``GLOBAL_QUOTE`` function."""

    name = "alpha_vantage"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        request_func: Optional[RequestFunc] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Alpha Vantage requires an API key (set ALPHA_VANTAGE_API_KEY).")
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._request_func = request_func

    def _url(self, instrument: str) -> str:
        query = urllib.parse.urlencode({"function": "GLOBAL_QUOTE", "symbol": instrument, "apikey": self._api_key})
        return f"{self._base_url}?{query}"

    async def _fetch(self, instrument: str) -> Mapping[str, Any]:
        url = self._url(instrument)
        if self._request_func is not None:
            return await self._request_func(url)
        return await asyncio.to_thread(_get_json_sync, url, self._timeout)

    async def quote(self, instrument: str) -> float:
        payload = await self._fetch(instrument)
        if not isinstance(payload, Mapping):
            raise PriceFeedError(self.name, instrument, "malformed response")
        if payload.get("Note"):
            raise PriceFeedError(self.name, instrument, f"API limit: {payload['Note']}")
        if payload.get("Information"):
            raise PriceFeedError(self.name, instrument, f"API information: {payload['Information']}")
        if payload.get("Error Message"):
            raise PriceFeedError(self.name, instrument, str(payload["Error Message"]))
        quote = payload.get("Global Quote")
        if not isinstance(quote, Mapping):
            raise PriceFeedError(self.name, instrument, "no quote in response")
        price = coerce_price(self.name, instrument, quote.get("05. price"))
        if price is None:
            raise PriceFeedError(self.name, instrument, "no price data received")
        logger.debug(
            "Alpha Vantage quote received",
            extra={"instrument": instrument, "price": price, "trading_day": quote.get("07. latest trading day")},
        )
        return price
