"""Price feed interface consumed by the observation fetcher."""

from __future__ import annotations

import abc
import math
from typing import Any, Mapping, Optional

from rwa_risk.errors import PriceFeedError


class PriceFeed(abc.ABC):
    """Asynchronous source of spot quotes for instruments on one provider."""

    name: str

    @abc.abstractmethod
    async def quote(self, instrument: str) -> float:
        """Return the latest positive price for ``instrument``.

        Implementations raise :class:`PriceFeedError` when the provider answers
        but cannot supply a usable price.
        """

    async def close(self) -> None:
        """Release network resources held by the feed."""


def coerce_price(feed: str, instrument: str, value: Any) -> Optional[float]:
    """Return ``value`` as a positive finite float, ``None`` when absent."""

    if value in (None, ""):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError) as exc:
        raise PriceFeedError(feed, instrument, f"unparseable price {value!r}") from exc
    if not math.isfinite(price) or price <= 0:
        raise PriceFeedError(feed, instrument, f"non-positive price {value!r}")
    return price


def first_price(feed: str, instrument: str, payload: Mapping[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        price = coerce_price(feed, instrument, payload.get(key))
        if price is not None:
            return price
    return None
