"""Collect redundant price observations for every tracked asset."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from rwa_risk.config.models import AssetConfig, MonitorConfig, SourceConfig
from rwa_risk.models import PriceObservation
from services.price_feeds import AlphaVantageQuoteFeed, CcxtTickerFeed, PriceFeed
from services.telemetry import Telemetry

from .metrics import MetricRegistry, Timer

logger = logging.getLogger(__name__)


def feed_key(source: SourceConfig) -> str:
    if source.kind == "ccxt":
        return f"ccxt:{(source.exchange or '').lower()}"
    return source.kind


def build_price_feeds(
    assets: Sequence[AssetConfig],
    *,
    alpha_vantage_api_key: Optional[str] = None,
    request_timeout: float = 10.0,
) -> Dict[str, PriceFeed]:
    """Instantiate one feed per distinct provider referenced by ``assets``."""

    feeds: Dict[str, PriceFeed] = {}
    for asset in assets:
        for source in asset.sources:
            key = feed_key(source)
            if key in feeds:
                continue
            if source.kind == "alpha_vantage":
                feeds[key] = AlphaVantageQuoteFeed(alpha_vantage_api_key or "", timeout=request_timeout)
            elif source.kind == "ccxt":
                if not source.exchange:
                    raise ValueError(f"ccxt source {source.instrument} for {asset.symbol} requires an exchange")
                feeds[key] = CcxtTickerFeed(source.exchange)
            else:
                raise ValueError(f"Unsupported price source kind '{source.kind}' for {asset.symbol}")
    return feeds


class ObservationFetcher:
    """Query every configured source concurrently, dropping the ones that fail."""

    def __init__(
        self,
        assets: Sequence[AssetConfig],
        feeds: Mapping[str, PriceFeed],
        *,
        telemetry: Optional[Telemetry] = None,
        metrics: Optional[MetricRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._assets = list(assets)
        self._feeds = dict(feeds)
        self._telemetry = telemetry or Telemetry()
        self._metrics = metrics or MetricRegistry()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(
        cls, config: MonitorConfig, *, telemetry: Optional[Telemetry] = None, metrics: Optional[MetricRegistry] = None
    ) -> "ObservationFetcher":
        feeds = build_price_feeds(
            config.assets,
            alpha_vantage_api_key=config.alpha_vantage_api_key,
            request_timeout=config.resilience.request_timeout,
        )
        return cls(
            config.assets,
            feeds,
            telemetry=telemetry or Telemetry(policy=config.resilience),
            metrics=metrics,
        )

    @property
    def symbols(self) -> List[str]:
        return [asset.symbol for asset in self._assets]

    async def _observe(self, asset: AssetConfig, source: SourceConfig) -> Optional[PriceObservation]:
        label = source.source_label
        feed = self._feeds.get(feed_key(source))
        if feed is None:
            logger.error("No feed registered for source", extra={"symbol": asset.symbol, "source": label})
            return None
        try:
            with Timer(self._metrics, "price_feed_latency_seconds", labels={"source": label}):
                price = await self._telemetry.execute_with_resilience(
                    label, lambda: feed.quote(source.instrument)
                )
            return PriceObservation(
                symbol=asset.symbol,
                price=price,
                source=label,
                timestamp=self._clock(),
                weight=source.weight,
            )
        except Exception as exc:
            self._metrics.inc("price_feed_errors_total", labels={"source": label, "code": type(exc).__name__})
            logger.error(
                "Dropping price source for this cycle",
                extra={"symbol": asset.symbol, "source": label, "error": str(exc)},
            )
            return None

    async def fetch(self) -> Dict[str, Tuple[PriceObservation, ...]]:
        """Return symbol -> observations; a symbol may map to an empty tuple."""

        jobs = [(asset, source) for asset in self._assets for source in asset.sources]
        results = await asyncio.gather(*(self._observe(asset, source) for asset, source in jobs))
        observations: Dict[str, List[PriceObservation]] = {asset.symbol: [] for asset in self._assets}
        for (asset, _), observation in zip(jobs, results):
            if observation is not None:
                observations[asset.symbol].append(observation)
        for symbol, items in observations.items():
            logger.info("Collected observations", extra={"symbol": symbol, "count": len(items)})
        return {symbol: tuple(items) for symbol, items in observations.items()}

    async def close(self) -> None:
        for feed in self._feeds.values():
            await feed.close()
