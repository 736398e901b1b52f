import asyncio
import logging
from datetime import datetime, timezone

import pytest

from rwa_risk.config.models import AssetConfig, SourceConfig
from rwa_risk.errors import PriceFeedError
from rwa_risk.risk_engine.metrics import MetricRegistry
from rwa_risk.risk_engine.observation_fetcher import ObservationFetcher, build_price_feeds, feed_key
from services.price_feeds import AlphaVantageQuoteFeed, CcxtTickerFeed, PriceFeed
from services.telemetry import ResiliencePolicy, Telemetry

FIXED = datetime(2024, 5, 1, tzinfo=timezone.utc)


class FakeFeed(PriceFeed):
    def __init__(self, name, quotes):
        self.name = name
        self.quotes = quotes
        self.calls = []
        self.closed = False

    async def quote(self, instrument):
        self.calls.append(instrument)
        value = self.quotes[instrument]
        if isinstance(value, Exception):
            raise value
        return value

    async def close(self):
        self.closed = True


def _assets():
    return [
        AssetConfig(
            symbol="PAXG",
            sources=[
                SourceConfig(kind="ccxt", exchange="binance", instrument="PAXG/USDT"),
                SourceConfig(kind="ccxt", exchange="kraken", instrument="PAXG/USD", weight=2.0),
            ],
        ),
        AssetConfig(symbol="MSFT", sources=[SourceConfig(kind="alpha_vantage", instrument="MSFT")]),
    ]


def _fetcher(feeds, metrics=None):
    telemetry = Telemetry(policy=ResiliencePolicy(request_timeout=1.0, max_retries=0, retry_backoff=0.0))
    return ObservationFetcher(_assets(), feeds, telemetry=telemetry, metrics=metrics, clock=lambda: FIXED)


def test_fetch_groups_observations_by_symbol():
    feeds = {
        "ccxt:binance": FakeFeed("ccxt:binance", {"PAXG/USDT": 2401.0}),
        "ccxt:kraken": FakeFeed("ccxt:kraken", {"PAXG/USD": 2399.5}),
        "alpha_vantage": FakeFeed("alpha_vantage", {"MSFT": 438.2}),
    }

    observations = asyncio.run(_fetcher(feeds).fetch())

    assert [o.price for o in observations["PAXG"]] == [2401.0, 2399.5]
    assert [o.source for o in observations["PAXG"]] == ["ccxt:binance:PAXG/USDT", "ccxt:kraken:PAXG/USD"]
    assert observations["PAXG"][1].weight == 2.0
    assert observations["MSFT"][0].timestamp == FIXED


def test_failed_sources_are_dropped_and_counted(caplog):
    metrics = MetricRegistry()
    feeds = {
        "ccxt:binance": FakeFeed("ccxt:binance", {"PAXG/USDT": 2401.0}),
        "ccxt:kraken": FakeFeed("ccxt:kraken", {"PAXG/USD": RuntimeError("exchange down")}),
        "alpha_vantage": FakeFeed("alpha_vantage", {"MSFT": PriceFeedError("alpha_vantage", "MSFT", "API limit")}),
    }

    with caplog.at_level(logging.ERROR):
        observations = asyncio.run(_fetcher(feeds, metrics).fetch())

    assert len(observations["PAXG"]) == 1
    assert observations["MSFT"] == ()
    assert metrics.counter(
        "price_feed_errors_total", labels={"source": "alpha_vantage:MSFT", "code": "PriceFeedError"}
    ) == 1
    assert "Dropping price source" in caplog.text
    assert metrics.samples("price_feed_latency_seconds", labels={"source": "ccxt:binance:PAXG/USDT"})


def test_close_closes_every_feed():
    feeds = {"ccxt:binance": FakeFeed("ccxt:binance", {}), "alpha_vantage": FakeFeed("alpha_vantage", {})}

    asyncio.run(_fetcher(feeds).close())

    assert all(feed.closed for feed in feeds.values())


def test_build_price_feeds_shares_one_client_per_exchange(monkeypatch):
    created = []
    monkeypatch.setattr(
        "services.price_feeds.ccxt_feed._instantiate_ccxt_client",
        lambda exchange_id, options=None: created.append(exchange_id) or object(),
    )
    assets = _assets() + [
        AssetConfig(symbol="XAUT", sources=[SourceConfig(kind="ccxt", exchange="Binance", instrument="XAUT/USDT")])
    ]

    feeds = build_price_feeds(assets, alpha_vantage_api_key="demo")

    assert set(feeds) == {"ccxt:binance", "ccxt:kraken", "alpha_vantage"}
    assert isinstance(feeds["alpha_vantage"], AlphaVantageQuoteFeed)
    assert isinstance(feeds["ccxt:binance"], CcxtTickerFeed)
    assert created == ["binance", "kraken"]
    assert feed_key(SourceConfig(kind="ccxt", exchange="Kraken", instrument="X")) == "ccxt:kraken"


def test_build_price_feeds_rejects_unknown_kinds():
    with pytest.raises(ValueError):
        build_price_feeds([AssetConfig(symbol="X", sources=[SourceConfig(kind="bloomberg", instrument="X")])])
