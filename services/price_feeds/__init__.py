"""Price feed interfaces and provider implementations."""

from .alpha_vantage import AlphaVantageQuoteFeed
from .base import PriceFeed
from .ccxt_feed import CcxtTickerFeed

__all__ = [
    "AlphaVantageQuoteFeed",
    "CcxtTickerFeed",
    "PriceFeed",
]
