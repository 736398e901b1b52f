"""Single-cycle price move circuit breaker."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class DeviationState:
    """Last accepted consensus price per guarded symbol; absent means unset."""

    last_prices: Dict[str, float] = field(default_factory=dict)

    def last_price(self, symbol: str) -> Optional[float]:
        return self.last_prices.get(symbol)

    def record(self, symbol: str, price: float) -> None:
        self.last_prices[symbol] = float(price)

    def reset(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            self.last_prices.clear()
        else:
            self.last_prices.pop(symbol, None)


@dataclass(frozen=True)
class DeviationVerdict:
    symbol: str
    triggered: bool
    deviation_pct: Optional[float] = None
    previous_price: Optional[float] = None

    @property
    def baseline(self) -> bool:
        return self.deviation_pct is None


class DeviationGuard:
    """Compare each price with the previous cycle's and trip on large moves.

    ``max_deviation_pct`` and the reported deviation are ratios (0.05 == 5%).
    """

    def __init__(self, state: DeviationState, *, max_deviation_pct: float = 0.05) -> None:
        self.state = state
        self._max_deviation = max_deviation_pct

    def check(self, symbol: str, current_price: float) -> DeviationVerdict:
        last_price = self.state.last_price(symbol)
        self.state.record(symbol, current_price)

        if last_price is None or last_price == 0:
            logger.info(
                "Deviation baseline established",
                extra={"symbol": symbol, "price": current_price, "previous_price": last_price},
            )
            return DeviationVerdict(symbol=symbol, triggered=False, previous_price=last_price)

        deviation = abs(current_price - last_price) / last_price
        triggered = deviation > self._max_deviation
        log_level = logging.ERROR if triggered else logging.DEBUG
        logger.log(
            log_level,
            "Circuit breaker tripped" if triggered else "Deviation within tolerance",
            extra={
                "symbol": symbol,
                "deviation": deviation,
                "limit": self._max_deviation,
                "price": current_price,
                "previous_price": last_price,
            },
        )
        return DeviationVerdict(
            symbol=symbol, triggered=triggered, deviation_pct=deviation, previous_price=last_price
        )
