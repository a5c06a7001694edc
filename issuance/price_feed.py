"""
price_feed.py - Reference oracle adapters for collateral valuation

The engine only depends on the PriceFeed protocol: latest_price() returns
(price, decimals). These adapters back tests, examples and simulations.

Classes:
- PriceFeed: Protocol defining the oracle interface (from core)
- StaticPriceFeed: A single settable price, like a mock aggregator
- TimeSeriesPriceFeed: Historical prices replayed against a feed clock

All prices are USD per whole asset unit, scaled by 10**decimals.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple
from bisect import bisect_right

from .core import FEED_DECIMALS, InvalidPrice, PriceFeed


class StaticPriceFeed:
    """
    Feed with one current price that only changes when told to.

    Example:
        feed = StaticPriceFeed(2000 * 10**8)
        feed.latest_price()          # (200000000000, 8)
        feed.update_price(18 * 10**8)
    """

    def __init__(self, price: int, decimals: int = FEED_DECIMALS):
        if decimals < 0:
            raise ValueError(f"decimals cannot be negative, got {decimals}")
        self.decimals = decimals
        self.price = price
        self.updates = 0

    def latest_price(self) -> Tuple[int, int]:
        return self.price, self.decimals

    def update_price(self, price: int):
        """Replace the current price."""
        self.price = price
        self.updates += 1

    def __repr__(self):
        return f"StaticPriceFeed({self.price}, decimals={self.decimals})"


class TimeSeriesPriceFeed:
    """
    Feed replaying a price history.

    latest_price() answers with the most recent observation at or before the
    feed's clock. The clock starts at the last observation unless set_time()
    is called, and only moves forward.

    Supports two initialization patterns:
    - Empty initialization for incremental price addition via add_price()
    - Batch initialization with a complete price path
    """

    def __init__(
        self,
        path: Optional[List[Tuple[datetime, int]]] = None,
        decimals: int = FEED_DECIMALS
    ):
        """
        Initialize the feed.

        Args:
            path: Optional list of (timestamp, price) observations, any order
            decimals: Decimal digits of every price in this feed

        Examples:
            feed = TimeSeriesPriceFeed([
                (t0, 2000 * 10**8), (t1, 1500 * 10**8), (t2, 18 * 10**8),
            ])
            feed.set_time(t1)
            feed.latest_price()   # (150000000000, 8)
        """
        self.decimals = decimals
        self.price_history: List[Tuple[datetime, int]] = sorted(path or [], key=lambda x: x[0])
        self._time: Optional[datetime] = None

    @property
    def current_time(self) -> Optional[datetime]:
        if self._time is not None:
            return self._time
        if self.price_history:
            return self.price_history[-1][0]
        return None

    def set_time(self, timestamp: datetime):
        """
        Move the feed clock.

        Raises:
            ValueError: If timestamp is before the current clock
        """
        if self._time is not None and timestamp < self._time:
            raise ValueError(f"Cannot move feed time backwards: {timestamp} < {self._time}")
        self._time = timestamp

    def add_price(self, timestamp: datetime, price: int):
        """Add one observation, keeping history sorted by timestamp."""
        self.price_history.append((timestamp, price))
        self.price_history.sort(key=lambda x: x[0])

    def add_prices(self, observations: Dict[datetime, int]):
        for timestamp, price in observations.items():
            self.add_price(timestamp, price)

    def price_at(self, timestamp: datetime) -> Optional[int]:
        """
        Price at or before `timestamp`, or None if no observation precedes it.

        Uses binary search for O(log n) lookup.
        """
        timestamps = [ts for ts, _ in self.price_history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        return self.price_history[idx - 1][1]

    def latest_price(self) -> Tuple[int, int]:
        """
        Raises:
            InvalidPrice: If no observation exists at or before the feed clock
        """
        now = self.current_time
        price = self.price_at(now) if now is not None else None
        if price is None:
            raise InvalidPrice(f"No price observation at or before {now}")
        return price, self.decimals

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.price_history)} observations, decimals={self.decimals})"


__all__ = ['PriceFeed', 'StaticPriceFeed', 'TimeSeriesPriceFeed']
