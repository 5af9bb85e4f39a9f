"""Historical bar sources."""

from .sources import BarSource, InMemoryBarSource, clip_range
from .price_fetcher import PriceFetcher, TIMEFRAME_INTERVALS

__all__ = ['BarSource', 'InMemoryBarSource', 'clip_range', 'PriceFetcher', 'TIMEFRAME_INTERVALS']
