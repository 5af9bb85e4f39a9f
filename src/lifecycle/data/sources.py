"""Bar source interface used by the engine to load historical OHLCV data."""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import pandas as pd

from ..exceptions import InsufficientDataError


def _bound(index: pd.Index, value) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    tz = getattr(index, 'tz', None)
    if tz is not None and ts.tzinfo is None:
        return ts.tz_localize(tz)
    if tz is None and ts.tzinfo is not None:
        return ts.tz_convert(None)
    return ts


def clip_range(bars: pd.DataFrame, start=None, end=None) -> pd.DataFrame:
    """Bars with start <= timestamp <= end; either bound may be None."""
    if start is not None:
        bars = bars[bars.index >= _bound(bars.index, start)]
    if end is not None:
        bars = bars[bars.index <= _bound(bars.index, end)]
    return bars


class BarSource(ABC):
    """Anything that can hand back ordered OHLCV bars for a symbol."""

    @abstractmethod
    def load_bars(self, symbol: str, timeframe: str,
                  start: Optional[str] = None, end: Optional[str] = None) -> pd.DataFrame:
        """
        Load bars for one symbol.

        Returns:
            DataFrame with columns: open, high, low, close, volume, indexed by timestamp
        """
        pass


class InMemoryBarSource(BarSource):
    """Serves frames registered up front; used by tests and offline runs."""

    def __init__(self, frames: Optional[Dict[Tuple[str, str], pd.DataFrame]] = None):
        self._frames: Dict[Tuple[str, str], pd.DataFrame] = dict(frames or {})

    def add(self, symbol: str, timeframe: str, bars: pd.DataFrame):
        self._frames[(symbol, timeframe)] = bars.sort_index()

    def load_bars(self, symbol: str, timeframe: str,
                  start: Optional[str] = None, end: Optional[str] = None) -> pd.DataFrame:
        key = (symbol, timeframe)
        if key not in self._frames:
            raise InsufficientDataError(f"No bars registered for {symbol} {timeframe}")
        return clip_range(self._frames[key], start, end).copy()
