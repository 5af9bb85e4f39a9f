"""Fetch historical price bars from yfinance."""

import logging
import time
from pathlib import Path
from typing import Optional

import pandas as pd
import yfinance as yf

from ..exceptions import InsufficientDataError
from ..utils.config import RAW_DATA_DIR
from .sources import BarSource

logger = logging.getLogger(__name__)

# Engine timeframes -> yfinance intervals
TIMEFRAME_INTERVALS = {
    '1m': '1m', '5m': '5m', '15m': '15m', '30m': '30m',
    '1h': '60m', '60m': '60m',
    '1d': '1d', 'daily': '1d',
    '1w': '1wk', 'weekly': '1wk',
}


class PriceFetcher(BarSource):
    """Fetch and cache historical OHLCV data."""

    def __init__(self, cache_dir: Optional[Path] = None, rate_limit_seconds: float = 0.5):
        self.cache_dir = cache_dir or RAW_DATA_DIR / "prices"
        self.rate_limit_seconds = rate_limit_seconds

    def load_bars(self, symbol: str, timeframe: str,
                  start: Optional[str] = None, end: Optional[str] = None) -> pd.DataFrame:
        return self.fetch(symbol, start, end, timeframe=timeframe)

    def fetch(self, ticker: str, start_date: Optional[str], end_date: Optional[str],
              timeframe: str = '1d', use_cache: bool = True) -> pd.DataFrame:
        """
        Fetch historical price data for a ticker.

        Args:
            ticker: Symbol (e.g., 'AAPL')
            start_date: Start date (YYYY-MM-DD)
            end_date: End date (YYYY-MM-DD)
            timeframe: Engine timeframe, see TIMEFRAME_INTERVALS
            use_cache: Whether to use cached data if available

        Returns:
            DataFrame with columns: open, high, low, close, volume, indexed by date
        """
        interval = TIMEFRAME_INTERVALS.get(timeframe.lower())
        if interval is None:
            raise ValueError(f"Unsupported timeframe: {timeframe}")

        cache_file = self.cache_dir / f"{ticker}_{interval}_{start_date}_{end_date}.csv"

        if use_cache and cache_file.exists():
            logger.info(f"Loading cached data for {ticker}")
            return pd.read_csv(cache_file, index_col=0, parse_dates=True)

        logger.info(f"Fetching {interval} bars for {ticker} from {start_date} to {end_date}")
        ticker_obj = yf.Ticker(ticker)
        df = ticker_obj.history(start=start_date, end=end_date, interval=interval,
                                auto_adjust=True)

        if df.empty:
            raise InsufficientDataError(f"No data returned for {ticker}")

        df = self._normalize(df)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        df.to_csv(cache_file)
        logger.info(f"Fetched {len(df)} bars for {ticker}")

        if self.rate_limit_seconds:
            time.sleep(self.rate_limit_seconds)

        return df

    @staticmethod
    def _normalize(df: pd.DataFrame) -> pd.DataFrame:
        """Standardize yfinance output to lower-case OHLCV indexed by timestamp."""
        df = df.reset_index()
        time_col = 'Datetime' if 'Datetime' in df.columns else 'Date'
        df['date'] = pd.to_datetime(df[time_col])
        df = df[['date', 'Open', 'High', 'Low', 'Close', 'Volume']].copy()
        df.columns = ['date', 'open', 'high', 'low', 'close', 'volume']
        df = df.set_index('date').sort_index()

        # Remove any duplicates
        return df[~df.index.duplicated(keep='first')]
