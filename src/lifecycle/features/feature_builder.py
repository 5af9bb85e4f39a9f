"""Build fixed-width feature vectors from OHLCV bars."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import InsufficientDataError
from ..utils.config import (
    DEFAULT_LOOKBACK, DEFAULT_LABEL_HORIZON, RETURN_PERIODS, MA_WINDOWS,
    VOLATILITY_WINDOWS, RSI_PERIOD, ATR_PERIOD
)
from ..utils.helpers import safe_divide, validate_bars

MA_SLOPE_LAG = 3


@dataclass
class LabeledDataset:
    """Feature matrix and aligned binary direction labels, in time order."""
    features: pd.DataFrame
    labels: pd.Series

    def __len__(self) -> int:
        return len(self.features)

    @property
    def feature_names(self) -> List[str]:
        return self.features.columns.tolist()

    def slice(self, start: int, end: int) -> 'LabeledDataset':
        """Positional slice [start, end)."""
        return LabeledDataset(self.features.iloc[start:end], self.labels.iloc[start:end])


class FeatureBuilder:
    """Build time-aligned, leak-free features from price bars.

    Every indicator looks back at most ``lookback - 1`` bars, so the first
    ``lookback - 1`` rows are dropped and each surviving row is fully
    populated. Output length is ``len(bars) - lookback + 1``.
    """

    def __init__(self, lookback: int = DEFAULT_LOOKBACK,
                 return_periods: Sequence[int] = RETURN_PERIODS,
                 ma_windows: Sequence[int] = MA_WINDOWS,
                 volatility_windows: Sequence[int] = VOLATILITY_WINDOWS,
                 rsi_period: int = RSI_PERIOD,
                 atr_period: int = ATR_PERIOD):
        if lookback < 2:
            raise ValueError("lookback must be at least 2")

        self.lookback = int(lookback)
        self.return_periods = list(return_periods)
        self.ma_windows = list(ma_windows)
        self.volatility_windows = list(volatility_windows)
        self.rsi_period = rsi_period
        self.atr_period = atr_period

        required = self.required_history()
        if required > self.lookback - 1:
            raise ValueError(
                f"Indicator windows need {required} bars of history, "
                f"lookback {self.lookback} only provides {self.lookback - 1}"
            )

        self.feature_metadata: Dict = {}

    def required_history(self) -> int:
        """Largest number of prior bars any indicator needs."""
        needs = [1]
        needs += self.return_periods
        needs += self.volatility_windows
        needs += [w - 1 + MA_SLOPE_LAG for w in self.ma_windows]
        needs += [self.rsi_period, self.atr_period]
        return max(needs)

    def build_features(self, bars: pd.DataFrame) -> pd.DataFrame:
        """
        Build price-based features.

        Args:
            bars: DataFrame with columns: open, high, low, close, volume, ordered by timestamp

        Returns:
            DataFrame with one row per usable timestep (first lookback-1 bars dropped)
        """
        validate_bars(bars)
        if len(bars) < self.lookback:
            raise InsufficientDataError(
                f"Need at least {self.lookback} bars, got {len(bars)}",
                required=self.lookback, available=len(bars)
            )

        df = bars[['open', 'high', 'low', 'close', 'volume']].astype(float)
        close = df['close']
        out = pd.DataFrame(index=df.index)

        # Returns over multiple periods
        for period in self.return_periods:
            out[f'return_{period}'] = close.pct_change(period, fill_method=None)
            out[f'log_return_{period}'] = np.log(close / close.shift(period))

        # Volatility
        return_1 = close.pct_change(1, fill_method=None)
        for window in self.volatility_windows:
            out[f'volatility_{window}'] = return_1.rolling(window).std()

        # Moving averages
        for window in self.ma_windows:
            ma = close.rolling(window).mean()
            out[f'ma_{window}_ratio'] = safe_divide(close, ma) - 1
            out[f'ma_{window}_slope'] = safe_divide(ma.diff(MA_SLOPE_LAG), ma.shift(MA_SLOPE_LAG))

        out[f'rsi_{self.rsi_period}'] = self._calculate_rsi(close, self.rsi_period)

        atr = self._calculate_atr(df, self.atr_period)
        out[f'atr_{self.atr_period}_pct'] = safe_divide(atr, close)

        # Position in the lookback range and z-score
        high_w = df['high'].rolling(self.lookback).max()
        low_w = df['low'].rolling(self.lookback).min()
        out['price_position'] = safe_divide(close - low_w, high_w - low_w, fill_value=0.5)
        mean_w = close.rolling(self.lookback).mean()
        std_w = close.rolling(self.lookback).std()
        out['close_zscore'] = safe_divide(close - mean_w, std_w)

        # Volume
        volume_ma = df['volume'].rolling(self.lookback).mean()
        out['volume_ratio'] = safe_divide(df['volume'], volume_ma, fill_value=1.0)

        # Bar shape
        out['high_low_range'] = safe_divide(df['high'] - df['low'], close)
        out['open_close_range'] = safe_divide((df['close'] - df['open']).abs(), close)

        # Calendar
        if isinstance(df.index, pd.DatetimeIndex):
            out['day_of_week'] = df.index.dayofweek.astype(float)
            out['hour_of_day'] = df.index.hour.astype(float)
        else:
            out['day_of_week'] = 0.0
            out['hour_of_day'] = 0.0

        out = out.iloc[self.lookback - 1:].astype(float)

        self.feature_metadata = {
            'feature_columns': out.columns.tolist(),
            'n_features': out.shape[1],
            'lookback': self.lookback
        }
        return out

    def build_labels(self, bars: pd.DataFrame,
                     horizon: int = DEFAULT_LABEL_HORIZON) -> pd.Series:
        """Binary next-bar direction: 1 when close[t+horizon] > close[t], NaN at the tail."""
        close = bars['close'].astype(float)
        future = close.shift(-horizon)
        labels = (future > close).astype(float)
        labels[future.isna()] = np.nan
        return labels.rename('label')

    def build_dataset(self, bars: pd.DataFrame,
                      horizon: int = DEFAULT_LABEL_HORIZON) -> LabeledDataset:
        """Features and labels aligned; the last `horizon` rows have no label and are dropped."""
        features = self.build_features(bars)
        labels = self.build_labels(bars, horizon).loc[features.index]

        mask = labels.notna().to_numpy()
        features = features[mask]
        labels = labels[mask].astype(int)

        if len(features) == 0:
            raise InsufficientDataError(
                f"No labeled rows: need more than {self.lookback - 1 + horizon} bars",
                required=self.lookback + horizon, available=len(bars)
            )
        return LabeledDataset(features, labels)

    def build_pooled_dataset(self, bars_by_symbol: Dict[str, pd.DataFrame],
                             horizon: int = DEFAULT_LABEL_HORIZON) -> LabeledDataset:
        """Stack several symbols' datasets in timestamp order (stable on symbol order)."""
        parts = [self.build_dataset(bars, horizon) for bars in bars_by_symbol.values()]
        if len(parts) == 1:
            return parts[0]

        features = pd.concat([p.features for p in parts])
        labels = pd.concat([p.labels for p in parts])
        order = np.argsort(features.index.to_numpy(), kind='mergesort')
        return LabeledDataset(features.iloc[order], labels.iloc[order])

    def latest_vector(self, bars: pd.DataFrame) -> pd.DataFrame:
        """Feature row for the most recent bar, used for live prediction."""
        return self.build_features(bars).iloc[[-1]]

    def _calculate_rsi(self, prices: pd.Series, period: int = 14) -> pd.Series:
        """Calculate Relative Strength Index."""
        delta = prices.diff()
        gain = (delta.where(delta > 0, 0)).rolling(window=period).mean()
        loss = (-delta.where(delta < 0, 0)).rolling(window=period).mean()
        rs = safe_divide(gain, loss, fill_value=np.inf)
        rsi = 100 - (100 / (1 + rs))
        # Flat window: no gains and no losses
        return rsi.where(~((gain == 0) & (loss == 0)), 50.0)

    def _calculate_atr(self, df: pd.DataFrame, period: int = 14) -> pd.Series:
        """Calculate Average True Range."""
        high_low = df['high'] - df['low']
        high_close = np.abs(df['high'] - df['close'].shift())
        low_close = np.abs(df['low'] - df['close'].shift())
        tr = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)
        return tr.rolling(period).mean()


def features_from_config(feature_config: Optional[Dict] = None) -> FeatureBuilder:
    """Build a FeatureBuilder from a model's stored feature config."""
    config = dict(feature_config or {})
    config.pop('horizon', None)
    return FeatureBuilder(**config)
