"""Helper functions for data validation and leakage checks."""

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import DataQualityError

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


def validate_bars(bars: pd.DataFrame, required_columns: Sequence[str] = OHLCV_COLUMNS) -> pd.DataFrame:
    """
    Validate an OHLCV frame before feature building.

    The frame must carry the required columns and a strictly increasing
    index (timestamps). Values are not checked for finiteness here; that
    happens right before fitting.
    """
    missing = set(required_columns) - set(bars.columns)
    if missing:
        raise DataQualityError(f"Missing columns: {sorted(missing)}")

    if bars.index.has_duplicates:
        raise DataQualityError("Duplicate timestamps in bars")
    if not bars.index.is_monotonic_increasing:
        raise DataQualityError("Bars are not ordered by timestamp")

    null_counts = bars[list(required_columns)].isnull().sum()
    if null_counts.any():
        logger.warning(f"Null values found in bars:\n{null_counts[null_counts > 0]}")

    return bars


def safe_divide(numerator: pd.Series, denominator: pd.Series,
                fill_value: float = 0.0) -> pd.Series:
    """Divide two series, replacing division by zero with fill_value.

    NaN inputs stay NaN so that garbage data is not masked.
    """
    result = numerator / denominator.replace(0, np.nan)
    zero_mask = denominator == 0
    if zero_mask.any():
        result = result.where(~zero_mask, fill_value)
    return result


def assert_finite(frame: pd.DataFrame, stage: str = "features") -> None:
    """Raise DataQualityError if any value in frame is NaN or infinite."""
    values = frame.to_numpy(dtype=float)
    finite = np.isfinite(values)
    if finite.all():
        return

    bad_columns = [col for col, ok in zip(frame.columns, finite.all(axis=0)) if not ok]
    bad_rows = int((~finite.all(axis=1)).sum())
    raise DataQualityError(
        f"Non-finite values in {stage}: {bad_rows} rows, columns {bad_columns}"
    )


def ensure_no_leakage(train_index: pd.Index, test_index: pd.Index) -> None:
    """Ensure every training row precedes every test row."""
    if len(train_index) == 0 or len(test_index) == 0:
        return
    if train_index.max() >= test_index.min():
        raise ValueError(
            f"Data leakage detected! Train max: {train_index.max()}, Test min: {test_index.min()}"
        )


def check_ratios(ratios: Iterable[float], tolerance: float = 1e-6) -> tuple:
    """Validate split ratios: non-negative and summing to 1.0."""
    ratios = tuple(float(r) for r in ratios)
    if any(r < 0 for r in ratios):
        raise ValueError(f"Split ratios must be non-negative: {ratios}")
    if abs(sum(ratios) - 1.0) > tolerance:
        raise ValueError(f"Split ratios must sum to 1.0, got {sum(ratios):.6f}")
    return ratios


def floor_fraction(n: int, fraction: float) -> int:
    """floor(n * fraction) tolerant to binary rounding (0.29 * 100 -> 29)."""
    return int(np.floor(n * fraction + 1e-9))


def frame_checksum(*frames) -> str:
    """sha256 over the values and index of one or more frames/series, in order."""
    digest = hashlib.sha256()
    for frame in frames:
        hashed = pd.util.hash_pandas_object(frame, index=True).to_numpy()
        digest.update(hashed.tobytes())
        columns = frame.columns if isinstance(frame, pd.DataFrame) else [frame.name]
        digest.update(json.dumps([str(c) for c in columns]).encode())
    return digest.hexdigest()


def reproducibility_hash(algorithm: str, hyperparameters: Dict[str, Any],
                         feature_config: Optional[Dict[str, Any]], data_checksum: str) -> str:
    """
    Fingerprint of everything that determines a training run's outcome.

    Two runs with the same hash fit the same estimator on the same rows, so
    their metrics and artifacts should match.
    """
    payload = json.dumps({
        'algorithm': algorithm,
        'params': hyperparameters or {},
        'features': feature_config or {},
        'data': data_checksum,
    }, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()
