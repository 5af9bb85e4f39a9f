"""Shared fixtures: synthetic OHLCV bars and an isolated engine."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from lifecycle.utils.config import EngineConfig, PromotionPolicy


def make_bars(n: int = 500, seed: int = 0, drift: float = 0.002, noise: float = 0.01,
              start: str = '2022-01-03', freq: str = 'D') -> pd.DataFrame:
    """Upward-drifting random walk with consistent OHLC geometry."""
    rng = np.random.default_rng(seed)
    dates = pd.date_range(start, periods=n, freq=freq)
    log_returns = drift + noise * rng.standard_normal(n)
    close = 100 * np.exp(np.cumsum(log_returns))
    open_ = np.concatenate([[100.0], close[:-1]])
    wiggle = np.abs(rng.standard_normal(n)) * noise * close
    return pd.DataFrame({
        'open': open_,
        'high': np.maximum(open_, close) + wiggle,
        'low': np.minimum(open_, close) - wiggle,
        'close': close,
        'volume': rng.integers(1_000_000, 5_000_000, n).astype(float),
    }, index=dates)


@pytest.fixture
def bars():
    return make_bars()


@pytest.fixture
def engine_config(tmp_path):
    return EngineConfig(
        database_url="sqlite://",
        artifacts_dir=tmp_path / "artifacts",
        max_workers=2,
        promotion=PromotionPolicy(min_test_accuracy=0.0, require_walk_forward=False),
    )


@pytest.fixture
def engine(engine_config):
    from lifecycle import ModelLifecycleEngine

    eng = ModelLifecycleEngine(engine_config)
    yield eng
    eng.shutdown(cancel_running=True)
