"""Configuration management for the lifecycle engine."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

# Load environment variables
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
ENV_FILE = PROJECT_ROOT / "keys.env"

if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
else:
    # Try loading from current directory or parent
    load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


# Storage
DATABASE_URL = os.getenv("LIFECYCLE_DATABASE_URL", "sqlite://")
ARTIFACTS_DIR = Path(os.getenv("LIFECYCLE_ARTIFACTS_DIR", str(PROJECT_ROOT / "artifacts")))
RAW_DATA_DIR = PROJECT_ROOT / "data" / "raw"

# Feature engineering
DEFAULT_LOOKBACK = 20            # Bars of history per feature row
DEFAULT_LABEL_HORIZON = 1        # Predict direction of the next bar
RETURN_PERIODS = [1, 3, 5, 10]
MA_WINDOWS = [5, 10]
VOLATILITY_WINDOWS = [5, 10]
RSI_PERIOD = 14
ATR_PERIOD = 14

# Training
DEFAULT_SPLIT_RATIOS = (0.7, 0.15, 0.15)  # train / validation / test
DEFAULT_SCALER = "standard"
DEFAULT_MIN_CONFIDENCE = 0.6     # Abstention threshold for predict()
DEFAULT_SEED = 42


@dataclass
class WalkForwardDefaults:
    """Default walk-forward window configuration."""
    initial_train_fraction: float = 0.6
    test_fraction: float = 0.1
    step_fraction: float = 0.1
    window_type: str = "expanding"
    min_train_samples: int = 1
    validation_fraction: float = 0.2


@dataclass
class RecommendationPolicy:
    """
    Walk-forward production-readiness tiers.

    Four ordered tiers driven by mean accuracy x consistency. The numbers
    were chosen empirically for liquid equities; recalibrate per asset class.
    """
    good_accuracy: float = _env_float("LIFECYCLE_GOOD_ACCURACY", 0.60)
    good_consistency: float = _env_float("LIFECYCLE_GOOD_CONSISTENCY", 0.80)
    acceptable_accuracy: float = _env_float("LIFECYCLE_ACCEPTABLE_ACCURACY", 0.55)
    acceptable_consistency: float = _env_float("LIFECYCLE_ACCEPTABLE_CONSISTENCY", 0.70)
    marginal_accuracy: float = _env_float("LIFECYCLE_MARGINAL_ACCURACY", 0.50)
    passing_tiers: Tuple[str, ...] = ("GOOD", "ACCEPTABLE")


@dataclass
class DriftConfig:
    """Drift monitor thresholds."""
    window_size: int = _env_int("LIFECYCLE_DRIFT_WINDOW", 20)
    degradation_threshold: float = _env_float("LIFECYCLE_DRIFT_THRESHOLD", 0.05)
    recovery_samples: int = _env_int("LIFECYCLE_DRIFT_RECOVERY_SAMPLES", 5)
    min_samples: int = _env_int("LIFECYCLE_DRIFT_MIN_SAMPLES", 5)
    retention_days: int = _env_int("LIFECYCLE_SAMPLE_RETENTION_DAYS", 90)


@dataclass
class PromotionPolicy:
    """Gate applied by promote()."""
    min_test_accuracy: float = _env_float("LIFECYCLE_MIN_TEST_ACCURACY", 0.50)
    require_walk_forward: bool = os.getenv("LIFECYCLE_REQUIRE_WALK_FORWARD", "0") == "1"


@dataclass
class EngineConfig:
    """Top-level wiring for ModelLifecycleEngine."""
    database_url: str = DATABASE_URL
    artifacts_dir: Path = ARTIFACTS_DIR
    max_workers: int = _env_int("LIFECYCLE_MAX_WORKERS", 2)
    job_history: int = _env_int("LIFECYCLE_JOB_HISTORY", 256)
    artifact_cache_size: int = _env_int("LIFECYCLE_ARTIFACT_CACHE_SIZE", 16)
    split_ratios: Tuple[float, float, float] = DEFAULT_SPLIT_RATIOS
    importance_seed: int = DEFAULT_SEED
    importance_repeats: int = 1
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    show_progress: bool = False
    walk_forward: WalkForwardDefaults = field(default_factory=WalkForwardDefaults)
    recommendation: RecommendationPolicy = field(default_factory=RecommendationPolicy)
    drift: DriftConfig = field(default_factory=DriftConfig)
    promotion: PromotionPolicy = field(default_factory=PromotionPolicy)


CONFIG = EngineConfig()
