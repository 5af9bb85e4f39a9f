"""Configuration and shared helpers."""

from .config import (
    CONFIG, EngineConfig, WalkForwardDefaults, RecommendationPolicy,
    DriftConfig, PromotionPolicy
)
from .helpers import (
    validate_bars, safe_divide, assert_finite, ensure_no_leakage,
    check_ratios, floor_fraction
)

__all__ = [
    'CONFIG', 'EngineConfig', 'WalkForwardDefaults', 'RecommendationPolicy',
    'DriftConfig', 'PromotionPolicy',
    'validate_bars', 'safe_divide', 'assert_finite', 'ensure_no_leakage',
    'check_ratios', 'floor_fraction'
]
