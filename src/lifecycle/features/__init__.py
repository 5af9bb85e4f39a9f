"""Feature engineering and time-ordered splitting."""

from .feature_builder import FeatureBuilder, LabeledDataset, features_from_config
from .splitter import (
    DatasetSplit, WindowConfig, WalkForwardWindow,
    simple_split, generate_windows, window_split
)

__all__ = [
    'FeatureBuilder', 'LabeledDataset', 'features_from_config',
    'DatasetSplit', 'WindowConfig', 'WalkForwardWindow',
    'simple_split', 'generate_windows', 'window_split'
]
