"""Time-ordered dataset partitioning: simple holdout and walk-forward windows.

Rows are never shuffled. Every partition is a contiguous positional slice,
earlier rows always land in earlier partitions.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Sequence

from ..exceptions import InsufficientDataError, InsufficientWindowsError
from ..utils.config import DEFAULT_SPLIT_RATIOS
from ..utils.helpers import check_ratios, ensure_no_leakage, floor_fraction
from .feature_builder import LabeledDataset

logger = logging.getLogger(__name__)

WINDOW_TYPES = ('expanding', 'rolling')


@dataclass
class DatasetSplit:
    """Train / validation / test partitions plus their row boundaries."""
    train: LabeledDataset
    validation: LabeledDataset
    test: LabeledDataset
    boundaries: Dict[str, Any]

    @property
    def feature_names(self) -> List[str]:
        return self.train.feature_names


@dataclass
class WindowConfig:
    """Walk-forward window parameters (fractions of the dataset length)."""
    initial_train_fraction: float = 0.6
    test_fraction: float = 0.1
    step_fraction: float = 0.1
    window_type: str = 'expanding'
    min_train_samples: int = 1

    def __post_init__(self):
        if self.window_type not in WINDOW_TYPES:
            raise ValueError(f"window_type must be one of {WINDOW_TYPES}, got {self.window_type}")
        for name in ('initial_train_fraction', 'test_fraction', 'step_fraction'):
            value = getattr(self, name)
            if not 0 < value < 1:
                raise ValueError(f"{name} must be in (0, 1), got {value}")
        if self.step_fraction < self.test_fraction:
            # Test slices must not overlap
            raise ValueError(
                f"step_fraction ({self.step_fraction}) must be >= test_fraction ({self.test_fraction})"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WalkForwardWindow:
    """One walk-forward window as half-open row ranges."""
    index: int
    train_start: int
    train_end: int
    test_start: int
    test_end: int

    @property
    def train_size(self) -> int:
        return self.train_end - self.train_start

    @property
    def test_size(self) -> int:
        return self.test_end - self.test_start


def _boundary(dataset: LabeledDataset, start: int, end: int) -> Dict[str, Any]:
    index = dataset.features.index
    return {
        'start': start,
        'end': end,
        'first_timestamp': str(index[start]) if end > start else None,
        'last_timestamp': str(index[end - 1]) if end > start else None,
    }


def simple_split(dataset: LabeledDataset,
                 ratios: Sequence[float] = DEFAULT_SPLIT_RATIOS,
                 purge: int = 0) -> DatasetSplit:
    """
    Partition contiguously: earliest rows to train, latest to test.

    Boundaries are floor(n * train) and floor(n * (train + validation)); the
    test partition takes the remainder. With 100 rows and (0.6, 0.2, 0.2)
    this yields rows 0-59, 60-79 and 80-99.

    purge drops the last rows of train and validation, whose labels look
    `purge` bars ahead into the next partition. Pass the label horizon.
    """
    if purge < 0:
        raise ValueError(f"purge must be >= 0, got {purge}")
    train_ratio, val_ratio, _ = check_ratios(ratios)
    n = len(dataset)

    train_end = floor_fraction(n, train_ratio)
    val_end = floor_fraction(n, train_ratio + val_ratio)
    fit_end = train_end - purge
    val_stop = val_end - purge

    sizes = {'train': fit_end, 'validation': val_stop - train_end, 'test': n - val_end}
    empty = [name for name, size in sizes.items() if size <= 0]
    if empty:
        raise InsufficientDataError(
            f"{n} rows leave empty partitions {empty} for ratios {tuple(ratios)}",
            available=n
        )

    split = DatasetSplit(
        train=dataset.slice(0, fit_end),
        validation=dataset.slice(train_end, val_stop),
        test=dataset.slice(val_end, n),
        boundaries={
            'train': _boundary(dataset, 0, fit_end),
            'validation': _boundary(dataset, train_end, val_stop),
            'test': _boundary(dataset, val_end, n),
            'purged_rows': purge,
        }
    )
    if dataset.features.index.is_unique:
        ensure_no_leakage(split.train.features.index, split.validation.features.index)
        ensure_no_leakage(split.validation.features.index, split.test.features.index)

    logger.info(f"Dataset split - Train: {sizes['train']}, Val: {sizes['validation']}, Test: {sizes['test']}")
    return split


def generate_windows(n_rows: int, config: WindowConfig) -> List[WalkForwardWindow]:
    """
    Generate walk-forward windows over n_rows ordered rows.

    Expanding windows keep train_start at 0; rolling windows keep the
    training length equal to the initial training size. Each step moves
    the training end and the test slice forward by the step size. Stops
    when the next test slice would run past the data.
    """
    initial = floor_fraction(n_rows, config.initial_train_fraction)
    test = floor_fraction(n_rows, config.test_fraction)
    step = floor_fraction(n_rows, config.step_fraction)

    if initial <= 0 or test <= 0 or step <= 0:
        raise InsufficientDataError(
            f"{n_rows} rows give zero-sized windows "
            f"(train={initial}, test={test}, step={step})",
            available=n_rows
        )
    if initial < config.min_train_samples:
        raise InsufficientDataError(
            f"Initial training window has {initial} rows, "
            f"minimum is {config.min_train_samples}",
            required=config.min_train_samples, available=initial
        )

    windows = []
    train_end = initial
    while train_end + test <= n_rows:
        train_start = 0 if config.window_type == 'expanding' else train_end - initial
        windows.append(WalkForwardWindow(
            index=len(windows),
            train_start=train_start,
            train_end=train_end,
            test_start=train_end,
            test_end=train_end + test,
        ))
        train_end += step

    if not windows:
        raise InsufficientWindowsError(
            f"No full walk-forward window fits in {n_rows} rows "
            f"(train={initial}, test={test})"
        )

    logger.info(f"Generated {len(windows)} {config.window_type} windows over {n_rows} rows")
    return windows


def window_split(dataset: LabeledDataset, window: WalkForwardWindow,
                 validation_fraction: float = 0.2, purge: int = 0) -> DatasetSplit:
    """
    Turn one window into a DatasetSplit.

    The tail of the window's training slice becomes the validation
    partition; the window's test slice is the held-out test partition.
    purge works as in simple_split.
    """
    if purge < 0:
        raise ValueError(f"purge must be >= 0, got {purge}")
    val_size = floor_fraction(window.train_size, validation_fraction)
    val_start = window.train_end - val_size
    fit_end = val_start - purge
    val_stop = max(val_start, window.train_end - purge)
    if fit_end <= window.train_start:
        raise InsufficientDataError(
            f"Window {window.index} has no rows left to fit after holding out "
            f"{val_size} validation rows and purging {purge}",
            available=window.train_size
        )

    return DatasetSplit(
        train=dataset.slice(window.train_start, fit_end),
        validation=dataset.slice(val_start, val_stop),
        test=dataset.slice(window.test_start, window.test_end),
        boundaries={
            'window_index': window.index,
            'train': _boundary(dataset, window.train_start, fit_end),
            'validation': _boundary(dataset, val_start, val_stop),
            'test': _boundary(dataset, window.test_start, window.test_end),
            'purged_rows': purge,
        }
    )
