"""Walk-forward validation with expanding or rolling windows."""

import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import numpy as np
from tqdm import tqdm

from ..exceptions import ConvergenceFailure, InsufficientDataError
from ..features.feature_builder import LabeledDataset
from ..features.splitter import (
    DatasetSplit, WalkForwardWindow, WindowConfig, generate_windows, window_split
)
from ..models import AlgorithmKind, CancelToken
from ..training.trainer import Trainer, TrainingResult
from ..utils.config import RecommendationPolicy
from ..utils.helpers import assert_finite

logger = logging.getLogger(__name__)

# Failures that stay local to one window and are reported on it
WINDOW_ERRORS = (ConvergenceFailure, InsufficientDataError)

TIER_MESSAGES = {
    'GOOD': 'Model shows good performance and consistency. Ready for production.',
    'ACCEPTABLE': 'Model shows acceptable performance. Consider additional tuning.',
    'MARGINAL': 'Model shows marginal performance. Significant improvements needed.',
    'POOR': 'Model performance is poor. Not recommended for production.',
}


@dataclass
class WindowResult:
    """Out-of-sample metrics for one window."""
    window_index: int
    train_start: int
    train_end: int
    test_start: int
    test_end: int
    train_range: Tuple[Optional[str], Optional[str]]
    test_range: Tuple[Optional[str], Optional[str]]
    accuracy: Optional[float] = None
    precision: Optional[float] = None
    recall: Optional[float] = None
    f1: Optional[float] = None
    n_test: int = 0
    training_run_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['train_range'] = list(self.train_range)
        data['test_range'] = list(self.test_range)
        return data


@dataclass
class WalkForwardAggregate:
    """Summary across windows."""
    mean_accuracy: float
    std_accuracy: float
    min_accuracy: float
    max_accuracy: float
    consistency_score: float
    mean_precision: float
    mean_recall: float
    mean_f1: float
    recommendation: str
    recommendation_message: str
    total_windows: int
    successful_windows: int
    failed_windows: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WalkForwardResult:
    """Ordered window results plus aggregate verdict."""
    window_config: Dict[str, Any]
    windows: List[WindowResult]
    aggregate: WalkForwardAggregate
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class WindowRecorder(Protocol):
    """Persists one TrainingRun per window; implemented by the registry layer."""

    def start(self, window: WalkForwardWindow, split: DatasetSplit) -> Optional[int]: ...

    def complete(self, run_id: Optional[int], result: TrainingResult) -> None: ...

    def fail(self, run_id: Optional[int], error: Exception) -> None: ...


def classify(mean_accuracy: float, consistency: float,
             policy: Optional[RecommendationPolicy] = None) -> str:
    """Map (mean accuracy, consistency) to one of four ordered tiers."""
    policy = policy or RecommendationPolicy()
    if mean_accuracy > policy.good_accuracy and consistency > policy.good_consistency:
        return 'GOOD'
    if mean_accuracy > policy.acceptable_accuracy and consistency > policy.acceptable_consistency:
        return 'ACCEPTABLE'
    if mean_accuracy > policy.marginal_accuracy:
        return 'MARGINAL'
    return 'POOR'


def aggregate_windows(windows: List[WindowResult],
                      policy: Optional[RecommendationPolicy] = None) -> WalkForwardAggregate:
    """Mean/std/min/max/consistency over successful windows, then the verdict."""
    ok = [w for w in windows if not w.failed]
    failed = len(windows) - len(ok)

    if not ok:
        return WalkForwardAggregate(
            mean_accuracy=0.0, std_accuracy=0.0, min_accuracy=0.0, max_accuracy=0.0,
            consistency_score=0.0, mean_precision=0.0, mean_recall=0.0, mean_f1=0.0,
            recommendation='POOR', recommendation_message=TIER_MESSAGES['POOR'],
            total_windows=len(windows), successful_windows=0, failed_windows=failed,
        )

    accuracies = np.array([w.accuracy for w in ok], dtype=float)
    mean = float(accuracies.mean())
    std = float(accuracies.std())  # population std
    consistency = 1.0 - std / mean if mean > 0 else 0.0
    tier = classify(mean, consistency, policy)

    return WalkForwardAggregate(
        mean_accuracy=mean,
        std_accuracy=std,
        min_accuracy=float(accuracies.min()),
        max_accuracy=float(accuracies.max()),
        consistency_score=float(consistency),
        mean_precision=float(np.mean([w.precision for w in ok])),
        mean_recall=float(np.mean([w.recall for w in ok])),
        mean_f1=float(np.mean([w.f1 for w in ok])),
        recommendation=tier,
        recommendation_message=TIER_MESSAGES[tier],
        total_windows=len(windows),
        successful_windows=len(ok),
        failed_windows=failed,
    )


class WalkForwardValidator:
    """
    Repeated train/test cycles where each test slice strictly follows its
    training data.

    Usage:
        validator = WalkForwardValidator()
        result = validator.validate(dataset, {'max_depth': 3}, WindowConfig(window_type='rolling'))
        print(result.aggregate.recommendation)
    """

    def __init__(self, trainer: Optional[Trainer] = None,
                 policy: Optional[RecommendationPolicy] = None,
                 validation_fraction: float = 0.2,
                 show_progress: bool = False):
        self.trainer = trainer or Trainer(compute_importance=False)
        self.policy = policy or RecommendationPolicy()
        self.validation_fraction = validation_fraction
        self.show_progress = show_progress

    def validate(self, dataset: LabeledDataset, hyperparameters: Optional[Dict[str, Any]],
                 window_config: Optional[WindowConfig] = None,
                 algorithm: Union[str, AlgorithmKind] = AlgorithmKind.XGBOOST,
                 cancel_token: Optional[CancelToken] = None,
                 recorder: Optional[WindowRecorder] = None,
                 feature_config: Optional[Dict[str, Any]] = None,
                 purge: int = 0) -> WalkForwardResult:
        """
        Run every window in time order.

        Windows whose training fails are kept in the result with their
        error; cancellation and data-quality problems abort the whole run.
        purge rows are dropped before each window's validation and test
        slices (see window_split).
        """
        window_config = window_config or WindowConfig()
        assert_finite(dataset.features, stage="walk-forward dataset")

        windows = generate_windows(len(dataset), window_config)
        logger.info(f"Starting walk-forward validation: {window_config.window_type} window, "
                    f"{len(dataset)} samples, {len(windows)} windows")

        results: List[WindowResult] = []
        iterator = tqdm(windows, desc="walk-forward", disable=not self.show_progress)
        for window in iterator:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            results.append(self._run_window(dataset, window, hyperparameters, algorithm,
                                            cancel_token, recorder, feature_config, purge))

        aggregate = aggregate_windows(results, self.policy)
        logger.info(
            f"Walk-forward complete - mean acc {aggregate.mean_accuracy:.4f}, "
            f"std {aggregate.std_accuracy:.4f}, consistency {aggregate.consistency_score:.4f}, "
            f"verdict {aggregate.recommendation}"
        )

        return WalkForwardResult(
            window_config=window_config.to_dict(),
            windows=results,
            aggregate=aggregate,
        )

    def _run_window(self, dataset: LabeledDataset, window: WalkForwardWindow,
                    hyperparameters, algorithm, cancel_token, recorder,
                    feature_config, purge: int = 0) -> WindowResult:
        index = dataset.features.index

        def _range(start, end):
            return (str(index[start]), str(index[end - 1])) if end > start else (None, None)

        result = WindowResult(
            window_index=window.index,
            train_start=window.train_start,
            train_end=window.train_end,
            test_start=window.test_start,
            test_end=window.test_end,
            train_range=_range(window.train_start, window.train_end),
            test_range=_range(window.test_start, window.test_end),
            n_test=window.test_size,
        )

        run_id = None
        try:
            split = window_split(dataset, window, self.validation_fraction, purge)
            if recorder is not None:
                run_id = recorder.start(window, split)
                result.training_run_id = run_id

            trained = self.trainer.train(split, hyperparameters, algorithm,
                                         cancel_token=cancel_token,
                                         feature_config=feature_config)
        except WINDOW_ERRORS as e:
            logger.error(f"Window {window.index} failed: {e}")
            result.error = f"{type(e).__name__}: {e}"
            if recorder is not None and run_id is not None:
                recorder.fail(run_id, e)
            return result
        except Exception as e:
            if recorder is not None and run_id is not None:
                recorder.fail(run_id, e)
            raise

        # Held-out test slice only; the trainer never saw it
        test = trained.test_metrics
        result.accuracy = test['accuracy']
        result.precision = test['precision']
        result.recall = test['recall']
        result.f1 = test['f1']

        if recorder is not None:
            recorder.complete(run_id, trained)

        logger.info(f"Window {window.index} complete - test accuracy {result.accuracy:.4f}")
        return result
