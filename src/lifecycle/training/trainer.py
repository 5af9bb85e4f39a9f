"""Fit one estimator variant on a time-ordered DatasetSplit."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import numpy as np
from sklearn.metrics import (
    accuracy_score, confusion_matrix, f1_score, precision_score, recall_score
)
from sklearn.preprocessing import MinMaxScaler, StandardScaler

from ..analytics.feature_importance import FeatureImportance, PermutationImportanceAnalyzer
from ..features.feature_builder import LabeledDataset
from ..features.splitter import DatasetSplit
from ..models import AlgorithmKind, CancelToken, get_estimator
from ..utils.config import DEFAULT_MIN_CONFIDENCE, DEFAULT_SCALER
from ..utils.helpers import assert_finite, frame_checksum
from .artifacts import ArtifactBundle

logger = logging.getLogger(__name__)

SCALERS = {
    'standard': StandardScaler,
    'minmax': MinMaxScaler,
}


@dataclass
class TrainingResult:
    """Everything produced by one fit."""
    artifact: ArtifactBundle
    train_metrics: Dict[str, Any]
    validation_metrics: Optional[Dict[str, Any]]
    test_metrics: Dict[str, Any]
    loss_trace: List[float]
    n_iterations: int
    duration_seconds: float
    boundaries: Dict[str, Any]
    feature_importances: List[FeatureImportance] = field(default_factory=list)


def classification_metrics(y_true, y_pred) -> Dict[str, Any]:
    """Accuracy, precision, recall, f1 and confusion counts for binary labels."""
    y_true = np.asarray(y_true).astype(int)
    y_pred = np.asarray(y_pred).astype(int)
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return {
        'accuracy': float(accuracy_score(y_true, y_pred)),
        'precision': float(precision_score(y_true, y_pred, zero_division=0)),
        'recall': float(recall_score(y_true, y_pred, zero_division=0)),
        'f1': float(f1_score(y_true, y_pred, zero_division=0)),
        'true_positives': int(tp),
        'true_negatives': int(tn),
        'false_positives': int(fp),
        'false_negatives': int(fn),
        'n_samples': int(len(y_true)),
    }


def evaluate(artifact: ArtifactBundle, dataset: LabeledDataset) -> Optional[Dict[str, Any]]:
    """Metrics of an artifact on a partition; None for an empty partition."""
    if len(dataset) == 0:
        return None
    return classification_metrics(dataset.labels, artifact.predict(dataset.features))


class Trainer:
    """
    Trains one variant on a DatasetSplit.

    The scaler is fitted on the training partition only and then applied
    to validation and test. Non-finite values abort before anything is
    fitted.
    """

    def __init__(self, importance_analyzer: Optional[PermutationImportanceAnalyzer] = None,
                 compute_importance: bool = True,
                 min_confidence: float = DEFAULT_MIN_CONFIDENCE):
        self.importance_analyzer = importance_analyzer or PermutationImportanceAnalyzer()
        self.compute_importance = compute_importance
        self.min_confidence = min_confidence

    def check_data_quality(self, split: DatasetSplit):
        for name in ('train', 'validation', 'test'):
            partition = getattr(split, name)
            if len(partition):
                assert_finite(partition.features, stage=f"{name} features")

    def train(self, split: DatasetSplit, hyperparameters: Optional[Dict[str, Any]] = None,
              algorithm: Union[str, AlgorithmKind] = AlgorithmKind.XGBOOST,
              cancel_token: Optional[CancelToken] = None,
              feature_config: Optional[Dict[str, Any]] = None,
              model_key: int = 0) -> TrainingResult:
        """
        Fit, evaluate and package an artifact.

        Args:
            split: Train/validation/test partitions in time order
            hyperparameters: Opaque variant params; 'scaler' selects standard|minmax
            algorithm: Variant tag
            cancel_token: Checked between training iterations
            feature_config: Stored on the artifact so predict() can rebuild features
            model_key: Seeds permutation importance per model

        Returns:
            TrainingResult
        """
        self.check_data_quality(split)

        params = dict(hyperparameters or {})
        scaler_kind = params.pop('scaler', DEFAULT_SCALER)
        if scaler_kind not in SCALERS:
            raise ValueError(f"Unknown scaler: {scaler_kind}")

        feature_names = split.feature_names
        scaler = SCALERS[scaler_kind]()
        X_train = scaler.fit_transform(split.train.features.to_numpy(dtype=float))
        X_val = (scaler.transform(split.validation.features.to_numpy(dtype=float))
                 if len(split.validation) else None)
        y_val = split.validation.labels.to_numpy() if len(split.validation) else None

        estimator = get_estimator(algorithm, min_confidence=self.min_confidence)
        logger.info(f"Training {estimator.kind.value} on {len(split.train)} rows, "
                    f"{len(feature_names)} features")

        start = time.perf_counter()
        state = estimator.fit(X_train, split.train.labels.to_numpy(), params,
                              X_val=X_val, y_val=y_val, cancel_token=cancel_token)
        duration = time.perf_counter() - start

        artifact = ArtifactBundle(
            algorithm=estimator.kind.value,
            state=state,
            scaler=scaler,
            feature_names=feature_names,
            hyperparameters={**state.params, 'scaler': scaler_kind},
            feature_config=dict(feature_config or {}),
        )

        train_metrics = evaluate(artifact, split.train)
        validation_metrics = evaluate(artifact, split.validation)
        test_metrics = evaluate(artifact, split.test)
        if test_metrics is None:
            raise ValueError("Test partition is empty")

        importances = []
        if self.compute_importance:
            importances = self.importance_analyzer.compute_importance(
                artifact, split.test.features, split.test.labels, model_key=model_key
            )

        logger.info(
            f"Training completed in {duration:.2f}s - "
            f"train acc {train_metrics['accuracy']:.3f}, "
            f"val acc {validation_metrics['accuracy'] if validation_metrics else float('nan'):.3f}, "
            f"test acc {test_metrics['accuracy']:.3f}"
        )

        return TrainingResult(
            artifact=artifact,
            train_metrics=train_metrics,
            validation_metrics=validation_metrics,
            test_metrics=test_metrics,
            loss_trace=list(state.loss_trace),
            n_iterations=state.n_iterations,
            duration_seconds=duration,
            boundaries=split.boundaries,
            feature_importances=importances,
        )


def summarize_dataset(dataset: LabeledDataset) -> Dict[str, Any]:
    """Date range and class balance of a dataset, recorded on the run."""
    index = dataset.features.index
    labels = dataset.labels
    return {
        'n_rows': len(dataset),
        'start': index[0] if len(index) else None,
        'end': index[-1] if len(index) else None,
        'up_fraction': float(labels.mean()) if len(labels) else None,
        'checksum': frame_checksum(dataset.features, labels),
    }


def summarize_split(split: DatasetSplit) -> Dict[str, Any]:
    """Row count, date range and checksum over all three partitions of a split."""
    parts = (split.train, split.validation, split.test)
    frames = [frame for part in parts for frame in (part.features, part.labels)]
    return {
        'n_rows': sum(len(part) for part in parts),
        'start': split.boundaries['train']['first_timestamp'],
        'end': split.boundaries['test']['last_timestamp'],
        'checksum': frame_checksum(*frames),
    }
