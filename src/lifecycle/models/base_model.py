"""Capability interface shared by all estimator variants."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from ..exceptions import ConvergenceFailure, TrainingCancelled

logger = logging.getLogger(__name__)


class AlgorithmKind(str, Enum):
    """Tag stored on a Model that selects its estimator variant."""
    LINEAR = "linear"
    RANDOM_FOREST = "random_forest"
    XGBOOST = "xgboost"
    LIGHTGBM = "lightgbm"
    NEURAL = "neural"


@dataclass
class ModelSignal:
    """Standardized model output."""
    signal: int  # -1 (sell), 0 (abstain), 1 (buy)
    prob_up: float  # Probability of positive return [0, 1]
    confidence: float  # Model confidence [0, 1]

    @property
    def action(self) -> str:
        return {1: "BUY", -1: "SELL"}.get(self.signal, "HOLD")


@dataclass
class FittedState:
    """Whatever a variant needs to predict later; pickled into the artifact."""
    algorithm: str
    model: Any
    params: Dict[str, Any]
    loss_trace: List[float] = field(default_factory=list)
    n_iterations: int = 0
    best_iteration: Optional[int] = None


class CancelToken:
    """Cooperative cancellation flag checked between training iterations."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, loss_trace: Optional[List[float]] = None):
        if self.cancelled:
            raise TrainingCancelled("Training cancelled", loss_trace=loss_trace)


class BaseModel(ABC):
    """Base class that all estimator variants implement.

    Variants hold no fitted state themselves: ``fit`` returns a
    FittedState and ``predict_proba`` takes one back, so a single variant
    instance can serve any number of artifacts.
    """

    kind: AlgorithmKind

    def __init__(self, min_confidence: float = 0.6):
        self.min_confidence = min_confidence

    def fit(self, X: np.ndarray, y: np.ndarray, params: Optional[Dict[str, Any]] = None,
            X_val: Optional[np.ndarray] = None, y_val: Optional[np.ndarray] = None,
            cancel_token: Optional[CancelToken] = None) -> FittedState:
        """
        Fit the variant.

        Args:
            X: Scaled training features
            y: Binary labels (0/1)
            params: Hyperparameters; unknown keys are ignored by sklearn variants
            X_val, y_val: Optional validation partition for early stopping / eval traces
            cancel_token: Checked between iterations

        Returns:
            FittedState
        """
        y = np.asarray(y).astype(int)
        if len(np.unique(y)) < 2:
            raise ConvergenceFailure("Training labels contain a single class")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        state = self._fit(np.asarray(X, dtype=float), y, dict(params or {}),
                          X_val, y_val, cancel_token)

        if state.loss_trace and not np.all(np.isfinite(state.loss_trace)):
            raise ConvergenceFailure(f"{self.kind.value} loss diverged")
        return state

    @abstractmethod
    def _fit(self, X: np.ndarray, y: np.ndarray, params: Dict[str, Any],
             X_val: Optional[np.ndarray], y_val: Optional[np.ndarray],
             cancel_token: Optional[CancelToken]) -> FittedState:
        pass

    @abstractmethod
    def predict_proba(self, state: FittedState, X: np.ndarray) -> np.ndarray:
        """Probability of the up class for each row."""
        pass

    def predict(self, state: FittedState, X: np.ndarray) -> np.ndarray:
        """Binary labels."""
        return (self.predict_proba(state, X) > 0.5).astype(int)

    def get_signal(self, state: FittedState, x_row: np.ndarray) -> ModelSignal:
        """Prediction signal for a single feature row."""
        prob_up = float(self.predict_proba(state, np.atleast_2d(x_row))[0])
        confidence = self._calculate_confidence(prob_up)
        return ModelSignal(
            signal=self._apply_abstention(prob_up, confidence),
            prob_up=prob_up,
            confidence=confidence
        )

    def _apply_abstention(self, prob_up: float, confidence: float) -> int:
        """
        Apply abstention logic based on confidence threshold.

        Returns:
            signal: -1, 0, or 1 (0 = abstain)
        """
        if confidence < self.min_confidence:
            return 0  # Abstain

        if prob_up > 0.5:
            return 1  # Buy
        elif prob_up < 0.5:
            return -1  # Sell
        else:
            return 0  # Abstain (uncertain)

    def _calculate_confidence(self, prob_up: float) -> float:
        """
        Calculate confidence from probability.
        Higher confidence when probability is further from 0.5.
        """
        return 2 * abs(prob_up - 0.5)  # Maps [0.5, 1.0] -> [0, 1]

    @staticmethod
    def _estimator_params(estimator_cls, defaults: Dict[str, Any],
                          params: Dict[str, Any]) -> Dict[str, Any]:
        """Merge params over defaults, dropping keys the sklearn estimator does not accept."""
        valid = set(estimator_cls().get_params().keys())
        merged = {**defaults, **params}
        ignored = sorted(k for k in merged if k not in valid)
        if ignored:
            logger.debug(f"{estimator_cls.__name__} ignoring hyperparameters: {ignored}")
        return {k: v for k, v in merged.items() if k in valid}
