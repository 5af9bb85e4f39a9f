"""Error taxonomy for the model lifecycle engine."""

from typing import List, Optional


class LifecycleError(Exception):
    """Base class for every error raised by the engine."""


class InsufficientDataError(LifecycleError):
    """Not enough history to build features or fill a partition/window."""

    def __init__(self, message: str, required: Optional[int] = None,
                 available: Optional[int] = None):
        super().__init__(message)
        self.required = required
        self.available = available


class InsufficientWindowsError(LifecycleError):
    """Walk-forward configuration leaves no full window for the data length."""


class DataQualityError(LifecycleError):
    """Non-finite, missing or unordered values reached a stage that forbids them."""


class ConvergenceFailure(LifecycleError):
    """The estimator signalled that fitting did not converge."""


class TrainingCancelled(LifecycleError):
    """Cooperative cancellation was observed between training iterations."""

    def __init__(self, message: str = "Training cancelled",
                 loss_trace: Optional[List[float]] = None):
        super().__init__(message)
        self.loss_trace = list(loss_trace or [])


class ConflictError(LifecycleError):
    """Another job already holds the model."""


class InvalidPromotionError(LifecycleError):
    """The candidate training run may not become the active artifact."""


class ModelNotReadyError(LifecycleError):
    """Prediction was requested from a model that is not active."""


class InvalidStatusTransitionError(LifecycleError):
    """Requested status change is not allowed by the lifecycle state machine."""


class ModelNotFoundError(LifecycleError):
    """Unknown model, training run or report id."""


class ArtifactIntegrityError(LifecycleError):
    """Stored artifact bytes do not match the recorded checksum."""
