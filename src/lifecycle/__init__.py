"""
Model lifecycle engine for financial time-series models.

Bars -> features -> time-ordered splits -> training / walk-forward
validation -> registry -> live drift monitoring.
"""

from .exceptions import (
    LifecycleError, InsufficientDataError, InsufficientWindowsError, DataQualityError,
    ConvergenceFailure, TrainingCancelled, ConflictError, InvalidPromotionError,
    ModelNotReadyError, InvalidStatusTransitionError, ModelNotFoundError, ArtifactIntegrityError
)
from .utils.config import CONFIG, EngineConfig
from .engine import ModelLifecycleEngine, ModelOverview, ModelSpec, Job

__version__ = "0.1.0"

__all__ = [
    'ModelLifecycleEngine', 'ModelOverview', 'ModelSpec', 'Job', 'CONFIG', 'EngineConfig',
    'LifecycleError', 'InsufficientDataError', 'InsufficientWindowsError', 'DataQualityError',
    'ConvergenceFailure', 'TrainingCancelled', 'ConflictError', 'InvalidPromotionError',
    'ModelNotReadyError', 'InvalidStatusTransitionError', 'ModelNotFoundError',
    'ArtifactIntegrityError',
]
