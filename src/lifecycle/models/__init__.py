"""Estimator variants behind one fit/predict capability."""

from typing import Union

from .base_model import AlgorithmKind, BaseModel, CancelToken, FittedState, ModelSignal
from .linear_model import LinearModel
from .forest_model import RandomForestModel
from .xgboost_model import XGBoostModel
from .lightgbm_model import LightGBMModel
from .neural_model import NeuralModel

ESTIMATORS = {
    AlgorithmKind.LINEAR: LinearModel,
    AlgorithmKind.RANDOM_FOREST: RandomForestModel,
    AlgorithmKind.XGBOOST: XGBoostModel,
    AlgorithmKind.LIGHTGBM: LightGBMModel,
    AlgorithmKind.NEURAL: NeuralModel,
}


def get_estimator(kind: Union[str, AlgorithmKind], min_confidence: float = 0.6) -> BaseModel:
    """Instantiate the variant selected by an algorithm tag."""
    kind = AlgorithmKind(kind)
    return ESTIMATORS[kind](min_confidence=min_confidence)


__all__ = [
    'AlgorithmKind', 'BaseModel', 'CancelToken', 'FittedState', 'ModelSignal',
    'LinearModel', 'RandomForestModel', 'XGBoostModel', 'LightGBMModel', 'NeuralModel',
    'ESTIMATORS', 'get_estimator'
]
