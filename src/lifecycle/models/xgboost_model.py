"""XGBoost variant for price pattern learning."""

from typing import Any, Dict, Optional

import numpy as np
import xgboost as xgb

from ..exceptions import TrainingCancelled
from .base_model import AlgorithmKind, BaseModel, CancelToken, FittedState


class _CancelCallback(xgb.callback.TrainingCallback):
    """Checks the cancel token after every boosting round."""

    def __init__(self, cancel_token: CancelToken):
        super().__init__()
        self.cancel_token = cancel_token

    def after_iteration(self, model, epoch, evals_log) -> bool:
        if self.cancel_token.cancelled:
            trace = list(evals_log.get('train', {}).get('logloss', []))
            raise TrainingCancelled(f"XGBoost cancelled at round {epoch}", loss_trace=trace)
        return False


class XGBoostModel(BaseModel):
    """Gradient-boosted trees via the native xgboost training API."""

    kind = AlgorithmKind.XGBOOST

    defaults = {
        'objective': 'binary:logistic',
        'eval_metric': 'logloss',
        'max_depth': 4,
        'learning_rate': 0.1,
        'n_estimators': 100,
        'subsample': 0.8,
        'colsample_bytree': 0.8,
        'seed': 42,
        'tree_method': 'hist',  # Faster, works on CPU
        'base_score': 0.5,  # Fix for logistic loss
        'early_stopping_rounds': 10,
    }

    def _fit(self, X: np.ndarray, y: np.ndarray, params: Dict[str, Any],
             X_val: Optional[np.ndarray], y_val: Optional[np.ndarray],
             cancel_token: Optional[CancelToken]) -> FittedState:
        booster_params = {**self.defaults, **params}
        num_rounds = int(booster_params.pop('n_estimators'))
        early_stopping = booster_params.pop('early_stopping_rounds')

        dtrain = xgb.DMatrix(X, label=y)
        evals = [(dtrain, 'train')]
        has_val = X_val is not None and len(X_val) > 0
        if has_val:
            evals.append((xgb.DMatrix(X_val, label=np.asarray(y_val).astype(int)), 'val'))

        callbacks = [_CancelCallback(cancel_token)] if cancel_token is not None else []
        evals_result: Dict[str, Dict[str, list]] = {}
        booster = xgb.train(
            booster_params,
            dtrain,
            num_boost_round=num_rounds,
            evals=evals,
            evals_result=evals_result,
            early_stopping_rounds=early_stopping if has_val else None,
            callbacks=callbacks,
            verbose_eval=False
        )

        best_iteration = getattr(booster, 'best_iteration', None) if has_val else None
        booster_params['n_estimators'] = num_rounds
        return FittedState(
            algorithm=self.kind.value,
            model=booster,
            params=booster_params,
            loss_trace=[float(v) for v in evals_result['train']['logloss']],
            n_iterations=booster.num_boosted_rounds(),
            best_iteration=best_iteration,
        )

    def predict_proba(self, state: FittedState, X: np.ndarray) -> np.ndarray:
        dtest = xgb.DMatrix(np.asarray(X, dtype=float))
        if state.best_iteration is not None:
            return state.model.predict(dtest, iteration_range=(0, state.best_iteration + 1))
        return state.model.predict(dtest)
