"""LightGBM variant for diversity."""

from typing import Any, Dict, Optional

import lightgbm as lgb
import numpy as np

from ..exceptions import TrainingCancelled
from .base_model import AlgorithmKind, BaseModel, CancelToken, FittedState


def _cancel_callback(cancel_token: CancelToken, evals: Dict[str, Dict[str, list]]):
    def _callback(env):
        if cancel_token.cancelled:
            trace = list(evals.get('train', {}).get('binary_logloss', []))
            raise TrainingCancelled(f"LightGBM cancelled at round {env.iteration}",
                                    loss_trace=trace)
    _callback.order = 30
    return _callback


class LightGBMModel(BaseModel):
    """LightGBM gradient boosting."""

    kind = AlgorithmKind.LIGHTGBM

    defaults = {
        'objective': 'binary',
        'metric': 'binary_logloss',
        'boosting_type': 'gbdt',
        'num_leaves': 15,
        'learning_rate': 0.1,
        'feature_fraction': 0.8,
        'bagging_fraction': 0.8,
        'bagging_freq': 5,
        'min_data_in_leaf': 10,
        'verbose': -1,
        'random_state': 42,
        'deterministic': True,
        'num_boost_round': 100,
        'early_stopping_rounds': 10,
    }

    def _fit(self, X: np.ndarray, y: np.ndarray, params: Dict[str, Any],
             X_val: Optional[np.ndarray], y_val: Optional[np.ndarray],
             cancel_token: Optional[CancelToken]) -> FittedState:
        lgb_params = {**self.defaults, **params}
        num_rounds = int(lgb_params.pop('num_boost_round'))
        early_stopping = int(lgb_params.pop('early_stopping_rounds'))

        train_data = lgb.Dataset(X, label=y)
        valid_sets, valid_names = [train_data], ['train']
        has_val = X_val is not None and len(X_val) > 0
        if has_val:
            valid_sets.append(lgb.Dataset(X_val, label=np.asarray(y_val).astype(int),
                                          reference=train_data))
            valid_names.append('val')

        evals: Dict[str, Dict[str, list]] = {}
        callbacks = [lgb.record_evaluation(evals)]
        if has_val:
            callbacks.append(lgb.early_stopping(early_stopping, first_metric_only=True,
                                                verbose=False))
        if cancel_token is not None:
            callbacks.append(_cancel_callback(cancel_token, evals))

        booster = lgb.train(
            lgb_params,
            train_data,
            num_boost_round=num_rounds,
            valid_sets=valid_sets,
            valid_names=valid_names,
            callbacks=callbacks
        )

        best_iteration = booster.best_iteration if has_val and booster.best_iteration > 0 else None
        lgb_params['num_boost_round'] = num_rounds
        return FittedState(
            algorithm=self.kind.value,
            model=booster,
            params=lgb_params,
            loss_trace=[float(v) for v in evals['train']['binary_logloss']],
            n_iterations=booster.current_iteration(),
            best_iteration=best_iteration,
        )

    def predict_proba(self, state: FittedState, X: np.ndarray) -> np.ndarray:
        return state.model.predict(np.asarray(X, dtype=float),
                                   num_iteration=state.best_iteration)
