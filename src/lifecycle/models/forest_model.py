"""Random forest variant, grown in chunks so cancellation can land between them."""

from typing import Any, Dict, Optional

import numpy as np
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import log_loss

from .base_model import AlgorithmKind, BaseModel, CancelToken, FittedState


class RandomForestModel(BaseModel):
    """Bagged decision trees (sklearn)."""

    kind = AlgorithmKind.RANDOM_FOREST

    defaults = {
        'n_estimators': 100,
        'max_depth': 6,
        'min_samples_leaf': 5,
        'random_state': 42,
        'n_jobs': 1,
    }

    def __init__(self, min_confidence: float = 0.6, trees_per_iteration: int = 10):
        super().__init__(min_confidence)
        self.trees_per_iteration = trees_per_iteration

    def _fit(self, X: np.ndarray, y: np.ndarray, params: Dict[str, Any],
             X_val: Optional[np.ndarray], y_val: Optional[np.ndarray],
             cancel_token: Optional[CancelToken]) -> FittedState:
        est_params = self._estimator_params(RandomForestClassifier, self.defaults, params)
        total_trees = int(est_params.pop('n_estimators'))

        model = RandomForestClassifier(n_estimators=0, warm_start=True, **est_params)
        loss_trace = []
        iterations = 0
        while model.n_estimators < total_trees:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(loss_trace)
            model.n_estimators = min(model.n_estimators + self.trees_per_iteration, total_trees)
            model.fit(X, y)
            iterations += 1

            eval_X, eval_y = (X_val, y_val) if X_val is not None and len(X_val) else (X, y)
            loss_trace.append(float(log_loss(eval_y, model.predict_proba(eval_X)[:, 1],
                                             labels=[0, 1])))

        est_params['n_estimators'] = total_trees
        return FittedState(
            algorithm=self.kind.value,
            model=model,
            params=est_params,
            loss_trace=loss_trace,
            n_iterations=iterations,
        )

    def predict_proba(self, state: FittedState, X: np.ndarray) -> np.ndarray:
        return state.model.predict_proba(np.asarray(X, dtype=float))[:, 1]
