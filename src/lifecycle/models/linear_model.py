"""Logistic regression variant."""

import warnings
from typing import Any, Dict, Optional

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import log_loss

from ..exceptions import ConvergenceFailure
from .base_model import AlgorithmKind, BaseModel, CancelToken, FittedState


class LinearModel(BaseModel):
    """L2-regularized logistic regression on the scaled feature vector."""

    kind = AlgorithmKind.LINEAR

    defaults = {
        'C': 1.0,
        'max_iter': 500,
        'random_state': 42,
    }

    def _fit(self, X: np.ndarray, y: np.ndarray, params: Dict[str, Any],
             X_val: Optional[np.ndarray], y_val: Optional[np.ndarray],
             cancel_token: Optional[CancelToken]) -> FittedState:
        est_params = self._estimator_params(LogisticRegression, self.defaults, params)
        model = LogisticRegression(**est_params)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', ConvergenceWarning)
            model.fit(X, y)

        if any(issubclass(w.category, ConvergenceWarning) for w in caught):
            raise ConvergenceFailure(
                f"LogisticRegression did not converge in {est_params.get('max_iter')} iterations"
            )

        loss = float(log_loss(y, model.predict_proba(X)[:, 1], labels=[0, 1]))
        return FittedState(
            algorithm=self.kind.value,
            model=model,
            params=est_params,
            loss_trace=[loss],
            n_iterations=int(np.max(model.n_iter_)),
        )

    def predict_proba(self, state: FittedState, X: np.ndarray) -> np.ndarray:
        return state.model.predict_proba(np.asarray(X, dtype=float))[:, 1]
