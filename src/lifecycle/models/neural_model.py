"""Feed-forward neural network variant (sklearn MLP), trained epoch by epoch."""

from typing import Any, Dict, Optional

import numpy as np
from sklearn.neural_network import MLPClassifier

from ..exceptions import ConvergenceFailure
from .base_model import AlgorithmKind, BaseModel, CancelToken, FittedState


class NeuralModel(BaseModel):
    """Dense network; layer internals are whatever MLPClassifier does."""

    kind = AlgorithmKind.NEURAL

    defaults = {
        'hidden_layer_sizes': (64, 32),
        'learning_rate_init': 0.001,
        'alpha': 0.0001,
        'batch_size': 32,
        'random_state': 42,
    }

    def __init__(self, min_confidence: float = 0.6, max_epochs: int = 50,
                 patience: int = 10, tol: float = 1e-4):
        super().__init__(min_confidence)
        self.max_epochs = max_epochs
        self.patience = patience
        self.tol = tol

    def _fit(self, X: np.ndarray, y: np.ndarray, params: Dict[str, Any],
             X_val: Optional[np.ndarray], y_val: Optional[np.ndarray],
             cancel_token: Optional[CancelToken]) -> FittedState:
        params = dict(params)
        epochs = int(params.pop('epochs', self.max_epochs))
        if 'hidden_layer_sizes' in params:
            params['hidden_layer_sizes'] = tuple(params['hidden_layer_sizes'])
        est_params = self._estimator_params(MLPClassifier, self.defaults, params)
        est_params['batch_size'] = min(int(est_params['batch_size']), len(X))

        model = MLPClassifier(**est_params)
        classes = np.array([0, 1])

        best_loss = np.inf
        stale_epochs = 0
        for epoch in range(epochs):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(list(model.loss_curve_) if epoch else [])
            model.partial_fit(X, y, classes=classes)

            loss = model.loss_curve_[-1]
            if not np.isfinite(loss):
                raise ConvergenceFailure(f"MLP loss became {loss} at epoch {epoch}")
            if loss < best_loss - self.tol:
                best_loss = loss
                stale_epochs = 0
            else:
                stale_epochs += 1
                if stale_epochs >= self.patience:
                    break

        est_params['epochs'] = epochs
        return FittedState(
            algorithm=self.kind.value,
            model=model,
            params=est_params,
            loss_trace=[float(v) for v in model.loss_curve_],
            n_iterations=len(model.loss_curve_),
        )

    def predict_proba(self, state: FittedState, X: np.ndarray) -> np.ndarray:
        return state.model.predict_proba(np.asarray(X, dtype=float))[:, 1]
