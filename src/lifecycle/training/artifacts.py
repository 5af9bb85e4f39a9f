"""Fitted-model artifacts and their content-addressed blob store."""

import hashlib
import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

import joblib
import numpy as np
import pandas as pd

from ..exceptions import ArtifactIntegrityError, ModelNotFoundError
from ..models import get_estimator
from ..models.base_model import FittedState, ModelSignal

logger = logging.getLogger(__name__)


@dataclass
class ArtifactBundle:
    """Fitted estimator state plus the preprocessing needed to use it."""
    algorithm: str
    state: FittedState
    scaler: Any
    feature_names: List[str]
    hyperparameters: Dict[str, Any]
    feature_config: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def _transform(self, X: pd.DataFrame) -> np.ndarray:
        missing = [c for c in self.feature_names if c not in X.columns]
        if missing:
            raise ValueError(f"Missing feature columns: {missing}")
        # Column order is part of the contract with the scaler
        return self.scaler.transform(X[self.feature_names].to_numpy(dtype=float))

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        estimator = get_estimator(self.algorithm)
        return estimator.predict_proba(self.state, self._transform(X))

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        return (self.predict_proba(X) > 0.5).astype(int)

    def get_signal(self, x_row: pd.DataFrame, min_confidence: float = 0.6) -> ModelSignal:
        estimator = get_estimator(self.algorithm, min_confidence=min_confidence)
        return estimator.get_signal(self.state, self._transform(x_row)[-1])


def serialize(bundle: ArtifactBundle) -> bytes:
    buffer = io.BytesIO()
    joblib.dump(bundle, buffer)
    return buffer.getvalue()


def checksum_of(blob: bytes) -> str:
    return hashlib.sha256(blob).hexdigest()


class ArtifactStore:
    """
    Content-addressed blob store on the local filesystem.

    Blobs live at ``<root>/<sha[:2]>/<sha>.joblib``; identical bundles share
    one file.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, checksum: str) -> Path:
        return self.root / checksum[:2] / f"{checksum}.joblib"

    def put(self, bundle: ArtifactBundle) -> Tuple[str, int]:
        """Persist a bundle; returns (sha256 checksum, size in bytes)."""
        blob = serialize(bundle)
        checksum = checksum_of(blob)
        path = self._path(checksum)

        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
            with os.fdopen(fd, 'wb') as f:
                f.write(blob)
            os.replace(tmp, path)
            logger.info(f"Artifact stored: {checksum[:12]} ({len(blob)} bytes)")

        return checksum, len(blob)

    def get(self, checksum: str) -> ArtifactBundle:
        """Load a bundle, verifying its checksum."""
        path = self._path(checksum)
        if not path.exists():
            raise ModelNotFoundError(f"Artifact not found: {checksum}")

        blob = path.read_bytes()
        actual = checksum_of(blob)
        if actual != checksum:
            raise ArtifactIntegrityError(
                f"Artifact {checksum[:12]} is corrupt (checksum {actual[:12]})"
            )
        return joblib.load(io.BytesIO(blob))

    def exists(self, checksum: str) -> bool:
        return self._path(checksum).exists()

    def delete(self, checksum: str) -> bool:
        path = self._path(checksum)
        if path.exists():
            path.unlink()
            logger.info(f"Artifact deleted: {checksum[:12]}")
            return True
        return False

