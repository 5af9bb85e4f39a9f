"""Test the Trainer and the artifact store."""

import pytest
import numpy as np
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from lifecycle.exceptions import ArtifactIntegrityError, DataQualityError, ModelNotFoundError
from lifecycle.features import FeatureBuilder, simple_split
from lifecycle.training import ArtifactStore, Trainer, classification_metrics, serialize, checksum_of

from conftest import make_bars

PARAMS = {'n_estimators': 20, 'max_depth': 2}


@pytest.fixture
def split():
    dataset = FeatureBuilder().build_dataset(make_bars(300))
    return simple_split(dataset, (0.7, 0.15, 0.15))


def test_train_produces_metrics_and_artifact(split):
    result = Trainer().train(split, PARAMS)

    for metrics in (result.train_metrics, result.validation_metrics, result.test_metrics):
        assert 0.0 <= metrics['accuracy'] <= 1.0
        assert 0.0 <= metrics['f1'] <= 1.0
    assert result.test_metrics['n_samples'] == len(split.test)
    assert result.artifact.feature_names == split.feature_names
    assert result.artifact.hyperparameters['scaler'] == 'standard'
    assert result.n_iterations > 0
    assert result.loss_trace
    assert result.boundaries == split.boundaries


def test_scaler_fitted_on_training_rows_only(split):
    result = Trainer(compute_importance=False).train(split, PARAMS)

    train_means = split.train.features.to_numpy(dtype=float).mean(axis=0)
    np.testing.assert_allclose(result.artifact.scaler.mean_, train_means)

    all_means = np.concatenate([
        split.train.features.to_numpy(dtype=float),
        split.test.features.to_numpy(dtype=float),
    ]).mean(axis=0)
    assert not np.allclose(result.artifact.scaler.mean_, all_means)


def test_minmax_scaler_selectable(split):
    result = Trainer(compute_importance=False).train(split, {**PARAMS, 'scaler': 'minmax'})
    assert result.artifact.hyperparameters['scaler'] == 'minmax'

    with pytest.raises(ValueError):
        Trainer().train(split, {'scaler': 'robust'})


def test_non_finite_features_abort_training(split):
    split.test.features.iloc[3, 0] = np.inf
    with pytest.raises(DataQualityError):
        Trainer().train(split, PARAMS)


def test_importance_ranks_are_a_permutation(split):
    result = Trainer().train(split, PARAMS)

    ranks = [fi.rank for fi in result.feature_importances]
    assert ranks == list(range(1, len(split.feature_names) + 1))
    assert all(fi.importance >= 0 for fi in result.feature_importances)
    importances = [fi.importance for fi in result.feature_importances]
    assert importances == sorted(importances, reverse=True)


def test_classification_metrics_confusion_counts():
    metrics = classification_metrics([1, 1, 0, 0, 1], [1, 0, 0, 1, 1])

    assert metrics['accuracy'] == pytest.approx(0.6)
    assert metrics['true_positives'] == 2
    assert metrics['false_negatives'] == 1
    assert metrics['false_positives'] == 1
    assert metrics['true_negatives'] == 1
    assert metrics['precision'] == pytest.approx(2 / 3)


def test_artifact_store_round_trip(split, tmp_path):
    bundle = Trainer(compute_importance=False).train(split, PARAMS).artifact
    store = ArtifactStore(tmp_path)

    checksum, size = store.put(bundle)
    assert checksum == checksum_of(serialize(bundle))
    assert size > 0
    # Same content, same blob
    assert store.put(bundle) == (checksum, size)

    loaded = store.get(checksum)
    np.testing.assert_allclose(loaded.predict_proba(split.test.features),
                               bundle.predict_proba(split.test.features))


def test_artifact_store_detects_corruption(split, tmp_path):
    bundle = Trainer(compute_importance=False).train(split, PARAMS).artifact
    store = ArtifactStore(tmp_path)
    checksum, _ = store.put(bundle)

    path = tmp_path / checksum[:2] / f"{checksum}.joblib"
    path.write_bytes(path.read_bytes() + b"tampered")
    with pytest.raises(ArtifactIntegrityError):
        store.get(checksum)

    with pytest.raises(ModelNotFoundError):
        store.get("0" * 64)
