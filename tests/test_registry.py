"""Test the SQLAlchemy model registry."""

import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from lifecycle.analytics import DriftMonitor, FeatureImportance
from lifecycle.exceptions import (
    ConflictError, InvalidPromotionError, InvalidStatusTransitionError, ModelNotFoundError
)
from lifecycle.registry import (
    Database, ModelRepository, ModelStatus, RunPurpose, RunStatus, can_transition
)
from lifecycle.utils.config import DriftConfig, PromotionPolicy
from lifecycle.validation import WalkForwardResult, WindowResult, aggregate_windows

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def fake_result(validation_accuracy=0.6, test_accuracy=0.58, n_features=3):
    importances = [
        FeatureImportance(f"f{i}", i, 0.1 / (i + 1), i + 1, test_accuracy, test_accuracy - 0.01)
        for i in range(n_features)
    ]
    return SimpleNamespace(
        artifact=SimpleNamespace(hyperparameters={'max_depth': 3, 'scaler': 'standard'}),
        boundaries={'train': {'start': 0, 'end': 70}},
        loss_trace=[0.69, 0.65, 0.62],
        n_iterations=3,
        train_metrics={'accuracy': 0.7},
        validation_metrics={'accuracy': validation_accuracy},
        test_metrics={'accuracy': test_accuracy},
        duration_seconds=0.5,
        feature_importances=importances,
    )


def report_result(accuracies, run_ids=None):
    windows = [
        WindowResult(i, 0, 10, 10, 12, ('a', 'b'), ('c', 'd'), accuracy=acc, precision=acc,
                     recall=acc, f1=acc, n_test=2,
                     training_run_id=run_ids[i] if run_ids else None)
        for i, acc in enumerate(accuracies)
    ]
    return WalkForwardResult({'window_type': 'expanding'}, windows, aggregate_windows(windows))


@pytest.fixture
def repo():
    return ModelRepository(Database("sqlite://"),
                           promotion_policy=PromotionPolicy(min_test_accuracy=0.5))


def validated_model(repo, **result_kwargs):
    """Model with one completed holdout run, moved to validated."""
    model = repo.create_model("spy-xgb", ["SPY"], "1d", "xgboost", {'max_depth': 3})
    repo.begin_training(model.id)
    run_id = repo.start_run(model.id, dataset_summary={'n_rows': 100, 'start': '2024-01-01'})
    repo.complete_run(run_id, fake_result(**result_kwargs), artifact_checksum="ab" * 32,
                      artifact_size=10)
    repo.update_status(model.id, ModelStatus.VALIDATED, expected=ModelStatus.TRAINING)
    return model.id, run_id


def test_create_and_get(repo):
    model = repo.create_model("spy-xgb", ["SPY", "QQQ"], "1d", "xgboost", {'max_depth': 3})

    assert model.status == ModelStatus.DRAFT
    fetched = repo.get_model(model.id)
    assert fetched.symbols == ["SPY", "QQQ"]
    assert fetched.hyperparameters == {'max_depth': 3}
    assert fetched.drift_detected is False
    assert fetched.to_dict()['status'] == 'draft'

    with pytest.raises(ModelNotFoundError):
        repo.get_model(999)
    with pytest.raises(ValueError):
        repo.create_model("empty", [], "1d", "xgboost")


def test_list_models_filters(repo):
    a = repo.create_model("a", ["SPY"], "1d", "xgboost")
    repo.create_model("b", ["QQQ"], "1d", "linear")
    repo.archive(a.id)

    assert [m.name for m in repo.list_models(symbol="QQQ")] == ["b"]
    assert [m.name for m in repo.list_models(status="archived")] == ["a"]
    assert [m.name for m in repo.list_models(algorithm="linear")] == ["b"]
    assert len(repo.list_models()) == 2


@pytest.mark.parametrize('current,target,allowed', [
    (ModelStatus.DRAFT, ModelStatus.TRAINING, True),
    (ModelStatus.DRAFT, ModelStatus.ACTIVE, False),
    (ModelStatus.TRAINING, ModelStatus.DRAFT, True),
    (ModelStatus.VALIDATED, ModelStatus.ACTIVE, True),
    (ModelStatus.ACTIVE, ModelStatus.ACTIVE, True),
    (ModelStatus.ACTIVE, ModelStatus.TRAINING, False),
    (ModelStatus.ARCHIVED, ModelStatus.DRAFT, False),
    (ModelStatus.FAILED, ModelStatus.ARCHIVED, False),
])
def test_status_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_status_is_final(repo):
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")
    repo.update_status(model.id, ModelStatus.FAILED)

    with pytest.raises(InvalidStatusTransitionError):
        repo.update_status(model.id, ModelStatus.ARCHIVED)


def test_begin_training_is_compare_and_swap(repo):
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")

    assert repo.begin_training(model.id) == ModelStatus.DRAFT
    assert repo.get_model(model.id).status == ModelStatus.TRAINING
    with pytest.raises(ConflictError):
        repo.begin_training(model.id)

    repo.update_status(model.id, ModelStatus.VALIDATED)
    with pytest.raises(InvalidStatusTransitionError):
        repo.begin_training(model.id)


def test_job_marker_admits_one_job(repo):
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")

    repo.acquire_job(model.id, "train-1")
    with pytest.raises(ConflictError):
        repo.acquire_job(model.id, "validate-1")

    assert repo.release_job(model.id, "validate-1") is False
    assert repo.release_job(model.id, "train-1") is True
    repo.acquire_job(model.id, "validate-1")
    assert repo.get_model(model.id).active_job == "validate-1"


def test_completed_run_is_immutable(repo):
    model_id, run_id = validated_model(repo)
    run = repo.get_run(run_id)

    assert run.status == RunStatus.COMPLETED
    assert run.test_accuracy == pytest.approx(0.58)
    assert run.validation_accuracy == pytest.approx(0.6)
    assert run.loss_trace == [0.69, 0.65, 0.62]
    assert run.n_samples == 100
    assert [r.rank for r in repo.feature_importances(run_id)] == [1, 2, 3]

    with pytest.raises(InvalidStatusTransitionError):
        repo.fail_run(run_id, "late failure")
    with pytest.raises(InvalidStatusTransitionError):
        repo.complete_run(run_id, fake_result())


def test_cancelled_run_keeps_partial_trace(repo):
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")
    run_id = repo.start_run(model.id)

    run = repo.cancel_run(run_id, loss_trace=[0.7, 0.68])
    assert run.status == RunStatus.CANCELLED
    assert run.loss_trace == [0.7, 0.68]
    assert run.duration_seconds >= 0


def test_promote_sets_active_run_and_baseline(repo):
    model_id, run_id = validated_model(repo)

    model = repo.promote(model_id, run_id)

    assert model.status == ModelStatus.ACTIVE
    assert model.active_run_id == run_id
    assert model.baseline_accuracy == pytest.approx(0.6)
    assert model.drift_state == 'stable'


def test_promote_rejections(repo):
    model_id, run_id = validated_model(repo, test_accuracy=0.45)

    with pytest.raises(InvalidPromotionError):
        repo.promote(model_id, run_id)

    other_id, other_run = validated_model(repo)
    with pytest.raises(InvalidPromotionError):
        repo.promote(model_id, other_run)

    draft = repo.create_model("draft", ["SPY"], "1d", "xgboost")
    with pytest.raises(InvalidPromotionError):
        repo.promote(draft.id, other_run)

    window_run = repo.start_run(other_id, purpose=RunPurpose.WALK_FORWARD, window_index=0)
    repo.complete_run(window_run, fake_result())
    with pytest.raises(InvalidPromotionError):
        repo.promote(other_id, window_run)

    failed_run = repo.start_run(other_id)
    repo.fail_run(failed_run, "ConvergenceFailure")
    with pytest.raises(InvalidPromotionError):
        repo.promote(other_id, failed_run)


def test_promote_requires_passing_walk_forward_when_configured():
    repo = ModelRepository(Database("sqlite://"),
                           promotion_policy=PromotionPolicy(min_test_accuracy=0.5,
                                                            require_walk_forward=True))
    model_id, run_id = validated_model(repo)

    with pytest.raises(InvalidPromotionError):
        repo.promote(model_id, run_id)

    repo.save_report(model_id, report_result([0.45, 0.47]))
    with pytest.raises(InvalidPromotionError):
        repo.promote(model_id, run_id)

    repo.save_report(model_id, report_result([0.58, 0.57]))
    assert repo.promote(model_id, run_id).status == ModelStatus.ACTIVE


def test_save_report_links_window_runs(repo):
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")
    run_ids = []
    for i in range(2):
        run_id = repo.start_run(model.id, purpose=RunPurpose.WALK_FORWARD, window_index=i)
        repo.complete_run(run_id, fake_result())
        run_ids.append(run_id)

    report_id = repo.save_report(model.id, report_result([0.6, 0.62], run_ids))

    report = repo.get_report(report_id)
    assert report.recommendation == 'GOOD'
    assert [w['training_run_id'] for w in report.windows] == run_ids
    assert all(repo.get_run(r).report_id == report_id for r in run_ids)
    assert repo.latest_report(model.id).id == report_id
    assert repo.latest_run(model.id) is None
    assert len(repo.list_runs(model.id, purpose=RunPurpose.WALK_FORWARD)) == 2


def test_lineage_and_descendants(repo):
    root = repo.create_model("root", ["SPY"], "1d", "xgboost", {'max_depth': 3, 'eta': 0.1})
    child = repo.create_child(root.id, "tuned", hyperparameters={'max_depth': 5})
    grandchild = repo.create_child(child.id)

    assert child.hyperparameters == {'max_depth': 5, 'eta': 0.1}
    assert child.lineage_type == "tuned"
    assert grandchild.name == f"{child.name}-retrained"
    assert [m.id for m in repo.lineage(grandchild.id)] == [child.id, root.id]
    assert [m.id for m in repo.descendants(root.id)] == [child.id, grandchild.id]
    assert repo.lineage(root.id) == []


def test_delete_cascades_and_orphans_children(repo):
    model_id, run_id = validated_model(repo)
    child = repo.create_child(model_id)
    repo.record_sample(model_id, 0.6, timestamp=T0)

    repo.delete_model(model_id)

    with pytest.raises(ModelNotFoundError):
        repo.get_model(model_id)
    with pytest.raises(ModelNotFoundError):
        repo.get_run(run_id)
    assert repo.get_model(child.id).parent_id is None
    assert repo.sample_count(model_id) == 0


def test_delete_refused_while_job_held(repo):
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")
    repo.acquire_job(model.id, "train-1")

    with pytest.raises(ConflictError):
        repo.delete_model(model.id)
    assert repo.get_model(model.id).active_job == "train-1"

    repo.release_job(model.id, "train-1")
    repo.delete_model(model.id)
    with pytest.raises(ModelNotFoundError):
        repo.get_model(model.id)


def test_record_sample_validates_accuracy(repo):
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")
    with pytest.raises(ValueError):
        repo.record_sample(model.id, 1.2)


def test_samples_pruned_relative_to_newest():
    repo = ModelRepository(Database("sqlite://"), drift_config=DriftConfig(retention_days=90))
    model = repo.create_model("a", ["SPY"], "1d", "xgboost")

    repo.record_sample(model.id, 0.6, timestamp=T0)
    repo.record_sample(model.id, 0.6, timestamp=T0 + timedelta(days=10))
    repo.record_sample(model.id, 0.6, timestamp=T0 + timedelta(days=100))

    history = repo.performance_history(model.id)
    assert len(history) == 2
    assert [h.timestamp.replace(tzinfo=None) for h in history] == [
        datetime(2024, 1, 11), datetime(2024, 4, 10)
    ]


def test_drift_transitions_are_persisted():
    alerts = []
    config = DriftConfig(window_size=5, degradation_threshold=0.05, recovery_samples=2,
                         min_samples=5, retention_days=90)
    repo = ModelRepository(Database("sqlite://"),
                           drift_monitor=DriftMonitor(config, sinks=[alerts.append]),
                           promotion_policy=PromotionPolicy(min_test_accuracy=0.0))
    model_id, run_id = validated_model(repo)
    repo.promote(model_id, run_id)

    samples = [repo.record_sample(model_id, 0.4, timestamp=T0 + timedelta(hours=i))
               for i in range(5)]
    assert samples[3].rolling_mean is None
    assert samples[4].alert
    model = repo.get_model(model_id)
    assert model.drift_detected
    assert model.drift_state == 'degraded'
    assert len(repo.list_models(drift_detected=True)) == 1

    for i in range(5, 11):
        repo.record_sample(model_id, 0.6, timestamp=T0 + timedelta(hours=i))

    events = repo.drift_events(model_id)
    assert [(e.from_state, e.to_state) for e in events] == [
        ('stable', 'degraded'), ('degraded', 'stable')
    ]
    assert events[0].degradation == pytest.approx((0.6 - 0.4) / 0.6)
    assert not repo.get_model(model_id).drift_detected
    assert [a.to_state.value for a in alerts] == ['degraded', 'stable']


def test_promote_resets_drift_state():
    config = DriftConfig(window_size=5, min_samples=5)
    repo = ModelRepository(Database("sqlite://"),
                           drift_monitor=DriftMonitor(config, sinks=[]),
                           promotion_policy=PromotionPolicy(min_test_accuracy=0.0))
    model_id, run_id = validated_model(repo)
    repo.promote(model_id, run_id)
    for i in range(5):
        repo.record_sample(model_id, 0.2, timestamp=T0 + timedelta(hours=i))
    assert repo.get_model(model_id).drift_detected

    model = repo.promote(model_id, run_id)
    assert not model.drift_detected
    assert model.drift_recovery_streak == 0


def test_identical_configuration_is_flagged_as_duplicate(repo):
    summary = {'n_rows': 100, 'checksum': 'cd' * 32}
    first = repo.create_model("a", ["SPY"], "1d", "xgboost", {'max_depth': 3})
    second = repo.create_model("b", ["SPY"], "1d", "xgboost", {'max_depth': 3})

    first_run = repo.start_run(first.id, dataset_summary=summary)
    # Only completed runs count as prior work
    pending = repo.start_run(second.id, dataset_summary=summary)
    assert repo.get_run(pending).duplicate_of_run_id is None

    repo.complete_run(first_run, fake_result())
    repeat = repo.get_run(repo.start_run(second.id, dataset_summary=summary))
    assert repeat.dataset_checksum == 'cd' * 32
    assert repeat.repro_hash == repo.get_run(first_run).repro_hash
    assert repeat.duplicate_of_run_id == first_run

    other_params = repo.get_run(repo.start_run(second.id, hyperparameters={'max_depth': 4},
                                               dataset_summary=summary))
    other_data = repo.get_run(repo.start_run(second.id,
                                             dataset_summary={'checksum': 'ef' * 32}))
    for run in (other_params, other_data):
        assert run.repro_hash != repeat.repro_hash
        assert run.duplicate_of_run_id is None

    # No checksum, no fingerprint
    assert repo.get_run(repo.start_run(second.id)).repro_hash is None


def test_compare_models_ranks_best_first(repo):
    weak, _ = validated_model(repo, test_accuracy=0.52)
    strong, _ = validated_model(repo, test_accuracy=0.61)
    untrained = repo.create_model("c", ["SPY"], "1d", "xgboost")

    ranking = repo.compare_models([weak, untrained.id, strong])
    assert [r['model_id'] for r in ranking] == [strong, weak, untrained.id]
    assert [r['rank'] for r in ranking] == [1, 2, 3]
    assert ranking[0]['value'] == pytest.approx(0.61)
    assert ranking[2]['value'] is None
    assert ranking[2]['run_id'] is None

    repo.save_report(weak, report_result([0.60, 0.62]))
    repo.save_report(strong, report_result([0.50, 0.70]))
    by_mean = repo.compare_models([strong, weak], metric='mean_accuracy')
    assert [r['model_id'] for r in by_mean] == [weak, strong]
    # Lower spread ranks first
    by_std = repo.compare_models([strong, weak], metric='std_accuracy')
    assert [r['model_id'] for r in by_std] == [weak, strong]

    with pytest.raises(ValueError):
        repo.compare_models([weak], metric='sharpe_ratio')
