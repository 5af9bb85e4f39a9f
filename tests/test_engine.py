"""End-to-end tests for ModelLifecycleEngine."""

import threading

import pytest
import numpy as np
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from lifecycle import ModelLifecycleEngine, ModelSpec
from lifecycle.data import BarSource, InMemoryBarSource, clip_range
from lifecycle.exceptions import (
    ConflictError, InsufficientDataError, InvalidPromotionError, InvalidStatusTransitionError,
    ModelNotReadyError, TrainingCancelled
)
from lifecycle.registry import ModelStatus, RunPurpose, RunStatus

from conftest import make_bars

FAST_PARAMS = {'n_estimators': 20, 'max_depth': 2}
WINDOWS = {'initial_train_fraction': 0.5, 'test_fraction': 0.1, 'step_fraction': 0.1}


class BlockingBarSource(BarSource):
    """Holds load_bars until released so a job stays in flight."""

    def __init__(self, bars):
        self.bars = bars
        self.entered = threading.Event()
        self.release = threading.Event()

    def load_bars(self, symbol, timeframe, start=None, end=None):
        self.entered.set()
        self.release.wait(timeout=30)
        return clip_range(self.bars, start, end)


def create(engine, **overrides):
    spec = {'name': 'spy-xgb', 'symbols': ['SPY'], 'hyperparameters': FAST_PARAMS, **overrides}
    return engine.create_model(spec)


def test_create_model_fills_feature_defaults(engine):
    model_id = engine.create_model(ModelSpec(name='spy', symbols=['SPY'], algorithm='linear'))

    overview = engine.get_model_status(model_id)
    assert overview.status == ModelStatus.DRAFT
    assert overview.model.feature_config == {'lookback': 20, 'horizon': 1}
    assert overview.latest_run is None
    assert overview.recommendation is None
    assert overview.to_dict()['sample_count'] == 0

    with pytest.raises(ValueError):
        create(engine, algorithm='svm')
    with pytest.raises(ValueError):
        create(engine, feature_config={'lookback': 5})


def test_train_promote_predict(engine, bars):
    model_id = create(engine)

    job = engine.train_model(model_id, bars=bars, wait=True)
    run_id = job.result()

    assert job.status == "completed"
    assert engine.get_job(job.id) is job
    assert job.run_id == run_id
    overview = engine.get_model_status(model_id)
    assert overview.status == ModelStatus.VALIDATED
    assert overview.latest_run.status == RunStatus.COMPLETED
    assert overview.latest_run.n_samples == 480
    assert overview.model.active_job is None

    model = engine.promote(model_id)
    assert model.status == ModelStatus.ACTIVE
    assert model.active_run_id == run_id
    assert model.baseline_accuracy == overview.latest_run.validation_accuracy

    prediction = engine.predict(model_id, bars.iloc[-60:])
    assert prediction['run_id'] == run_id
    assert prediction['timestamp'] == str(bars.index[-1])
    assert prediction['action'] in ('BUY', 'SELL', 'HOLD')
    assert 0.0 <= prediction['prob_up'] <= 1.0
    assert prediction['confidence'] == pytest.approx(2 * abs(prediction['prob_up'] - 0.5))

    importances = engine.feature_importance(run_id)
    assert [i.rank for i in importances] == list(range(1, 24))


def test_predict_requires_active_model(engine, bars):
    model_id = create(engine)
    with pytest.raises(ModelNotReadyError):
        engine.predict(model_id, bars)

    engine.train_model(model_id, bars=bars, wait=True)
    with pytest.raises(ModelNotReadyError):
        engine.predict(model_id, bars)


def test_only_draft_models_train(engine, bars):
    model_id = create(engine)
    engine.train_model(model_id, bars=bars, wait=True)

    with pytest.raises(InvalidStatusTransitionError):
        engine.train_model(model_id, bars=bars)
    # The failed claim released the job marker
    assert engine.get_model_status(model_id).model.active_job is None


def test_insufficient_data_reverts_to_draft(engine, bars):
    model_id = create(engine)

    with pytest.raises(InsufficientDataError):
        engine.train_model(model_id, bars=bars.iloc[:15], wait=True)

    overview = engine.get_model_status(model_id)
    assert overview.status == ModelStatus.DRAFT
    assert overview.model.active_job is None

    # A later attempt with enough history succeeds
    engine.train_model(model_id, bars=bars, wait=True)
    assert engine.get_model_status(model_id).status == ModelStatus.VALIDATED


def test_concurrent_jobs_conflict_and_cancel(engine_config, bars):
    source = BlockingBarSource(bars)
    engine = ModelLifecycleEngine(engine_config, bar_source=source)
    try:
        model_id = create(engine)
        job = engine.train_model(model_id)
        assert source.entered.wait(timeout=10)

        with pytest.raises(ConflictError):
            engine.train_model(model_id)
        with pytest.raises(ConflictError):
            engine.validate_model(model_id)
        with pytest.raises(ConflictError):
            engine.delete_model(model_id)

        job.cancel()
        source.release.set()

        with pytest.raises(TrainingCancelled):
            job.result(timeout=60)
        assert job.status == "cancelled"

        model = engine.get_model_status(model_id).model
        assert model.status == ModelStatus.FAILED
        assert model.active_job is None
        run = engine.repository.get_run(job.run_id)
        assert run.status == RunStatus.CANCELLED
    finally:
        source.release.set()
        engine.shutdown(cancel_running=True)


def test_cancelled_validation_stores_no_report(engine_config, bars):
    source = BlockingBarSource(bars)
    engine = ModelLifecycleEngine(engine_config, bar_source=source)
    try:
        model_id = create(engine)
        job = engine.validate_model(model_id, WINDOWS)
        assert source.entered.wait(timeout=10)

        job.cancel()
        source.release.set()

        with pytest.raises(TrainingCancelled):
            job.result(timeout=60)
        overview = engine.get_model_status(model_id)
        assert overview.latest_report is None
        assert overview.status == ModelStatus.DRAFT
        assert overview.model.active_job is None
    finally:
        source.release.set()
        engine.shutdown(cancel_running=True)


def test_walk_forward_end_to_end(engine, bars):
    model_id = create(engine)

    report_id = engine.validate_model(model_id, WINDOWS, bars=bars, wait=True).result()

    report = engine.get_report(report_id)
    assert len(report.windows) == 5
    assert [w['train_end'] for w in report.windows] == [240, 288, 336, 384, 432]
    assert report.recommendation in ('GOOD', 'ACCEPTABLE', 'MARGINAL', 'POOR')
    assert report.aggregate['total_windows'] == 5
    for w in report.windows:
        assert w['train_range'][1] < w['test_range'][0]

    runs = engine.repository.list_runs(model_id, purpose=RunPurpose.WALK_FORWARD)
    assert [r.window_index for r in runs] == [0, 1, 2, 3, 4]
    assert all(r.report_id == report_id for r in runs)
    assert all(r.artifact_checksum is None for r in runs)

    # Validation leaves status alone and its runs cannot be promoted
    assert engine.get_model_status(model_id).status == ModelStatus.DRAFT
    assert engine.get_model_status(model_id).recommendation == report.recommendation
    with pytest.raises(InvalidPromotionError):
        engine.promote(model_id, runs[0].id)


def test_validate_rejects_terminal_models(engine):
    model_id = create(engine)
    engine.archive(model_id)

    with pytest.raises(ModelNotReadyError):
        engine.validate_model(model_id, WINDOWS)


def test_bar_source_and_date_range(engine_config, bars):
    source = InMemoryBarSource()
    source.add('SPY', '1d', bars)
    with ModelLifecycleEngine(engine_config, bar_source=source) as engine:
        model_id = create(engine)
        run_id = engine.train_model(model_id, start=bars.index[100], wait=True).result()

        run = engine.repository.get_run(run_id)
        assert run.n_samples == 500 - 100 - 19 - 1
        assert run.dataset_start.startswith(str(bars.index[119].date()))


def test_retrain_creates_child(engine, bars):
    parent_id = create(engine)
    engine.train_model(parent_id, bars=bars, wait=True)

    job = engine.retrain_model(parent_id, bars=bars, wait=True,
                               hyperparameters={'max_depth': 3})

    child = engine.get_model_status(job.model_id).model
    assert child.parent_id == parent_id
    assert child.lineage_type == 'retrained'
    assert child.status == ModelStatus.VALIDATED
    assert child.hyperparameters == {**FAST_PARAMS, 'max_depth': 3}
    assert [m.id for m in engine.lineage(child.id)] == [parent_id]
    assert [m.id for m in engine.descendants(parent_id)] == [child.id]
    # Parent untouched
    assert engine.get_model_status(parent_id).status == ModelStatus.VALIDATED


def test_pooled_multi_symbol_training(engine):
    bars = {'AAA': make_bars(300, seed=1), 'BBB': make_bars(300, seed=2)}
    model_id = create(engine, symbols=['AAA', 'BBB'])

    run_id = engine.train_model(model_id, bars=bars, wait=True).result()
    assert engine.repository.get_run(run_id).n_samples == 2 * (300 - 19 - 1)

    other = create(engine, symbols=['AAA', 'BBB'])
    with pytest.raises(ValueError):
        engine.train_model(other, bars=bars['AAA'], wait=True)


def test_live_outcomes_raise_drift_alert(engine, bars):
    alerts = []
    engine.add_alert_sink(alerts.append)
    model_id = create(engine)
    engine.train_model(model_id, bars=bars, wait=True)
    engine.promote(model_id)

    for _ in range(5):
        engine.record_live_outcome(model_id, 0.0, n_predictions=10)

    model = engine.get_model_status(model_id).model
    assert model.drift_detected
    assert len(alerts) == 1
    assert alerts[0].model_id == model_id
    assert [(e.from_state, e.to_state) for e in engine.drift_events(model_id)] == [
        ('stable', 'degraded')
    ]
    assert len(engine.list_models(drift_detected=True)) == 1


def test_deferred_outcomes_apply_in_order(engine):
    model_id = create(engine)
    futures = [engine.record_live_outcome(model_id, acc, deferred=True)
               for acc in (0.5, 0.6, 0.7)]

    samples = [f.result(timeout=10) for f in futures]
    assert [s.id for s in samples] == sorted(s.id for s in samples)
    assert [s.accuracy for s in engine.performance_history(model_id)] == [0.5, 0.6, 0.7]
    assert [s.accuracy for s in engine.performance_history(model_id, limit=2)] == [0.6, 0.7]


def test_delete_model_removes_artifacts(engine, bars):
    model_id = create(engine)
    run_id = engine.train_model(model_id, bars=bars, wait=True).result()
    checksum = engine.repository.get_run(run_id).artifact_checksum
    assert engine.artifacts.exists(checksum)

    assert engine.delete_model(model_id) == 1
    assert not engine.artifacts.exists(checksum)
    assert engine.list_models() == []


def test_shutdown_rejects_new_jobs(engine_config, bars):
    engine = ModelLifecycleEngine(engine_config)
    model_id = create(engine)
    engine.shutdown()

    with pytest.raises(RuntimeError):
        engine.train_model(model_id, bars=bars)


def test_rejected_submit_releases_model(engine, bars):
    model_id = create(engine)
    # Pool stopped underneath the engine: submit itself fails
    engine.jobs.shutdown()

    with pytest.raises(RuntimeError):
        engine.train_model(model_id, bars=bars)
    model = engine.get_model_status(model_id).model
    assert model.status == ModelStatus.DRAFT
    assert model.active_job is None

    with pytest.raises(RuntimeError):
        engine.validate_model(model_id, WINDOWS, bars=bars)
    assert engine.get_model_status(model_id).model.active_job is None

    # Still deletable afterwards
    assert engine.delete_model(model_id) == 0


def test_finished_jobs_are_pruned(engine_config, bars):
    engine_config.job_history = 1
    engine = ModelLifecycleEngine(engine_config)
    try:
        first = create(engine, name='first')
        second = create(engine, name='second')
        third = create(engine, name='third')
        job_a = engine.train_model(first, bars=bars, wait=True)
        job_b = engine.train_model(second, bars=bars, wait=True)
        assert engine.get_job(job_a.id) is job_a

        job_c = engine.train_model(third, bars=bars, wait=True)
        assert engine.get_job(job_a.id) is None
        assert engine.get_job(job_b.id) is job_b
        assert engine.get_job(job_c.id) is job_c
    finally:
        engine.shutdown(cancel_running=True)


def test_artifact_cache_is_bounded(engine_config, bars):
    engine_config.artifact_cache_size = 1
    engine = ModelLifecycleEngine(engine_config)
    try:
        first = create(engine, name='first')
        second = create(engine, name='second', hyperparameters={'n_estimators': 10, 'max_depth': 2})
        for model_id in (first, second):
            engine.train_model(model_id, bars=bars, wait=True)
            engine.promote(model_id)
            engine.predict(model_id, bars.tail(100))
        assert len(engine._artifact_cache) == 1

        # Evicted artifacts load again on demand
        assert engine.predict(first, bars.tail(100))['model_id'] == first
        assert len(engine._artifact_cache) == 1
    finally:
        engine.shutdown(cancel_running=True)


def test_holdout_runs_are_purged_and_fingerprinted(engine, bars):
    first = create(engine, name='first')
    second = create(engine, name='second')

    run_a = engine.repository.get_run(engine.train_model(first, bars=bars, wait=True).result())
    # 480 rows at (0.7, 0.15, 0.15); one-bar labels purge one row per boundary
    assert run_a.boundaries['purged_rows'] == 1
    assert run_a.boundaries['train']['end'] == 335
    assert run_a.boundaries['validation']['start'] == 336
    assert run_a.boundaries['validation']['end'] == 407
    assert run_a.boundaries['test']['start'] == 408
    assert len(run_a.dataset_checksum) == 64
    assert run_a.duplicate_of_run_id is None

    run_b = engine.repository.get_run(engine.train_model(second, bars=bars, wait=True).result())
    assert run_b.repro_hash == run_a.repro_hash
    assert run_b.duplicate_of_run_id == run_a.id

    # Different bars, different fingerprint
    third = create(engine, name='third')
    run_c = engine.repository.get_run(
        engine.train_model(third, bars=make_bars(500, seed=7), wait=True).result()
    )
    assert run_c.dataset_checksum != run_a.dataset_checksum
    assert run_c.duplicate_of_run_id is None

    ranking = engine.compare_models([first, second, third])
    assert {r['model_id'] for r in ranking} == {first, second, third}
    values = [r['value'] for r in ranking]
    assert values == sorted(values, reverse=True)
