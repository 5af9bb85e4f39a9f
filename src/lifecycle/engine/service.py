"""
Model Lifecycle Engine

Entry point used by the outer service layer:
- create / list / archive / delete models
- train and walk-forward validate in background jobs
- promote a completed run, then predict from its artifact
- ingest live outcomes for drift monitoring

Training and validation return Job handles immediately; pass wait=True to
block until the job finishes.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd

from ..analytics.drift_monitor import AlertSink, DriftMonitor, log_alert_sink
from ..analytics.feature_importance import PermutationImportanceAnalyzer
from ..data.sources import BarSource, clip_range
from ..exceptions import (
    ConvergenceFailure, DataQualityError, InsufficientDataError, InvalidPromotionError,
    LifecycleError, ModelNotReadyError, TrainingCancelled
)
from ..features.feature_builder import LabeledDataset, features_from_config
from ..features.splitter import DatasetSplit, WalkForwardWindow, WindowConfig, simple_split
from ..models import AlgorithmKind
from ..registry import (
    Database, DriftEventRecord, ImportanceRecord, ModelRecord, ModelRepository, ModelStatus,
    ReportRecord, RunPurpose, RunStatus, SampleRecord, TrainingRunRecord
)
from ..training.artifacts import ArtifactBundle, ArtifactStore
from ..training.trainer import Trainer, TrainingResult, summarize_dataset, summarize_split
from ..utils.config import CONFIG, DEFAULT_LABEL_HORIZON, DEFAULT_LOOKBACK, EngineConfig
from ..utils.helpers import assert_finite
from ..validation.walk_forward import WalkForwardValidator
from .jobs import Job, JobRunner

logger = logging.getLogger(__name__)

Bars = Union[pd.DataFrame, Mapping[str, pd.DataFrame]]

# Errors after which the model goes back to its prior status
RECOVERABLE_ERRORS = (ConvergenceFailure, DataQualityError, InsufficientDataError)


@dataclass
class ModelSpec:
    """What create_model needs to register a draft model."""
    name: str
    symbols: List[str]
    timeframe: str = "1d"
    algorithm: str = AlgorithmKind.XGBOOST.value
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    feature_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelOverview:
    """Model plus its latest metrics summary."""
    model: ModelRecord
    latest_run: Optional[TrainingRunRecord]
    latest_report: Optional[ReportRecord]
    sample_count: int

    @property
    def status(self) -> ModelStatus:
        return self.model.status

    @property
    def recommendation(self) -> Optional[str]:
        return self.latest_report.recommendation if self.latest_report else None

    def to_dict(self) -> Dict[str, Any]:
        run = self.latest_run
        return {
            **self.model.to_dict(),
            'latest_run': None if run is None else {
                'id': run.id,
                'status': run.status.value,
                'test_accuracy': run.test_accuracy,
                'validation_accuracy': run.validation_accuracy,
                'test_metrics': run.test_metrics,
                'duration_seconds': run.duration_seconds,
            },
            'latest_report': None if self.latest_report is None else {
                'id': self.latest_report.id,
                'recommendation': self.latest_report.recommendation,
                'mean_accuracy': self.latest_report.mean_accuracy,
            },
            'sample_count': self.sample_count,
        }


class _WindowRunRecorder:
    """Writes one walk_forward TrainingRun per validation window."""

    def __init__(self, repository: ModelRepository, model: ModelRecord):
        self.repository = repository
        self.model = model

    def start(self, window: WalkForwardWindow, split: DatasetSplit) -> int:
        return self.repository.start_run(
            self.model.id, RunPurpose.WALK_FORWARD, self.model.hyperparameters,
            dataset_summary=summarize_split(split), boundaries=split.boundaries,
            window_index=window.index,
        )

    def complete(self, run_id: int, result: TrainingResult):
        self.repository.complete_run(run_id, result)

    def fail(self, run_id: int, error: Exception):
        if isinstance(error, TrainingCancelled):
            self.repository.cancel_run(run_id, error.loss_trace)
        else:
            self.repository.fail_run(run_id, f"{type(error).__name__}: {error}")


class ModelLifecycleEngine:
    """
    Trains, validates, promotes and monitors financial time-series models.

    Usage:
        engine = ModelLifecycleEngine(bar_source=InMemoryBarSource(...))
        model_id = engine.create_model({'name': 'spy-xgb', 'symbols': ['SPY']})
        run_id = engine.train_model(model_id, wait=True).result()
        engine.promote(model_id, run_id)
        print(engine.predict(model_id, recent_bars))
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 bar_source: Optional[BarSource] = None,
                 alert_sinks: Optional[List[AlertSink]] = None,
                 database: Optional[Database] = None):
        self.config = config or CONFIG
        self.bar_source = bar_source

        self.db = database or Database(self.config.database_url)
        self.artifacts = ArtifactStore(self.config.artifacts_dir)
        self.drift_monitor = DriftMonitor(self.config.drift,
                                          sinks=[log_alert_sink, *(alert_sinks or [])])
        self.repository = ModelRepository(
            self.db,
            artifact_store=self.artifacts,
            drift_monitor=self.drift_monitor,
            promotion_policy=self.config.promotion,
            recommendation_policy=self.config.recommendation,
        )

        self.trainer = Trainer(
            PermutationImportanceAnalyzer(seed=self.config.importance_seed,
                                          n_repeats=self.config.importance_repeats),
            compute_importance=True,
            min_confidence=self.config.min_confidence,
        )
        self.validator = WalkForwardValidator(
            Trainer(compute_importance=False, min_confidence=self.config.min_confidence),
            policy=self.config.recommendation,
            validation_fraction=self.config.walk_forward.validation_fraction,
            show_progress=self.config.show_progress,
        )

        self.jobs = JobRunner(max_workers=self.config.max_workers, history=self.config.job_history)
        # One worker keeps deferred samples FIFO per model
        self._drift_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lifecycle-drift")
        self._artifact_cache: "OrderedDict[str, ArtifactBundle]" = OrderedDict()
        self._cache_lock = threading.Lock()
        # Held from the open check through job submission so shutdown cannot interleave
        self._submit_lock = threading.Lock()
        self._closed = False

        logger.info(f"ModelLifecycleEngine initialized (db={self.db.engine.url.drivername}, "
                    f"artifacts={self.config.artifacts_dir})")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def create_model(self, spec: Union[ModelSpec, Dict[str, Any]]) -> int:
        """Register a draft model; returns its id."""
        if not isinstance(spec, ModelSpec):
            spec = ModelSpec(**spec)
        algorithm = AlgorithmKind(spec.algorithm)
        feature_config = {'lookback': DEFAULT_LOOKBACK, 'horizon': DEFAULT_LABEL_HORIZON,
                          **spec.feature_config}
        # Rejects indicator windows that need more history than the lookback
        features_from_config(feature_config)

        model = self.repository.create_model(
            name=spec.name,
            symbols=list(spec.symbols),
            timeframe=spec.timeframe,
            algorithm=algorithm.value,
            hyperparameters=spec.hyperparameters,
            feature_config=feature_config,
        )
        return model.id

    def list_models(self, **filters) -> List[ModelRecord]:
        """Filters: status, symbol, algorithm, parent_id, drift_detected."""
        return self.repository.list_models(**filters)

    def get_model_status(self, model_id: int) -> ModelOverview:
        model = self.repository.get_model(model_id)
        return ModelOverview(
            model=model,
            latest_run=self.repository.latest_run(model_id, purpose=RunPurpose.HOLDOUT),
            latest_report=self.repository.latest_report(model_id),
            sample_count=self.repository.sample_count(model_id),
        )

    def archive(self, model_id: int) -> ModelRecord:
        return self.repository.archive(model_id)

    def delete_model(self, model_id: int) -> int:
        """Raises ConflictError while a job holds the model."""
        return self.repository.delete_model(model_id)

    def lineage(self, model_id: int) -> List[ModelRecord]:
        return self.repository.lineage(model_id)

    def descendants(self, model_id: int) -> List[ModelRecord]:
        return self.repository.descendants(model_id)

    def compare_models(self, model_ids: List[int], metric: str = 'test_accuracy') -> List[Dict[str, Any]]:
        """Rank models best first by a holdout-run or walk-forward metric."""
        return self.repository.compare_models(model_ids, metric)

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _resolve_bars(self, model: ModelRecord, start, end,
                      bars: Optional[Bars]) -> Dict[str, pd.DataFrame]:
        if bars is None:
            if self.bar_source is None:
                raise ValueError("No bars given and no bar source configured")
            return {symbol: self.bar_source.load_bars(symbol, model.timeframe, start, end)
                    for symbol in model.symbols}

        if isinstance(bars, pd.DataFrame):
            if len(model.symbols) != 1:
                raise ValueError(f"Model {model.id} has {len(model.symbols)} symbols; "
                                 f"pass bars as a {{symbol: frame}} mapping")
            bars = {model.symbols[0]: bars}

        missing = [s for s in model.symbols if s not in bars]
        if missing:
            raise InsufficientDataError(f"No bars given for {missing}")
        return {symbol: clip_range(bars[symbol], start, end) for symbol in model.symbols}

    @staticmethod
    def _purge_rows(model: ModelRecord) -> int:
        """Rows whose labels reach past a partition end; pooled rows interleave symbols."""
        horizon = model.feature_config.get('horizon', DEFAULT_LABEL_HORIZON)
        return horizon * len(model.symbols)

    def load_dataset(self, model: ModelRecord, start=None, end=None,
                     bars: Optional[Bars] = None) -> LabeledDataset:
        """Features and labels for a model's symbols over [start, end]."""
        builder = features_from_config(model.feature_config)
        horizon = model.feature_config.get('horizon', DEFAULT_LABEL_HORIZON)
        dataset = builder.build_pooled_dataset(self._resolve_bars(model, start, end, bars), horizon)
        logger.info(f"Dataset for model {model.id}: {len(dataset)} rows, "
                    f"{len(dataset.feature_names)} features")
        return dataset

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _ensure_open(self):
        if self._closed:
            raise RuntimeError("Engine has been shut down")

    def _claim(self, model_id: int, kind: str) -> str:
        job_id = JobRunner.new_job_id(kind)
        self.repository.acquire_job(model_id, job_id)
        return job_id

    def train_model(self, model_id: int, start=None, end=None,
                    bars: Optional[Bars] = None, wait: bool = False) -> Job:
        """
        Train a draft model on a holdout split in the background.

        The job's result is the TrainingRun id; ``job.run_id`` is set as soon
        as the run row exists.

        Raises:
            ConflictError: another job holds the model
            InvalidStatusTransitionError: the model is not a draft
        """
        with self._submit_lock:
            self._ensure_open()
            model = self.repository.get_model(model_id)
            job_id = self._claim(model_id, "train")
            try:
                prior = self.repository.begin_training(model_id)
            except LifecycleError:
                self.repository.release_job(model_id, job_id)
                raise

            try:
                job = self.jobs.submit("train", model_id,
                                       lambda j: self._run_training(j, model, prior, start, end, bars),
                                       job_id=job_id)
            except RuntimeError:
                self.repository.update_status(model_id, prior)
                self.repository.release_job(model_id, job_id)
                raise
        if wait:
            job.result()
        return job

    def _run_training(self, job: Job, model: ModelRecord, prior: ModelStatus,
                      start, end, bars) -> int:
        run_id = None
        try:
            dataset = self.load_dataset(model, start, end, bars)
            split = simple_split(dataset, self.config.split_ratios, purge=self._purge_rows(model))
            self.trainer.check_data_quality(split)

            run_id = self.repository.start_run(
                model.id, RunPurpose.HOLDOUT, model.hyperparameters,
                dataset_summary=summarize_dataset(dataset), boundaries=split.boundaries,
            )
            job.run_id = run_id

            result = self.trainer.train(
                split, model.hyperparameters, model.algorithm,
                cancel_token=job.cancel_token,
                feature_config=model.feature_config,
                model_key=model.id,
            )
            checksum, size = self.artifacts.put(result.artifact)
            self.repository.complete_run(run_id, result, checksum, size)
            self.repository.update_status(model.id, ModelStatus.VALIDATED)
            return run_id

        except TrainingCancelled as e:
            if run_id is not None:
                self.repository.cancel_run(run_id, e.loss_trace)
            self.repository.update_status(model.id, ModelStatus.FAILED)
            logger.warning(f"Training job {job.id} cancelled; model {model.id} failed")
            raise

        except RECOVERABLE_ERRORS as e:
            if run_id is not None:
                self.repository.fail_run(run_id, f"{type(e).__name__}: {e}")
            self.repository.update_status(model.id, prior)
            logger.error(f"Training job {job.id} failed: {e}; model {model.id} back to {prior.value}")
            raise

        except Exception as e:
            logger.exception(f"Training job {job.id} crashed")
            if run_id is not None:
                self.repository.fail_run(run_id, f"{type(e).__name__}: {e}")
            self.repository.update_status(model.id, ModelStatus.FAILED)
            raise

        finally:
            self.repository.release_job(model.id, job.id)

    def retrain_model(self, model_id: int, start=None, end=None,
                      bars: Optional[Bars] = None, wait: bool = False,
                      lineage_type: str = "retrained",
                      hyperparameters: Optional[Dict[str, Any]] = None,
                      feature_config: Optional[Dict[str, Any]] = None) -> Job:
        """Create a child of `model_id` and train it; ``job.model_id`` is the child."""
        child = self.repository.create_child(model_id, lineage_type=lineage_type,
                                             hyperparameters=hyperparameters,
                                             feature_config=feature_config)
        return self.train_model(child.id, start, end, bars=bars, wait=wait)

    # ------------------------------------------------------------------
    # Walk-forward validation
    # ------------------------------------------------------------------

    def _window_config(self, window_config) -> WindowConfig:
        if isinstance(window_config, WindowConfig):
            return window_config
        defaults = self.config.walk_forward
        base = {
            'initial_train_fraction': defaults.initial_train_fraction,
            'test_fraction': defaults.test_fraction,
            'step_fraction': defaults.step_fraction,
            'window_type': defaults.window_type,
            'min_train_samples': defaults.min_train_samples,
        }
        return WindowConfig(**{**base, **(window_config or {})})

    def validate_model(self, model_id: int,
                       window_config: Optional[Union[WindowConfig, Dict[str, Any]]] = None,
                       start=None, end=None, bars: Optional[Bars] = None,
                       wait: bool = False) -> Job:
        """
        Walk-forward validate a model's configuration in the background.

        The job's result is the WalkForwardReport id. The model's status is
        not changed; a cancelled job stores no report.
        """
        window_config = self._window_config(window_config)
        with self._submit_lock:
            self._ensure_open()
            job_id = self._claim(model_id, "validate")
            try:
                model = self.repository.get_model(model_id)
                if model.status not in (ModelStatus.DRAFT, ModelStatus.VALIDATED, ModelStatus.ACTIVE):
                    raise ModelNotReadyError(f"Model {model_id} is {model.status.value} and cannot be validated")
                job = self.jobs.submit("validate", model_id,
                                       lambda j: self._run_validation(j, model, window_config, start, end, bars),
                                       job_id=job_id)
            except (LifecycleError, RuntimeError):
                self.repository.release_job(model_id, job_id)
                raise
        if wait:
            job.result()
        return job

    def _run_validation(self, job: Job, model: ModelRecord, window_config: WindowConfig,
                        start, end, bars) -> int:
        try:
            dataset = self.load_dataset(model, start, end, bars)
            result = self.validator.validate(
                dataset, model.hyperparameters, window_config, model.algorithm,
                cancel_token=job.cancel_token,
                recorder=_WindowRunRecorder(self.repository, model),
                feature_config=model.feature_config,
                purge=self._purge_rows(model),
            )
            return self.repository.save_report(model.id, result)

        except TrainingCancelled:
            logger.warning(f"Validation job {job.id} cancelled; no report stored")
            raise
        except LifecycleError as e:
            logger.error(f"Validation job {job.id} failed: {e}")
            raise
        except Exception:
            logger.exception(f"Validation job {job.id} crashed")
            raise
        finally:
            self.repository.release_job(model.id, job.id)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def get_report(self, report_id: int) -> ReportRecord:
        return self.repository.get_report(report_id)

    # ------------------------------------------------------------------
    # Promotion and prediction
    # ------------------------------------------------------------------

    def promote(self, model_id: int, run_id: Optional[int] = None) -> ModelRecord:
        """Activate a run's artifact; defaults to the latest completed holdout run."""
        if run_id is None:
            run = self.repository.latest_run(model_id, purpose=RunPurpose.HOLDOUT,
                                             status=RunStatus.COMPLETED)
            if run is None:
                raise InvalidPromotionError(f"Model {model_id} has no completed training run")
            run_id = run.id
        return self.repository.promote(model_id, run_id)

    def _load_artifact(self, checksum: str) -> ArtifactBundle:
        with self._cache_lock:
            if checksum in self._artifact_cache:
                self._artifact_cache.move_to_end(checksum)
                return self._artifact_cache[checksum]
            bundle = self.artifacts.get(checksum)
            self._artifact_cache[checksum] = bundle
            while len(self._artifact_cache) > self.config.artifact_cache_size:
                self._artifact_cache.popitem(last=False)
            return bundle

    def predict(self, model_id: int, recent_bars: pd.DataFrame) -> Dict[str, Any]:
        """
        Signal for the bar after the most recent one.

        Returns:
            {action, signal, confidence, prob_up, model_id, run_id, timestamp}

        Raises:
            ModelNotReadyError: the model is not active
        """
        model = self.repository.get_model(model_id)
        if model.status != ModelStatus.ACTIVE or model.active_run_id is None:
            raise ModelNotReadyError(f"Model {model_id} is {model.status.value}, not active")

        run = self.repository.get_run(model.active_run_id)
        artifact = self._load_artifact(run.artifact_checksum)
        builder = features_from_config(artifact.feature_config or model.feature_config)
        x_row = builder.latest_vector(recent_bars)
        assert_finite(x_row, stage="prediction features")

        signal = artifact.get_signal(x_row, min_confidence=self.config.min_confidence)
        return {
            'model_id': model_id,
            'run_id': run.id,
            'timestamp': str(x_row.index[-1]),
            'action': signal.action,
            'signal': signal.signal,
            'confidence': signal.confidence,
            'prob_up': signal.prob_up,
        }

    def feature_importance(self, run_id: int) -> List[ImportanceRecord]:
        return self.repository.feature_importances(run_id)

    # ------------------------------------------------------------------
    # Live monitoring
    # ------------------------------------------------------------------

    def record_live_outcome(self, model_id: int, accuracy: float,
                            timestamp: Optional[datetime] = None,
                            error: Optional[float] = None,
                            n_predictions: Optional[int] = None,
                            deferred: bool = False) -> Union[SampleRecord, Future]:
        """
        Append a realized-accuracy sample and evaluate drift.

        With deferred=True the sample is queued and a Future is returned;
        queued samples are applied in submission order.
        """
        if deferred:
            return self._drift_executor.submit(
                self.repository.record_sample, model_id, accuracy, timestamp, error, n_predictions
            )
        return self.repository.record_sample(model_id, accuracy, timestamp, error, n_predictions)

    def add_alert_sink(self, sink: AlertSink):
        self.drift_monitor.add_sink(sink)

    def performance_history(self, model_id: int, limit: Optional[int] = None) -> List[SampleRecord]:
        return self.repository.performance_history(model_id, limit)

    def drift_events(self, model_id: int) -> List[DriftEventRecord]:
        return self.repository.drift_events(model_id)

    # ------------------------------------------------------------------

    def shutdown(self, wait: bool = True, cancel_running: bool = False):
        """Stop accepting jobs, drain the pools and release the database."""
        with self._submit_lock:
            if self._closed:
                return
            self._closed = True
        self.jobs.shutdown(wait=wait, cancel_running=cancel_running)
        self._drift_executor.shutdown(wait=wait)
        self.db.dispose()
        logger.info("ModelLifecycleEngine shut down")
