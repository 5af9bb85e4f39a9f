"""
Model Registry

System of record for models, training runs, walk-forward reports,
feature importances, live performance samples and drift transitions.

Every public call runs in its own short transaction behind a re-entrant
lock. Single-writer-per-model is enforced with compare-and-swap updates on
the model row, never by reading and then writing.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..analytics.drift_monitor import DriftMonitor, DriftState
from ..analytics.feature_importance import FeatureImportance
from ..exceptions import (
    ConflictError, InvalidPromotionError, InvalidStatusTransitionError, ModelNotFoundError
)
from ..training.artifacts import ArtifactStore
from ..training.trainer import TrainingResult
from ..utils.config import DriftConfig, PromotionPolicy, RecommendationPolicy
from ..utils.helpers import reproducibility_hash
from ..validation.walk_forward import WalkForwardResult
from .records import (
    DriftEventRecord, ImportanceRecord, ModelRecord, ReportRecord, SampleRecord,
    TrainingRunRecord
)
from .schema import (
    DriftEventRow, FeatureImportanceRow, ModelRow, ModelStatus, PerformanceSampleRow,
    RunPurpose, RunStatus, TrainingRunRow, WalkForwardReportRow, can_transition, utcnow
)
from .session import Database

logger = logging.getLogger(__name__)

RUN_METRICS = ('test_accuracy', 'validation_accuracy', 'precision', 'recall', 'f1')
REPORT_METRICS = ('mean_accuracy', 'std_accuracy', 'min_accuracy', 'max_accuracy',
                  'consistency_score', 'mean_precision', 'mean_recall', 'mean_f1')
LOWER_IS_BETTER = {'std_accuracy'}


def _as_utc(ts: Optional[datetime]) -> datetime:
    if ts is None:
        return utcnow()
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _to_str(value) -> Optional[str]:
    return None if value is None else str(value)


class ModelRepository:
    """
    CRUD and lifecycle transitions over the registry tables.

    Usage:
        repo = ModelRepository(Database("sqlite://"))
        model = repo.create_model("spy-xgb", ["SPY"], "1d", "xgboost")
        child = repo.create_child(model.id, lineage_type="tuned")
    """

    def __init__(self, database: Database,
                 artifact_store: Optional[ArtifactStore] = None,
                 drift_monitor: Optional[DriftMonitor] = None,
                 promotion_policy: Optional[PromotionPolicy] = None,
                 recommendation_policy: Optional[RecommendationPolicy] = None,
                 drift_config: Optional[DriftConfig] = None):
        self.db = database
        self.db.create_all()
        self.artifact_store = artifact_store
        self.drift_config = drift_config or (drift_monitor.config if drift_monitor else DriftConfig())
        self.drift_monitor = drift_monitor or DriftMonitor(self.drift_config)
        self.promotion_policy = promotion_policy or PromotionPolicy()
        self.recommendation_policy = recommendation_policy or RecommendationPolicy()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def _model_row(self, session: Session, model_id: int) -> ModelRow:
        row = session.get(ModelRow, model_id)
        if row is None:
            raise ModelNotFoundError(f"Model {model_id} not found")
        return row

    def _run_row(self, session: Session, run_id: int) -> TrainingRunRow:
        row = session.get(TrainingRunRow, run_id)
        if row is None:
            raise ModelNotFoundError(f"Training run {run_id} not found")
        return row

    def create_model(self, name: str, symbols: Sequence[str], timeframe: str,
                     algorithm: str, hyperparameters: Optional[Dict[str, Any]] = None,
                     feature_config: Optional[Dict[str, Any]] = None,
                     parent_id: Optional[int] = None,
                     lineage_type: Optional[str] = None) -> ModelRecord:
        """Insert a model in draft status."""
        if not symbols:
            raise ValueError("A model needs at least one symbol")

        with self._lock, self.db.session_scope() as session:
            if parent_id is not None:
                self._model_row(session, parent_id)
            row = ModelRow(
                name=name,
                symbols=list(symbols),
                timeframe=timeframe,
                algorithm=str(getattr(algorithm, 'value', algorithm)),
                status=ModelStatus.DRAFT.value,
                hyperparameters=dict(hyperparameters or {}),
                feature_config=dict(feature_config or {}),
                parent_id=parent_id,
                lineage_type=lineage_type,
            )
            session.add(row)
            session.flush()
            logger.info(f"Model {row.id} created: {name} {list(symbols)} {timeframe} {row.algorithm}")
            return ModelRecord.from_row(row)

    def get_model(self, model_id: int) -> ModelRecord:
        with self._lock, self.db.session_scope() as session:
            return ModelRecord.from_row(self._model_row(session, model_id))

    def list_models(self, status: Optional[Union[str, ModelStatus]] = None,
                    symbol: Optional[str] = None,
                    algorithm: Optional[str] = None,
                    parent_id: Optional[int] = None,
                    drift_detected: Optional[bool] = None) -> List[ModelRecord]:
        """Models matching every given filter, oldest first."""
        stmt = select(ModelRow).order_by(ModelRow.id)
        if status is not None:
            stmt = stmt.where(ModelRow.status == ModelStatus(status).value)
        if algorithm is not None:
            stmt = stmt.where(ModelRow.algorithm == str(getattr(algorithm, 'value', algorithm)))
        if parent_id is not None:
            stmt = stmt.where(ModelRow.parent_id == parent_id)
        if drift_detected is not None:
            stmt = stmt.where(ModelRow.drift_detected == drift_detected)

        with self._lock, self.db.session_scope() as session:
            records = [ModelRecord.from_row(row) for row in session.scalars(stmt)]

        # JSON list membership is dialect-specific; filter in Python
        if symbol is not None:
            records = [r for r in records if symbol in r.symbols]
        return records

    def update_status(self, model_id: int, status: Union[str, ModelStatus],
                      expected: Optional[Union[str, ModelStatus]] = None) -> ModelRecord:
        """
        Move a model to a new status.

        Raises:
            InvalidStatusTransitionError: transition not allowed, or the
                current status differs from `expected`
        """
        target = ModelStatus(status)
        with self._lock, self.db.session_scope() as session:
            row = self._model_row(session, model_id)
            current = ModelStatus(row.status)
            if expected is not None and current != ModelStatus(expected):
                raise InvalidStatusTransitionError(
                    f"Model {model_id} is {current.value}, expected {ModelStatus(expected).value}"
                )
            if not can_transition(current, target):
                raise InvalidStatusTransitionError(
                    f"Model {model_id} cannot move from {current.value} to {target.value}"
                )
            row.status = target.value
            logger.info(f"Model {model_id}: {current.value} -> {target.value}")
            session.flush()
            return ModelRecord.from_row(row)

    def begin_training(self, model_id: int) -> ModelStatus:
        """
        Atomically move draft -> training.

        Returns the prior status so callers can revert on recoverable errors.
        """
        with self._lock, self.db.session_scope() as session:
            result = session.execute(
                update(ModelRow)
                .where(ModelRow.id == model_id, ModelRow.status == ModelStatus.DRAFT.value)
                .values(status=ModelStatus.TRAINING.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(f"Model {model_id}: draft -> training")
                return ModelStatus.DRAFT

            current = ModelStatus(self._model_row(session, model_id).status)
            if current == ModelStatus.TRAINING:
                raise ConflictError(f"Model {model_id} is already training")
            raise InvalidStatusTransitionError(
                f"Model {model_id} is {current.value}; only draft models can be trained "
                f"(use create_child to retrain)"
            )

    def create_child(self, parent_id: int, lineage_type: str = "retrained",
                     name: Optional[str] = None,
                     hyperparameters: Optional[Dict[str, Any]] = None,
                     feature_config: Optional[Dict[str, Any]] = None,
                     algorithm: Optional[str] = None) -> ModelRecord:
        """New draft model inheriting the parent's configuration, with overrides merged in."""
        parent = self.get_model(parent_id)
        child = self.create_model(
            name=name or f"{parent.name}-{lineage_type}",
            symbols=parent.symbols,
            timeframe=parent.timeframe,
            algorithm=algorithm or parent.algorithm,
            hyperparameters={**parent.hyperparameters, **(hyperparameters or {})},
            feature_config={**parent.feature_config, **(feature_config or {})},
            parent_id=parent_id,
            lineage_type=lineage_type,
        )
        logger.info(f"Model {child.id} is a {lineage_type} child of {parent_id}")
        return child

    def lineage(self, model_id: int) -> List[ModelRecord]:
        """Ancestors, nearest parent first."""
        ancestors = []
        seen = {model_id}
        with self._lock, self.db.session_scope() as session:
            row = self._model_row(session, model_id)
            while row.parent_id is not None and row.parent_id not in seen:
                seen.add(row.parent_id)
                row = session.get(ModelRow, row.parent_id)
                if row is None:
                    break
                ancestors.append(ModelRecord.from_row(row))
        return ancestors

    def descendants(self, model_id: int) -> List[ModelRecord]:
        """All models descending from `model_id`, breadth-first."""
        found = []
        with self._lock, self.db.session_scope() as session:
            self._model_row(session, model_id)
            frontier = [model_id]
            seen = {model_id}
            while frontier:
                rows = session.scalars(
                    select(ModelRow).where(ModelRow.parent_id.in_(frontier)).order_by(ModelRow.id)
                ).all()
                frontier = []
                for row in rows:
                    if row.id not in seen:
                        seen.add(row.id)
                        frontier.append(row.id)
                        found.append(ModelRecord.from_row(row))
        return found

    def delete_model(self, model_id: int) -> int:
        """
        Delete a model and everything it owns.

        Children keep existing with their parent link cleared. Artifact
        blobs no longer referenced by any run are removed.

        Raises:
            ConflictError: a training or validation job holds the model
        """
        with self._lock:
            with self.db.session_scope() as session:
                row = self._model_row(session, model_id)
                if row.active_job is not None:
                    raise ConflictError(f"Model {model_id} is busy with job {row.active_job}")
                checksums = {r.artifact_checksum for r in row.runs if r.artifact_checksum}
                session.execute(
                    update(ModelRow).where(ModelRow.parent_id == model_id)
                    .values(parent_id=None)
                    .execution_options(synchronize_session=False)
                )
                session.delete(row)

            removed = 0
            if self.artifact_store is not None and checksums:
                with self.db.session_scope() as session:
                    still_used = set(session.scalars(
                        select(TrainingRunRow.artifact_checksum)
                        .where(TrainingRunRow.artifact_checksum.in_(checksums))
                    ))
                for checksum in checksums - still_used:
                    removed += int(self.artifact_store.delete(checksum))

        logger.info(f"Model {model_id} deleted ({removed} artifacts removed)")
        return removed

    # ------------------------------------------------------------------
    # Job marker
    # ------------------------------------------------------------------

    def acquire_job(self, model_id: int, job_id: str) -> None:
        """Claim the model for one in-flight job, or raise ConflictError."""
        with self._lock, self.db.session_scope() as session:
            result = session.execute(
                update(ModelRow)
                .where(ModelRow.id == model_id, ModelRow.active_job.is_(None))
                .values(active_job=job_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                row = self._model_row(session, model_id)
                raise ConflictError(f"Model {model_id} is busy with job {row.active_job}")

    def release_job(self, model_id: int, job_id: str) -> bool:
        with self._lock, self.db.session_scope() as session:
            result = session.execute(
                update(ModelRow)
                .where(ModelRow.id == model_id, ModelRow.active_job == job_id)
                .values(active_job=None)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Training runs
    # ------------------------------------------------------------------

    def start_run(self, model_id: int, purpose: Union[str, RunPurpose] = RunPurpose.HOLDOUT,
                  hyperparameters: Optional[Dict[str, Any]] = None,
                  dataset_summary: Optional[Dict[str, Any]] = None,
                  boundaries: Optional[Dict[str, Any]] = None,
                  window_index: Optional[int] = None) -> int:
        """
        Insert a running TrainingRun; returns its id.

        When the summary carries a data checksum the run is fingerprinted
        (algorithm, params, feature config, data). A completed run with the
        same fingerprint is recorded as ``duplicate_of_run_id``.
        """
        summary = dataset_summary or {}
        data_checksum = summary.get('checksum')
        with self._lock, self.db.session_scope() as session:
            model = self._model_row(session, model_id)
            params = dict(hyperparameters if hyperparameters is not None else model.hyperparameters)
            repro_hash = duplicate_of = None
            if data_checksum is not None:
                repro_hash = reproducibility_hash(model.algorithm, params, model.feature_config,
                                                  data_checksum)
                duplicate_of = session.scalar(
                    select(TrainingRunRow.id)
                    .where(TrainingRunRow.repro_hash == repro_hash,
                           TrainingRunRow.status == RunStatus.COMPLETED.value)
                    .order_by(TrainingRunRow.id)
                    .limit(1)
                )
                if duplicate_of is not None:
                    logger.warning(f"Model {model_id}: identical configuration already trained "
                                   f"in run {duplicate_of}")
            run = TrainingRunRow(
                model_id=model_id,
                purpose=RunPurpose(purpose).value,
                status=RunStatus.RUNNING.value,
                algorithm=model.algorithm,
                hyperparameters=params,
                dataset_start=_to_str(summary.get('start')),
                dataset_end=_to_str(summary.get('end')),
                n_samples=summary.get('n_rows'),
                boundaries=boundaries,
                dataset_checksum=data_checksum,
                repro_hash=repro_hash,
                duplicate_of_run_id=duplicate_of,
                window_index=window_index,
            )
            session.add(run)
            session.flush()
            return run.id

    def _open_run(self, session: Session, run_id: int) -> TrainingRunRow:
        run = self._run_row(session, run_id)
        if run.status != RunStatus.RUNNING.value:
            raise InvalidStatusTransitionError(
                f"Training run {run_id} is {run.status} and can no longer change"
            )
        return run

    def complete_run(self, run_id: int, result: TrainingResult,
                     artifact_checksum: Optional[str] = None,
                     artifact_size: Optional[int] = None) -> TrainingRunRecord:
        """Record metrics, artifact reference and importances; the run is then immutable."""
        with self._lock, self.db.session_scope() as session:
            run = self._open_run(session, run_id)
            run.status = RunStatus.COMPLETED.value
            run.hyperparameters = dict(result.artifact.hyperparameters)
            run.boundaries = result.boundaries
            run.loss_trace = [float(v) for v in result.loss_trace]
            run.n_iterations = result.n_iterations
            run.train_metrics = result.train_metrics
            run.validation_metrics = result.validation_metrics
            run.test_metrics = result.test_metrics
            run.validation_accuracy = (result.validation_metrics or {}).get('accuracy')
            run.test_accuracy = result.test_metrics['accuracy']
            run.artifact_checksum = artifact_checksum
            run.artifact_size = artifact_size
            run.duration_seconds = result.duration_seconds
            run.completed_at = utcnow()
            self._add_importances(run, result.feature_importances)
            session.flush()
            logger.info(f"Training run {run_id} completed - test acc {run.test_accuracy:.4f}")
            return TrainingRunRecord.from_row(run)

    def _add_importances(self, run: TrainingRunRow, importances: Iterable[FeatureImportance]):
        for item in importances:
            run.importances.append(FeatureImportanceRow(
                feature_name=item.feature_name,
                feature_index=item.feature_index,
                importance=float(item.importance),
                rank=item.rank,
                baseline_accuracy=item.baseline_accuracy,
                permuted_accuracy=item.permuted_accuracy,
            ))

    def _close_run(self, run_id: int, status: RunStatus, error: Optional[str],
                   loss_trace: Optional[List[float]]) -> TrainingRunRecord:
        with self._lock, self.db.session_scope() as session:
            run = self._open_run(session, run_id)
            run.status = status.value
            run.error = error
            if loss_trace is not None:
                run.loss_trace = [float(v) for v in loss_trace]
            run.completed_at = utcnow()
            started = _as_utc(run.started_at)
            run.duration_seconds = (run.completed_at - started).total_seconds()
            logger.warning(f"Training run {run_id} {status.value}: {error}")
            return TrainingRunRecord.from_row(run)

    def fail_run(self, run_id: int, error: str,
                 loss_trace: Optional[List[float]] = None) -> TrainingRunRecord:
        return self._close_run(run_id, RunStatus.FAILED, error, loss_trace)

    def cancel_run(self, run_id: int, loss_trace: Optional[List[float]] = None) -> TrainingRunRecord:
        """Mark a run cancelled, keeping the partial loss trace for diagnostics."""
        return self._close_run(run_id, RunStatus.CANCELLED, "cancelled", loss_trace)

    def get_run(self, run_id: int) -> TrainingRunRecord:
        with self._lock, self.db.session_scope() as session:
            return TrainingRunRecord.from_row(self._run_row(session, run_id))

    def list_runs(self, model_id: int, purpose: Optional[Union[str, RunPurpose]] = None,
                  status: Optional[Union[str, RunStatus]] = None) -> List[TrainingRunRecord]:
        stmt = select(TrainingRunRow).where(TrainingRunRow.model_id == model_id)
        if purpose is not None:
            stmt = stmt.where(TrainingRunRow.purpose == RunPurpose(purpose).value)
        if status is not None:
            stmt = stmt.where(TrainingRunRow.status == RunStatus(status).value)
        with self._lock, self.db.session_scope() as session:
            self._model_row(session, model_id)
            rows = session.scalars(stmt.order_by(TrainingRunRow.id))
            return [TrainingRunRecord.from_row(r) for r in rows]

    def latest_run(self, model_id: int, purpose: Optional[Union[str, RunPurpose]] = RunPurpose.HOLDOUT,
                   status: Optional[Union[str, RunStatus]] = None) -> Optional[TrainingRunRecord]:
        runs = self.list_runs(model_id, purpose=purpose, status=status)
        return runs[-1] if runs else None

    def feature_importances(self, run_id: int) -> List[ImportanceRecord]:
        """Importances of a run ordered by rank."""
        with self._lock, self.db.session_scope() as session:
            self._run_row(session, run_id)
            rows = session.scalars(
                select(FeatureImportanceRow)
                .where(FeatureImportanceRow.run_id == run_id)
                .order_by(FeatureImportanceRow.rank)
            )
            return [ImportanceRecord.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Walk-forward reports
    # ------------------------------------------------------------------

    def save_report(self, model_id: int, result: WalkForwardResult) -> int:
        """Persist a report and link its window runs to it."""
        if not result.windows:
            raise ValueError("A walk-forward report needs at least one window")

        aggregate = result.aggregate.to_dict()
        with self._lock, self.db.session_scope() as session:
            self._model_row(session, model_id)
            report = WalkForwardReportRow(
                model_id=model_id,
                window_config=dict(result.window_config),
                windows=[w.to_dict() for w in result.windows],
                aggregate=aggregate,
                recommendation=result.aggregate.recommendation,
                mean_accuracy=result.aggregate.mean_accuracy,
            )
            session.add(report)
            session.flush()

            run_ids = [w.training_run_id for w in result.windows if w.training_run_id is not None]
            if run_ids:
                session.execute(
                    update(TrainingRunRow)
                    .where(TrainingRunRow.id.in_(run_ids), TrainingRunRow.model_id == model_id)
                    .values(report_id=report.id)
                    .execution_options(synchronize_session=False)
                )
            logger.info(f"Walk-forward report {report.id} saved for model {model_id}: "
                        f"{report.recommendation} ({len(result.windows)} windows)")
            return report.id

    def get_report(self, report_id: int) -> ReportRecord:
        with self._lock, self.db.session_scope() as session:
            row = session.get(WalkForwardReportRow, report_id)
            if row is None:
                raise ModelNotFoundError(f"Walk-forward report {report_id} not found")
            return ReportRecord.from_row(row)

    def list_reports(self, model_id: int) -> List[ReportRecord]:
        with self._lock, self.db.session_scope() as session:
            self._model_row(session, model_id)
            rows = session.scalars(
                select(WalkForwardReportRow)
                .where(WalkForwardReportRow.model_id == model_id)
                .order_by(WalkForwardReportRow.id)
            )
            return [ReportRecord.from_row(r) for r in rows]

    def latest_report(self, model_id: int) -> Optional[ReportRecord]:
        reports = self.list_reports(model_id)
        return reports[-1] if reports else None

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def compare_models(self, model_ids: Sequence[int],
                       metric: str = 'test_accuracy') -> List[Dict[str, Any]]:
        """
        Rank models by one metric, best first.

        Run metrics are read from each model's latest completed holdout run
        (precision / recall / f1 on its test partition), report metrics from
        its latest walk-forward report. Models missing the metric sort last
        with value None.
        """
        if metric not in RUN_METRICS + REPORT_METRICS:
            raise ValueError(f"Unknown comparison metric: {metric}")

        rows = []
        with self._lock:
            for model_id in dict.fromkeys(model_ids):
                model = self.get_model(model_id)
                run = self.latest_run(model_id, purpose=RunPurpose.HOLDOUT, status=RunStatus.COMPLETED)
                report = self.latest_report(model_id)
                if metric in REPORT_METRICS:
                    value = report.aggregate.get(metric) if report else None
                elif metric in ('test_accuracy', 'validation_accuracy'):
                    value = getattr(run, metric) if run else None
                else:
                    value = (run.test_metrics or {}).get(metric) if run else None
                rows.append({
                    'model_id': model.id,
                    'name': model.name,
                    'algorithm': model.algorithm,
                    'status': model.status.value,
                    'run_id': run.id if run else None,
                    'report_id': report.id if report else None,
                    'metric': metric,
                    'value': value,
                })

        sign = 1 if metric in LOWER_IS_BETTER else -1
        rows.sort(key=lambda r: (r['value'] is None, sign * (r['value'] or 0.0)))
        for rank, row in enumerate(rows, start=1):
            row['rank'] = rank
        return rows

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def promote(self, model_id: int, run_id: int) -> ModelRecord:
        """
        Make a completed holdout run the model's active artifact.

        Sets status, active run and baseline accuracy in one transaction and
        resets drift state against the new baseline.

        Raises:
            InvalidPromotionError: run not completed, not this model's, not a
                holdout run, below the accuracy minimum, missing a passing
                walk-forward report when required, or model not promotable
        """
        policy = self.promotion_policy
        with self._lock, self.db.session_scope() as session:
            model = self._model_row(session, model_id)
            run = self._run_row(session, run_id)
            status = ModelStatus(model.status)

            if status not in (ModelStatus.VALIDATED, ModelStatus.ACTIVE):
                raise InvalidPromotionError(
                    f"Model {model_id} is {status.value}; only validated or active models can be promoted"
                )
            if run.model_id != model_id:
                raise InvalidPromotionError(f"Run {run_id} belongs to model {run.model_id}")
            if run.status != RunStatus.COMPLETED.value:
                raise InvalidPromotionError(f"Run {run_id} is {run.status}, not completed")
            if run.purpose != RunPurpose.HOLDOUT.value or not run.artifact_checksum:
                raise InvalidPromotionError(f"Run {run_id} has no promotable artifact")
            if run.test_accuracy is None or run.test_accuracy < policy.min_test_accuracy:
                raise InvalidPromotionError(
                    f"Run {run_id} test accuracy {run.test_accuracy} is below "
                    f"the minimum {policy.min_test_accuracy}"
                )

            if policy.require_walk_forward:
                report = session.scalars(
                    select(WalkForwardReportRow)
                    .where(WalkForwardReportRow.model_id == model_id)
                    .order_by(WalkForwardReportRow.id.desc())
                    .limit(1)
                ).first()
                passing = self.recommendation_policy.passing_tiers
                if report is None or report.recommendation not in passing:
                    raise InvalidPromotionError(
                        f"Model {model_id} has no walk-forward report rated {'/'.join(passing)}"
                    )

            model.status = ModelStatus.ACTIVE.value
            model.active_run_id = run.id
            model.baseline_accuracy = (run.validation_accuracy
                                       if run.validation_accuracy is not None else run.test_accuracy)
            model.drift_detected = False
            model.drift_state = DriftState.STABLE.value
            model.drift_recovery_streak = 0
            session.flush()
            logger.info(f"Model {model_id} promoted: run {run_id}, baseline "
                        f"{model.baseline_accuracy:.4f}")
            return ModelRecord.from_row(model)

    def archive(self, model_id: int) -> ModelRecord:
        return self.update_status(model_id, ModelStatus.ARCHIVED)

    # ------------------------------------------------------------------
    # Performance samples and drift
    # ------------------------------------------------------------------

    def record_sample(self, model_id: int, accuracy: float,
                      timestamp: Optional[datetime] = None,
                      error: Optional[float] = None,
                      n_predictions: Optional[int] = None) -> SampleRecord:
        """
        Append a live sample, prune beyond retention, and evaluate drift.

        A state transition writes a DriftEvent row; alerts go to the
        monitor's sinks after the transaction commits.
        """
        if not 0.0 <= accuracy <= 1.0:
            raise ValueError(f"Accuracy must be in [0, 1], got {accuracy}")

        config = self.drift_config
        alert = None
        with self._lock:
            with self.db.session_scope() as session:
                model = self._model_row(session, model_id)
                sample = PerformanceSampleRow(
                    model_id=model_id,
                    timestamp=_as_utc(timestamp),
                    accuracy=float(accuracy),
                    error=error,
                    n_predictions=n_predictions,
                )
                session.add(sample)
                session.flush()

                self._prune_samples(session, model_id, keep_id=sample.id)

                limit = max(config.window_size, config.min_samples)
                recent = session.scalars(
                    select(PerformanceSampleRow.accuracy)
                    .where(PerformanceSampleRow.model_id == model_id)
                    .order_by(PerformanceSampleRow.timestamp.desc(), PerformanceSampleRow.id.desc())
                    .limit(limit)
                ).all()
                accuracies = list(reversed(recent))

                evaluation = self.drift_monitor.evaluate(
                    model_id, model.baseline_accuracy, accuracies,
                    state=model.drift_state, recovery_streak=model.drift_recovery_streak,
                    notify=False,
                )
                sample.rolling_mean = evaluation.rolling_mean
                sample.degradation = evaluation.degradation
                model.drift_recovery_streak = evaluation.recovery_streak

                if evaluation.transitioned:
                    now = utcnow()
                    model.drift_state = evaluation.state.value
                    model.drift_detected = evaluation.state == DriftState.DEGRADED
                    model.drift_changed_at = now
                    sample.alert = True
                    session.add(DriftEventRow(
                        model_id=model_id,
                        from_state=evaluation.previous_state.value,
                        to_state=evaluation.state.value,
                        rolling_mean=evaluation.rolling_mean,
                        baseline_accuracy=model.baseline_accuracy,
                        degradation=evaluation.degradation,
                        created_at=now,
                    ))
                    alert = evaluation.alert

                session.flush()
                record = SampleRecord.from_row(sample)

            if alert is not None:
                self.drift_monitor.notify(alert)
        return record

    def _prune_samples(self, session: Session, model_id: int,
                       keep_id: Optional[int] = None) -> int:
        newest = session.scalar(
            select(func.max(PerformanceSampleRow.timestamp))
            .where(PerformanceSampleRow.model_id == model_id)
        )
        if newest is None:
            return 0
        cutoff = _as_utc(newest) - timedelta(days=self.drift_config.retention_days)
        result = session.execute(
            delete(PerformanceSampleRow)
            .where(PerformanceSampleRow.model_id == model_id,
                   PerformanceSampleRow.timestamp < cutoff,
                   PerformanceSampleRow.id != keep_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Pruned {result.rowcount} samples older than {cutoff:%Y-%m-%d} for model {model_id}")
        return result.rowcount

    def performance_history(self, model_id: int, limit: Optional[int] = None) -> List[SampleRecord]:
        """Samples oldest first; `limit` keeps the most recent ones."""
        with self._lock, self.db.session_scope() as session:
            self._model_row(session, model_id)
            stmt = (select(PerformanceSampleRow)
                    .where(PerformanceSampleRow.model_id == model_id)
                    .order_by(PerformanceSampleRow.timestamp.desc(), PerformanceSampleRow.id.desc()))
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = session.scalars(stmt).all()
            return [SampleRecord.from_row(r) for r in reversed(rows)]

    def sample_count(self, model_id: int) -> int:
        with self._lock, self.db.session_scope() as session:
            return session.scalar(
                select(func.count(PerformanceSampleRow.id))
                .where(PerformanceSampleRow.model_id == model_id)
            ) or 0

    def drift_events(self, model_id: int) -> List[DriftEventRecord]:
        with self._lock, self.db.session_scope() as session:
            self._model_row(session, model_id)
            rows = session.scalars(
                select(DriftEventRow)
                .where(DriftEventRow.model_id == model_id)
                .order_by(DriftEventRow.id)
            )
            return [DriftEventRecord.from_row(r) for r in rows]
