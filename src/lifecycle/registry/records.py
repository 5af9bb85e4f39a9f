"""Plain dataclass snapshots of registry rows, safe to hand across threads."""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .schema import (
    DriftEventRow, FeatureImportanceRow, ModelRow, ModelStatus, PerformanceSampleRow,
    RunPurpose, RunStatus, TrainingRunRow, WalkForwardReportRow
)


@dataclass
class ModelRecord:
    id: int
    name: str
    symbols: List[str]
    timeframe: str
    algorithm: str
    status: ModelStatus
    hyperparameters: Dict[str, Any]
    feature_config: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    parent_id: Optional[int]
    lineage_type: Optional[str]
    baseline_accuracy: Optional[float]
    active_run_id: Optional[int]
    drift_detected: bool
    drift_state: str
    drift_changed_at: Optional[datetime]
    drift_recovery_streak: int
    active_job: Optional[str]

    @classmethod
    def from_row(cls, row: ModelRow) -> 'ModelRecord':
        return cls(
            id=row.id,
            name=row.name,
            symbols=list(row.symbols or []),
            timeframe=row.timeframe,
            algorithm=row.algorithm,
            status=ModelStatus(row.status),
            hyperparameters=dict(row.hyperparameters or {}),
            feature_config=dict(row.feature_config or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
            parent_id=row.parent_id,
            lineage_type=row.lineage_type,
            baseline_accuracy=row.baseline_accuracy,
            active_run_id=row.active_run_id,
            drift_detected=bool(row.drift_detected),
            drift_state=row.drift_state,
            drift_changed_at=row.drift_changed_at,
            drift_recovery_streak=row.drift_recovery_streak or 0,
            active_job=row.active_job,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass
class TrainingRunRecord:
    id: int
    model_id: int
    purpose: RunPurpose
    status: RunStatus
    algorithm: str
    hyperparameters: Dict[str, Any]
    report_id: Optional[int] = None
    window_index: Optional[int] = None
    dataset_start: Optional[str] = None
    dataset_end: Optional[str] = None
    n_samples: Optional[int] = None
    boundaries: Optional[Dict[str, Any]] = None
    dataset_checksum: Optional[str] = None
    repro_hash: Optional[str] = None
    duplicate_of_run_id: Optional[int] = None
    loss_trace: List[float] = field(default_factory=list)
    n_iterations: Optional[int] = None
    train_metrics: Optional[Dict[str, Any]] = None
    validation_metrics: Optional[Dict[str, Any]] = None
    test_metrics: Optional[Dict[str, Any]] = None
    validation_accuracy: Optional[float] = None
    test_accuracy: Optional[float] = None
    artifact_checksum: Optional[str] = None
    artifact_size: Optional[int] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    @classmethod
    def from_row(cls, row: TrainingRunRow) -> 'TrainingRunRecord':
        return cls(
            id=row.id,
            model_id=row.model_id,
            purpose=RunPurpose(row.purpose),
            status=RunStatus(row.status),
            algorithm=row.algorithm,
            hyperparameters=dict(row.hyperparameters or {}),
            report_id=row.report_id,
            window_index=row.window_index,
            dataset_start=row.dataset_start,
            dataset_end=row.dataset_end,
            n_samples=row.n_samples,
            boundaries=row.boundaries,
            dataset_checksum=row.dataset_checksum,
            repro_hash=row.repro_hash,
            duplicate_of_run_id=row.duplicate_of_run_id,
            loss_trace=list(row.loss_trace or []),
            n_iterations=row.n_iterations,
            train_metrics=row.train_metrics,
            validation_metrics=row.validation_metrics,
            test_metrics=row.test_metrics,
            validation_accuracy=row.validation_accuracy,
            test_accuracy=row.test_accuracy,
            artifact_checksum=row.artifact_checksum,
            artifact_size=row.artifact_size,
            error=row.error,
            started_at=row.started_at,
            completed_at=row.completed_at,
            duration_seconds=row.duration_seconds,
        )


@dataclass
class ReportRecord:
    id: int
    model_id: int
    window_config: Dict[str, Any]
    windows: List[Dict[str, Any]]
    aggregate: Dict[str, Any]
    recommendation: str
    mean_accuracy: float
    created_at: datetime

    @classmethod
    def from_row(cls, row: WalkForwardReportRow) -> 'ReportRecord':
        return cls(
            id=row.id,
            model_id=row.model_id,
            window_config=dict(row.window_config),
            windows=list(row.windows),
            aggregate=dict(row.aggregate),
            recommendation=row.recommendation,
            mean_accuracy=row.mean_accuracy,
            created_at=row.created_at,
        )


@dataclass
class ImportanceRecord:
    run_id: int
    feature_name: str
    feature_index: int
    importance: float
    rank: int

    @classmethod
    def from_row(cls, row: FeatureImportanceRow) -> 'ImportanceRecord':
        return cls(row.run_id, row.feature_name, row.feature_index, row.importance, row.rank)


@dataclass
class SampleRecord:
    id: int
    model_id: int
    timestamp: datetime
    accuracy: float
    error: Optional[float]
    n_predictions: Optional[int]
    rolling_mean: Optional[float]
    degradation: Optional[float]
    alert: bool

    @classmethod
    def from_row(cls, row: PerformanceSampleRow) -> 'SampleRecord':
        return cls(row.id, row.model_id, row.timestamp, row.accuracy, row.error,
                   row.n_predictions, row.rolling_mean, row.degradation, bool(row.alert))


@dataclass
class DriftEventRecord:
    id: int
    model_id: int
    from_state: str
    to_state: str
    rolling_mean: float
    baseline_accuracy: float
    degradation: float
    created_at: datetime

    @classmethod
    def from_row(cls, row: DriftEventRow) -> 'DriftEventRecord':
        return cls(row.id, row.model_id, row.from_state, row.to_state, row.rolling_mean,
                   row.baseline_accuracy, row.degradation, row.created_at)
