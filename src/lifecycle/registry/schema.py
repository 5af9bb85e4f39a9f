"""
SQLAlchemy tables for the model registry.

Tables:
- models: one row per model version, with lineage and drift state
- training_runs: one row per fit (holdout or walk-forward window)
- walk_forward_reports: window results plus aggregate verdict
- feature_importances: ranked permutation importances per run
- performance_samples: live accuracy time series
- drift_events: one row per drift state transition

Status Flow:
    draft -> training -> validated -> active -> archived
    any non-terminal -> failed
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelStatus(str, Enum):
    """Lifecycle status of a model."""
    DRAFT = "draft"
    TRAINING = "training"
    VALIDATED = "validated"
    ACTIVE = "active"
    ARCHIVED = "archived"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunPurpose(str, Enum):
    HOLDOUT = "holdout"
    WALK_FORWARD = "walk_forward"


# Valid status transitions
VALID_TRANSITIONS: Dict[ModelStatus, List[ModelStatus]] = {
    ModelStatus.DRAFT: [ModelStatus.TRAINING, ModelStatus.ARCHIVED, ModelStatus.FAILED],
    # Back to draft when fitting fails recoverably
    ModelStatus.TRAINING: [ModelStatus.VALIDATED, ModelStatus.DRAFT, ModelStatus.FAILED],
    ModelStatus.VALIDATED: [ModelStatus.ACTIVE, ModelStatus.ARCHIVED, ModelStatus.FAILED],
    # active -> active swaps the active artifact
    ModelStatus.ACTIVE: [ModelStatus.ACTIVE, ModelStatus.ARCHIVED, ModelStatus.FAILED],
    ModelStatus.ARCHIVED: [],
    ModelStatus.FAILED: [],
}


def can_transition(current: ModelStatus, target: ModelStatus) -> bool:
    """Check if a model status transition is valid."""
    return ModelStatus(target) in VALID_TRANSITIONS.get(ModelStatus(current), [])


class ModelRow(Base):
    __tablename__ = "models"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False)
    symbols = Column(JSON, nullable=False, default=list)
    timeframe = Column(String(16), nullable=False, default="1d")
    algorithm = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=ModelStatus.DRAFT.value, index=True)
    hyperparameters = Column(JSON, nullable=False, default=dict)
    feature_config = Column(JSON, nullable=False, default=dict)  # lookback, horizon, windows

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Weak genealogy link; survives parent deletion as NULL
    parent_id = Column(Integer, ForeignKey("models.id", ondelete="SET NULL"), nullable=True, index=True)
    lineage_type = Column(String(32), nullable=True)  # retrained / tuned / ensemble_member

    baseline_accuracy = Column(Float, nullable=True)
    active_run_id = Column(Integer, nullable=True)

    drift_detected = Column(Boolean, nullable=False, default=False)
    drift_state = Column(String(16), nullable=False, default="stable")
    drift_changed_at = Column(DateTime(timezone=True), nullable=True)
    drift_recovery_streak = Column(Integer, nullable=False, default=0)

    # In-flight job marker, set and cleared by compare-and-swap
    active_job = Column(String(64), nullable=True)

    runs = relationship("TrainingRunRow", back_populates="model",
                        cascade="all, delete-orphan", order_by="TrainingRunRow.id")
    reports = relationship("WalkForwardReportRow", back_populates="model",
                           cascade="all, delete-orphan")
    samples = relationship("PerformanceSampleRow", back_populates="model",
                           cascade="all, delete-orphan")
    drift_events = relationship("DriftEventRow", back_populates="model",
                                cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<ModelRow {self.id} {self.name} ({self.status})>"


class TrainingRunRow(Base):
    __tablename__ = "training_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    model_id = Column(Integer, ForeignKey("models.id", ondelete="CASCADE"), nullable=False, index=True)
    purpose = Column(String(16), nullable=False, default=RunPurpose.HOLDOUT.value)
    report_id = Column(Integer, nullable=True, index=True)
    window_index = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False, default=RunStatus.RUNNING.value)

    algorithm = Column(String(32), nullable=False)
    hyperparameters = Column(JSON, nullable=False, default=dict)
    dataset_start = Column(String(40), nullable=True)
    dataset_end = Column(String(40), nullable=True)
    n_samples = Column(Integer, nullable=True)
    boundaries = Column(JSON, nullable=True)
    dataset_checksum = Column(String(64), nullable=True)
    repro_hash = Column(String(64), nullable=True, index=True)
    duplicate_of_run_id = Column(Integer, nullable=True)

    loss_trace = Column(JSON, nullable=True)
    n_iterations = Column(Integer, nullable=True)
    train_metrics = Column(JSON, nullable=True)
    validation_metrics = Column(JSON, nullable=True)
    test_metrics = Column(JSON, nullable=True)
    validation_accuracy = Column(Float, nullable=True)
    test_accuracy = Column(Float, nullable=True)

    artifact_checksum = Column(String(64), nullable=True, index=True)
    artifact_size = Column(Integer, nullable=True)

    error = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    model = relationship("ModelRow", back_populates="runs")
    importances = relationship("FeatureImportanceRow", back_populates="run",
                               cascade="all, delete-orphan", order_by="FeatureImportanceRow.rank")

    __table_args__ = (
        Index("ix_runs_model_purpose_status", "model_id", "purpose", "status"),
    )


class WalkForwardReportRow(Base):
    __tablename__ = "walk_forward_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    model_id = Column(Integer, ForeignKey("models.id", ondelete="CASCADE"), nullable=False, index=True)
    window_config = Column(JSON, nullable=False)
    windows = Column(JSON, nullable=False)  # ordered per-window results
    aggregate = Column(JSON, nullable=False)
    recommendation = Column(String(16), nullable=False)
    mean_accuracy = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    model = relationship("ModelRow", back_populates="reports")


class FeatureImportanceRow(Base):
    __tablename__ = "feature_importances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Integer, ForeignKey("training_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_name = Column(String(64), nullable=False)
    feature_index = Column(Integer, nullable=False)
    importance = Column(Float, nullable=False)
    rank = Column(Integer, nullable=False)
    baseline_accuracy = Column(Float, nullable=True)
    permuted_accuracy = Column(Float, nullable=True)

    run = relationship("TrainingRunRow", back_populates="importances")

    __table_args__ = (
        UniqueConstraint("run_id", "rank", name="uq_importance_run_rank"),
    )


class PerformanceSampleRow(Base):
    __tablename__ = "performance_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    model_id = Column(Integer, ForeignKey("models.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    accuracy = Column(Float, nullable=False)
    error = Column(Float, nullable=True)
    n_predictions = Column(Integer, nullable=True)
    rolling_mean = Column(Float, nullable=True)
    degradation = Column(Float, nullable=True)
    alert = Column(Boolean, nullable=False, default=False)

    model = relationship("ModelRow", back_populates="samples")

    __table_args__ = (
        Index("ix_samples_model_ts", "model_id", "timestamp"),
    )


class DriftEventRow(Base):
    __tablename__ = "drift_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    model_id = Column(Integer, ForeignKey("models.id", ondelete="CASCADE"), nullable=False, index=True)
    from_state = Column(String(16), nullable=False)
    to_state = Column(String(16), nullable=False)
    rolling_mean = Column(Float, nullable=False)
    baseline_accuracy = Column(Float, nullable=False)
    degradation = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    model = relationship("ModelRow", back_populates="drift_events")
