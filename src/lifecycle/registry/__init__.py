"""Durable model registry: schema, sessions and repository."""

from .schema import (
    Base, ModelStatus, RunStatus, RunPurpose, VALID_TRANSITIONS, can_transition
)
from .session import Database, make_engine
from .records import (
    ModelRecord, TrainingRunRecord, ReportRecord, ImportanceRecord, SampleRecord, DriftEventRecord
)
from .repository import ModelRepository

__all__ = [
    'Base', 'ModelStatus', 'RunStatus', 'RunPurpose', 'VALID_TRANSITIONS',
    'can_transition', 'Database', 'make_engine', 'ModelRecord', 'TrainingRunRecord',
    'ReportRecord', 'ImportanceRecord', 'SampleRecord', 'DriftEventRecord', 'ModelRepository'
]
