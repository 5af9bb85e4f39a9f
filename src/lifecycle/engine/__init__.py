"""Lifecycle service and background jobs."""

from .jobs import Job, JobRunner
from .service import ModelLifecycleEngine, ModelOverview, ModelSpec

__all__ = ['Job', 'JobRunner', 'ModelLifecycleEngine', 'ModelOverview', 'ModelSpec']
