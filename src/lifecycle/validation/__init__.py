"""Walk-forward validation and production-readiness tiers."""

from .walk_forward import (
    WalkForwardValidator, WalkForwardResult, WalkForwardAggregate, WindowResult,
    WindowRecorder, classify, aggregate_windows, TIER_MESSAGES
)

__all__ = [
    'WalkForwardValidator', 'WalkForwardResult', 'WalkForwardAggregate', 'WindowResult',
    'WindowRecorder', 'classify', 'aggregate_windows', 'TIER_MESSAGES'
]
