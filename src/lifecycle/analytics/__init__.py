"""Analytics: permutation importance and live drift monitoring."""

from .feature_importance import FeatureImportance, PermutationImportanceAnalyzer
from .drift_monitor import (
    AlertSeverity, AlertSink, DriftAlert, DriftEvaluation, DriftMonitor, DriftState,
    log_alert_sink
)

__all__ = [
    'FeatureImportance', 'PermutationImportanceAnalyzer',
    'AlertSeverity', 'AlertSink', 'DriftAlert', 'DriftEvaluation', 'DriftMonitor',
    'DriftState', 'log_alert_sink'
]
