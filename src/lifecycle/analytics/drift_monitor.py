"""
Drift Monitor

Compares the rolling mean of live accuracy against the model's baseline
validation accuracy:
- degradation = (baseline - rolling mean) / baseline
- above threshold -> DEGRADED, drift flag raised, WARNING alert
- back within threshold for `recovery_samples` consecutive evaluations -> STABLE

Alerts are REPORTED ONLY. Retraining is an external decision.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence

import numpy as np

from ..utils.config import DriftConfig

logger = logging.getLogger(__name__)


class DriftState(str, Enum):
    """Per-model drift state."""
    STABLE = "stable"
    DEGRADED = "degraded"


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class DriftAlert:
    """A single drift transition alert."""
    timestamp: str
    model_id: Optional[int]
    severity: AlertSeverity
    from_state: DriftState
    to_state: DriftState
    rolling_mean: float
    baseline_accuracy: float
    degradation: float
    threshold: float
    description: str

    def to_dict(self):
        data = asdict(self)
        data['severity'] = self.severity.value
        data['from_state'] = self.from_state.value
        data['to_state'] = self.to_state.value
        return data


@dataclass
class DriftEvaluation:
    """Outcome of evaluating one new sample."""
    state: DriftState
    previous_state: DriftState
    recovery_streak: int
    evaluated: bool
    rolling_mean: Optional[float] = None
    degradation: Optional[float] = None
    alert: Optional[DriftAlert] = None

    @property
    def transitioned(self) -> bool:
        return self.state != self.previous_state


AlertSink = Callable[[DriftAlert], None]


def log_alert_sink(alert: DriftAlert):
    """Default sink: route alerts to the module logger."""
    level = logging.WARNING if alert.severity != AlertSeverity.INFO else logging.INFO
    logger.log(level, f"DRIFT ALERT [{alert.severity.value}] model {alert.model_id}: "
                      f"{alert.description}")


class DriftMonitor:
    """
    Stateless evaluator; the caller owns state and recovery streak.

    Usage:
        monitor = DriftMonitor(DriftConfig(window_size=20))
        result = monitor.evaluate(model_id, 0.65, accuracies, DriftState.STABLE, 0)
        if result.alert:
            print(result.alert.description)
    """

    def __init__(self, config: Optional[DriftConfig] = None,
                 sinks: Optional[List[AlertSink]] = None):
        self.config = config or DriftConfig()
        if self.config.window_size < 1 or self.config.recovery_samples < 1:
            raise ValueError("window_size and recovery_samples must be >= 1")
        self.sinks: List[AlertSink] = list(sinks) if sinks is not None else [log_alert_sink]

    def add_sink(self, sink: AlertSink):
        self.sinks.append(sink)

    def rolling_mean(self, accuracies: Sequence[float]) -> float:
        """Mean of the last `window_size` accuracies."""
        window = np.asarray(accuracies[-self.config.window_size:], dtype=float)
        return float(window.mean())

    @staticmethod
    def degradation(baseline: float, rolling_mean: float) -> float:
        """Relative accuracy loss versus baseline."""
        return (baseline - rolling_mean) / baseline

    def evaluate(self, model_id: Optional[int], baseline: Optional[float],
                 accuracies: Sequence[float], state: DriftState = DriftState.STABLE,
                 recovery_streak: int = 0,
                 notify: bool = True) -> DriftEvaluation:
        """
        Evaluate the latest sample.

        Args:
            model_id: Model the samples belong to (carried on alerts)
            baseline: Baseline validation accuracy; None skips evaluation
            accuracies: All retained sample accuracies, oldest first
            state: Current drift state
            recovery_streak: Consecutive in-threshold evaluations while degraded
            notify: Deliver any alert to the sinks immediately

        Returns:
            DriftEvaluation with the new state and streak
        """
        state = DriftState(state)
        skipped = DriftEvaluation(state=state, previous_state=state,
                                  recovery_streak=recovery_streak, evaluated=False)

        if baseline is None or baseline <= 0:
            return skipped
        if len(accuracies) < self.config.min_samples:
            return skipped

        mean = self.rolling_mean(accuracies)
        degradation = self.degradation(baseline, mean)
        threshold = self.config.degradation_threshold
        result = DriftEvaluation(state=state, previous_state=state,
                                 recovery_streak=recovery_streak, evaluated=True,
                                 rolling_mean=mean, degradation=degradation)

        if state == DriftState.STABLE:
            if degradation > threshold:
                result.state = DriftState.DEGRADED
                result.recovery_streak = 0
                result.alert = self._alert(
                    model_id, AlertSeverity.WARNING, state, DriftState.DEGRADED,
                    mean, baseline, degradation,
                    f"Rolling accuracy {mean:.3f} is {degradation:.1%} below baseline "
                    f"{baseline:.3f} (threshold {threshold:.1%})"
                )
        else:
            if degradation <= threshold:
                result.recovery_streak = recovery_streak + 1
                if result.recovery_streak >= self.config.recovery_samples:
                    result.state = DriftState.STABLE
                    result.recovery_streak = 0
                    result.alert = self._alert(
                        model_id, AlertSeverity.INFO, state, DriftState.STABLE,
                        mean, baseline, degradation,
                        f"Rolling accuracy {mean:.3f} back within {threshold:.1%} of baseline "
                        f"for {self.config.recovery_samples} samples"
                    )
            else:
                result.recovery_streak = 0

        if notify and result.alert is not None:
            self.notify(result.alert)
        return result

    def _alert(self, model_id, severity, from_state, to_state, mean, baseline,
               degradation, description) -> DriftAlert:
        return DriftAlert(
            timestamp=datetime.now(timezone.utc).isoformat(),
            model_id=model_id,
            severity=severity,
            from_state=from_state,
            to_state=to_state,
            rolling_mean=mean,
            baseline_accuracy=baseline,
            degradation=degradation,
            threshold=self.config.degradation_threshold,
            description=description,
        )

    def notify(self, alert: DriftAlert):
        """Deliver an alert to every sink; a failing sink does not block the others."""
        for sink in self.sinks:
            try:
                sink(alert)
            except Exception:
                logger.exception(f"Alert sink {sink!r} failed")
