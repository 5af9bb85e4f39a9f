"""Test drift evaluation, recovery and alert delivery."""

import pytest
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from lifecycle.analytics import AlertSeverity, DriftMonitor, DriftState
from lifecycle.utils.config import DriftConfig


def make_monitor(sinks=None, **overrides):
    config = DriftConfig(**{'window_size': 20, 'degradation_threshold': 0.05,
                            'recovery_samples': 3, 'min_samples': 5, **overrides})
    return DriftMonitor(config, sinks=sinks if sinks is not None else [])


def test_degradation_beyond_threshold_flags_drift():
    alerts = []
    monitor = make_monitor([alerts.append])

    result = monitor.evaluate(1, 0.65, [0.60] * 10)

    assert result.evaluated
    assert result.state == DriftState.DEGRADED
    assert result.transitioned
    assert result.degradation == pytest.approx((0.65 - 0.60) / 0.65)
    assert len(alerts) == 1
    assert alerts[0].severity == AlertSeverity.WARNING
    assert alerts[0].model_id == 1
    assert alerts[0].to_dict()['to_state'] == 'degraded'


def test_within_threshold_stays_stable():
    alerts = []
    result = make_monitor([alerts.append]).evaluate(1, 0.65, [0.64] * 10)

    assert result.state == DriftState.STABLE
    assert not result.transitioned
    assert result.alert is None
    assert alerts == []


def test_only_last_window_counts():
    monitor = make_monitor(window_size=5)
    accuracies = [0.2] * 50 + [0.65] * 5

    assert monitor.rolling_mean(accuracies) == pytest.approx(0.65)
    assert monitor.evaluate(1, 0.65, accuracies).state == DriftState.STABLE


def test_below_min_samples_is_not_evaluated():
    result = make_monitor().evaluate(1, 0.65, [0.1] * 4)
    assert not result.evaluated
    assert result.state == DriftState.STABLE


def test_missing_baseline_is_not_evaluated():
    result = make_monitor().evaluate(1, None, [0.1] * 30)
    assert not result.evaluated


def test_recovery_requires_consecutive_good_evaluations():
    alerts = []
    monitor = make_monitor([alerts.append])
    state, streak = DriftState.DEGRADED, 0

    for expected_streak in (1, 2):
        result = monitor.evaluate(1, 0.65, [0.65] * 10, state, streak)
        state, streak = result.state, result.recovery_streak
        assert state == DriftState.DEGRADED
        assert streak == expected_streak

    # A bad evaluation resets the streak
    result = monitor.evaluate(1, 0.65, [0.5] * 10, state, streak)
    assert result.recovery_streak == 0
    assert result.state == DriftState.DEGRADED

    streak = 0
    for _ in range(3):
        result = monitor.evaluate(1, 0.65, [0.65] * 10, state, streak)
        state, streak = result.state, result.recovery_streak

    assert state == DriftState.STABLE
    assert streak == 0
    assert [a.severity for a in alerts] == [AlertSeverity.INFO]


def test_degraded_does_not_realert():
    alerts = []
    result = make_monitor([alerts.append]).evaluate(1, 0.65, [0.4] * 10, DriftState.DEGRADED, 0)
    assert result.alert is None
    assert alerts == []


def test_failing_sink_does_not_block_others():
    delivered = []

    def broken(alert):
        raise RuntimeError("sink down")

    monitor = make_monitor([broken, delivered.append])
    monitor.evaluate(1, 0.65, [0.5] * 10)

    assert len(delivered) == 1


def test_notify_can_be_deferred():
    delivered = []
    monitor = make_monitor([delivered.append])

    result = monitor.evaluate(1, 0.65, [0.5] * 10, notify=False)
    assert result.alert is not None
    assert delivered == []

    monitor.notify(result.alert)
    assert delivered == [result.alert]


def test_invalid_config():
    with pytest.raises(ValueError):
        DriftMonitor(DriftConfig(window_size=0))
