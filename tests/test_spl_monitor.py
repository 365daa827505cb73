import numpy as np
import pytest

from conftest import FakeSource
from sanctuarysound.errors import AudioCaptureError, CalibrationError
from sanctuarysound.models import AlertState, SafeState, SPLPreference, WarningState
from sanctuarysound.presets import list_flagging_modes
from sanctuarysound.spl_monitor import SPLMonitor
from sanctuarysound.vocabulary import SPLFlaggingMode


def _feed(monitor, levels, start=0.0, step=1.0):
    """Feed one level per step seconds; returns the timestamp after the last level."""
    t = start
    for level in levels:
        monitor.process_level(level, t)
        t += step
    return t


def test_start_and_restart():
    monitor = SPLMonitor()
    assert monitor.start(0.0)
    assert not monitor.start(1.0)
    assert monitor.stop(2.0) is not None
    assert monitor.stop(3.0) is None


def test_levels_ignored_when_stopped():
    monitor = SPLMonitor()
    monitor.process_level(100.0, 0.0)
    assert monitor.current_db is None


def test_calibration_offset():
    monitor = SPLMonitor()
    monitor.start(0.0)
    monitor.process_level(90.0, 0.0)

    assert monitor.calculate_calibration_offset(94.0) == pytest.approx(4.0)
    monitor.process_level(85.0, 1.0)
    assert monitor.current_db == pytest.approx(89.0)
    assert monitor.preference.calibration_offset == pytest.approx(4.0)


def test_calibration_rejects_implausible_reference():
    monitor = SPLMonitor(preference=SPLPreference(calibration_offset=2.0))
    monitor.start(0.0)
    monitor.process_level(90.0, 0.0)
    with pytest.raises(CalibrationError):
        monitor.calculate_calibration_offset(150.0)
    with pytest.raises(CalibrationError):
        monitor.calculate_calibration_offset(20.0)
    assert monitor.calibration_offset == 2.0


def test_calibration_without_reading():
    monitor = SPLMonitor()
    assert monitor.calculate_calibration_offset(94.0) is None
    assert monitor.calibration_offset is None


def test_no_breach_at_target():
    monitor = SPLMonitor(preference=SPLPreference(target_db=90.0))
    monitor.start(0.0)
    end = _feed(monitor, [90.0] * 30)
    assert monitor.alert_state == SafeState()

    report = monitor.stop(end)
    assert report.breach_count == 0
    assert report.breach_percentage == 0.0
    assert report.grade == "Clean Service"


def test_danger_breach_above_threshold():
    preference = SPLPreference(target_db=90.0, flagging_mode=SPLFlaggingMode.BALANCED)
    monitor = SPLMonitor(preference=preference)
    monitor.start(0.0)
    _feed(monitor, [85.0] * 5)
    _feed(monitor, [96.0] * 5, start=5.0)
    assert isinstance(monitor.alert_state, AlertState)
    assert monitor.alert_state.over_db == pytest.approx(6.0)
    end = _feed(monitor, [80.0] * 20, start=10.0)

    report = monitor.stop(end)
    assert report.breach_count == 1
    assert report.danger_count == 1
    event = report.breach_events[0]
    assert event.reached_danger
    assert event.peak_db == 96.0
    assert event.duration_seconds == pytest.approx(5.0)
    assert 0.0 <= report.breach_percentage <= 100.0
    assert report.grade == "Needs Attention"


def test_warning_below_danger_threshold():
    monitor = SPLMonitor(preference=SPLPreference(target_db=90.0))
    monitor.start(0.0)
    monitor.process_level(92.0, 1.0)
    assert isinstance(monitor.alert_state, WarningState)
    assert not monitor.alert_state.is_danger


def test_hysteresis_keeps_breach_open():
    monitor = SPLMonitor(preference=SPLPreference(target_db=90.0), hysteresis_db=1.0)
    monitor.start(0.0)
    monitor.process_level(92.0, 1.0)
    monitor.process_level(89.5, 2.0)
    assert isinstance(monitor.alert_state, WarningState)
    assert monitor.breach_events == ()

    monitor.process_level(88.0, 3.0)
    assert monitor.alert_state == SafeState()
    assert len(monitor.breach_events) == 1
    assert monitor.breach_events[0].duration_seconds == pytest.approx(2.0)


def test_open_breach_closed_on_stop():
    monitor = SPLMonitor(preference=SPLPreference(target_db=90.0))
    monitor.start(0.0)
    _feed(monitor, [100.0] * 10)
    report = monitor.stop(10.0)
    assert report.breach_count == 1
    assert report.breach_percentage == pytest.approx(100.0)
    assert report.grade == "Over Target"


def test_breach_percentage_stays_in_range():
    rng = np.random.default_rng(7)
    monitor = SPLMonitor(preference=SPLPreference(target_db=90.0, flagging_mode=SPLFlaggingMode.STRICT))
    monitor.start(0.0)
    end = _feed(monitor, rng.uniform(80.0, 100.0, size=500), step=0.1)
    report = monitor.stop(end)
    assert report.breach_count > 0
    assert 0.0 <= report.breach_percentage <= 100.0
    assert report.total_breach_seconds <= report.total_monitoring_seconds + 1e-9


def test_peak_average_and_reset():
    monitor = SPLMonitor()
    monitor.start(0.0)
    _feed(monitor, [80.0, 90.0, 70.0])
    assert monitor.peak_db == 90.0
    assert monitor.average_db == pytest.approx(80.0)

    monitor.reset_peak()
    assert monitor.peak_db == 70.0
    report = monitor.stop(3.0)
    assert report.overall_peak_db == 90.0
    assert report.overall_average_db == pytest.approx(80.0)


def test_empty_session_report():
    monitor = SPLMonitor()
    monitor.start(0.0)
    report = monitor.stop(0.0)
    assert report.overall_peak_db == 0.0
    assert report.total_monitoring_seconds == 0.0
    assert report.breach_percentage == 0.0


def test_pause_excludes_time_and_closes_breach():
    source = FakeSource()
    monitor = SPLMonitor(source=source, preference=SPLPreference(target_db=90.0))
    monitor.start(0.0)
    monitor.process_level(95.0, 5.0)

    assert monitor.pause(10.0)
    assert monitor.is_paused
    assert len(monitor.breach_events) == 1
    assert source.stops == 1
    monitor.process_level(120.0, 15.0)
    assert monitor.current_db == 95.0

    assert monitor.resume(20.0)
    assert source.starts == 2
    report = monitor.stop(30.0)
    assert report.total_monitoring_seconds == pytest.approx(20.0)


def test_update_thresholds_keeps_calibration():
    monitor = SPLMonitor(preference=SPLPreference(calibration_offset=3.0))
    monitor.update_alert_thresholds(SPLPreference(target_db=85.0, flagging_mode=SPLFlaggingMode.STRICT))
    assert monitor.preference.target_db == 85.0
    assert monitor.preference.flag_threshold_db == 2.0
    assert monitor.calibration_offset == 3.0


def test_flagging_thresholds_come_from_presets():
    listed = {mode["key"]: mode["threshold_db"] for mode in list_flagging_modes()}
    assert {mode.name.lower(): mode.threshold_db for mode in SPLFlaggingMode} == listed


def test_process_samples_uses_reference_offset():
    monitor = SPLMonitor(reference_offset_db=90.0)
    monitor.start(0.0)
    # constant 0.1 has an RMS of -20 dBFS
    monitor.process_samples(np.full(1024, 0.1), 1.0)
    assert monitor.current_db == pytest.approx(70.0)


def test_microphone_offset_applies_to_first_block():
    source = FakeSource(reference_offset_db=100.0, first_block=np.full(1024, 0.1))
    monitor = SPLMonitor(source=source)
    monitor.start(0.0)

    assert source.opens == 1
    assert monitor.reference_offset_db == 100.0
    assert monitor.current_db == pytest.approx(80.0)
    assert monitor.peak_db == pytest.approx(80.0)


def test_failed_resume_stays_paused():
    source = FakeSource()
    monitor = SPLMonitor(source=source, preference=SPLPreference(target_db=90.0))
    monitor.start(0.0)
    monitor.pause(5.0)

    source.fail = True
    with pytest.raises(AudioCaptureError):
        monitor.resume(10.0)
    assert monitor.is_running
    assert monitor.is_paused
    monitor.process_level(100.0, 12.0)
    assert monitor.current_db is None

    source.fail = False
    assert monitor.resume(20.0)
    report = monitor.stop(30.0)
    assert report.total_monitoring_seconds == pytest.approx(15.0)


def test_source_failure_propagates():
    monitor = SPLMonitor(source=FakeSource(fail=True))
    with pytest.raises(AudioCaptureError):
        monitor.start(0.0)
    assert not monitor.is_running


def test_live_grade_matches_report():
    monitor = SPLMonitor(preference=SPLPreference(target_db=90.0))
    monitor.start(0.0)
    _feed(monitor, [85.0] * 95 + [93.0] * 5)
    assert monitor.current_grade == "Good Control"
    assert monitor.stop(100.0).grade == "Good Control"
