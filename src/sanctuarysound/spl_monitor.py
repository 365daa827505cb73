"""
Real-time SPL monitor for SanctuarySound.

One SPLMonitor owns one monitoring session: it converts sample blocks (or
raw levels) to calibrated dB SPL, tracks current/peak/average levels, runs
the hysteretic safe/warning/alert machine and records breach events. Each
block is processed to completion under a lock before the next is accepted.
"""

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .acoustics import rms_db
from .errors import AudioCaptureError, CalibrationError
from .models import (
    AlertState, BreachEvent, SafeState, SPLAlertState, SPLPreference,
    SPLSessionReport, WarningState, new_id, to_dict,
)
from .presets import (
    CALIBRATION_RANGE_DB, SPL_REFERENCE_OFFSET_DB, grade_for,
    validate_calibration_reference,
)

logger = logging.getLogger(__name__)


class _OpenBreach:
    """Breach in progress; frozen into a BreachEvent when it closes."""

    def __init__(self, start_time: float, level: float, target_db: float,
                 threshold_db: float, danger: bool):
        self.start_time = start_time
        self.peak_db = level
        self.target_db = target_db
        self.threshold_db = threshold_db
        self.danger = danger

    def update(self, level: float, danger: bool):
        self.peak_db = max(self.peak_db, level)
        self.danger = self.danger or danger

    def close(self, end_time: float) -> BreachEvent:
        return BreachEvent(
            start_time=self.start_time,
            end_time=max(end_time, self.start_time),
            peak_db=self.peak_db,
            target_db=self.target_db,
            threshold_db=self.threshold_db,
            reached_danger=self.danger,
        )


class SPLMonitor:
    """
    Stateful SPL monitor.

    Args:
        source: Optional sample source with start(callback) and stop().
            The callback receives (samples, timestamp).
        preference: Target, flagging mode and stored calibration offset.
        reference_offset_db: Added to RMS dBFS to get an uncalibrated SPL.
        hysteresis_db: A breach only closes at or below target - hysteresis_db.
    """

    def __init__(self, source=None, preference: Optional[SPLPreference] = None,
                 reference_offset_db: float = SPL_REFERENCE_OFFSET_DB,
                 hysteresis_db: float = 1.0):
        self.source = source
        self.preference = preference or SPLPreference()
        self.reference_offset_db = reference_offset_db
        self.hysteresis_db = hysteresis_db
        self._lock = threading.RLock()

        self.is_running = False
        self.is_paused = False
        self.last_report: Optional[SPLSessionReport] = None
        self._reset_session(None)

    def _reset_session(self, start_time: Optional[float]):
        self.raw_current_db: Optional[float] = None
        self.current_db: Optional[float] = None
        self.peak_db: Optional[float] = None
        self.session_peak_db: Optional[float] = None
        self.alert_state: SPLAlertState = SafeState()
        self._level_sum = 0.0
        self._level_count = 0
        self._breaches: List[BreachEvent] = []
        self._open_breach: Optional[_OpenBreach] = None
        self._session_start = start_time
        self._last_timestamp = start_time
        self._paused_at: Optional[float] = None
        self._paused_total = 0.0

    # ----------------------------------------------------------------------
    # Observable state
    # ----------------------------------------------------------------------

    @property
    def calibration_offset(self) -> Optional[float]:
        return self.preference.calibration_offset

    @property
    def average_db(self) -> Optional[float]:
        """Running mean of calibrated samples since the session started."""
        if self._level_count == 0:
            return None
        return self._level_sum / self._level_count

    @property
    def breach_events(self) -> tuple:
        with self._lock:
            return tuple(self._breaches)

    @property
    def current_grade(self) -> str:
        """Grade of the session so far; uses the same thresholds as the report."""
        with self._lock:
            now = self._last_timestamp if self._last_timestamp is not None else 0.0
            events = self._events_until(now)
            monitored = self._monitored_seconds(now)
            breach_seconds = sum(e.duration_seconds for e in events)
            percentage = 0.0
            if events and monitored > 0:
                percentage = min(100.0, max(0.0, breach_seconds / monitored * 100.0))
            danger = sum(1 for e in events if e.reached_danger)
            return grade_for(len(events), danger, percentage)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self.is_running,
                "paused": self.is_paused,
                "current_db": self.current_db,
                "peak_db": self.peak_db,
                "average_db": self.average_db,
                "alert": to_dict(self.alert_state),
                "breach_count": len(self._breaches) + (1 if self._open_breach else 0),
                "grade": self.current_grade,
                "preference": to_dict(self.preference),
            }

    # ----------------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------------

    def start(self, timestamp: Optional[float] = None) -> bool:
        """
        Start a new monitoring session.

        Returns False when a session is already running. Device failures
        from the source propagate as AudioCaptureError.
        """
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            if self.is_running:
                logger.warning("SPL monitoring already running; start ignored")
                return False
            self._reset_session(now)
            self.is_running = True
            self.is_paused = False

        if self.source is not None:
            try:
                # the offset must be known before the first block arrives
                self.source.open()
                if self.source.reference_offset_db is not None:
                    self.reference_offset_db = self.source.reference_offset_db
                self.source.start(self.process_samples)
            except AudioCaptureError:
                with self._lock:
                    self.is_running = False
                logger.error("SPL monitoring could not open the audio source")
                raise

        logger.info(f"SPL monitoring started (target {self.preference.target_db:.0f} dB, "
                    f"{self.preference.flagging_mode.value})")
        return True

    def stop(self, timestamp: Optional[float] = None) -> Optional[SPLSessionReport]:
        """Finish the session and return its report, or None if not running."""
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            if not self.is_running:
                return None
            if self.is_paused and self._paused_at is not None:
                self._paused_total += max(0.0, now - self._paused_at)
                self._paused_at = None
            self._close_breach(now)
            self.is_running = False
            self.is_paused = False

            report = SPLSessionReport(
                id=new_id(),
                session_start=self._session_start,
                session_end=now,
                target_db=self.preference.target_db,
                flagging_mode=self.preference.flagging_mode,
                breach_events=tuple(self._breaches),
                overall_peak_db=self.session_peak_db if self.session_peak_db is not None else 0.0,
                overall_average_db=self.average_db if self.average_db is not None else 0.0,
                total_monitoring_seconds=self._monitored_seconds(now),
            )
            self.alert_state = SafeState()
            self.last_report = report

        if self.source is not None:
            self.source.stop()

        logger.info(f"SPL monitoring stopped: {report.breach_count} breaches, "
                    f"{report.breach_percentage:.1f}% over target, grade '{report.grade}'")
        return report

    def pause(self, timestamp: Optional[float] = None) -> bool:
        """
        Pause the session while the host is in the background.

        The capture source is released, an open breach is closed and paused
        time does not count towards the monitored duration.
        """
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            if not self.is_running or self.is_paused:
                return False
            self._close_breach(now)
            self.alert_state = SafeState()
            self.is_paused = True
            self._paused_at = now

        if self.source is not None:
            self.source.stop()
        logger.info("SPL monitoring paused")
        return True

    def resume(self, timestamp: Optional[float] = None) -> bool:
        """
        Resume a paused session.

        When the source cannot be restarted the session stays paused and
        the AudioCaptureError propagates.
        """
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            if not self.is_running or not self.is_paused:
                return False

        if self.source is not None:
            try:
                self.source.start(self.process_samples)
            except AudioCaptureError:
                logger.error("SPL monitoring could not reopen the audio source; still paused")
                raise

        with self._lock:
            self._paused_total += max(0.0, now - self._paused_at)
            self._paused_at = None
            self.is_paused = False
            self._last_timestamp = now
        logger.info("SPL monitoring resumed")
        return True

    # ----------------------------------------------------------------------
    # Sample processing
    # ----------------------------------------------------------------------

    def process_samples(self, samples, timestamp: Optional[float] = None) -> SPLAlertState:
        """Convert a block of samples to raw SPL and process it."""
        return self.process_level(rms_db(samples) + self.reference_offset_db, timestamp)

    def process_level(self, raw_db: float, timestamp: Optional[float] = None) -> SPLAlertState:
        """Process one raw (uncalibrated) level; ignored while stopped or paused."""
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            if not self.is_running or self.is_paused:
                return self.alert_state

            self.raw_current_db = raw_db
            level = raw_db + (self.calibration_offset or 0.0)
            self.current_db = level
            self.peak_db = level if self.peak_db is None else max(self.peak_db, level)
            self.session_peak_db = level if self.session_peak_db is None else max(self.session_peak_db, level)
            self._level_sum += level
            self._level_count += 1
            self._last_timestamp = now

            self._step(level, now)
            return self.alert_state

    def _step(self, level: float, now: float):
        target = self.preference.target_db
        threshold = self.preference.flag_threshold_db
        over = level - target

        if level > target + threshold:
            state = AlertState(level, over)
        elif level > target:
            state = WarningState(level, over)
        elif level > target - self.hysteresis_db and self.alert_state.is_active:
            state = WarningState(level, 0.0)
        else:
            state = SafeState()

        if state.is_active:
            if self._open_breach is None:
                self._open_breach = _OpenBreach(now, level, target, threshold, state.is_danger)
                logger.info(f"SPL breach started at {level:.1f} dB ({over:+.1f} dB over target)")
            else:
                self._open_breach.update(level, state.is_danger)
        else:
            self._close_breach(now)

        self.alert_state = state

    def _close_breach(self, now: float):
        if self._open_breach is None:
            return
        event = self._open_breach.close(now)
        self._breaches.append(event)
        self._open_breach = None
        logger.info(f"SPL breach closed after {event.duration_seconds:.1f}s, "
                    f"peak {event.peak_db:.1f} dB{' (danger)' if event.reached_danger else ''}")

    def _events_until(self, now: float) -> List[BreachEvent]:
        events = list(self._breaches)
        if self._open_breach is not None:
            events.append(self._open_breach.close(now))
        return events

    def _monitored_seconds(self, now: float) -> float:
        if self._session_start is None:
            return 0.0
        paused = self._paused_total
        if self._paused_at is not None:
            paused += max(0.0, now - self._paused_at)
        return max(0.0, now - self._session_start - paused)

    # ----------------------------------------------------------------------
    # Calibration and thresholds
    # ----------------------------------------------------------------------

    def reset_peak(self):
        """Reset the displayed peak to the current level."""
        with self._lock:
            self.peak_db = self.current_db

    def calculate_calibration_offset(self, known_spl: float) -> Optional[float]:
        """
        Calibrate against a reference meter reading.

        Stores known_spl - raw current level as the offset added to every
        later sample. Returns None when no level has been read yet.

        Raises:
            CalibrationError: known_spl is outside the plausible SPL range;
                the previous calibration is kept.
        """
        if not validate_calibration_reference(known_spl):
            low, high = CALIBRATION_RANGE_DB
            raise CalibrationError(f"Calibration reference {known_spl} dB is outside "
                                   f"{low:.0f}-{high:.0f} dB SPL")
        with self._lock:
            if self.raw_current_db is None:
                logger.warning("Calibration requested before any level was measured")
                return None
            offset = known_spl - self.raw_current_db
            self.preference = replace(self.preference, calibration_offset=offset)

        logger.info(f"SPL calibration offset set to {offset:+.1f} dB")
        return offset

    def update_alert_thresholds(self, preference: SPLPreference):
        """Apply a new target and flagging mode; keeps the stored calibration if none is given."""
        with self._lock:
            if preference.calibration_offset is None:
                preference = replace(preference, calibration_offset=self.preference.calibration_offset)
            self.preference = preference
        logger.info(f"SPL alert thresholds updated: target {preference.target_db:.0f} dB, "
                    f"{preference.flagging_mode.value}")
