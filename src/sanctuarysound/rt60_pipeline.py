"""
RT60 clap-test measurement for SanctuarySound.

The pipeline walks strictly forward through its phases:

    Idle -> MeasuringNoiseFloor -> ListeningForImpulse -> RecordingDecay
         -> Processing -> Result | Failed

Only cancel_measurement(), suspend() and reset() lead back to Idle.
Sample blocks are delivered by a capture source and processed one at a
time under a lock.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from . import acoustics
from .errors import AudioCaptureError, StoreError
from .models import RT60Measurement, new_id, to_dict
from .presets import RT60_TIMING

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RT60Phase:
    @property
    def name(self) -> str:
        return "idle"

    @property
    def is_terminal(self) -> bool:
        return False

    @property
    def is_active(self) -> bool:
        """Measurement in progress."""
        return False


@dataclass(frozen=True)
class Idle(RT60Phase):
    pass


@dataclass(frozen=True)
class _ActivePhase(RT60Phase):
    @property
    def is_active(self) -> bool:
        return True


@dataclass(frozen=True)
class MeasuringNoiseFloor(_ActivePhase):
    @property
    def name(self) -> str:
        return "measuring_noise_floor"


@dataclass(frozen=True)
class ListeningForImpulse(_ActivePhase):
    noise_floor_db: float

    @property
    def name(self) -> str:
        return "listening_for_impulse"


@dataclass(frozen=True)
class RecordingDecay(_ActivePhase):
    noise_floor_db: float

    @property
    def name(self) -> str:
        return "recording_decay"


@dataclass(frozen=True)
class Processing(_ActivePhase):
    @property
    def name(self) -> str:
        return "processing"


@dataclass(frozen=True)
class Result(RT60Phase):
    measurement: RT60Measurement

    @property
    def name(self) -> str:
        return "result"

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed(RT60Phase):
    reason: str

    @property
    def name(self) -> str:
        return "failed"

    @property
    def is_terminal(self) -> bool:
        return True


NO_IMPULSE = "No impulse detected. Clap loudly once the room is quiet."
PERMISSION_DENIED = "Microphone permission denied"
CAPTURE_FAILED = "Could not start audio capture"
BUFFER_EXCEEDED = "Recording exceeded the maximum buffer length"
NO_DECAY = "Could not measure a clean decay. Try again in a quieter room."


class RT60Pipeline:
    """
    Phase-sequenced RT60 measurement.

    Args:
        source: Optional sample source with start(callback) and stop().
        permission_check: Callable returning True when capture is allowed.
            Without one, permission is granted.
        store: Optional HistoryStore for saving measurements.
        sample_rate: Sample rate of the delivered blocks.
        min_reliable_snr_db: Results below this SNR are marked unreliable.
    """

    def __init__(self, source=None, permission_check: Optional[Callable[[], bool]] = None,
                 store=None, sample_rate: int = 48000,
                 min_reliable_snr_db: float = RT60_TIMING["min_reliable_snr_db"]):
        self.source = source
        self.permission_check = permission_check
        self.store = store
        self.sample_rate = sample_rate
        self.min_reliable_snr_db = min_reliable_snr_db
        self._lock = threading.RLock()

        self.phase: RT60Phase = Idle()
        self.permission_granted: Optional[bool] = None
        self.started_at: Optional[float] = None
        self._measurements: List[RT60Measurement] = []
        if store is not None:
            self._measurements = list(store.list_rt60_measurements())
        self._clear_buffers()

    def _clear_buffers(self):
        self._noise: List[np.ndarray] = []
        self._noise_count = 0
        self._decay: List[np.ndarray] = []
        self._decay_count = 0
        self._total_count = 0
        self._listen_count = 0
        self._listen_started: Optional[float] = None
        self._noise_floor: Optional[float] = None

    @property
    def measurements(self) -> tuple:
        """Measurement history, newest first."""
        with self._lock:
            return tuple(self._measurements)

    def status(self):
        with self._lock:
            phase = {"phase": self.phase.name}
            if isinstance(self.phase, Result):
                phase["measurement"] = to_dict(self.phase.measurement)
            elif isinstance(self.phase, Failed):
                phase["reason"] = self.phase.reason
            elif isinstance(self.phase, (ListeningForImpulse, RecordingDecay)):
                phase["noise_floor_db"] = self.phase.noise_floor_db
            phase["permission_granted"] = self.permission_granted
            phase["started_at"] = self.started_at
            return phase

    # ----------------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------------

    def request_permission(self) -> bool:
        granted = True
        if self.permission_check is not None:
            granted = bool(self.permission_check())
        self.permission_granted = granted
        if not granted:
            logger.warning("Microphone permission denied")
        return granted

    def start_measurement(self, timestamp: Optional[float] = None) -> bool:
        """
        Begin a clap-test measurement.

        Returns False when a measurement is already in progress, when
        permission is denied or when the source cannot be opened; the two
        latter cases leave the pipeline in Failed.
        """
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            if self.phase.is_active:
                logger.warning(f"RT60 measurement already in progress ({self.phase.name})")
                return False

        if not self.request_permission():
            with self._lock:
                self.phase = Failed(PERMISSION_DENIED)
            return False

        with self._lock:
            self._clear_buffers()
            self.started_at = now
            self.phase = MeasuringNoiseFloor()

        if self.source is not None:
            try:
                self.source.start(self.process_samples)
            except AudioCaptureError as e:
                logger.error(f"RT60 capture failed to start: {e}")
                with self._lock:
                    self._clear_buffers()
                    self.phase = Failed(CAPTURE_FAILED)
                return False

        logger.info("RT60 measurement started, measuring noise floor")
        return True

    def cancel_measurement(self) -> bool:
        """Abort an in-progress measurement; nothing is added to the history."""
        with self._lock:
            if not self.phase.is_active:
                return False
            self._clear_buffers()
            self.phase = Idle()
        self._release_source()
        logger.info("RT60 measurement cancelled")
        return True

    def suspend(self) -> bool:
        """Host went to the background: discard the in-progress measurement."""
        suspended = self.cancel_measurement()
        if suspended:
            logger.info("RT60 measurement discarded on suspend")
        return suspended

    def reset(self) -> bool:
        """Clear a Result or Failed phase back to Idle, keeping the history."""
        with self._lock:
            if not self.phase.is_terminal:
                return False
            self.phase = Idle()
        return True

    def delete_measurement(self, measurement_id: str) -> bool:
        """
        Remove a measurement from the history and the store.

        A StoreError propagates and leaves the in-memory history untouched.
        """
        with self._lock:
            if not any(m.id == measurement_id for m in self._measurements):
                return False
            if self.store is not None:
                self.store.delete_rt60_measurement(measurement_id)
            self._measurements = [m for m in self._measurements if m.id != measurement_id]
        logger.info(f"Deleted RT60 measurement {measurement_id}")
        return True

    def _release_source(self):
        if self.source is not None:
            self.source.stop()

    # ----------------------------------------------------------------------
    # Sample processing
    # ----------------------------------------------------------------------

    def process_samples(self, samples, timestamp: Optional[float] = None) -> RT60Phase:
        """Feed one block of mono samples; returns the phase afterwards."""
        now = timestamp if timestamp is not None else time.time()
        data = acoustics.to_float_samples(samples).ravel()

        with self._lock:
            if not self.phase.is_active:
                return self.phase

            self._total_count += data.size
            if self._total_count > RT60_TIMING["max_buffer"] * self.sample_rate:
                self._fail(BUFFER_EXCEEDED)
            elif isinstance(self.phase, MeasuringNoiseFloor):
                self._on_noise_block(data, now)
            elif isinstance(self.phase, ListeningForImpulse):
                self._on_listen_block(data, now)
            elif isinstance(self.phase, RecordingDecay):
                self._on_decay_block(data, now)
            phase = self.phase

        if phase.is_terminal:
            self._release_source()
        return phase

    def check_timeout(self, timestamp: Optional[float] = None) -> RT60Phase:
        """Enforce the listening timeout without waiting for the next block."""
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            timed_out = (isinstance(self.phase, ListeningForImpulse)
                         and self._listen_started is not None
                         and now - self._listen_started >= RT60_TIMING["listen_timeout"])
            if timed_out:
                self._fail(NO_IMPULSE)
            phase = self.phase
        if timed_out:
            self._release_source()
        return phase

    def _on_noise_block(self, data: np.ndarray, now: float):
        needed = int(RT60_TIMING["noise_floor_window"] * self.sample_rate)
        take = min(data.size, needed - self._noise_count)
        self._noise.append(data[:take])
        self._noise_count += take
        if self._noise_count < needed:
            return

        self._noise_floor = acoustics.noise_floor_db(np.concatenate(self._noise))
        self._noise = []
        self._listen_started = now
        self.phase = ListeningForImpulse(self._noise_floor)
        logger.info(f"Noise floor {self._noise_floor:.1f} dBFS, listening for impulse")

        if take < data.size:
            self._on_listen_block(data[take:], now)

    def _on_listen_block(self, data: np.ndarray, now: float):
        index = acoustics.find_impulse(data, self._noise_floor)
        if index is None:
            self._listen_count += data.size
            elapsed = now - self._listen_started
            timeout = RT60_TIMING["listen_timeout"]
            if elapsed >= timeout or self._listen_count >= timeout * self.sample_rate:
                self._fail(NO_IMPULSE)
            return

        self.phase = RecordingDecay(self._noise_floor)
        logger.info("Impulse detected, recording decay")
        self._on_decay_block(data[index:], now)

    def _on_decay_block(self, data: np.ndarray, now: float):
        needed = int(RT60_TIMING["decay_window"] * self.sample_rate)
        take = min(data.size, needed - self._decay_count)
        self._decay.append(data[:take])
        self._decay_count += take
        if self._decay_count >= needed:
            self.phase = Processing()
            self._process(now)

    def _process(self, now: float):
        decay = np.concatenate(self._decay)
        noise_floor = self._noise_floor
        self._clear_buffers()

        analysis = acoustics.analyze_decay(decay, noise_floor, self.sample_rate)
        if analysis is None:
            self._fail(NO_DECAY)
            return

        rt60 = analysis["rt60_seconds"]
        room_class = acoustics.classify_room(rt60)
        measurement = RT60Measurement(
            id=new_id(),
            date=now,
            rt60_seconds=rt60,
            classification=room_class["label"],
            is_reliable=bool(analysis["snr_db"] >= self.min_reliable_snr_db),
            noise_floor_db=noise_floor,
            snr_db=analysis["snr_db"],
            advice=room_class["advice"],
        )
        self._measurements.insert(0, measurement)
        if self.store is not None:
            try:
                self.store.save_rt60_measurement(measurement)
            except StoreError as e:
                logger.error(f"Could not persist RT60 measurement: {e}")

        self.phase = Result(measurement)
        logger.info(f"RT60 {rt60:.2f}s ({room_class['label']}), SNR {analysis['snr_db']:.1f} dB"
                    f"{'' if measurement.is_reliable else ' (unreliable)'}")

    def _fail(self, reason: str):
        self._clear_buffers()
        self.phase = Failed(reason)
        logger.warning(f"RT60 measurement failed: {reason}")
