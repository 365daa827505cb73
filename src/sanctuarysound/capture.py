#!/usr/bin/env python3
"""
ALSA audio capture for SanctuarySound.

AlsaCaptureSource reads fixed-size blocks from a capture PCM on a daemon
thread and hands each block as float32 in [-1, 1], with its timestamp, to
the engine callback.
"""

import time
import logging
import threading
from typing import Callable, Optional

import numpy as np
import alsaaudio

from .errors import AudioCaptureError
from .microphone import MicrophoneDetector

logger = logging.getLogger(__name__)


class AlsaCaptureSource:
    """Sample source for SPLMonitor and RT60Pipeline."""

    def __init__(self, device: Optional[str] = None, sample_rate: int = 48000,
                 channels: int = 1, period_size: int = 1024):
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self.period_size = period_size
        self.microphone_sensitivity: Optional[float] = None
        self.microphone_gain: Optional[float] = None

        self._pcm = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def reference_offset_db(self) -> Optional[float]:
        """SPL at 0 dBFS for a known microphone, corrected by its capture gain."""
        if self.microphone_sensitivity is None:
            return None
        return self.microphone_sensitivity - (self.microphone_gain or 0.0)

    def _resolve_device(self) -> str:
        detected = MicrophoneDetector().detect()
        if self.device is None:
            if not detected:
                raise AudioCaptureError("No microphone detected")
            chosen = detected[0]
            self.device = chosen.device
        else:
            chosen = next((d for d in detected if d.device == self.device), None)
        if chosen is not None:
            self.microphone_sensitivity = chosen.sensitivity
            self.microphone_gain = chosen.gain_db
        return self.device

    def open(self):
        """
        Resolve the device and open the PCM without starting delivery.

        After this the microphone sensitivity, and so reference_offset_db,
        is known. Calling it on an open source does nothing.
        """
        if self._pcm is not None:
            return

        device = self._resolve_device()
        try:
            self._pcm = alsaaudio.PCM(
                type=alsaaudio.PCM_CAPTURE,
                mode=alsaaudio.PCM_NORMAL,
                device=device,
                channels=self.channels,
                rate=self.sample_rate,
                format=alsaaudio.PCM_FORMAT_S16_LE,
                periodsize=self.period_size,
            )
        except alsaaudio.ALSAAudioError as e:
            raise AudioCaptureError(f"Failed to open capture device {device}: {e}")

    def start(self, callback: Callable[[np.ndarray, float], object]):
        """Open the PCM if needed and start delivering blocks to callback(samples, timestamp)."""
        if self.is_running:
            logger.debug("Capture already running")
            return

        self.open()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, args=(callback,), daemon=True)
        self._thread.start()
        logger.info(f"Capture started on {self.device} at {self.sample_rate} Hz")

    def _run(self, callback):
        while not self._stop_event.is_set():
            try:
                length, data = self._pcm.read()
            except alsaaudio.ALSAAudioError as e:
                logger.error(f"Capture read failed: {e}")
                break
            if length <= 0:
                continue

            samples = np.frombuffer(data, dtype=np.int16)
            if self.channels > 1:
                samples = samples.reshape(-1, self.channels)[:, 0]
            callback(samples.astype(np.float32) / 32768.0, time.time())

    def stop(self):
        """Stop capturing; safe to call repeatedly and from the callback."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._thread = None
        if self._pcm is not None:
            self._pcm.close()
            self._pcm = None
            logger.info("Capture stopped")
