#!/usr/bin/env python3
"""
Capture device detection for SanctuarySound.

Finds ALSA cards that can record, identifies known measurement microphones
and their sensitivity, and answers the "may we capture audio" question for
the SPL monitor and the RT60 pipeline.
"""

import alsaaudio
import subprocess
import re
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

GAIN_CONTROLS = ("Mic", "Microphone", "Capture", "Input")
GAIN_PATTERN = re.compile(r'\[([+-]?\d+(?:\.\d+)?)dB\]')


@dataclass(frozen=True)
class CaptureDevice:
    card_index: int
    name: str
    sensitivity: Optional[float]
    gain_db: Optional[float]

    @property
    def device(self) -> str:
        return f"hw:{self.card_index},0"


class MicrophoneDetector:
    """Detects capture-capable cards and known measurement microphones."""

    # (usb_id, card id) -> (display name, dB SPL at 0 dBFS)
    KNOWN_MICROPHONES = {
        ("0d8c:0134", "Microphone"): ("HiFiBerry Mic", 115.5),
        (None, "UMM6"): ("Dayton UMM6", 137.5),
        (None, "U18dB"): ("MiniDSP Umik", 115.0),
    }

    def __init__(self):
        self.audio_cards = self._get_audio_cards()

    def _get_audio_cards(self) -> List[str]:
        try:
            return alsaaudio.cards()
        except alsaaudio.ALSAAudioError as e:
            logger.error(f"Failed to get audio cards: {e}")
            return []

    def _can_capture(self, card_index: int) -> bool:
        try:
            pcm = alsaaudio.PCM(type=alsaaudio.PCM_CAPTURE, mode=alsaaudio.PCM_NORMAL,
                                device=f"hw:{card_index}")
            pcm.close()
            return True
        except alsaaudio.ALSAAudioError:
            return False

    def _read_proc(self, card_index: int, entry: str) -> Optional[str]:
        try:
            with open(f"/proc/asound/card{card_index}/{entry}", "r") as f:
                return f.read().strip()
        except OSError:
            return None

    def _identify(self, card_index: int, card_name: str) -> Tuple[str, Optional[float]]:
        usb_id = self._read_proc(card_index, "usbid")
        card_id = self._read_proc(card_index, "id") or card_name

        for (known_usb_id, known_id), (name, sensitivity) in self.KNOWN_MICROPHONES.items():
            if known_id != card_id:
                continue
            if known_usb_id is None or usb_id is None or known_usb_id == usb_id:
                return name, sensitivity
        return f"Unknown ({card_id})", None

    def _capture_gain(self, card_index: int) -> Optional[float]:
        """Current capture gain in dB from amixer, if the card exposes one."""
        for control in GAIN_CONTROLS:
            try:
                result = subprocess.run(['amixer', '-c', str(card_index), 'sget', control],
                                        capture_output=True, text=True, timeout=5)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.debug(f"amixer unavailable for card {card_index}: {e}")
                return None
            if result.returncode != 0:
                continue
            for line in result.stdout.splitlines():
                if 'Capture' in line:
                    match = GAIN_PATTERN.search(line)
                    if match:
                        return float(match.group(1))
        return None

    def detect(self) -> List[CaptureDevice]:
        """All capture-capable cards, known microphones first."""
        devices = []
        for card_index, card_name in enumerate(self.audio_cards):
            if not self._can_capture(card_index):
                continue
            name, sensitivity = self._identify(card_index, card_name)
            devices.append(CaptureDevice(card_index, name, sensitivity,
                                         self._capture_gain(card_index)))
        devices.sort(key=lambda d: d.sensitivity is None)
        return devices


def default_device() -> Optional[CaptureDevice]:
    devices = MicrophoneDetector().detect()
    return devices[0] if devices else None


def has_capture_permission() -> bool:
    """Capture is possible when at least one capture device is present."""
    return default_device() is not None


def main():
    """List capture devices as card:name:sensitivity:gain."""
    for device in MicrophoneDetector().detect():
        sensitivity = device.sensitivity if device.sensitivity is not None else "N/A"
        gain = device.gain_db if device.gain_db is not None else "N/A"
        print(f"{device.card_index}:{device.name}:{sensitivity}:{gain}")
    return 0


if __name__ == "__main__":
    import sys
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
