"""
Exceptions raised by SanctuarySound.

Ordinary no-data conditions are returned as values; these cover invalid
input and device failures only.
"""


class CalibrationError(ValueError):
    """Calibration reference level outside the plausible SPL range."""


class PayloadError(ValueError):
    """Request payload cannot be turned into a model value."""


class AudioCaptureError(RuntimeError):
    """Audio capture device could not be opened or read."""


class StoreError(RuntimeError):
    """History file could not be read or written."""
