"""
Level and reverberation math for SanctuarySound.

Stateless numpy functions used by the SPL monitor and the RT60 pipeline:
RMS levels, noise floor, impulse search, Schroeder backward integration and
RT60 extraction from the energy decay curve.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .presets import RT60_TIMING, SILENCE_FLOOR_DB, get_room_class

logger = logging.getLogger(__name__)


def to_float_samples(samples) -> np.ndarray:
    """Convert a block to float64 in [-1, 1]; int16 PCM is scaled."""
    data = np.asarray(samples)
    if data.dtype == np.int16:
        return data.astype(np.float64) / 32768.0
    return data.astype(np.float64)


def rms_db(samples, floor_db: float = SILENCE_FLOOR_DB) -> float:
    """RMS level in dBFS, or floor_db for empty or silent input."""
    data = to_float_samples(samples)
    if data.size == 0:
        return floor_db
    rms = np.sqrt(np.mean(data ** 2))
    if rms <= 0:
        return floor_db
    return max(float(20.0 * np.log10(rms)), floor_db)


def noise_floor_db(samples) -> float:
    """Noise floor in dBFS of a pre-impulse segment."""
    return rms_db(samples, floor_db=RT60_TIMING["default_noise_floor_db"])


def peak_db(samples) -> float:
    data = to_float_samples(samples)
    if data.size == 0:
        return RT60_TIMING["default_noise_floor_db"]
    peak = float(np.max(np.abs(data)))
    if peak <= 0:
        return RT60_TIMING["default_noise_floor_db"]
    return float(20.0 * np.log10(peak))


def find_impulse(samples, noise_floor: float,
                 margin_db: float = RT60_TIMING["impulse_margin_db"]) -> Optional[int]:
    """Index of the first sample louder than noise_floor + margin_db, or None."""
    data = to_float_samples(samples)
    threshold = 10.0 ** ((noise_floor + margin_db) / 20.0)
    hits = np.flatnonzero(np.abs(data) > threshold)
    if hits.size == 0:
        return None
    return int(hits[0])


def decay_envelope(samples, sample_rate: float,
                   window_seconds: float = RT60_TIMING["envelope_window"]) -> np.ndarray:
    """
    Centered moving-average power of a block.

    Windows are cut at the block edges and averaged over the samples they
    actually cover.
    """
    data = to_float_samples(samples)
    n = data.size
    if n == 0:
        return np.array([], dtype=np.float64)

    width = max(1, int(window_seconds * sample_rate))
    csum = np.concatenate(([0.0], np.cumsum(data ** 2)))
    index = np.arange(n)
    lo = np.clip(index - width // 2, 0, n)
    hi = np.clip(index - width // 2 + width, 0, n)
    return (csum[hi] - csum[lo]) / (hi - lo)


def truncation_index(envelope: np.ndarray, noise_floor: float,
                     margin_db: float = RT60_TIMING["truncation_margin_db"]) -> int:
    """First index where the envelope has sunk to noise_floor + margin_db."""
    limit = 10.0 ** ((noise_floor + margin_db) / 10.0)
    hits = np.flatnonzero(envelope <= limit)
    if hits.size == 0:
        return len(envelope)
    return int(hits[0])


def decay_slope(envelope_db: np.ndarray, sample_rate: float) -> Optional[float]:
    """
    Decay rate in dB/s of a level envelope.

    The line is fitted from fit_start_db below the envelope maximum to the
    end of the envelope. Returns None when there is no falling section.
    """
    if len(envelope_db) == 0 or sample_rate <= 0:
        return None

    top = int(np.argmax(envelope_db))
    below = np.flatnonzero(envelope_db[top:] <= envelope_db[top] + RT60_TIMING["fit_start_db"])
    if below.size == 0:
        return None
    first = top + int(below[0])
    if len(envelope_db) - first < RT60_TIMING["min_fit_points"]:
        return None

    x = np.arange(first, len(envelope_db)) / float(sample_rate)
    fit = linear_regression(x, envelope_db[first:])
    if fit is None or fit[0] >= -0.1:
        return None
    return fit[0]


def energy_decay_curve(samples, noise_power: float = 0.0, tail_energy: float = 0.0) -> np.ndarray:
    """
    Schroeder backward-integrated energy decay curve in dB.

    EDC(t) is the remaining energy after t, normalized so EDC[0] = 0 dB.
    noise_power is subtracted from every sample's energy and tail_energy
    stands in for the decay beyond the end of the block, which keeps the
    curve straight when the block was cut at the noise floor.
    Zero-energy points are clamped to the default noise floor.
    """
    data = to_float_samples(samples)
    if data.size == 0:
        return np.array([], dtype=np.float64)

    energy = np.cumsum((data ** 2 - noise_power)[::-1])[::-1] + tail_energy
    if tail_energy > 0:
        energy = np.maximum(energy, tail_energy)
    floor = RT60_TIMING["default_noise_floor_db"]
    if energy[0] <= 0:
        return np.full(data.size, floor)

    with np.errstate(divide="ignore", invalid="ignore"):
        edc = 10.0 * np.log10(energy / energy[0])
    edc[~np.isfinite(edc)] = floor
    return edc


def linear_regression(x: np.ndarray, y: np.ndarray) -> Optional[Tuple[float, float]]:
    """Least-squares (slope, intercept), or None for degenerate input."""
    if len(x) != len(y) or len(x) < 2:
        return None
    if np.ptp(x) < 1e-12:
        return None
    slope, intercept = np.polyfit(x, y, 1)
    return float(slope), float(intercept)


def extract_rt60(edc_db: np.ndarray, sample_rate: float) -> Optional[float]:
    """
    Fit the EDC from -5 dB down and extrapolate to a 60 dB drop.

    The fit ends at -35 dB when the curve reaches far enough below it,
    otherwise at -25 or -15 dB. Returns None when no range is covered, the
    range has too few points, the curve is not decaying, or the result
    falls outside the plausible 0.1-10 s range.
    """
    if len(edc_db) == 0 or sample_rate <= 0:
        return None

    reach = float(np.min(edc_db))
    margin = RT60_TIMING["fit_floor_margin_db"]
    lowers = [end for end in RT60_TIMING["fit_end_db"] if reach <= end - margin]
    if not lowers:
        logger.debug(f"EDC only reaches {reach:.1f} dB")
        return None

    upper, lower = RT60_TIMING["fit_start_db"], lowers[0]
    indices = np.flatnonzero((edc_db <= upper) & (edc_db >= lower))
    if indices.size < RT60_TIMING["min_fit_points"]:
        logger.debug(f"Only {indices.size} EDC points in fit range")
        return None

    fit = linear_regression(indices / float(sample_rate), edc_db[indices])
    if fit is None:
        return None
    slope, _ = fit
    if slope >= -0.1:
        return None

    rt60 = -60.0 / slope
    if not RT60_TIMING["min_rt60"] <= rt60 <= RT60_TIMING["max_rt60"]:
        logger.debug(f"RT60 {rt60:.2f}s outside plausible range")
        return None
    return rt60


def classify_room(rt60_seconds: float) -> Dict[str, Any]:
    """Room classification entry (key, label, advice) for an RT60 value."""
    return get_room_class(rt60_seconds)


def analyze_decay(decay, noise_floor: float, sample_rate: float) -> Optional[Dict[str, float]]:
    """
    Analyze a recorded decay that starts at the impulse.

    The decay is cut where its envelope sinks into the noise floor, the
    noise energy is subtracted and the energy past the cut is estimated
    from the envelope slope before backward integration. When the EDC
    is too short for even a T10 fit, the envelope slope gives the RT60.

    Returns:
        Dictionary with rt60_seconds, peak_db and snr_db, or None when the
        recording holds no measurable decay.
    """
    data = to_float_samples(decay)
    if data.size == 0:
        return None

    peak = peak_db(data)
    noise_power = 10.0 ** (noise_floor / 10.0)
    envelope = decay_envelope(data, sample_rate)
    cut = truncation_index(envelope, noise_floor)
    if cut < RT60_TIMING["min_fit_points"]:
        logger.debug(f"Decay reaches the noise floor after {cut} samples")
        return None

    # every point before the cut sits at least the margin above the noise
    signal_db = 10.0 * np.log10(envelope[:cut] - noise_power)
    slope = decay_slope(signal_db, sample_rate)
    if slope is None:
        return None

    rate = slope * np.log(10.0) / 10.0 / sample_rate
    tail = (envelope[cut - 1] - noise_power) / -rate
    rt60 = extract_rt60(energy_decay_curve(data[:cut], noise_power, tail), sample_rate)
    if rt60 is None:
        rt60 = -60.0 / slope
        if not RT60_TIMING["min_rt60"] <= rt60 <= RT60_TIMING["max_rt60"]:
            logger.debug(f"Envelope RT60 {rt60:.2f}s outside plausible range")
            return None
        logger.debug(f"Short decay, RT60 {rt60:.2f}s from envelope slope")

    return {
        "rt60_seconds": float(rt60),
        "peak_db": peak,
        "snr_db": peak - noise_floor,
    }
