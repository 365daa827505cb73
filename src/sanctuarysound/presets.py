"""
Centralized presets for SanctuarySound - single source of truth.

This module contains the tolerance tables, grading thresholds, room
classifications and measurement timings used by the analysis, SPL and RT60
engines, so the live displays and the stored reports always agree.
"""

from typing import Any, Dict, List, Optional


# Per-parameter comparison tolerances for the delta analysis.
# "optimal" and "close" are absolute distances in the parameter's unit,
# except for HPF where they are fractions of the recommended cutoff.
DELTA_TOLERANCES = {
    "gain": {
        "name": "Preamp Gain",
        "unit": "dB",
        "optimal": 0.0,
        "close": 3.0,
    },
    "fader": {
        "name": "Fader Level",
        "unit": "dB",
        "optimal": 0.0,
        "close": 3.0,
    },
    "hpf": {
        "name": "High-Pass Filter",
        "unit": "ratio",
        "optimal": 0.15,
        "close": 0.30,
    },
    "comp_threshold": {
        "name": "Compressor Threshold",
        "unit": "dB",
        "optimal": 3.0,
        "close": 6.0,
    },
    "comp_ratio": {
        "name": "Compressor Ratio",
        "unit": ":1",
        "optimal": 0.5,
        "close": 1.5,
    },
    "eq_gain": {
        "name": "EQ Band Gain",
        "unit": "dB",
        "optimal": 1.5,
        "close": 3.0,
    },
}

# Snapshot EQ band within this fraction of a recommended frequency is the same band
EQ_MATCH_FREQUENCY_RATIO = 0.25

# Unrecommended snapshot EQ bands stronger than this are reported
EQ_UNMATCHED_REPORT_DB = 4.0

# A compressor is considered engaged above this ratio
COMPRESSION_ACTIVE_RATIO = 1.5

# Channels at or below this fader level are treated as muted in the SPL estimate
SPL_ESTIMATE_MUTE_FADER_DB = -60.0

# Nominal preamp level used by the gain recommendation (dBFS)
NOMINAL_LEVEL_DBFS = -18.0

# Headroom above nominal before digital clipping
HEADROOM_DB = 18.0


# SPL flagging modes: how far over the target a breach must go to count as danger
FLAGGING_MODES = {
    "strict": {
        "name": "Strict",
        "description": "Alert at 2 dB over target - for sensitive congregations and children's services",
        "threshold_db": 2.0,
    },
    "balanced": {
        "name": "Balanced",
        "description": "Alert at 5 dB over target - recommended for most services",
        "threshold_db": 5.0,
    },
    "variable": {
        "name": "Variable",
        "description": "Alert at 8 dB over target - for high-energy sets with planned loud moments",
        "threshold_db": 8.0,
    },
}


# Session grades, evaluated in order; the first matching entry wins.
REPORT_GRADES = [
    {"grade": "Clean Service", "max_breaches": 0, "max_danger": None, "max_percentage": None},
    {"grade": "Good Control", "max_breaches": None, "max_danger": 0, "max_percentage": 10.0},
    {"grade": "Needs Attention", "max_breaches": None, "max_danger": None, "max_percentage": 20.0},
    {"grade": "Over Target", "max_breaches": None, "max_danger": None, "max_percentage": None},
]


# RT60 classifications with an exclusive upper bound in seconds
ROOM_CLASSES = [
    {
        "key": "very_dry",
        "label": "Very Dry",
        "max_rt60": 0.5,
        "advice": "Very controlled room. Great for speech clarity; longer reverb effects are fine if desired.",
    },
    {
        "key": "dry",
        "label": "Dry",
        "max_rt60": 0.8,
        "advice": "Excellent for worship. Speech is clear and music has natural warmth without excessive buildup.",
    },
    {
        "key": "moderate",
        "label": "Moderate",
        "max_rt60": 1.2,
        "advice": "Good balance. Watch for low-mid buildup around 200-400 Hz and consider a subtle HPF on vocals.",
    },
    {
        "key": "live",
        "label": "Live",
        "max_rt60": 1.8,
        "advice": "Reverberant room. Use tighter EQ cuts in the low-mids and keep effects reverb short to avoid wash.",
    },
    {
        "key": "very_live",
        "label": "Very Live",
        "max_rt60": None,
        "advice": "Very reverberant. Prioritize speech clarity with aggressive HPF, tight compression and minimal effects.",
    },
]


# Plausible real-world range for a calibration reference level
CALIBRATION_RANGE_DB = (40.0, 130.0)

# Raw SPL is RMS dBFS plus this offset until calibrated
SPL_REFERENCE_OFFSET_DB = 90.0

# Level reported for an empty or silent block (dBFS)
SILENCE_FLOOR_DB = -160.0


# Clap-test timings (seconds) and thresholds (dB)
RT60_TIMING = {
    "noise_floor_window": 1.5,
    "listen_timeout": 6.0,
    "decay_window": 4.0,
    "max_buffer": 12.0,
    "impulse_margin_db": 20.0,
    "fit_start_db": -5.0,
    # T30, then T20 and T10 when the decay does not clear the noise far enough
    "fit_end_db": (-35.0, -25.0, -15.0),
    "fit_floor_margin_db": 5.0,
    "min_fit_points": 10,
    "envelope_window": 0.02,
    "truncation_margin_db": 5.0,
    "min_rt60": 0.1,
    "max_rt60": 10.0,
    "min_reliable_snr_db": 30.0,
    "default_noise_floor_db": -80.0,
}


def list_flagging_modes() -> List[Dict[str, Any]]:
    """Get list of SPL flagging modes with metadata."""
    return [{
        "key": key,
        "name": mode["name"],
        "description": mode["description"],
        "threshold_db": mode["threshold_db"],
    } for key, mode in FLAGGING_MODES.items()]


def list_room_classes() -> List[Dict[str, Any]]:
    """Get list of RT60 room classifications."""
    return [dict(entry) for entry in ROOM_CLASSES]


def list_delta_tolerances() -> List[Dict[str, Any]]:
    """Get list of delta analysis tolerances."""
    return [{"key": key, **tolerance} for key, tolerance in DELTA_TOLERANCES.items()]


def get_flagging_mode(name: str) -> Dict[str, Any]:
    """Get flagging mode by key."""
    if name not in FLAGGING_MODES:
        raise ValueError(f"Unknown flagging mode: {name}. Available: {list(FLAGGING_MODES.keys())}")
    return FLAGGING_MODES[name].copy()


def get_delta_tolerance(name: str) -> Dict[str, Any]:
    """Get delta tolerance by parameter key."""
    if name not in DELTA_TOLERANCES:
        raise ValueError(f"Unknown delta parameter: {name}. Available: {list(DELTA_TOLERANCES.keys())}")
    return DELTA_TOLERANCES[name].copy()


def get_room_class(rt60_seconds: float) -> Dict[str, Any]:
    """Get the room classification for an RT60 value."""
    for entry in ROOM_CLASSES:
        if entry["max_rt60"] is None or rt60_seconds < entry["max_rt60"]:
            return dict(entry)
    return dict(ROOM_CLASSES[-1])


def grade_for(breach_count: int, danger_count: int, breach_percentage: float) -> str:
    """Grade a monitoring session; shared by the live badge and the stored report."""
    for entry in REPORT_GRADES:
        if _within(breach_count, entry["max_breaches"]) \
                and _within(danger_count, entry["max_danger"]) \
                and _below(breach_percentage, entry["max_percentage"]):
            return entry["grade"]
    return REPORT_GRADES[-1]["grade"]


def _within(value: float, limit: Optional[float]) -> bool:
    return limit is None or value <= limit


def _below(value: float, limit: Optional[float]) -> bool:
    return limit is None or value < limit


def validate_flagging_mode_name(name: str) -> bool:
    """Check if flagging mode key is valid."""
    return name in FLAGGING_MODES


def validate_calibration_reference(known_spl: float) -> bool:
    """Check if a calibration reference level is physically plausible."""
    low, high = CALIBRATION_RANGE_DB
    return low <= known_spl <= high
