"""
Value types shared by the SanctuarySound engines.

Inputs (service description, console snapshot, SPL preference) and outputs
(recommendations, analyses, SPL reports, RT60 measurements) are frozen
dataclasses with tuple fields, so equal inputs always produce equal outputs.
"""

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .vocabulary import (
    BandComposition, DrumConfiguration, ExperienceLevel, InputSource, MicType,
    MixerModel, MusicalKey, RoomSize, RoomSurface, SongIntensity, SPLFlaggingMode,
    VocalRange, VocalStyle, parse_enum,
)


def to_dict(obj: Any) -> Any:
    """
    Recursively convert model values to JSON-compatible structures.

    Enums become their lower-case member name, tuples become lists and numpy
    scalars become Python numbers. Dataclasses may list read-only properties
    in ``_derived`` to have them included next to their fields.
    """
    if is_dataclass(obj) and not isinstance(obj, type):
        result = {f.name: to_dict(getattr(obj, f.name)) for f in fields(obj)}
        for name in getattr(obj, "_derived", ()):
            result[name] = to_dict(getattr(obj, name))
        return result
    elif isinstance(obj, Enum):
        return obj.name.lower()
    elif isinstance(obj, dict):
        return {k: to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [to_dict(v) for v in obj]
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, (np.integer, np.floating)):
        return float(obj)
    return obj


def new_id() -> str:
    return str(uuid.uuid4())


# --------------------------------------------------------------------------
# Service description
# --------------------------------------------------------------------------

@dataclass(frozen=True)
class VocalProfile:
    """Singer descriptor used to tailor vocal gain, EQ and compression."""
    range: VocalRange
    style: VocalStyle = VocalStyle.CONTEMPORARY
    mic_type: MicType = MicType.DYNAMIC_CARDIOID

    @property
    def close_mic_spl(self) -> float:
        return self.range.close_mic_spl

    @property
    def presence_zone(self) -> Tuple[float, float]:
        return self.range.presence_zone


@dataclass(frozen=True)
class InputChannel:
    label: str
    source: InputSource
    vocal_profile: Optional[VocalProfile] = None


@dataclass(frozen=True)
class SetlistSong:
    title: str
    key: MusicalKey
    intensity: SongIntensity = SongIntensity.MEDIUM


@dataclass(frozen=True)
class RoomProfile:
    size: RoomSize = RoomSize.MEDIUM
    surface: RoomSurface = RoomSurface.MIXED

    @property
    def effective_rt60(self) -> float:
        return self.size.base_rt60 * self.surface.rt60_multiplier

    @property
    def has_low_end_problem(self) -> bool:
        return self.effective_rt60 > 1.5


@dataclass(frozen=True)
class WorshipService:
    name: str
    date: str
    mixer: MixerModel
    band_composition: BandComposition = BandComposition.LIVE
    drum_config: DrumConfiguration = DrumConfiguration.DRUM_SHIELD
    room: RoomProfile = field(default_factory=RoomProfile)
    channels: Tuple[InputChannel, ...] = ()
    setlist: Tuple[SetlistSong, ...] = ()
    experience_level: ExperienceLevel = ExperienceLevel.INTERMEDIATE
    venue_id: Optional[str] = None
    room_id: Optional[str] = None


# --------------------------------------------------------------------------
# Recommendation output
# --------------------------------------------------------------------------

@dataclass(frozen=True)
class DbRange:
    low: float
    high: float

    _derived = ("midpoint",)

    @property
    def midpoint(self) -> float:
        return (self.low + self.high) / 2.0

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high

    def distance(self, value: float) -> float:
        """Signed distance to the nearest bound; 0 inside the range."""
        if value < self.low:
            return value - self.low
        if value > self.high:
            return value - self.high
        return 0.0


@dataclass(frozen=True)
class EQBand:
    frequency: float
    gain_db: float
    q: float = 1.0
    band_type: str = "peaking"
    reason: str = ""


@dataclass(frozen=True)
class CompressorSetting:
    threshold_db: float
    ratio: float
    attack_ms: float
    release_ms: float
    makeup_gain_db: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class KeyWarning:
    song_title: str
    key: MusicalKey
    conflict_frequency: float
    severity: str
    suggestion: str


@dataclass(frozen=True)
class ChannelRecommendation:
    label: str
    source: InputSource
    gain_range: DbRange
    fader_start_db: float
    fader_range: DbRange
    headroom_db: float
    hpf_frequency: Optional[float]
    hpf_enabled: bool
    eq_bands: Tuple[EQBand, ...] = ()
    compressor: Optional[CompressorSetting] = None
    key_warnings: Tuple[KeyWarning, ...] = ()
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MixerRecommendation:
    service_name: str
    mixer: MixerModel
    channels: Tuple[ChannelRecommendation, ...] = ()
    global_notes: Tuple[str, ...] = ()
    # loudest setlist intensity; the SPL estimate assumes the set peaks there
    peak_intensity_offset_db: float = 0.0


# --------------------------------------------------------------------------
# Console snapshot and analysis
# --------------------------------------------------------------------------

@dataclass(frozen=True)
class SnapshotEQBand:
    frequency: float
    gain_db: float
    q: float = 1.0
    enabled: bool = True


@dataclass(frozen=True)
class ChannelSnapshot:
    channel_number: int
    name: str
    gain_db: Optional[float] = None
    fader_db: Optional[float] = None
    hpf_frequency: Optional[float] = None
    hpf_enabled: bool = False
    eq_bands: Tuple[SnapshotEQBand, ...] = ()
    comp_threshold_db: Optional[float] = None
    comp_ratio: Optional[float] = None
    phantom_power: bool = False
    pad_enabled: bool = False


@dataclass(frozen=True)
class MixerSnapshot:
    name: str
    channels: Tuple[ChannelSnapshot, ...] = ()
    mixer: Optional[MixerModel] = None


class DeltaStatus(Enum):
    OPTIMAL = "Optimal"
    CLOSE = "Close"
    ATTENTION = "Needs Attention"
    MISSING = "No Data"


class AnalysisScore(Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Needs Work"

    @property
    def rank(self) -> int:
        """0 is best."""
        return list(AnalysisScore).index(self)


@dataclass(frozen=True)
class EQBandDelta:
    frequency: float
    actual_gain_db: float
    recommended_gain_db: float
    delta_db: float
    status: DeltaStatus
    suggestion: str = ""


@dataclass(frozen=True)
class CompressorDelta:
    actual_threshold_db: Optional[float]
    recommended_threshold_db: Optional[float]
    actual_ratio: Optional[float]
    recommended_ratio: Optional[float]
    threshold_status: DeltaStatus
    ratio_status: DeltaStatus
    suggestion: str = ""


@dataclass(frozen=True)
class ChannelDelta:
    channel_number: int
    channel_name: str
    source: InputSource
    actual_gain_db: Optional[float]
    recommended_gain_range: Optional[DbRange]
    gain_status: DeltaStatus
    actual_fader_db: Optional[float]
    recommended_fader_range: Optional[DbRange]
    fader_status: DeltaStatus
    actual_hpf: Optional[float]
    recommended_hpf: Optional[float]
    hpf_status: DeltaStatus
    eq_deltas: Tuple[EQBandDelta, ...]
    comp_delta: Optional[CompressorDelta]
    overall_score: AnalysisScore
    suggestions: Tuple[str, ...] = ()

    @property
    def statuses(self) -> Tuple[DeltaStatus, ...]:
        result = [self.gain_status, self.fader_status, self.hpf_status]
        if self.comp_delta is not None:
            result += [self.comp_delta.threshold_status, self.comp_delta.ratio_status]
        result += [d.status for d in self.eq_deltas]
        return tuple(result)


@dataclass(frozen=True)
class SPLEstimate:
    estimated_peak_db: float
    target_db: float
    delta_db: float
    flagged: bool
    message: str = ""


@dataclass(frozen=True)
class MixerAnalysis:
    snapshot_name: str
    channel_deltas: Tuple[ChannelDelta, ...]
    overall_score: AnalysisScore
    global_suggestions: Tuple[str, ...] = ()
    spl_estimate: Optional[SPLEstimate] = None


# --------------------------------------------------------------------------
# SPL monitoring
# --------------------------------------------------------------------------

@dataclass(frozen=True)
class SPLPreference:
    target_db: float = 90.0
    flagging_mode: SPLFlaggingMode = SPLFlaggingMode.BALANCED
    calibration_offset: Optional[float] = None

    _derived = ("flag_threshold_db",)

    @property
    def flag_threshold_db(self) -> float:
        return self.flagging_mode.threshold_db


@dataclass(frozen=True)
class SPLAlertState:
    """Base of the alert variants; ``SafeState`` carries no level."""

    _derived = ("state", "is_active", "is_danger")

    @property
    def state(self) -> str:
        return "safe"

    @property
    def is_active(self) -> bool:
        return False

    @property
    def is_danger(self) -> bool:
        return False


@dataclass(frozen=True)
class SafeState(SPLAlertState):
    pass


@dataclass(frozen=True)
class WarningState(SPLAlertState):
    current_db: float
    over_db: float

    @property
    def state(self) -> str:
        return "warning"

    @property
    def is_active(self) -> bool:
        return True


@dataclass(frozen=True)
class AlertState(SPLAlertState):
    current_db: float
    over_db: float

    @property
    def state(self) -> str:
        return "alert"

    @property
    def is_active(self) -> bool:
        return True

    @property
    def is_danger(self) -> bool:
        return True


@dataclass(frozen=True)
class BreachEvent:
    start_time: float
    end_time: float
    peak_db: float
    target_db: float
    threshold_db: float
    reached_danger: bool

    _derived = ("duration_seconds", "over_target_db")

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.end_time - self.start_time)

    @property
    def over_target_db(self) -> float:
        return self.peak_db - self.target_db

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BreachEvent":
        return cls(
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            peak_db=float(data["peak_db"]),
            target_db=float(data["target_db"]),
            threshold_db=float(data["threshold_db"]),
            reached_danger=bool(data["reached_danger"]),
        )


@dataclass(frozen=True)
class SPLSessionReport:
    id: str
    session_start: float
    session_end: float
    target_db: float
    flagging_mode: SPLFlaggingMode
    breach_events: Tuple[BreachEvent, ...]
    overall_peak_db: float
    overall_average_db: float
    total_monitoring_seconds: float

    _derived = ("breach_count", "danger_count", "total_breach_seconds",
                "breach_percentage", "longest_breach_seconds", "grade")

    @property
    def breach_count(self) -> int:
        return len(self.breach_events)

    @property
    def danger_count(self) -> int:
        return sum(1 for e in self.breach_events if e.reached_danger)

    @property
    def total_breach_seconds(self) -> float:
        return sum(e.duration_seconds for e in self.breach_events)

    @property
    def breach_percentage(self) -> float:
        if not self.breach_events or self.total_monitoring_seconds <= 0:
            return 0.0
        pct = self.total_breach_seconds / self.total_monitoring_seconds * 100.0
        return min(100.0, max(0.0, pct))

    @property
    def longest_breach_seconds(self) -> float:
        return max((e.duration_seconds for e in self.breach_events), default=0.0)

    @property
    def grade(self) -> str:
        from .presets import grade_for
        return grade_for(self.breach_count, self.danger_count, self.breach_percentage)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SPLSessionReport":
        return cls(
            id=str(data["id"]),
            session_start=float(data["session_start"]),
            session_end=float(data["session_end"]),
            target_db=float(data["target_db"]),
            flagging_mode=parse_enum(SPLFlaggingMode, data["flagging_mode"]),
            breach_events=tuple(BreachEvent.from_dict(e) for e in data.get("breach_events", [])),
            overall_peak_db=float(data["overall_peak_db"]),
            overall_average_db=float(data["overall_average_db"]),
            total_monitoring_seconds=float(data["total_monitoring_seconds"]),
        )


# --------------------------------------------------------------------------
# RT60
# --------------------------------------------------------------------------

@dataclass(frozen=True)
class RT60Measurement:
    id: str
    date: float
    rt60_seconds: float
    classification: str
    is_reliable: bool
    noise_floor_db: float
    snr_db: float
    advice: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RT60Measurement":
        return cls(
            id=str(data["id"]),
            date=float(data["date"]),
            rt60_seconds=float(data["rt60_seconds"]),
            classification=str(data["classification"]),
            is_reliable=bool(data["is_reliable"]),
            noise_floor_db=float(data["noise_floor_db"]),
            snr_db=float(data["snr_db"]),
            advice=str(data.get("advice", "")),
        )
