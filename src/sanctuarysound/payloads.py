"""
JSON payload parsing for the SanctuarySound API.

Turns request bodies into model values. Enum fields accept the member name
("lead_vocal") or the display value ("Lead Vocal"). Any malformed input
raises PayloadError naming the offending field.
"""

from typing import Any, Dict, Mapping, Optional

from .errors import PayloadError
from .models import (
    ChannelSnapshot, InputChannel, MixerSnapshot, RoomProfile, SetlistSong,
    SnapshotEQBand, SPLPreference, VocalProfile, WorshipService,
)
from .vocabulary import (
    BandComposition, DrumConfiguration, ExperienceLevel, InputSource, MicType,
    MixerModel, MusicalKey, RoomSize, RoomSurface, SongIntensity, SPLFlaggingMode,
    VocalRange, VocalStyle, parse_enum,
)


def _object(data: Any, context: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise PayloadError(f"{context} must be an object")
    return data


def _require(data: Mapping[str, Any], key: str, context: str) -> Any:
    _object(data, context)
    if key not in data or data[key] is None:
        raise PayloadError(f"Missing '{key}' in {context}")
    return data[key]


def _enum(enum_cls, value, field: str):
    try:
        return parse_enum(enum_cls, value)
    except ValueError as e:
        raise PayloadError(f"Invalid {field}: {e}")


def _float(value, field: str, optional: bool = False) -> Optional[float]:
    if value is None:
        if optional:
            return None
        raise PayloadError(f"Missing {field}")
    if isinstance(value, bool):
        raise PayloadError(f"{field} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise PayloadError(f"{field} must be a number, got {value!r}")


def _list(data: Mapping[str, Any], key: str, context: str) -> list:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise PayloadError(f"'{key}' in {context} must be a list")
    return value


def parse_vocal_profile(data: Optional[Mapping[str, Any]]) -> Optional[VocalProfile]:
    if data is None:
        return None
    _object(data, "vocal_profile")
    return VocalProfile(
        range=_enum(VocalRange, _require(data, "range", "vocal_profile"), "vocal range"),
        style=_enum(VocalStyle, data.get("style", "contemporary"), "vocal style"),
        mic_type=_enum(MicType, data.get("mic_type", "dynamic_cardioid"), "mic type"),
    )


def parse_service(data: Mapping[str, Any]) -> WorshipService:
    """Parse a worship service description."""
    _object(data, "service")
    channels = []
    for i, entry in enumerate(_list(data, "channels", "service")):
        context = f"channel {i + 1}"
        source = _enum(InputSource, _require(entry, "source", context), f"source in {context}")
        channels.append(InputChannel(
            label=str(entry.get("label") or source.value),
            source=source,
            vocal_profile=parse_vocal_profile(entry.get("vocal_profile")),
        ))

    setlist = []
    for i, entry in enumerate(_list(data, "setlist", "service")):
        context = f"song {i + 1}"
        _object(entry, context)
        setlist.append(SetlistSong(
            title=str(entry.get("title") or f"Song {i + 1}"),
            key=_enum(MusicalKey, _require(entry, "key", context), f"key in {context}"),
            intensity=_enum(SongIntensity, entry.get("intensity", "medium"), f"intensity in {context}"),
        ))

    room = _object(data.get("room") or {}, "room")
    return WorshipService(
        name=str(data.get("name", "Service")),
        date=str(data.get("date", "")),
        mixer=_enum(MixerModel, _require(data, "mixer", "service"), "mixer"),
        band_composition=_enum(BandComposition, data.get("band_composition", "live"),
                               "band composition"),
        drum_config=_enum(DrumConfiguration, data.get("drum_config", "drum_shield"),
                          "drum configuration"),
        room=RoomProfile(
            size=_enum(RoomSize, room.get("size", "medium"), "room size"),
            surface=_enum(RoomSurface, room.get("surface", "mixed"), "room surface"),
        ),
        channels=tuple(channels),
        setlist=tuple(setlist),
        experience_level=_enum(ExperienceLevel, data.get("experience_level", "intermediate"),
                               "experience level"),
        venue_id=data.get("venue_id"),
        room_id=data.get("room_id"),
    )


def parse_snapshot(data: Mapping[str, Any]) -> MixerSnapshot:
    """Parse an imported console snapshot."""
    _object(data, "snapshot")
    channels = []
    for i, entry in enumerate(_list(data, "channels", "snapshot")):
        context = f"snapshot channel {i + 1}"
        number = _require(entry, "channel_number", context)
        if isinstance(number, bool) or not isinstance(number, int):
            raise PayloadError(f"channel_number in {context} must be an integer")

        bands = tuple(
            SnapshotEQBand(
                frequency=_float(_require(band, "frequency", context), f"EQ frequency in {context}"),
                gain_db=_float(band.get("gain_db", 0.0), f"EQ gain in {context}"),
                q=_float(band.get("q", 1.0), f"EQ Q in {context}"),
                enabled=bool(band.get("enabled", True)),
            )
            for band in _list(entry, "eq_bands", context)
        )
        channels.append(ChannelSnapshot(
            channel_number=number,
            name=str(entry.get("name", f"Ch {number}")),
            gain_db=_float(entry.get("gain_db"), f"gain_db in {context}", optional=True),
            fader_db=_float(entry.get("fader_db"), f"fader_db in {context}", optional=True),
            hpf_frequency=_float(entry.get("hpf_frequency"), f"hpf_frequency in {context}",
                                 optional=True),
            hpf_enabled=bool(entry.get("hpf_enabled", False)),
            eq_bands=bands,
            comp_threshold_db=_float(entry.get("comp_threshold_db"),
                                     f"comp_threshold_db in {context}", optional=True),
            comp_ratio=_float(entry.get("comp_ratio"), f"comp_ratio in {context}", optional=True),
            phantom_power=bool(entry.get("phantom_power", False)),
            pad_enabled=bool(entry.get("pad_enabled", False)),
        ))

    mixer = data.get("mixer")
    return MixerSnapshot(
        name=str(data.get("name", "Snapshot")),
        channels=tuple(channels),
        mixer=_enum(MixerModel, mixer, "mixer") if mixer is not None else None,
    )


def parse_channel_mapping(data: Any) -> Dict[int, InputSource]:
    """
    Parse a channel mapping.

    Accepts {"1": "lead_vocal", ...} or [{"channel": 1, "source": "lead_vocal"}, ...].
    """
    if isinstance(data, Mapping):
        items = list(data.items())
    elif isinstance(data, list):
        items = [(_require(e, "channel", "channel mapping"), _require(e, "source", "channel mapping"))
                 for e in data]
    else:
        raise PayloadError("channel_mapping must be an object or a list")

    mapping = {}
    for channel, source in items:
        try:
            number = int(channel)
        except (TypeError, ValueError):
            raise PayloadError(f"Invalid channel number in mapping: {channel!r}")
        mapping[number] = _enum(InputSource, source, f"source for channel {number}")
    return mapping


def parse_spl_preference(data: Optional[Mapping[str, Any]]) -> Optional[SPLPreference]:
    if data is None:
        return None
    _object(data, "spl_preference")
    return SPLPreference(
        target_db=_float(data.get("target_db", 90.0), "target_db"),
        flagging_mode=_enum(SPLFlaggingMode, data.get("flagging_mode", "balanced"), "flagging mode"),
        calibration_offset=_float(data.get("calibration_offset"), "calibration_offset", optional=True),
    )
