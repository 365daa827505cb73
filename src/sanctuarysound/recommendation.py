"""
Recommendation engine.

Derives per-channel console settings (gain window, fader, HPF, EQ and
compression) from a worship service description. The engine is a pure
function of its input: no clocks, no random ids, no shared state.
"""

import logging
import math
from typing import List, Optional, Sequence

from .models import (
    ChannelRecommendation, CompressorSetting, DbRange, EQBand, InputChannel,
    KeyWarning, MixerRecommendation, RoomProfile, SetlistSong, VocalProfile,
    WorshipService,
)
from .presets import HEADROOM_DB
from .vocabulary import (
    BandComposition, DrumConfiguration, ExperienceLevel, InputCategory,
    InputSource, MicType, MixerModel, SongIntensity, VocalRange, VocalStyle,
)

logger = logging.getLogger(__name__)

# Line-level target at -18 dBFS on most consoles (dBu)
LINE_TARGET_DBU = 6.0
REFERENCE_SPL = 94.0
DEFAULT_VOCAL_SPL = 105.0
GAIN_MARGIN_DB = 5.0
MIN_GAIN_SPAN_DB = 2.0
FADER_MARGIN_DB = 2.0
EQ_MERGE_RATIO = 0.15
EQ_GAIN_LIMITS = (-8.0, 6.0)
LOW_KEY_FUNDAMENTAL_HZ = 45.0

SPOKEN_SOURCES = (InputSource.PASTOR_LAPEL, InputSource.PASTOR_HANDHELD, InputSource.PASTOR_HEADSET)


def generate_recommendation(service: WorshipService) -> MixerRecommendation:
    """
    Generate a complete mix recommendation for a worship service.

    Returns exactly one ChannelRecommendation per input channel, in the
    service's channel order. An empty channel list yields an empty result.
    """
    channels = tuple(
        _recommend_channel(channel, service) for channel in service.channels
    )
    logger.debug(f"Generated {len(channels)} channel recommendations for '{service.name}'")
    return MixerRecommendation(
        service_name=service.name,
        mixer=service.mixer,
        channels=channels,
        global_notes=tuple(_global_notes(service)),
        peak_intensity_offset_db=max(
            (song.intensity.fader_offset_db for song in service.setlist), default=0.0),
    )


def _recommend_channel(channel: InputChannel, service: WorshipService) -> ChannelRecommendation:
    source = channel.source
    vocal = channel.vocal_profile if source.is_vocal else None
    level = service.experience_level

    gain_range, _ = _gain_window(source, service.mixer, vocal,
                                 service.drum_config, service.room)
    fader = _fader_start(source, service.band_composition, service.setlist)
    fader_range = DbRange(fader - FADER_MARGIN_DB,
                          fader + FADER_MARGIN_DB + service.room.size.fader_allowance_db)
    hpf = _hpf_frequency(source, service.room, service.setlist)

    eq_bands = ()
    if level.shows_eq:
        eq_bands = tuple(_eq_bands(source, vocal, service.room, service.setlist, service.mixer))

    compressor = None
    if level.shows_compression:
        compressor = _compressor(source, vocal)

    return ChannelRecommendation(
        label=channel.label,
        source=source,
        gain_range=gain_range,
        fader_start_db=fader,
        fader_range=fader_range,
        headroom_db=HEADROOM_DB - max(fader, 0.0),
        hpf_frequency=hpf,
        hpf_enabled=hpf is not None,
        eq_bands=eq_bands,
        compressor=compressor,
        key_warnings=tuple(_key_warnings(source, service.setlist)),
        notes=tuple(_channel_notes(channel, vocal, service.room,
                                   service.drum_config, level)),
    )


# --------------------------------------------------------------------------
# Gain staging
# --------------------------------------------------------------------------

def _gain_window(source: InputSource, mixer: MixerModel, vocal: Optional[VocalProfile],
                 drum_config: DrumConfiguration, room: RoomProfile):
    """Return (DbRange, nominal gain) targeting -18 dBFS at the preamp."""
    level_low, level_high = source.expected_level_range
    level_mid = (level_low + level_high) / 2.0

    if source.is_line_level:
        nominal = max(LINE_TARGET_DBU - level_mid, 0.0)
    else:
        if vocal is not None:
            effective_spl = vocal.close_mic_spl
        elif source.is_vocal:
            effective_spl = DEFAULT_VOCAL_SPL
        else:
            effective_spl = level_mid
        nominal = mixer.reference_gain_at_94_spl + (REFERENCE_SPL - effective_spl)
        if vocal is not None:
            nominal += vocal.mic_type.sensitivity_offset_db

    if source.category is InputCategory.DRUMS and source is not InputSource.ELECTRONIC_DRUMS:
        nominal += drum_config.isolation_db

    mixer_low, mixer_high = mixer.gain_range
    low = max(nominal - GAIN_MARGIN_DB, mixer_low)
    high = min(nominal + GAIN_MARGIN_DB + room.surface.gain_headroom_offset_db, mixer_high)
    nominal = min(max(nominal, mixer_low), mixer_high)

    if high - low < MIN_GAIN_SPAN_DB:
        low = max(mixer_low, nominal - MIN_GAIN_SPAN_DB / 2.0)
        high = low + MIN_GAIN_SPAN_DB
        if high > mixer_high:
            high = mixer_high
            low = high - MIN_GAIN_SPAN_DB

    return DbRange(low, high), nominal


# --------------------------------------------------------------------------
# Fader and HPF
# --------------------------------------------------------------------------

def _fader_start(source: InputSource, composition: BandComposition,
                 setlist: Sequence[SetlistSong]) -> float:
    fader = 0.0
    if setlist:
        # half the average intensity; the fader is only a starting point
        average = sum(song.intensity.fader_offset_db for song in setlist) / len(setlist)
        fader += average * 0.5

    if source.category is InputCategory.DRUMS:
        fader -= 3.0
    elif source.category is InputCategory.PLAYBACK:
        fader -= 5.0

    if composition is BandComposition.TRACKS:
        fader -= 3.0

    return _round_to(fader, 1.0)


def _hpf_frequency(source: InputSource, room: RoomProfile,
                   setlist: Sequence[SetlistSong]) -> Optional[float]:
    base = source.base_hpf_hz
    if base is None:
        return None

    frequency = base * room.surface.hpf_multiplier
    if not source.is_bass_source:
        if room.has_low_end_problem:
            frequency *= 1.15
        if setlist:
            average = sum(song.key.fundamental_hz for song in setlist) / len(setlist)
            if average < LOW_KEY_FUNDAMENTAL_HZ:
                frequency *= 1.1

    return _round_to(frequency, 5.0)


# --------------------------------------------------------------------------
# EQ
# --------------------------------------------------------------------------

SOURCE_EQ = {
    InputSource.ACOUSTIC_GTR_MIC: [
        EQBand(200, -2.0, 1.5, reason="Reduce body resonance / boxiness"),
        EQBand(5000, 2.0, 1.0, "high_shelf", "Add string clarity and shimmer"),
    ],
    InputSource.ELECTRIC_GTR_AMP: [
        EQBand(400, -2.5, 1.5, reason="Cut mud from amp cabinet"),
        EQBand(3000, 1.5, 2.0, reason="Add presence and cut-through"),
    ],
    InputSource.ELECTRIC_GTR_MODELER: [
        EQBand(350, -1.5, 2.0, reason="Reduce digital mud (modeler profiles run boxy)"),
    ],
    InputSource.DIGITAL_PIANO: [
        EQBand(300, -1.5, 1.5, reason="Reduce low-mid mud on DI piano"),
        EQBand(4000, 1.0, 1.5, reason="Add key attack definition"),
    ],
    InputSource.GRAND_PIANO: [
        EQBand(250, -2.0, 1.5, reason="Tame resonance inside the piano body"),
        EQBand(6000, 1.5, 1.0, "high_shelf", "Open up the high-end sparkle"),
    ],
    InputSource.KICK_DRUM: [
        EQBand(60, 2.0, 2.0, reason="Reinforce low-end thump"),
        EQBand(400, -4.0, 1.5, reason="Remove cardboard boxiness"),
        EQBand(4000, 3.0, 2.0, reason="Add beater click / attack"),
    ],
    InputSource.SNARE_DRUM: [
        EQBand(200, 2.0, 1.5, reason="Add body / fatness"),
        EQBand(800, -2.0, 2.0, reason="Reduce ring / ping"),
        EQBand(5000, 2.0, 1.5, reason="Add crack and snap"),
    ],
    InputSource.BASS_GTR_DI: [
        EQBand(80, 1.5, 2.0, reason="Reinforce fundamental low end"),
        EQBand(250, -2.0, 1.5, reason="Clean up low-mid mud"),
        EQBand(800, 1.0, 2.0, reason="Add finger/pick definition"),
    ],
    InputSource.OVERHEAD_L: [
        EQBand(400, -2.0, 1.0, reason="Reduce drum bleed boxiness"),
        EQBand(8000, 1.5, 1.0, "high_shelf", "Enhance cymbal shimmer"),
    ],
    InputSource.CAJON: [
        EQBand(100, 2.0, 2.0, reason="Add bass port thump"),
        EQBand(500, -2.0, 1.5, reason="Reduce box resonance"),
        EQBand(3500, 2.0, 2.0, reason="Add slap attack"),
    ],
}
SOURCE_EQ[InputSource.ACOUSTIC_GTR_DI] = SOURCE_EQ[InputSource.ACOUSTIC_GTR_MIC]
SOURCE_EQ[InputSource.BASS_GTR_AMP] = SOURCE_EQ[InputSource.BASS_GTR_DI]
SOURCE_EQ[InputSource.OVERHEAD_R] = SOURCE_EQ[InputSource.OVERHEAD_L]


def _eq_bands(source: InputSource, vocal: Optional[VocalProfile], room: RoomProfile,
              setlist: Sequence[SetlistSong], mixer: MixerModel) -> List[EQBand]:
    """Source EQ, vocal EQ, room correction and key-aware cuts, merged and capped."""
    bands = list(SOURCE_EQ.get(source, []))
    if vocal is not None:
        bands += _vocal_eq(vocal)
    bands += _room_eq(room, source)
    for song in setlist:
        bands += _key_eq(song, source)

    bands = _merge_bands(bands)
    if len(bands) > mixer.eq_band_count:
        # keep the largest corrections
        bands.sort(key=lambda b: abs(b.gain_db), reverse=True)
        bands = bands[:mixer.eq_band_count]
    bands.sort(key=lambda b: b.frequency)
    return bands


def _vocal_eq(vocal: VocalProfile) -> List[EQBand]:
    bands = []
    if vocal.mic_type.proximity_factor > 0.5:
        bands.append(EQBand(200, -2.0 * vocal.mic_type.proximity_factor, 1.5,
                            reason=f"Proximity effect correction for {vocal.mic_type.value}"))

    presence_low, presence_high = vocal.presence_zone
    bands.append(EQBand((presence_low + presence_high) / 2.0, 2.0, 1.5,
                        reason=f"Presence boost for {vocal.range.value} voice"))

    if vocal.range in (VocalRange.SOPRANO, VocalRange.MEZZO_SOPRANO) or vocal.style is VocalStyle.CONTEMPORARY:
        bands.append(EQBand(10000, 1.5, 0.7, "high_shelf",
                            "Air / breathiness for contemporary worship vocal"))

    if vocal.style is VocalStyle.GOSPEL:
        bands.append(EQBand(300, -2.5, 1.5, reason="Low-mid cleanup for gospel belting dynamics"))
    return bands


def _room_eq(room: RoomProfile, source: InputSource) -> List[EQBand]:
    bands = []
    surface = room.surface
    if abs(surface.low_mid_bias_db) > 0.5:
        bands.append(EQBand(350, surface.low_mid_bias_db, 1.0,
                            reason=f"Room correction: {surface.value} surfaces"))
    # cymbals already carry their own HF character
    if abs(surface.high_frequency_bias_db) > 0.5 and source.category is not InputCategory.DRUMS:
        bands.append(EQBand(8000, surface.high_frequency_bias_db, 0.7, "high_shelf",
                            f"Room HF correction: {surface.value} surfaces"))
    return bands


def _key_eq(song: SetlistSong, source: InputSource) -> List[EQBand]:
    bands = []
    key = song.key

    if source is InputSource.KICK_DRUM:
        bass_hz = key.bass_range_hz
        if 50 < bass_hz < 120:
            bands.append(EQBand(bass_hz, -2.0, 3.0,
                                reason=f"[{song.title}] Key of {key.value}: carve space for bass at {int(bass_hz)} Hz"))

    if source.category in (InputCategory.GUITARS, InputCategory.KEYS):
        third = key.harmonics(4)[2]
        if 150 < third < 500:
            bands.append(EQBand(third, -1.5, 2.5,
                                reason=f"[{song.title}] Key of {key.value}: 3rd harmonic buildup at {int(third)} Hz"))

    if source in (InputSource.BASS_GTR_DI, InputSource.BASS_GTR_AMP):
        fundamental = key.bass_range_hz
        bands.append(EQBand(fundamental, 1.5, 2.5,
                            reason=f"[{song.title}] Reinforce bass fundamental in key of {key.value} ({int(fundamental)} Hz)"))
    return bands


def _merge_bands(bands: List[EQBand]) -> List[EQBand]:
    """Merge bands whose frequencies are within 15% of each other."""
    if not bands:
        return []

    ordered = sorted(bands, key=lambda b: b.frequency)
    merged = [ordered[0]]
    for band in ordered[1:]:
        last = merged[-1]
        if abs(band.frequency - last.frequency) / last.frequency < EQ_MERGE_RATIO:
            gain = min(max(last.gain_db + band.gain_db, EQ_GAIN_LIMITS[0]), EQ_GAIN_LIMITS[1])
            reason = " + ".join(r for r in (last.reason, band.reason) if r)
            merged[-1] = EQBand((last.frequency + band.frequency) / 2.0, gain,
                                min(last.q, band.q), last.band_type, reason)
        else:
            merged.append(band)
    return merged


# --------------------------------------------------------------------------
# Compression
# --------------------------------------------------------------------------

def _compressor(source: InputSource, vocal: Optional[VocalProfile]) -> Optional[CompressorSetting]:
    if source.is_vocal:
        spoken = source in SPOKEN_SOURCES or (vocal is not None and vocal.style is VocalStyle.SPOKEN)
        if spoken:
            return CompressorSetting(-20.0, 4.0, 5.0, 80.0, 2.0,
                                     "Speech compression: tight control for consistent sermon level")
        factor = vocal.style.dynamic_range_factor if vocal is not None else 1.0
        style = vocal.style.value if vocal is not None else "worship"
        return CompressorSetting(-18.0 - factor * 3.0, 4.0 if factor > 1.2 else 3.0,
                                 10.0, 120.0, 1.5, f"Vocal compression for {style} style")

    if source is InputSource.KICK_DRUM:
        return CompressorSetting(-15.0, 4.0, 10.0, 80.0,
                                 reason="Kick: fast release to preserve punch, tame peaks")
    if source is InputSource.SNARE_DRUM:
        return CompressorSetting(-12.0, 3.0, 5.0, 60.0,
                                 reason="Snare: preserve crack, control rim shots")
    if source in (InputSource.BASS_GTR_DI, InputSource.BASS_GTR_AMP):
        return CompressorSetting(-18.0, 4.0, 15.0, 100.0, 1.0,
                                 "Bass: even out finger dynamics, keep low end consistent")
    if source in (InputSource.ACOUSTIC_GTR_MIC, InputSource.ACOUSTIC_GTR_DI):
        return CompressorSetting(-16.0, 3.0, 20.0, 150.0,
                                 reason="Acoustic guitar: gentle leveling for strumming dynamics")
    return None


# --------------------------------------------------------------------------
# Warnings and notes
# --------------------------------------------------------------------------

def _key_warnings(source: InputSource, setlist: Sequence[SetlistSong]) -> List[KeyWarning]:
    warnings = []
    for song in setlist:
        key = song.key
        if key.fundamental_hz < LOW_KEY_FUNDAMENTAL_HZ and source.is_bass_source:
            bass_hz = key.bass_range_hz
            warnings.append(KeyWarning(
                song.title, key, bass_hz, "high",
                f"Key of {key.value} puts heavy energy at {int(bass_hz)} Hz. Watch the low-end "
                f"balance between kick and bass and consider a tight notch on one of them."))

        low_mid = key.low_mid_range_hz
        if 150 < low_mid < 400 and source.category is InputCategory.GUITARS:
            warnings.append(KeyWarning(
                song.title, key, low_mid, "moderate",
                f"Key of {key.value} generates harmonics at {int(low_mid)} Hz (mud zone). "
                f"Consider a subtle cut on guitars around this frequency."))

        if source.category is InputCategory.KEYS:
            second = key.fundamental_hz * 2.0
            if 200 < second < 500:
                warnings.append(KeyWarning(
                    song.title, key, second, "low",
                    f"Key of {key.value}: piano and vocals may compete at {int(second)} Hz. "
                    f"Subtle EQ separation could help clarity."))
    return warnings


def _channel_notes(channel: InputChannel, vocal: Optional[VocalProfile], room: RoomProfile,
                   drum_config: DrumConfiguration, level: ExperienceLevel) -> List[str]:
    notes = []
    source = channel.source

    if source.category is InputCategory.DRUMS:
        if drum_config is DrumConfiguration.OPEN_STAGE:
            notes.append("Open drums on stage: be conservative with fader levels. "
                         "Acoustic bleed will do much of the work in the room.")
        elif drum_config is DrumConfiguration.DRUM_SHIELD:
            notes.append("Shield is in place. High frequencies are partially contained, but "
                         "low end still leaks underneath. Monitor kick and snare carefully.")

    if room.has_low_end_problem and source.is_bass_source:
        notes.append("This room has a long reverb tail. Keep sub-200 Hz content tight and controlled.")

    if source.is_line_level and level is ExperienceLevel.BEGINNER:
        notes.append("This is a line-level (DI) source. Set the preamp to Line, not Mic.")

    if vocal is not None:
        if vocal.style is VocalStyle.GOSPEL:
            notes.append("Gospel vocalist: expect extreme dynamics from whisper to full belt. "
                         "Ride the fader actively during the set.")
        if vocal.mic_type is MicType.LAVALIER:
            notes.append("Lapel mics pick up clothing rustle. Clip it securely with a strain relief loop.")

    if source is InputSource.CLICK_TRACK:
        notes.append("CRITICAL: the click track must never reach FOH. Route it only to in-ear mixes.")
    return notes


def _global_notes(service: WorshipService) -> List[str]:
    notes = []
    rt60 = service.room.effective_rt60
    if rt60 > 2.0:
        notes.append(f"High estimated reverb time ({rt60:.1f}s RT60). Reduce digital reverb "
                     f"and keep the mix dry and tight.")

    keys = {song.key for song in service.setlist}
    if len(keys) == 1:
        key = next(iter(keys))
        notes.append(f"All songs are in the key of {key.value}. Harmonic buildup at "
                     f"{int(key.bass_range_hz)} Hz and {int(key.low_mid_range_hz)} Hz will persist "
                     f"through the set.")

    if len(service.setlist) >= 3 and service.setlist[-1].intensity in (SongIntensity.DRIVING,
                                                                       SongIntensity.ALL_OUT):
        notes.append("The set builds to high energy. Start faders about 3 dB back and ride them up.")

    if service.band_composition is BandComposition.HYBRID:
        notes.append("Hybrid setup: time-align tracks playback with live instruments. A 5-10 ms "
                     "delay on the tracks bus helps if you hear flamming.")
    return notes


def _round_to(value: float, step: float) -> float:
    """Round half away from zero to the nearest multiple of step."""
    scaled = value / step
    return math.copysign(math.floor(abs(scaled) + 0.5), scaled) * step + 0.0
