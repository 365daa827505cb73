"""
Domain vocabulary for SanctuarySound.

Closed sets of input sources, consoles, rooms and vocal descriptors together
with the metadata tables the engines read. Every table is keyed by the enum
member so the numbers live in one place.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from .presets import get_flagging_mode


class InputCategory(Enum):
    KEYS = "Keys"
    GUITARS = "Guitars"
    DRUMS = "Drums & Percussion"
    VOCALS = "Vocals"
    SPEECH = "Speech / Pastor"
    ORCHESTRAL = "Orchestral"
    PLAYBACK = "Tracks & Playback"


class InputSource(Enum):
    """Every audio input the engines understand."""

    # Keys
    DIGITAL_PIANO = "Digital Piano (DI)"
    GRAND_PIANO = "Grand Piano (Mic'd)"
    UPRIGHT_PIANO = "Upright Piano (Mic'd)"
    ORGAN_PIPE = "Pipe Organ"
    ORGAN_ELECTRIC = "Electric Organ (B3/Keys)"
    SYNTHESIZER = "Synthesizer / Pad"

    # Guitars
    ELECTRIC_GTR_AMP = "Electric Guitar (Amp Mic'd)"
    ELECTRIC_GTR_MODELER = "Electric Guitar (Modeler/DI)"
    ACOUSTIC_GTR_MIC = "Acoustic Guitar (Mic'd)"
    ACOUSTIC_GTR_DI = "Acoustic Guitar (DI/Pickup)"
    BASS_GTR_AMP = "Bass Guitar (Amp Mic'd)"
    BASS_GTR_DI = "Bass Guitar (DI)"

    # Drums & percussion
    KICK_DRUM = "Kick Drum"
    SNARE_DRUM = "Snare Drum"
    HI_HAT = "Hi-Hat"
    TOM_HIGH = "Tom (High)"
    TOM_MID = "Tom (Mid)"
    TOM_FLOOR = "Tom (Floor)"
    OVERHEAD_L = "Overhead L"
    OVERHEAD_R = "Overhead R"
    CAJON = "Cajon"
    DJEMBE = "Djembe / Hand Drum"
    ELECTRONIC_DRUMS = "Electronic Drums (DI)"
    PERCUSSION = "Percussion (Shaker/Tamb)"

    # Vocals & speech
    LEAD_VOCAL = "Lead Vocal"
    BACKING_VOCAL = "Backing Vocal"
    CHOIR_MIC = "Choir Mic (Area)"
    PASTOR_LAPEL = "Pastor (Lapel/Lav)"
    PASTOR_HANDHELD = "Pastor (Handheld)"
    PASTOR_HEADSET = "Pastor (Headset)"

    # Orchestral
    VIOLIN = "Violin"
    VIOLA = "Viola"
    CELLO = "Cello"
    TRUMPET = "Trumpet"
    SAXOPHONE = "Saxophone"
    FLUTE = "Flute"

    # Tracks & playback
    TRACKS_LEFT = "Tracks (Left)"
    TRACKS_RIGHT = "Tracks (Right)"
    CLICK_TRACK = "Click Track"
    VIDEO_PLAYBACK = "Video / Media Playback"

    @property
    def category(self) -> InputCategory:
        return SOURCE_TABLE[self][0]

    @property
    def is_line_level(self) -> bool:
        return SOURCE_TABLE[self][1]

    @property
    def expected_level_range(self) -> Tuple[float, float]:
        """Nominal dBu for line sources, dB SPL at the capsule for mic sources."""
        return SOURCE_TABLE[self][2]

    @property
    def base_hpf_hz(self) -> Optional[float]:
        return SOURCE_TABLE[self][3]

    @property
    def is_vocal(self) -> bool:
        return self.category in (InputCategory.VOCALS, InputCategory.SPEECH)

    @property
    def is_bass_source(self) -> bool:
        return self in (InputSource.KICK_DRUM, InputSource.BASS_GTR_AMP, InputSource.BASS_GTR_DI)


_K, _G, _D, _V, _S, _O, _P = (InputCategory.KEYS, InputCategory.GUITARS, InputCategory.DRUMS,
                              InputCategory.VOCALS, InputCategory.SPEECH,
                              InputCategory.ORCHESTRAL, InputCategory.PLAYBACK)

# source -> (category, line level, expected level range, base HPF Hz or None)
SOURCE_TABLE: Dict[InputSource, Tuple[InputCategory, bool, Tuple[float, float], Optional[float]]] = {
    InputSource.DIGITAL_PIANO: (_K, True, (-20.0, 4.0), 60.0),
    InputSource.GRAND_PIANO: (_K, False, (70.0, 100.0), 60.0),
    InputSource.UPRIGHT_PIANO: (_K, False, (70.0, 100.0), 60.0),
    InputSource.ORGAN_PIPE: (_K, False, (85.0, 110.0), 30.0),
    InputSource.ORGAN_ELECTRIC: (_K, True, (-20.0, 4.0), 50.0),
    InputSource.SYNTHESIZER: (_K, True, (-20.0, 4.0), 50.0),

    InputSource.ELECTRIC_GTR_AMP: (_G, False, (95.0, 125.0), 80.0),
    InputSource.ELECTRIC_GTR_MODELER: (_G, True, (-20.0, 4.0), 80.0),
    InputSource.ACOUSTIC_GTR_MIC: (_G, False, (65.0, 95.0), 80.0),
    InputSource.ACOUSTIC_GTR_DI: (_G, True, (-30.0, -6.0), 80.0),
    InputSource.BASS_GTR_AMP: (_G, False, (90.0, 120.0), 35.0),
    InputSource.BASS_GTR_DI: (_G, True, (-20.0, 4.0), 35.0),

    InputSource.KICK_DRUM: (_D, False, (100.0, 130.0), 30.0),
    InputSource.SNARE_DRUM: (_D, False, (100.0, 130.0), 100.0),
    InputSource.HI_HAT: (_D, False, (85.0, 110.0), 200.0),
    InputSource.TOM_HIGH: (_D, False, (95.0, 125.0), 100.0),
    InputSource.TOM_MID: (_D, False, (95.0, 125.0), 80.0),
    InputSource.TOM_FLOOR: (_D, False, (95.0, 125.0), 60.0),
    InputSource.OVERHEAD_L: (_D, False, (80.0, 110.0), 100.0),
    InputSource.OVERHEAD_R: (_D, False, (80.0, 110.0), 100.0),
    InputSource.CAJON: (_D, False, (80.0, 105.0), 60.0),
    InputSource.DJEMBE: (_D, False, (75.0, 100.0), 70.0),
    InputSource.ELECTRONIC_DRUMS: (_D, True, (-20.0, 4.0), None),
    InputSource.PERCUSSION: (_D, False, (75.0, 100.0), 150.0),

    InputSource.LEAD_VOCAL: (_V, False, (75.0, 110.0), 100.0),
    InputSource.BACKING_VOCAL: (_V, False, (70.0, 105.0), 120.0),
    InputSource.CHOIR_MIC: (_V, False, (65.0, 90.0), 120.0),
    InputSource.PASTOR_LAPEL: (_S, False, (60.0, 85.0), 120.0),
    InputSource.PASTOR_HANDHELD: (_S, False, (70.0, 100.0), 100.0),
    InputSource.PASTOR_HEADSET: (_S, False, (60.0, 85.0), 120.0),

    InputSource.VIOLIN: (_O, False, (70.0, 95.0), 150.0),
    InputSource.VIOLA: (_O, False, (70.0, 95.0), 150.0),
    InputSource.CELLO: (_O, False, (75.0, 100.0), 50.0),
    InputSource.TRUMPET: (_O, False, (90.0, 120.0), 120.0),
    InputSource.SAXOPHONE: (_O, False, (80.0, 110.0), 100.0),
    InputSource.FLUTE: (_O, False, (70.0, 100.0), 200.0),

    InputSource.TRACKS_LEFT: (_P, True, (-10.0, 4.0), None),
    InputSource.TRACKS_RIGHT: (_P, True, (-10.0, 4.0), None),
    InputSource.CLICK_TRACK: (_P, True, (-10.0, 4.0), None),
    InputSource.VIDEO_PLAYBACK: (_P, True, (-10.0, 4.0), None),
}


class MixerModel(Enum):
    ALLEN_HEATH_AVANTIS = "Allen & Heath Avantis"
    ALLEN_HEATH_SQ = "Allen & Heath SQ"
    ALLEN_HEATH_DLIVE = "Allen & Heath dLive"
    BEHRINGER_X32 = "Behringer X32"
    MIDAS_M32 = "Midas M32"
    YAMAHA_TF = "Yamaha TF Series"
    YAMAHA_CLQL = "Yamaha CL/QL Series"
    SOUNDCRAFT_SI = "Soundcraft Si Series"
    PRESONUS_SL = "PreSonus StudioLive"

    @property
    def gain_range(self) -> Tuple[float, float]:
        return MIXER_TABLE[self][0]

    @property
    def eq_band_count(self) -> int:
        return MIXER_TABLE[self][1]

    @property
    def reference_gain_at_94_spl(self) -> float:
        """Preamp gain that brings 94 dB SPL on a dynamic mic to -18 dBFS."""
        return MIXER_TABLE[self][2]


# mixer -> (preamp gain range, parametric EQ bands, reference gain at 94 dB SPL)
MIXER_TABLE: Dict[MixerModel, Tuple[Tuple[float, float], int, float]] = {
    MixerModel.ALLEN_HEATH_AVANTIS: ((5.0, 60.0), 4, 22.0),
    MixerModel.ALLEN_HEATH_SQ: ((0.0, 60.0), 4, 22.0),
    MixerModel.ALLEN_HEATH_DLIVE: ((0.0, 60.0), 8, 22.0),
    MixerModel.BEHRINGER_X32: ((0.0, 60.0), 6, 28.0),
    MixerModel.MIDAS_M32: ((0.0, 60.0), 6, 28.0),
    MixerModel.YAMAHA_TF: ((-6.0, 66.0), 4, 32.0),
    MixerModel.YAMAHA_CLQL: ((-6.0, 66.0), 4, 32.0),
    MixerModel.SOUNDCRAFT_SI: ((-5.0, 58.0), 4, 30.0),
    MixerModel.PRESONUS_SL: ((0.0, 60.0), 6, 30.0),
}


class ExperienceLevel(Enum):
    """How much of the channel strip the operator is shown."""

    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"

    @property
    def shows_eq(self) -> bool:
        return self is not ExperienceLevel.BEGINNER

    @property
    def shows_compression(self) -> bool:
        return self is ExperienceLevel.ADVANCED


class BandComposition(Enum):
    LIVE = "Full Live Band"
    TRACKS = "Tracks Only"
    HYBRID = "Hybrid (Live + Tracks)"
    ACOUSTIC = "Acoustic Set"
    SOLO = "Solo Instrument + Vocal"


class DrumConfiguration(Enum):
    OPEN_STAGE = "Open Stage (No Isolation)"
    DRUM_SHIELD = "Drum Shield (Plexiglass)"
    DRUM_CAGE = "Full Drum Cage / Enclosure"
    ELECTRONIC = "Electronic / Mesh Kit"

    @property
    def isolation_db(self) -> float:
        return {
            DrumConfiguration.OPEN_STAGE: 0.0,
            DrumConfiguration.DRUM_SHIELD: -6.0,
            DrumConfiguration.DRUM_CAGE: -15.0,
            DrumConfiguration.ELECTRONIC: -30.0,
        }[self]


class RoomSize(Enum):
    SMALL = "Small (< 300 seats)"
    MEDIUM = "Medium (300-800 seats)"
    LARGE = "Large (800+ seats)"

    @property
    def base_rt60(self) -> float:
        return {RoomSize.SMALL: 0.8, RoomSize.MEDIUM: 1.2, RoomSize.LARGE: 1.8}[self]

    @property
    def fader_allowance_db(self) -> float:
        """Extra fader travel above the start level to cover distance loss."""
        return {RoomSize.SMALL: 0.0, RoomSize.MEDIUM: 1.5, RoomSize.LARGE: 3.0}[self]


class RoomSurface(Enum):
    ABSORBENT = "Absorbent (Carpet, Padded Pews, Curtains)"
    REFLECTIVE = "Reflective (Concrete, Glass, Hard Walls)"
    MIXED = "Mixed (Typical Sanctuary)"

    @property
    def rt60_multiplier(self) -> float:
        return SURFACE_TABLE[self][0]

    @property
    def low_mid_bias_db(self) -> float:
        return SURFACE_TABLE[self][1]

    @property
    def high_frequency_bias_db(self) -> float:
        return SURFACE_TABLE[self][2]

    @property
    def hpf_multiplier(self) -> float:
        return SURFACE_TABLE[self][3]

    @property
    def gain_headroom_offset_db(self) -> float:
        """Shift applied to the upper bound of the gain window."""
        return SURFACE_TABLE[self][4]


# surface -> (RT60 multiplier, low-mid bias, HF bias, HPF multiplier, gain ceiling offset)
SURFACE_TABLE: Dict[RoomSurface, Tuple[float, float, float, float, float]] = {
    RoomSurface.ABSORBENT: (0.6, 0.0, 1.5, 0.9, 1.0),
    RoomSurface.REFLECTIVE: (1.5, -2.5, -2.0, 1.15, -2.0),
    RoomSurface.MIXED: (1.0, -1.0, 0.0, 1.0, 0.0),
}


class SongIntensity(Enum):
    SOFT = "Soft / Reflective"
    MEDIUM = "Medium / Standard"
    DRIVING = "Driving / High Energy"
    ALL_OUT = "Full Send / Anthemic"

    @property
    def fader_offset_db(self) -> float:
        return {
            SongIntensity.SOFT: -6.0,
            SongIntensity.MEDIUM: 0.0,
            SongIntensity.DRIVING: 3.0,
            SongIntensity.ALL_OUT: 5.0,
        }[self]


class MusicalKey(Enum):
    C = "C"
    D_FLAT = "Db"
    D = "D"
    E_FLAT = "Eb"
    E = "E"
    F = "F"
    G_FLAT = "Gb"
    G = "G"
    A_FLAT = "Ab"
    A = "A"
    B_FLAT = "Bb"
    B = "B"

    @property
    def semitone_offset(self) -> int:
        return list(MusicalKey).index(self)

    @property
    def fundamental_hz(self) -> float:
        """Root frequency in octave 1 (C1 = 32.703 Hz)."""
        return 32.703 * 2.0 ** (self.semitone_offset / 12.0)

    def harmonics(self, count: int = 6) -> List[float]:
        f0 = self.fundamental_hz
        return [n * f0 for n in range(1, count + 1)]

    @property
    def bass_range_hz(self) -> float:
        return self.fundamental_hz * 2.0

    @property
    def low_mid_range_hz(self) -> float:
        return self.fundamental_hz * 4.0


class VocalRange(Enum):
    SOPRANO = "Soprano"
    MEZZO_SOPRANO = "Mezzo-Soprano"
    ALTO = "Alto"
    TENOR = "Tenor"
    BARITONE = "Baritone"
    BASS = "Bass"

    @property
    def close_mic_spl(self) -> float:
        return VOCAL_RANGE_TABLE[self][0]

    @property
    def presence_zone(self) -> Tuple[float, float]:
        return VOCAL_RANGE_TABLE[self][1]


# range -> (expected close-mic SPL, presence zone Hz)
VOCAL_RANGE_TABLE: Dict[VocalRange, Tuple[float, Tuple[float, float]]] = {
    VocalRange.SOPRANO: (108.0, (3000.0, 6000.0)),
    VocalRange.MEZZO_SOPRANO: (106.0, (2800.0, 5500.0)),
    VocalRange.ALTO: (104.0, (2500.0, 5000.0)),
    VocalRange.TENOR: (106.0, (2000.0, 5000.0)),
    VocalRange.BARITONE: (104.0, (1500.0, 4000.0)),
    VocalRange.BASS: (102.0, (1200.0, 3500.0)),
}


class VocalStyle(Enum):
    CONTEMPORARY = "Contemporary Worship"
    TRADITIONAL = "Traditional / Hymn"
    GOSPEL = "Gospel"
    CHOIR = "Choir Section"
    SPOKEN = "Spoken Word / Preaching"

    @property
    def dynamic_range_factor(self) -> float:
        return {
            VocalStyle.CONTEMPORARY: 1.0,
            VocalStyle.TRADITIONAL: 0.8,
            VocalStyle.GOSPEL: 1.4,
            VocalStyle.CHOIR: 0.7,
            VocalStyle.SPOKEN: 0.6,
        }[self]


class MicType(Enum):
    DYNAMIC_CARDIOID = "Dynamic (SM58, e835)"
    CONDENSER_CARDIOID = "Condenser (KSM9, e965)"
    CONDENSER_SDC = "Small Diaphragm Condenser"
    RIBBON = "Ribbon"
    LAVALIER = "Lavalier / Lapel"
    HEADSET = "Headset"
    SHOTGUN = "Shotgun"

    @property
    def sensitivity_offset_db(self) -> float:
        """Gain correction relative to an SM58; hotter capsules need less gain."""
        return MIC_TABLE[self][0]

    @property
    def proximity_factor(self) -> float:
        return MIC_TABLE[self][1]


# mic -> (sensitivity offset dB, proximity effect 0..1)
MIC_TABLE: Dict[MicType, Tuple[float, float]] = {
    MicType.DYNAMIC_CARDIOID: (0.0, 0.8),
    MicType.CONDENSER_CARDIOID: (-10.0, 0.6),
    MicType.CONDENSER_SDC: (-12.0, 0.3),
    MicType.RIBBON: (5.0, 0.9),
    MicType.LAVALIER: (-6.0, 0.1),
    MicType.HEADSET: (-8.0, 0.2),
    MicType.SHOTGUN: (-10.0, 0.2),
}


class SPLFlaggingMode(Enum):
    """How far over target the level may go before a breach counts as danger."""

    STRICT = "Strict"
    BALANCED = "Balanced"
    VARIABLE = "Variable"

    @property
    def threshold_db(self) -> float:
        return get_flagging_mode(self.name.lower())["threshold_db"]


def parse_enum(enum_cls, value):
    """Resolve an enum member from its member name or display value."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip()
        if key.upper() in enum_cls.__members__:
            return enum_cls[key.upper()]
        for member in enum_cls:
            if member.value.lower() == key.lower():
                return member
    raise ValueError(f"Unknown {enum_cls.__name__}: {value!r}. "
                     f"Available: {[m.name.lower() for m in enum_cls]}")
