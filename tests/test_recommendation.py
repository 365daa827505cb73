import pytest

from conftest import make_service
from sanctuarysound.models import DbRange, InputChannel, RoomProfile, WorshipService, to_dict
from sanctuarysound.recommendation import generate_recommendation
from sanctuarysound.vocabulary import (
    ExperienceLevel, InputSource, MixerModel, RoomSize, RoomSurface,
)


def _channel(result, label):
    return next(c for c in result.channels if c.label == label)


def test_one_recommendation_per_channel_in_order(service):
    result = generate_recommendation(service)
    assert [c.label for c in result.channels] == ["Lead Vox", "Kick", "Bass", "Keys", "Pastor"]
    assert result.service_name == "Sunday AM"
    assert result.mixer is MixerModel.BEHRINGER_X32


def test_duplicate_sources_are_not_collapsed():
    channels = (
        InputChannel("BV 1", InputSource.BACKING_VOCAL),
        InputChannel("BV 2", InputSource.BACKING_VOCAL),
    )
    result = generate_recommendation(make_service(channels=channels))
    assert [c.label for c in result.channels] == ["BV 1", "BV 2"]


def test_empty_channel_list():
    result = generate_recommendation(make_service(channels=()))
    assert result.channels == ()


def test_recommendation_is_deterministic(service):
    assert generate_recommendation(service) == generate_recommendation(service)


def test_vocal_gain_window_and_fader():
    result = generate_recommendation(make_service())
    vox = _channel(result, "Lead Vox")
    # X32 reference 28 dB + (94 - 106 dB tenor SPL)
    assert vox.gain_range == DbRange(11.0, 21.0)
    assert vox.fader_start_db == 1.0
    assert vox.fader_range == DbRange(-1.0, 4.5)
    assert vox.headroom_db == 17.0


def test_drum_isolation_lowers_kick_gain():
    result = generate_recommendation(make_service())
    kick = _channel(result, "Kick")
    assert kick.gain_range == DbRange(0.0, 6.0)
    assert kick.fader_start_db == -2.0


def test_line_level_gain_window():
    result = generate_recommendation(make_service())
    assert _channel(result, "Bass").gain_range == DbRange(9.0, 19.0)


def test_hpf_low_key_setlist_and_bass_sources():
    result = generate_recommendation(make_service())
    # average fundamental of G and D is below 45 Hz
    assert _channel(result, "Lead Vox").hpf_frequency == 110.0
    assert _channel(result, "Kick").hpf_frequency == 30.0
    assert _channel(result, "Kick").hpf_enabled


def test_hpf_follows_room_surface():
    reflective = generate_recommendation(make_service(surface=RoomSurface.REFLECTIVE, setlist=()))
    absorbent = generate_recommendation(make_service(surface=RoomSurface.ABSORBENT, setlist=()))
    assert _channel(absorbent, "Lead Vox").hpf_frequency == 90.0
    assert _channel(reflective, "Lead Vox").hpf_frequency > _channel(absorbent, "Lead Vox").hpf_frequency


def test_playback_has_no_hpf():
    channels = (InputChannel("Tracks L", InputSource.TRACKS_LEFT),)
    rec = generate_recommendation(make_service(channels=channels)).channels[0]
    assert rec.hpf_frequency is None
    assert not rec.hpf_enabled


def test_beginner_gets_no_eq_or_compression():
    result = generate_recommendation(make_service(level=ExperienceLevel.BEGINNER))
    for channel in result.channels:
        assert channel.eq_bands == ()
        assert channel.compressor is None


def test_intermediate_gets_eq_but_no_compression():
    result = generate_recommendation(make_service(level=ExperienceLevel.INTERMEDIATE))
    assert _channel(result, "Lead Vox").eq_bands
    assert all(c.compressor is None for c in result.channels)


def test_advanced_gets_compression():
    result = generate_recommendation(make_service(level=ExperienceLevel.ADVANCED))
    comp = _channel(result, "Lead Vox").compressor
    assert comp is not None
    assert comp.threshold_db == -21.0
    assert comp.ratio == 3.0

    pastor = _channel(result, "Pastor").compressor
    assert pastor.threshold_db == -20.0
    assert pastor.ratio == 4.0
    assert _channel(result, "Keys").compressor is None


def test_eq_bands_fit_the_console_and_are_sorted():
    result = generate_recommendation(make_service(level=ExperienceLevel.ADVANCED,
                                                  mixer=MixerModel.ALLEN_HEATH_SQ,
                                                  surface=RoomSurface.REFLECTIVE))
    for channel in result.channels:
        assert len(channel.eq_bands) <= MixerModel.ALLEN_HEATH_SQ.eq_band_count
        frequencies = [b.frequency for b in channel.eq_bands]
        assert frequencies == sorted(frequencies)
        for band in channel.eq_bands:
            assert -8.0 <= band.gain_db <= 6.0


@pytest.mark.parametrize("mixer", list(MixerModel))
@pytest.mark.parametrize("surface", list(RoomSurface))
def test_gain_window_stays_inside_mixer_range(mixer, surface):
    channels = tuple(InputChannel(s.value, s) for s in InputSource)
    result = generate_recommendation(make_service(mixer=mixer, surface=surface, channels=channels))
    low_limit, high_limit = mixer.gain_range
    for channel in result.channels:
        window = channel.gain_range
        assert low_limit <= window.low <= window.high <= high_limit
        assert window.high - window.low >= 2.0 - 1e-9


def test_key_warnings_for_low_keys_on_bass_sources(service):
    result = generate_recommendation(service)
    warnings = _channel(result, "Bass").key_warnings
    # D sits below 45 Hz; G only builds up in the low mids
    assert [(w.song_title, w.severity) for w in warnings] == [("Opener", "moderate"), ("Anthem", "high")]
    assert _channel(result, "Pastor").key_warnings == ()


def test_click_track_note():
    channels = (InputChannel("Click", InputSource.CLICK_TRACK),)
    rec = generate_recommendation(make_service(channels=channels)).channels[0]
    assert any(note.startswith("CRITICAL") for note in rec.notes)


def test_global_notes_for_reverberant_room():
    service = make_service(size=RoomSize.LARGE, surface=RoomSurface.REFLECTIVE)
    result = generate_recommendation(service)
    assert any("reverb time" in note for note in result.global_notes)


def test_peak_intensity_offset(service):
    assert generate_recommendation(service).peak_intensity_offset_db == 3.0
    assert generate_recommendation(make_service(setlist=())).peak_intensity_offset_db == 0.0


def test_serializes_to_json_types(service):
    data = to_dict(generate_recommendation(service))
    vox = data["channels"][0]
    assert vox["source"] == "lead_vocal"
    assert vox["gain_range"] == {"low": 11.0, "high": 21.0, "midpoint": 16.0}
    assert isinstance(vox["eq_bands"], list)


def test_default_service_values():
    service = WorshipService(name="Midweek", date="2026-10-21", mixer=MixerModel.YAMAHA_TF)
    assert service.room == RoomProfile()
    assert generate_recommendation(service).channels == ()
