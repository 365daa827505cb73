import pytest

from sanctuarysound.errors import PayloadError
from sanctuarysound.payloads import (
    parse_channel_mapping, parse_service, parse_snapshot, parse_spl_preference,
)
from sanctuarysound.vocabulary import (
    ExperienceLevel, InputSource, MixerModel, RoomSurface, SPLFlaggingMode, VocalRange,
)


def test_parse_service_defaults():
    service = parse_service({
        "mixer": "Yamaha TF Series",
        "channels": [{"source": "lead_vocal", "vocal_profile": {"range": "Alto"}}],
    })
    assert service.mixer is MixerModel.YAMAHA_TF
    assert service.experience_level is ExperienceLevel.INTERMEDIATE
    assert service.room.surface is RoomSurface.MIXED
    assert service.channels[0].label == "Lead Vocal"
    assert service.channels[0].vocal_profile.range is VocalRange.ALTO
    assert service.setlist == ()


@pytest.mark.parametrize("payload", [
    {},
    {"mixer": "x32"},
    {"mixer": "behringer_x32", "channels": "lead_vocal"},
    {"mixer": "behringer_x32", "channels": [{"label": "no source"}]},
    {"mixer": "behringer_x32", "setlist": [{"title": "Song", "key": "H"}]},
])
def test_parse_service_rejects(payload):
    with pytest.raises(PayloadError):
        parse_service(payload)


@pytest.mark.parametrize("payload, field", [
    ({"mixer": "behringer_x32", "room": "small"}, "room"),
    ({"mixer": "behringer_x32", "setlist": ["Amazing Grace"]}, "song 1"),
    ({"mixer": "behringer_x32",
      "channels": [{"source": "lead_vocal", "vocal_profile": "tenor"}]}, "vocal_profile"),
    (["behringer_x32"], "service"),
])
def test_parse_service_rejects_non_objects(payload, field):
    with pytest.raises(PayloadError, match=field):
        parse_service(payload)


def test_non_object_snapshot_and_preference():
    with pytest.raises(PayloadError, match="snapshot"):
        parse_snapshot("Sunday")
    with pytest.raises(PayloadError, match="spl_preference"):
        parse_spl_preference([1, 2])


def test_parse_snapshot():
    snapshot = parse_snapshot({
        "name": "Sunday",
        "mixer": "midas_m32",
        "channels": [{
            "channel_number": 4,
            "gain_db": "32.5",
            "eq_bands": [{"frequency": 250, "gain_db": -3}, {"frequency": 5000, "enabled": False}],
        }],
    })
    channel = snapshot.channels[0]
    assert snapshot.mixer is MixerModel.MIDAS_M32
    assert channel.name == "Ch 4"
    assert channel.gain_db == 32.5
    assert channel.fader_db is None
    assert [b.enabled for b in channel.eq_bands] == [True, False]


def test_parse_snapshot_rejects_bad_numbers():
    with pytest.raises(PayloadError):
        parse_snapshot({"channels": [{"channel_number": "one"}]})
    with pytest.raises(PayloadError):
        parse_snapshot({"channels": [{"channel_number": 1, "gain_db": True}]})


def test_parse_channel_mapping_forms():
    expected = {1: InputSource.KICK_DRUM, 2: InputSource.SNARE_DRUM}
    assert parse_channel_mapping({"1": "kick_drum", "2": "Snare Drum"}) == expected
    assert parse_channel_mapping([{"channel": 1, "source": "kick_drum"},
                                  {"channel": 2, "source": "snare_drum"}]) == expected
    with pytest.raises(PayloadError):
        parse_channel_mapping({"one": "kick_drum"})
    with pytest.raises(PayloadError):
        parse_channel_mapping("kick")


def test_parse_spl_preference():
    assert parse_spl_preference(None) is None
    preference = parse_spl_preference({"target_db": 88, "flagging_mode": "Strict"})
    assert preference.target_db == 88.0
    assert preference.flagging_mode is SPLFlaggingMode.STRICT
    assert preference.calibration_offset is None
