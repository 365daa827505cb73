import os
import sys

# Add the src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from sanctuarysound.errors import AudioCaptureError
from sanctuarysound.models import (
    InputChannel, RoomProfile, SetlistSong, VocalProfile, WorshipService,
)
from sanctuarysound.vocabulary import (
    ExperienceLevel, InputSource, MixerModel, MusicalKey, RoomSize, RoomSurface,
    SongIntensity, VocalRange,
)


def make_service(level=ExperienceLevel.INTERMEDIATE, mixer=MixerModel.BEHRINGER_X32,
                 surface=RoomSurface.MIXED, size=RoomSize.MEDIUM, setlist=None, channels=None):
    if channels is None:
        channels = (
            InputChannel("Lead Vox", InputSource.LEAD_VOCAL, VocalProfile(VocalRange.TENOR)),
            InputChannel("Kick", InputSource.KICK_DRUM),
            InputChannel("Bass", InputSource.BASS_GTR_DI),
            InputChannel("Keys", InputSource.DIGITAL_PIANO),
            InputChannel("Pastor", InputSource.PASTOR_LAPEL),
        )
    if setlist is None:
        setlist = (
            SetlistSong("Opener", MusicalKey.G, SongIntensity.MEDIUM),
            SetlistSong("Anthem", MusicalKey.D, SongIntensity.DRIVING),
        )
    return WorshipService(
        name="Sunday AM",
        date="2026-10-18",
        mixer=mixer,
        room=RoomProfile(size=size, surface=surface),
        channels=tuple(channels),
        setlist=tuple(setlist),
        experience_level=level,
    )


class FakeSource:
    """Records start/stop calls instead of opening an audio device."""

    def __init__(self, fail=False, reference_offset_db=None, first_block=None):
        self.fail = fail
        self.reference_offset_db = reference_offset_db
        self.first_block = first_block
        self.callback = None
        self.opens = 0
        self.starts = 0
        self.stops = 0

    def open(self):
        if self.fail:
            raise AudioCaptureError("device busy")
        self.opens += 1

    def start(self, callback):
        if self.fail:
            raise AudioCaptureError("device busy")
        self.callback = callback
        self.starts += 1
        # a real device may deliver before start() returns
        if self.first_block is not None:
            callback(self.first_block, 1.0)

    def stop(self):
        self.callback = None
        self.stops += 1


@pytest.fixture
def service():
    return make_service()
