import pytest

from conftest import make_service
from sanctuarysound.delta_analysis import (
    aggregate_score, analyze, channel_score, compare_compressor, compare_eq, compare_hpf,
    estimate_spl,
)
from sanctuarysound.models import (
    AnalysisScore, ChannelRecommendation, ChannelSnapshot, CompressorSetting, DbRange,
    DeltaStatus, EQBand, MixerRecommendation, MixerSnapshot, SnapshotEQBand, SPLPreference,
    to_dict,
)
from sanctuarysound.recommendation import generate_recommendation
from sanctuarysound.vocabulary import ExperienceLevel, InputSource, MixerModel, SPLFlaggingMode

OPTIMAL, CLOSE, ATTENTION, MISSING = (DeltaStatus.OPTIMAL, DeltaStatus.CLOSE,
                                      DeltaStatus.ATTENTION, DeltaStatus.MISSING)


def _vocal_rec(**overrides):
    values = dict(
        label="Lead Vox",
        source=InputSource.LEAD_VOCAL,
        gain_range=DbRange(20.0, 30.0),
        fader_start_db=0.0,
        fader_range=DbRange(-2.0, 2.0),
        headroom_db=18.0,
        hpf_frequency=100.0,
        hpf_enabled=True,
        eq_bands=(EQBand(200.0, -2.0), EQBand(4000.0, 2.0)),
        compressor=CompressorSetting(-20.0, 3.0, 10.0, 120.0),
    )
    values.update(overrides)
    return ChannelRecommendation(**values)


def _matching_snapshot(recommendation):
    channels = []
    for number, rec in enumerate(recommendation.channels, start=1):
        comp = rec.compressor
        channels.append(ChannelSnapshot(
            channel_number=number,
            name=rec.label,
            gain_db=rec.gain_range.midpoint,
            fader_db=rec.fader_start_db,
            hpf_frequency=rec.hpf_frequency,
            hpf_enabled=rec.hpf_enabled,
            eq_bands=tuple(SnapshotEQBand(b.frequency, b.gain_db, b.q) for b in rec.eq_bands),
            comp_threshold_db=comp.threshold_db if comp else None,
            comp_ratio=comp.ratio if comp else None,
        ))
    mapping = {n: rec.source for n, rec in enumerate(recommendation.channels, start=1)}
    return MixerSnapshot("Sunday", tuple(channels)), mapping


def test_snapshot_matching_recommendation_is_excellent():
    recommendation = generate_recommendation(make_service(level=ExperienceLevel.ADVANCED))
    snapshot, mapping = _matching_snapshot(recommendation)

    result = analyze(snapshot, recommendation, mapping)

    assert result.overall_score is AnalysisScore.EXCELLENT
    assert len(result.channel_deltas) == len(recommendation.channels)
    for delta in result.channel_deltas:
        assert delta.overall_score is AnalysisScore.EXCELLENT
        assert delta.suggestions == ()
        assert all(s is OPTIMAL for s in delta.statuses)
    assert result.global_suggestions == ()
    assert result.spl_estimate is None


def test_unmapped_channels_are_skipped():
    recommendation = generate_recommendation(make_service())
    snapshot, mapping = _matching_snapshot(recommendation)
    del mapping[2]
    result = analyze(snapshot, recommendation, mapping)
    assert 2 not in [d.channel_number for d in result.channel_deltas]
    assert len(result.channel_deltas) == len(recommendation.channels) - 1


def test_mapped_source_without_recommendation():
    recommendation = generate_recommendation(make_service())
    snapshot = MixerSnapshot("Sunday", (ChannelSnapshot(9, "Violin", gain_db=30.0, fader_db=0.0),))
    result = analyze(snapshot, recommendation, {9: InputSource.VIOLIN})

    delta = result.channel_deltas[0]
    assert delta.gain_status is MISSING
    assert delta.fader_status is MISSING
    assert delta.hpf_status is MISSING
    assert delta.overall_score is AnalysisScore.FAIR
    assert "No recommendation" in delta.suggestions[0]


def test_label_match_preferred_over_first_candidate():
    first = _vocal_rec(label="BV 1", source=InputSource.BACKING_VOCAL)
    second = _vocal_rec(label="BV 2", source=InputSource.BACKING_VOCAL, gain_range=DbRange(40.0, 50.0))
    recommendation = MixerRecommendation("x", MixerModel.BEHRINGER_X32, (first, second))
    snapshot = MixerSnapshot("s", (ChannelSnapshot(3, "bv 2", gain_db=45.0, fader_db=0.0),))

    delta = analyze(snapshot, recommendation, {3: InputSource.BACKING_VOCAL}).channel_deltas[0]
    assert delta.recommended_gain_range == DbRange(40.0, 50.0)
    assert delta.gain_status is OPTIMAL


@pytest.mark.parametrize("gain, status", [
    (25.0, OPTIMAL),
    (30.0, OPTIMAL),
    (18.0, CLOSE),
    (33.0, CLOSE),
    (14.0, ATTENTION),
    (None, MISSING),
])
def test_gain_tolerance_bands(gain, status):
    recommendation = MixerRecommendation("x", MixerModel.BEHRINGER_X32, (_vocal_rec(),))
    snapshot = MixerSnapshot("s", (ChannelSnapshot(1, "Lead Vox", gain_db=gain, fader_db=0.0,
                                                   hpf_frequency=100.0, hpf_enabled=True),))
    delta = analyze(snapshot, recommendation, {1: InputSource.LEAD_VOCAL}).channel_deltas[0]
    assert delta.gain_status is status


def test_gain_suggestion_direction():
    recommendation = MixerRecommendation("x", MixerModel.BEHRINGER_X32, (_vocal_rec(),))
    low = MixerSnapshot("s", (ChannelSnapshot(1, "Lead Vox", gain_db=14.0, fader_db=0.0),))
    high = MixerSnapshot("s", (ChannelSnapshot(1, "Lead Vox", gain_db=36.0, fader_db=0.0),))
    mapping = {1: InputSource.LEAD_VOCAL}
    assert analyze(low, recommendation, mapping).channel_deltas[0].suggestions[0].startswith("Raise gain by 6.0 dB")
    assert analyze(high, recommendation, mapping).channel_deltas[0].suggestions[0].startswith("Lower gain by 6.0 dB")


def test_hpf_comparisons():
    rec = _vocal_rec()
    assert compare_hpf(ChannelSnapshot(1, "v", hpf_frequency=100.0, hpf_enabled=True), rec) is OPTIMAL
    assert compare_hpf(ChannelSnapshot(1, "v", hpf_frequency=125.0, hpf_enabled=True), rec) is CLOSE
    assert compare_hpf(ChannelSnapshot(1, "v", hpf_frequency=200.0, hpf_enabled=True), rec) is ATTENTION
    assert compare_hpf(ChannelSnapshot(1, "v", hpf_frequency=100.0, hpf_enabled=False), rec) is ATTENTION
    assert compare_hpf(ChannelSnapshot(1, "v", hpf_enabled=True), rec) is MISSING

    no_hpf = _vocal_rec(hpf_frequency=None, hpf_enabled=False)
    assert compare_hpf(ChannelSnapshot(1, "v", hpf_enabled=False), no_hpf) is OPTIMAL
    assert compare_hpf(ChannelSnapshot(1, "v", hpf_frequency=80.0, hpf_enabled=True), no_hpf) is CLOSE


def test_eq_matching_and_unmatched_bands():
    rec = _vocal_rec()
    bands = (
        SnapshotEQBand(210.0, -2.0),          # matches 200 Hz
        SnapshotEQBand(4000.0, 6.0),          # matches 4 kHz, 4 dB too hot
        SnapshotEQBand(1000.0, -5.0),         # unmatched, large cut
        SnapshotEQBand(12000.0, 2.0),         # unmatched, small: not reported
        SnapshotEQBand(800.0, 9.0, enabled=False),
    )
    deltas = compare_eq(bands, rec)
    assert [(d.frequency, d.status) for d in deltas] == [
        (200.0, OPTIMAL),
        (4000.0, ATTENTION),
        (1000.0, ATTENTION),
    ]
    assert deltas[1].suggestion.startswith("Cut 4.0 kHz by 4.0 dB")
    assert deltas[2].suggestion.startswith("Boost 1.0 kHz by 5.0 dB")


def test_missing_eq_band_compares_against_flat():
    deltas = compare_eq((), _vocal_rec())
    assert [d.actual_gain_db for d in deltas] == [0.0, 0.0]
    assert all(d.status is CLOSE for d in deltas)


def test_compressor_comparison():
    rec = _vocal_rec()
    delta = compare_compressor(ChannelSnapshot(1, "v", comp_threshold_db=-10.0, comp_ratio=8.0), rec)
    assert delta.threshold_status is ATTENTION
    assert delta.ratio_status is ATTENTION
    assert "Lower compressor threshold" in delta.suggestion
    assert "Reduce compressor ratio" in delta.suggestion

    missing = compare_compressor(ChannelSnapshot(1, "v"), rec)
    assert missing.threshold_status is MISSING
    assert missing.ratio_status is MISSING


def test_compression_without_recommendation():
    rec = _vocal_rec(compressor=None)
    assert compare_compressor(ChannelSnapshot(1, "v", comp_ratio=1.2), rec) is None

    delta = compare_compressor(ChannelSnapshot(1, "v", comp_threshold_db=-20.0, comp_ratio=4.0), rec)
    assert delta.threshold_status is MISSING
    assert delta.ratio_status is CLOSE
    assert delta.suggestion


def test_channel_score_rules():
    assert channel_score([]) is AnalysisScore.FAIR
    assert channel_score([MISSING, MISSING]) is AnalysisScore.FAIR
    assert channel_score([OPTIMAL, MISSING]) is AnalysisScore.EXCELLENT
    assert channel_score([OPTIMAL, CLOSE]) is AnalysisScore.GOOD
    assert channel_score([OPTIMAL, ATTENTION]) is AnalysisScore.FAIR
    assert channel_score([ATTENTION, CLOSE, ATTENTION]) is AnalysisScore.POOR


def test_aggregate_score_rules():
    E, G, F, P = AnalysisScore.EXCELLENT, AnalysisScore.GOOD, AnalysisScore.FAIR, AnalysisScore.POOR
    assert aggregate_score([]) is F
    assert aggregate_score([E, E]) is E
    assert aggregate_score([E, G]) is G
    assert aggregate_score([E, F]) is G
    assert aggregate_score([F, F]) is F
    assert aggregate_score([E, P]) is F
    assert aggregate_score([P, P, E]) is P


def test_global_suggestions_for_gain_and_hpf_issues():
    recs = tuple(_vocal_rec(label=f"V{i}") for i in range(3))
    recommendation = MixerRecommendation("x", MixerModel.BEHRINGER_X32, recs)
    snapshot = MixerSnapshot("s", tuple(
        ChannelSnapshot(i + 1, f"V{i}", gain_db=5.0, fader_db=0.0, hpf_enabled=False)
        for i in range(3)))
    mapping = {i + 1: InputSource.LEAD_VOCAL for i in range(3)}

    result = analyze(snapshot, recommendation, mapping)
    assert any("gain staging" in s for s in result.global_suggestions)
    assert any(s.startswith("3 channels have HPF issues") for s in result.global_suggestions)
    assert result.overall_score is AnalysisScore.POOR


def _spl_snapshot(*levels):
    return MixerSnapshot("s", tuple(
        ChannelSnapshot(i + 1, f"Ch {i + 1}", gain_db=gain, fader_db=fader)
        for i, (gain, fader) in enumerate(levels)))


def test_spl_estimate_requires_calibration():
    recommendation = MixerRecommendation("x", MixerModel.BEHRINGER_X32)
    snapshot = _spl_snapshot((30.0, 0.0))
    assert estimate_spl(snapshot, recommendation, None) is None
    assert estimate_spl(snapshot, recommendation, SPLPreference()) is None


def test_spl_estimate_power_sum_and_mute():
    recommendation = MixerRecommendation("x", MixerModel.BEHRINGER_X32)
    preference = SPLPreference(target_db=90.0, calibration_offset=70.0)

    single = estimate_spl(_spl_snapshot((30.0, 0.0)), recommendation, preference)
    assert single.estimated_peak_db == pytest.approx(82.0)
    assert not single.flagged

    double = estimate_spl(_spl_snapshot((30.0, 0.0), (30.0, 0.0)), recommendation, preference)
    assert double.estimated_peak_db == pytest.approx(85.0103, abs=1e-3)

    muted = estimate_spl(_spl_snapshot((30.0, 0.0), (40.0, -70.0)), recommendation, preference)
    assert muted.estimated_peak_db == pytest.approx(82.0)

    assert estimate_spl(_spl_snapshot((30.0, -80.0)), recommendation, preference) is None


def test_flagged_spl_estimate_reaches_global_suggestions():
    recommendation = MixerRecommendation("x", MixerModel.BEHRINGER_X32, peak_intensity_offset_db=3.0)
    preference = SPLPreference(target_db=90.0, flagging_mode=SPLFlaggingMode.BALANCED,
                               calibration_offset=79.0)
    snapshot = _spl_snapshot((30.0, 0.0))

    result = analyze(snapshot, recommendation, {}, preference)
    # 30 - 18 + 79 + 3 = 94: over target but inside the 5 dB balanced threshold
    assert result.spl_estimate.delta_db == pytest.approx(4.0)
    assert not result.spl_estimate.flagged

    hot = analyze(snapshot, recommendation, {}, SPLPreference(90.0, SPLFlaggingMode.STRICT, 79.0))
    assert hot.spl_estimate.flagged
    assert hot.global_suggestions[-1] == hot.spl_estimate.message
    assert hot.overall_score is AnalysisScore.FAIR


def test_analyze_is_idempotent():
    recommendation = generate_recommendation(make_service(level=ExperienceLevel.ADVANCED))
    snapshot, mapping = _matching_snapshot(recommendation)
    first = snapshot.channels[0]
    off = ChannelSnapshot(first.channel_number, first.name, gain_db=first.gain_db + 8.0,
                          fader_db=first.fader_db, hpf_frequency=None, hpf_enabled=False)
    snapshot = MixerSnapshot(snapshot.name, (off,) + snapshot.channels[1:])
    preference = SPLPreference(90.0, SPLFlaggingMode.STRICT, 79.0)

    once = analyze(snapshot, recommendation, mapping, preference)
    twice = analyze(snapshot, recommendation, mapping, preference)

    assert once == twice
    assert to_dict(once) == to_dict(twice)
    assert once.spl_estimate is not None
    assert once.channel_deltas[0].suggestions


def test_analysis_serializes():
    recommendation = generate_recommendation(make_service(level=ExperienceLevel.ADVANCED))
    snapshot, mapping = _matching_snapshot(recommendation)
    data = to_dict(analyze(snapshot, recommendation, mapping))
    assert data["overall_score"] == "excellent"
    assert data["channel_deltas"][0]["gain_status"] == "optimal"
