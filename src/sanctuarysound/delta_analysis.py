"""
Delta analysis engine.

Compares an imported console snapshot against a MixerRecommendation and
grades every parameter as optimal, close, attention or missing. Tolerances
come from presets.DELTA_TOLERANCES; suggestions come from fixed templates.
"""

import logging
import math
from typing import List, Mapping, Optional, Sequence, Tuple

from .models import (
    AnalysisScore, ChannelDelta, ChannelRecommendation, ChannelSnapshot,
    CompressorDelta, DbRange, DeltaStatus, EQBandDelta, MixerAnalysis,
    MixerRecommendation, MixerSnapshot, SnapshotEQBand, SPLEstimate,
    SPLPreference,
)
from .presets import (
    COMPRESSION_ACTIVE_RATIO, DELTA_TOLERANCES, EQ_MATCH_FREQUENCY_RATIO,
    EQ_UNMATCHED_REPORT_DB, NOMINAL_LEVEL_DBFS, SPL_ESTIMATE_MUTE_FADER_DB,
)
from .vocabulary import InputSource

logger = logging.getLogger(__name__)


def analyze(snapshot: MixerSnapshot,
            recommendation: MixerRecommendation,
            channel_mapping: Mapping[int, InputSource],
            spl_preference: Optional[SPLPreference] = None) -> MixerAnalysis:
    """
    Compare a console snapshot to a recommendation.

    Args:
        snapshot: Actual console state.
        recommendation: Output of generate_recommendation.
        channel_mapping: Snapshot channel number -> InputSource to compare against.
            Channels missing from the mapping are skipped.
        spl_preference: Optional target used for the SPL estimate.

    Returns:
        MixerAnalysis with one ChannelDelta per mapped snapshot channel.
    """
    deltas = []
    for channel in snapshot.channels:
        source = channel_mapping.get(channel.channel_number)
        if source is None:
            logger.debug(f"Skipping unmapped channel {channel.channel_number} '{channel.name}'")
            continue
        rec = _match_recommendation(channel, source, recommendation.channels)
        deltas.append(_analyze_channel(channel, source, rec))

    spl_estimate = estimate_spl(snapshot, recommendation, spl_preference)
    deltas = tuple(deltas)

    return MixerAnalysis(
        snapshot_name=snapshot.name,
        channel_deltas=deltas,
        overall_score=aggregate_score([d.overall_score for d in deltas]),
        global_suggestions=tuple(_global_suggestions(deltas, spl_estimate)),
        spl_estimate=spl_estimate,
    )


def _match_recommendation(channel: ChannelSnapshot, source: InputSource,
                          recommendations: Sequence[ChannelRecommendation]) -> Optional[ChannelRecommendation]:
    candidates = [r for r in recommendations if r.source is source]
    if not candidates:
        return None
    name = channel.name.strip().lower()
    for rec in candidates:
        if rec.label.strip().lower() == name:
            return rec
    return candidates[0]


# --------------------------------------------------------------------------
# Comparators
# --------------------------------------------------------------------------

def _grade(distance: float, parameter: str) -> DeltaStatus:
    """Grade an absolute distance against the parameter's tolerance bands."""
    tolerance = DELTA_TOLERANCES[parameter]
    if distance <= tolerance["optimal"]:
        return DeltaStatus.OPTIMAL
    if distance <= tolerance["close"]:
        return DeltaStatus.CLOSE
    return DeltaStatus.ATTENTION


def compare_range(actual: Optional[float], window: Optional[DbRange], parameter: str) -> DeltaStatus:
    if actual is None or window is None:
        return DeltaStatus.MISSING
    return _grade(abs(window.distance(actual)), parameter)


def compare_value(actual: Optional[float], recommended: Optional[float], parameter: str) -> DeltaStatus:
    if actual is None or recommended is None:
        return DeltaStatus.MISSING
    return _grade(abs(actual - recommended), parameter)


def compare_hpf(channel: ChannelSnapshot, rec: ChannelRecommendation) -> DeltaStatus:
    engaged = channel.hpf_enabled
    if rec.hpf_enabled and rec.hpf_frequency:
        if not engaged:
            return DeltaStatus.ATTENTION
        if channel.hpf_frequency is None:
            return DeltaStatus.MISSING
        ratio = abs(channel.hpf_frequency - rec.hpf_frequency) / rec.hpf_frequency
        return _grade(ratio, "hpf")
    return DeltaStatus.CLOSE if engaged else DeltaStatus.OPTIMAL


def _analyze_channel(channel: ChannelSnapshot, source: InputSource,
                     rec: Optional[ChannelRecommendation]) -> ChannelDelta:
    if rec is None:
        return ChannelDelta(
            channel_number=channel.channel_number,
            channel_name=channel.name,
            source=source,
            actual_gain_db=channel.gain_db,
            recommended_gain_range=None,
            gain_status=DeltaStatus.MISSING,
            actual_fader_db=channel.fader_db,
            recommended_fader_range=None,
            fader_status=DeltaStatus.MISSING,
            actual_hpf=channel.hpf_frequency if channel.hpf_enabled else None,
            recommended_hpf=None,
            hpf_status=DeltaStatus.MISSING,
            eq_deltas=(),
            comp_delta=None,
            overall_score=channel_score([]),
            suggestions=(f"No recommendation for {source.value}; regenerate the recommendation "
                         f"after adding this input.",),
        )

    suggestions = []

    gain_status = compare_range(channel.gain_db, rec.gain_range, "gain")
    if gain_status in (DeltaStatus.CLOSE, DeltaStatus.ATTENTION):
        suggestions.append(_range_suggestion("gain", channel.gain_db, rec.gain_range))

    fader_status = compare_range(channel.fader_db, rec.fader_range, "fader")
    if fader_status in (DeltaStatus.CLOSE, DeltaStatus.ATTENTION):
        suggestions.append(_range_suggestion("fader", channel.fader_db, rec.fader_range))

    hpf_status = compare_hpf(channel, rec)
    if hpf_status in (DeltaStatus.CLOSE, DeltaStatus.ATTENTION):
        suggestions.append(_hpf_suggestion(channel, rec))

    eq_deltas = compare_eq(channel.eq_bands, rec)
    suggestions += [d.suggestion for d in eq_deltas if d.suggestion]

    comp_delta = compare_compressor(channel, rec)
    if comp_delta is not None and comp_delta.suggestion:
        suggestions.append(comp_delta.suggestion)

    statuses = [gain_status, fader_status, hpf_status] + [d.status for d in eq_deltas]
    if comp_delta is not None:
        statuses += [comp_delta.threshold_status, comp_delta.ratio_status]

    return ChannelDelta(
        channel_number=channel.channel_number,
        channel_name=channel.name,
        source=source,
        actual_gain_db=channel.gain_db,
        recommended_gain_range=rec.gain_range,
        gain_status=gain_status,
        actual_fader_db=channel.fader_db,
        recommended_fader_range=rec.fader_range,
        fader_status=fader_status,
        actual_hpf=channel.hpf_frequency if channel.hpf_enabled else None,
        recommended_hpf=rec.hpf_frequency if rec.hpf_enabled else None,
        hpf_status=hpf_status,
        eq_deltas=eq_deltas,
        comp_delta=comp_delta,
        overall_score=channel_score(statuses),
        suggestions=tuple(suggestions),
    )


def compare_eq(bands: Sequence[SnapshotEQBand], rec: ChannelRecommendation) -> Tuple[EQBandDelta, ...]:
    """Match recommended bands to snapshot bands; unmatched bands compare against flat."""
    active = [b for b in bands if b.enabled]
    used = set()
    deltas = []

    for band in rec.eq_bands:
        match = None
        best = None
        for index, actual in enumerate(active):
            if index in used:
                continue
            ratio = abs(actual.frequency - band.frequency) / band.frequency
            if ratio <= EQ_MATCH_FREQUENCY_RATIO and (best is None or ratio < best):
                match, best = index, ratio
        actual_gain = 0.0
        if match is not None:
            used.add(match)
            actual_gain = active[match].gain_db
        deltas.append(_eq_delta(band.frequency, actual_gain, band.gain_db))

    for index, actual in enumerate(active):
        if index not in used and abs(actual.gain_db) > EQ_UNMATCHED_REPORT_DB:
            deltas.append(_eq_delta(actual.frequency, actual.gain_db, 0.0))

    return tuple(deltas)


def _eq_delta(frequency: float, actual: float, recommended: float) -> EQBandDelta:
    delta = actual - recommended
    status = _grade(abs(delta), "eq_gain")
    suggestion = ""
    if status is not DeltaStatus.OPTIMAL:
        verb = "Cut" if delta > 0 else "Boost"
        suggestion = (f"{verb} {_format_hz(frequency)} by {abs(delta):.1f} dB "
                      f"(now {actual:+.1f} dB, recommended {recommended:+.1f} dB)")
    return EQBandDelta(frequency, actual, recommended, delta, status, suggestion)


def compare_compressor(channel: ChannelSnapshot, rec: ChannelRecommendation) -> Optional[CompressorDelta]:
    comp = rec.compressor
    if comp is None:
        if channel.comp_ratio is not None and channel.comp_ratio > COMPRESSION_ACTIVE_RATIO:
            return CompressorDelta(
                actual_threshold_db=channel.comp_threshold_db,
                recommended_threshold_db=None,
                actual_ratio=channel.comp_ratio,
                recommended_ratio=None,
                threshold_status=DeltaStatus.MISSING,
                ratio_status=DeltaStatus.CLOSE,
                suggestion=f"Compressor is engaged at {channel.comp_ratio:.1f}:1 but none is "
                           f"recommended for this source",
            )
        return None

    threshold_status = compare_value(channel.comp_threshold_db, comp.threshold_db, "comp_threshold")
    ratio_status = compare_value(channel.comp_ratio, comp.ratio, "comp_ratio")

    parts = []
    if threshold_status in (DeltaStatus.CLOSE, DeltaStatus.ATTENTION):
        verb = "Lower" if channel.comp_threshold_db > comp.threshold_db else "Raise"
        parts.append(f"{verb} compressor threshold from {channel.comp_threshold_db:.0f} dB "
                     f"to {comp.threshold_db:.0f} dB")
    if ratio_status in (DeltaStatus.CLOSE, DeltaStatus.ATTENTION):
        verb = "Reduce" if channel.comp_ratio > comp.ratio else "Increase"
        parts.append(f"{verb} compressor ratio from {channel.comp_ratio:.1f}:1 to {comp.ratio:.1f}:1")

    return CompressorDelta(
        actual_threshold_db=channel.comp_threshold_db,
        recommended_threshold_db=comp.threshold_db,
        actual_ratio=channel.comp_ratio,
        recommended_ratio=comp.ratio,
        threshold_status=threshold_status,
        ratio_status=ratio_status,
        suggestion="; ".join(parts),
    )


# --------------------------------------------------------------------------
# Suggestions
# --------------------------------------------------------------------------

def _range_suggestion(parameter: str, actual: float, window: DbRange) -> str:
    offset = window.distance(actual)
    verb = "Lower" if offset > 0 else "Raise"
    return (f"{verb} {parameter} by {abs(offset):.1f} dB "
            f"(now {actual:.1f} dB, recommended {window.low:.0f} to {window.high:.0f} dB)")


def _hpf_suggestion(channel: ChannelSnapshot, rec: ChannelRecommendation) -> str:
    if not rec.hpf_enabled:
        return "HPF is not needed on this source; consider bypassing it"
    if not channel.hpf_enabled:
        return f"HPF is bypassed; engage it at {_format_hz(rec.hpf_frequency)}"
    verb = "Lower" if channel.hpf_frequency > rec.hpf_frequency else "Raise"
    return (f"{verb} HPF from {_format_hz(channel.hpf_frequency)} "
            f"to {_format_hz(rec.hpf_frequency)}")


def _format_hz(frequency: float) -> str:
    if frequency >= 1000:
        return f"{frequency / 1000:.1f} kHz"
    return f"{frequency:.0f} Hz"


def _global_suggestions(deltas: Sequence[ChannelDelta], spl: Optional[SPLEstimate]) -> List[str]:
    suggestions = []

    gain_issues = sum(1 for d in deltas if d.gain_status is DeltaStatus.ATTENTION)
    if gain_issues >= 3:
        suggestions.append("Multiple channels have gain staging issues. Review the overall gain "
                           "structure; each preamp should target -18 dBFS.")

    hpf_issues = sum(1 for d in deltas if d.hpf_status is DeltaStatus.ATTENTION)
    if hpf_issues >= 2:
        suggestions.append(f"{hpf_issues} channels have HPF issues. High-pass filters reduce "
                           f"low-end mud, especially in reverberant rooms.")

    if any(d.comp_delta is not None and d.comp_delta.ratio_status is DeltaStatus.ATTENTION
           for d in deltas):
        suggestions.append("Some channels have aggressive compression ratios. Keep worship "
                           "ratios between 2:1 and 4:1 to avoid audible pumping.")

    if spl is not None and spl.flagged:
        suggestions.append(spl.message)
    return suggestions


# --------------------------------------------------------------------------
# Scoring
# --------------------------------------------------------------------------

def channel_score(statuses: Sequence[DeltaStatus]) -> AnalysisScore:
    """Worst-case roll-up of parameter statuses; missing data is ignored."""
    present = [s for s in statuses if s is not DeltaStatus.MISSING]
    if not present:
        return AnalysisScore.FAIR
    attention = present.count(DeltaStatus.ATTENTION)
    if attention >= 2:
        return AnalysisScore.POOR
    if attention == 1:
        return AnalysisScore.FAIR
    if DeltaStatus.CLOSE in present:
        return AnalysisScore.GOOD
    return AnalysisScore.EXCELLENT


def aggregate_score(scores: Sequence[AnalysisScore]) -> AnalysisScore:
    if not scores:
        return AnalysisScore.FAIR
    poor = scores.count(AnalysisScore.POOR)
    fair = scores.count(AnalysisScore.FAIR)
    if poor >= 2:
        return AnalysisScore.POOR
    if poor == 1 or fair >= 2:
        return AnalysisScore.FAIR
    if fair or AnalysisScore.GOOD in scores:
        return AnalysisScore.GOOD
    return AnalysisScore.EXCELLENT


# --------------------------------------------------------------------------
# SPL estimate
# --------------------------------------------------------------------------

def estimate_spl(snapshot: MixerSnapshot, recommendation: MixerRecommendation,
                 preference: Optional[SPLPreference]) -> Optional[SPLEstimate]:
    """
    Estimate the service's peak SPL from gain and fader staging.

    Channel levels are power-summed so many sources add up the way they do
    acoustically. Returns None without a calibrated preference or any
    unmuted channel with both gain and fader.
    """
    if preference is None or preference.calibration_offset is None:
        return None

    levels = [c.gain_db + c.fader_db for c in snapshot.channels
              if c.gain_db is not None and c.fader_db is not None
              and c.fader_db > SPL_ESTIMATE_MUTE_FADER_DB]
    if not levels:
        return None

    summed = 10.0 * math.log10(sum(10.0 ** (level / 10.0) for level in levels))
    peak = (summed + NOMINAL_LEVEL_DBFS + preference.calibration_offset
            + recommendation.peak_intensity_offset_db)
    delta = peak - preference.target_db
    flagged = delta > preference.flag_threshold_db

    if flagged:
        message = (f"Estimated peak SPL: {peak:.0f} dB, {delta:.0f} dB over your "
                   f"{preference.target_db:.0f} dB target")
    elif delta > 0:
        message = (f"Estimated peak SPL: {peak:.0f} dB, {delta:.0f} dB over target but within "
                   f"the {preference.flagging_mode.value} threshold")
    else:
        message = f"Estimated peak SPL: {peak:.0f} dB, {abs(delta):.0f} dB under target"

    return SPLEstimate(peak, preference.target_db, delta, flagged, message)
