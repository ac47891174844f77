from errors import CrossfadeTooLong, InvalidCrossfadeDuration, InvalidJoinMode, InvalidSegment, MissingCrossfadeDuration
from models import JOIN_MODES, ExtractStep, JoinPlan, JoinStep, Segment

MIN_CROSSFADE_S = 0.1
MAX_CROSSFADE_S = 5.0

# Segments and crossfade folds stay lossless PCM; only the join output is encoded.
INTERMEDIATE_FORMAT = ".wav"


def validate_crossfade(segments: list[Segment], crossfade_duration: float | None) -> float:
    if crossfade_duration is None:
        raise MissingCrossfadeDuration("crossfade_duration is required for crossfade mode")
    if not (MIN_CROSSFADE_S <= crossfade_duration <= MAX_CROSSFADE_S):
        raise InvalidCrossfadeDuration(
            f"crossfade_duration must be between {MIN_CROSSFADE_S} and {MAX_CROSSFADE_S} seconds"
        )
    if len(segments) > 1:
        shortest = min(segments, key=lambda s: s.duration)
        if shortest.duration < crossfade_duration:
            raise CrossfadeTooLong(
                f"crossfade_duration ({crossfade_duration}s) is longer than the shortest segment "
                f"({shortest.start_time}-{shortest.end_time}s, {shortest.duration:.2f}s)"
            )
    return float(crossfade_duration)


def plan_join(
    segments: list[Segment],
    join_mode: str,
    crossfade_duration: float | None = None,
    output_format: str = ".mp3",
) -> JoinPlan:
    """Describe the extract steps and the single join step for a request.

    One segment is an identity join. Several segments are either one N-ary
    concat (direct) or a left fold of pairwise crossfades (crossfade).
    Intermediates are WAV, so a lossy output format is encoded exactly once.
    """
    if join_mode not in JOIN_MODES:
        raise InvalidJoinMode(f"join_mode must be one of: {', '.join(JOIN_MODES)}")
    if not segments:
        raise InvalidSegment("At least one segment is required")

    fade = None
    if join_mode == "crossfade":
        fade = validate_crossfade(segments, crossfade_duration)

    final = f"joined{output_format}"
    if len(segments) == 1:
        # the lone extract encodes straight to the output container
        seg = segments[0]
        extracts = [ExtractStep(index=0, start=seg.start_time, duration=seg.duration, artifact=final)]
    else:
        extracts = [
            ExtractStep(index=i, start=seg.start_time, duration=seg.duration, artifact=f"segment-{i:03d}{INTERMEDIATE_FORMAT}")
            for i, seg in enumerate(segments)
        ]
    artifacts = [step.artifact for step in extracts]

    if len(extracts) == 1:
        join = JoinStep(kind="identity", inputs=artifacts, output=final)
    elif join_mode == "direct":
        join = JoinStep(kind="concat", inputs=artifacts, output=final)
    else:
        join = JoinStep(kind="crossfade", inputs=artifacts, output=final, crossfade_duration=fade)

    return JoinPlan(extracts=extracts, join=join, output_format=output_format, segments=list(segments))
