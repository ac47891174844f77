import math

from errors import InvalidSegment, MarkerOutOfRange, OverlappingSegments
from models import Marker, Segment


def build_segments(markers: list[Marker]) -> list[Segment]:
    """Pair sorted markers (0&1, 2&3, ...) into segments."""
    if len(markers) % 2 != 0:
        raise InvalidSegment("Markers must come in start/end pairs")

    segments = []
    for i in range(0, len(markers), 2):
        start = markers[i].timestamp
        end = markers[i + 1].timestamp
        # A stable sort keeps equal timestamps adjacent, so a pair can still be zero-length
        if start >= end:
            raise InvalidSegment(
                f"Segment {i // 2 + 1}: start ({start}s) must be less than end ({end}s)"
            )
        segments.append(Segment(start_time=start, end_time=end))
    return segments


def check_ranges(ranges: list[Segment], duration: float) -> list[Segment]:
    """Validate caller-supplied segment ranges and return them in start order."""
    if not ranges:
        raise InvalidSegment("At least one segment is required")

    for seg in ranges:
        if not (math.isfinite(seg.start_time) and math.isfinite(seg.end_time)):
            raise MarkerOutOfRange("Segment bounds must be finite numbers")
        if seg.start_time >= seg.end_time:
            raise InvalidSegment(
                f"Segment start ({seg.start_time}s) must be less than end ({seg.end_time}s)"
            )
        if seg.start_time < 0 or seg.end_time > duration:
            raise MarkerOutOfRange(
                f"Segment {seg.start_time}-{seg.end_time}s is outside the audio duration (0-{duration:.2f}s)"
            )

    ordered = sorted(ranges, key=lambda s: (s.start_time, s.end_time))
    for prev, cur in zip(ordered, ordered[1:]):
        if cur.start_time < prev.end_time:
            raise OverlappingSegments(
                f"Segment {cur.start_time}-{cur.end_time}s overlaps {prev.start_time}-{prev.end_time}s"
            )
    return [Segment(s.start_time, s.end_time) for s in ordered]
