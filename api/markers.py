import logging
import math
import os

from errors import MarkerOutOfRange, OddMarkerCount, TooFewMarkers
from models import Marker

logger = logging.getLogger(__name__)

# Markers closer than this to the previously kept marker are dropped. 0 disables.
DEDUP_EPSILON = float(os.environ.get("MARKER_DEDUP_EPSILON", "0"))


def _collapse(markers: list[Marker], epsilon: float) -> list[Marker]:
    kept: list[Marker] = []
    for marker in markers:
        if kept and marker.timestamp - kept[-1].timestamp < epsilon:
            logger.info(f"Dropping marker at {marker.timestamp:.3f}s (within {epsilon}s of {kept[-1].timestamp:.3f}s)")
            continue
        kept.append(marker)
    return kept


def validate_markers(markers: list[Marker], duration: float, dedup_epsilon: float | None = None) -> list[Marker]:
    """Return markers sorted by timestamp (ties by order), or raise a ValidationError.

    Checks run in a fixed order and the first violation wins: too few markers,
    odd count (after optional near-duplicate collapsing), out-of-range timestamp.
    """
    if len(markers) < 2:
        raise TooFewMarkers("At least two markers are required")

    ordered = sorted(markers, key=lambda m: (m.timestamp, m.order))

    epsilon = DEDUP_EPSILON if dedup_epsilon is None else dedup_epsilon
    if epsilon > 0:
        ordered = _collapse(ordered, epsilon)
        if len(ordered) < 2:
            raise TooFewMarkers("At least two distinct markers are required")

    if len(ordered) % 2 != 0:
        raise OddMarkerCount("Even number of markers required - each pair creates one segment")

    for marker in ordered:
        if not math.isfinite(marker.timestamp) or marker.timestamp < 0 or marker.timestamp > duration:
            raise MarkerOutOfRange(
                f"Marker at {marker.timestamp}s is outside the audio duration (0-{duration:.2f}s)"
            )

    return ordered
