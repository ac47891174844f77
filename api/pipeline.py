import logging

from errors import AssetNotFound, TooFewMarkers, TranscodeFailure
from executor import execute_plan
from jobs import JobTracker
from markers import validate_markers
from models import JoinPlan, Marker, ProcessingJob, Segment, SourceAsset
from planner import plan_join
from segments import build_segments, check_ranges

logger = logging.getLogger(__name__)


def resolve_segments(
    storage,
    asset: SourceAsset,
    markers: list[Marker] | None = None,
    ranges: list[Segment] | None = None,
) -> list[Segment]:
    """Turn a request's markers (or explicit ranges) into ordered segments.

    Without either, the asset's saved marker set is used.
    """
    if ranges is not None:
        return check_ranges(ranges, asset.duration)
    if markers is None:
        markers = storage.get_markers(asset.id)
        if not markers:
            raise TooFewMarkers("No markers given and none saved for this audio file")
    ordered = validate_markers(markers, asset.duration)
    return build_segments(ordered)


def get_asset(storage, asset_id: str) -> SourceAsset:
    asset = storage.get_asset(asset_id)
    if asset is None:
        raise AssetNotFound(f"Audio file {asset_id} not found")
    return asset


def submit_job(
    storage,
    asset_id: str,
    join_mode: str,
    markers: list[Marker] | None = None,
    ranges: list[Segment] | None = None,
    crossfade_duration: float | None = None,
) -> tuple[ProcessingJob, JoinPlan]:
    """Validate a processing request and create its pending job.

    Raises a ValidationError (nothing created) or AssetNotFound.
    """
    asset = get_asset(storage, asset_id)
    segments = resolve_segments(storage, asset, markers, ranges)
    plan = plan_join(segments, join_mode, crossfade_duration, asset.format)
    job = JobTracker(storage).create(asset.id, join_mode, segments, crossfade_duration)
    logger.info(f"Job {job.id} planned: expected output {plan.expected_duration:.2f}s")
    return job, plan


def render_preview(
    storage,
    transcoder,
    asset_id: str,
    markers: list[Marker],
    crossfade_duration: float = 1.0,
) -> tuple[SourceAsset, bytes]:
    """Run a crossfade join synchronously, without creating a job."""
    asset = get_asset(storage, asset_id)
    segments = resolve_segments(storage, asset, markers)
    plan = plan_join(segments, "crossfade", crossfade_duration, asset.format)
    source = storage.get_source_bytes(asset.id)
    if source is None:
        raise TranscodeFailure(None, "source audio bytes are no longer available")
    return asset, execute_plan(plan, source, transcoder)
