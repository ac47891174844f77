import logging

from errors import AssetNotFound, JobNotFound, OutputUnavailable, TranscodeFailure, ValidationError
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from jobs import JobTracker
from models import Marker, Segment
from pipeline import render_preview, submit_job
from pydantic import BaseModel
from routers.marker_sets import MarkerIn
from routers.upload import CONTENT_TYPES
from storage import get_storage
from transcoder import get_transcoder
from worker import notify_worker

logger = logging.getLogger(__name__)
router = APIRouter()


class SegmentIn(BaseModel):
    start_time: float
    end_time: float


class ProcessRequest(BaseModel):
    audio_file_id: str
    join_mode: str
    markers: list[MarkerIn] | None = None
    segments: list[SegmentIn] | None = None
    crossfade_duration: float | None = None


class PreviewRequest(BaseModel):
    audio_file_id: str
    markers: list[MarkerIn]
    crossfade_duration: float = 1.0


def _to_markers(items: list[MarkerIn] | None) -> list[Marker] | None:
    if items is None:
        return None
    return [Marker(timestamp=m.timestamp, order=m.order) for m in items]


def _job_to_dict(job) -> dict:
    data = {
        "id": job.id,
        "audio_file_id": job.source_asset_id,
        "join_mode": job.join_mode,
        "crossfade_duration": job.crossfade_duration,
        "segments": [s.to_dict() for s in job.segments],
        "status": job.status,
        "error_msg": job.error_msg,
        "created_at": job.created_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "output_filename": job.output_filename,
        "output_size": job.output_size,
        "downloaded": job.downloaded_at is not None,
    }
    if job.status == "completed" and job.downloaded_at is None:
        data["download_url"] = f"/api/jobs/{job.id}/download"
    return data


@router.post("/api/process")
def process_audio(req: ProcessRequest, storage=Depends(get_storage)):
    if req.markers is not None and req.segments is not None:
        raise HTTPException(400, "Provide either markers or segments, not both")

    ranges = None
    if req.segments is not None:
        ranges = [Segment(start_time=s.start_time, end_time=s.end_time) for s in req.segments]

    try:
        job, plan = submit_job(
            storage,
            req.audio_file_id,
            req.join_mode,
            markers=_to_markers(req.markers),
            ranges=ranges,
            crossfade_duration=req.crossfade_duration,
        )
    except AssetNotFound:
        raise HTTPException(404, "Audio file not found")
    except ValidationError as e:
        logger.info(f"Rejected process request for {req.audio_file_id}: {e}")
        raise HTTPException(400, str(e))

    notify_worker()
    return {"job_id": job.id, "expected_duration": round(plan.expected_duration, 3)}


@router.get("/api/jobs/{job_id}")
def get_job(job_id: str, storage=Depends(get_storage)):
    """Job status, safe to poll repeatedly."""
    try:
        return _job_to_dict(JobTracker(storage).get(job_id))
    except JobNotFound:
        raise HTTPException(404, "Job not found")


@router.get("/api/jobs/{job_id}/download")
def download_job(job_id: str, storage=Depends(get_storage)):
    """Serve the output once; it is deleted as it is handed out."""
    try:
        job, data = JobTracker(storage).take_output(job_id)
    except JobNotFound:
        raise HTTPException(404, "Job not found")
    except OutputUnavailable as e:
        raise HTTPException(410 if e.gone else 409, str(e))

    filename = job.output_filename or f"mixed-audio-{job.id}.mp3"
    ext = filename[filename.rfind(".") :]
    return Response(
        content=data,
        media_type=CONTENT_TYPES.get(ext, "application/octet-stream"),
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(data)),
        },
    )


@router.post("/api/preview")
def preview_audio(req: PreviewRequest, storage=Depends(get_storage), transcoder=Depends(get_transcoder)):
    try:
        asset, data = render_preview(
            storage,
            transcoder,
            req.audio_file_id,
            _to_markers(req.markers),
            req.crossfade_duration,
        )
    except AssetNotFound:
        raise HTTPException(404, "Audio file not found")
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except TranscodeFailure as e:
        logger.error(f"Preview failed for {req.audio_file_id}: {e}")
        raise HTTPException(500, "Failed to generate preview")

    return Response(
        content=data,
        media_type=CONTENT_TYPES.get(asset.format, "application/octet-stream"),
        headers={"Content-Length": str(len(data))},
    )
