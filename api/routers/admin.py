import logging
import os

from fastapi import APIRouter, Depends, Header, HTTPException
from models import JOB_STATUSES
from storage import get_storage

logger = logging.getLogger(__name__)
router = APIRouter()

ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "")


def require_admin(x_admin_token: str = Header(None)):
    if not ADMIN_TOKEN:
        raise HTTPException(500, "ADMIN_TOKEN not configured")
    if x_admin_token != ADMIN_TOKEN:
        raise HTTPException(403, "Invalid admin token")


@router.get("/admin/jobs")
def list_jobs(status: str | None = None, auth=Depends(require_admin), storage=Depends(get_storage)):
    if status is not None and status not in JOB_STATUSES:
        raise HTTPException(400, f"status must be one of: {', '.join(JOB_STATUSES)}")
    jobs = storage.list_jobs(status)
    return {
        "jobs": [
            {
                "id": j.id,
                "audio_file_id": j.source_asset_id,
                "join_mode": j.join_mode,
                "segment_count": len(j.segments),
                "status": j.status,
                "error_msg": j.error_msg,
                "created_at": j.created_at,
                "completed_at": j.completed_at,
            }
            for j in jobs
        ]
    }


@router.delete("/admin/audio/{asset_id}")
def delete_audio(asset_id: str, auth=Depends(require_admin), storage=Depends(get_storage)):
    """Remove an audio file, its markers, its jobs and their outputs."""
    if not storage.get_asset(asset_id):
        raise HTTPException(404, "Audio file not found")

    active = storage.count_active_jobs(asset_id)
    if active:
        raise HTTPException(409, f"{active} job(s) still running for this audio file")

    storage.delete_asset(asset_id)
    logger.info(f"Deleted audio file: {asset_id}")
    return {"ok": True}
