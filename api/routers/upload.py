import logging
import os
import tempfile

from errors import TranscoderError
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from storage import get_storage
from transcoder import probe_duration

logger = logging.getLogger(__name__)
router = APIRouter()

ALLOWED_EXTENSIONS = {".mp3", ".wav"}
MAX_FILE_SIZE = int(os.environ.get("MAX_FILE_SIZE", str(100 * 1024 * 1024)))  # 100MB
MAX_DURATION_S = float(os.environ.get("MAX_DURATION_S", "3600"))

CONTENT_TYPES = {".mp3": "audio/mpeg", ".wav": "audio/wav"}


def asset_to_dict(asset) -> dict:
    return {
        "id": asset.id,
        "filename": asset.filename,
        "duration": asset.duration,
        "format": asset.format,
        "uploaded_at": asset.uploaded_at,
    }


@router.post("/api/upload")
async def upload_audio(audio: UploadFile = File(None), storage=Depends(get_storage)):
    if audio is None or not audio.filename:
        raise HTTPException(400, "No audio file provided")

    ext = os.path.splitext(audio.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, "Only MP3 and WAV files are allowed")

    # ffprobe reads from a path, so spool the upload to a temp file first
    fd, tmp_path = tempfile.mkstemp(suffix=ext, prefix="upload-")
    try:
        size = 0
        with os.fdopen(fd, "wb") as f_out:
            while chunk := await audio.read(65536):
                size += len(chunk)
                if size > MAX_FILE_SIZE:
                    raise HTTPException(413, f"File too large (max {MAX_FILE_SIZE // (1024 * 1024)}MB)")
                f_out.write(chunk)

        try:
            duration = await run_in_threadpool(probe_duration, tmp_path)
        except TranscoderError as e:
            logger.warning(f"Probe failed for {audio.filename}: {e}")
            raise HTTPException(400, "Could not read audio file")

        if duration <= 0:
            raise HTTPException(400, "Audio file has no duration")
        if duration > MAX_DURATION_S:
            raise HTTPException(400, f"Audio file too long (max {MAX_DURATION_S / 60:.0f} minutes)")

        with open(tmp_path, "rb") as f:
            data = f.read()
    finally:
        os.unlink(tmp_path)

    asset = await run_in_threadpool(storage.create_asset, audio.filename, duration, ext, data)
    logger.info(f"Upload: asset_id={asset.id} file={audio.filename} duration={duration:.2f}s size={size}")
    return asset_to_dict(asset)


@router.get("/api/audio/{asset_id}")
def get_audio(asset_id: str, storage=Depends(get_storage)):
    asset = storage.get_asset(asset_id)
    if not asset:
        raise HTTPException(404, "Audio file not found")
    return asset_to_dict(asset)


@router.get("/api/audio/{asset_id}/file")
def get_audio_file(asset_id: str, storage=Depends(get_storage)):
    asset = storage.get_asset(asset_id)
    if not asset:
        raise HTTPException(404, "Audio file not found")
    data = storage.get_source_bytes(asset_id)
    if data is None:
        raise HTTPException(404, "Audio bytes not found")
    return Response(
        content=data,
        media_type=CONTENT_TYPES.get(asset.format, "application/octet-stream"),
        headers={"Content-Length": str(len(data))},
    )
