import logging
import math

from fastapi import APIRouter, Depends, HTTPException
from models import Marker
from pydantic import BaseModel, Field
from storage import get_storage

logger = logging.getLogger(__name__)
router = APIRouter()


class MarkerIn(BaseModel):
    timestamp: float
    order: int = Field(0, ge=0)


class MarkerSet(BaseModel):
    markers: list[MarkerIn]


@router.post("/api/audio/{asset_id}/markers")
def save_markers(asset_id: str, body: MarkerSet, storage=Depends(get_storage)):
    """Replace the asset's marker set wholesale."""
    asset = storage.get_asset(asset_id)
    if not asset:
        raise HTTPException(404, "Audio file not found")

    for m in body.markers:
        if not math.isfinite(m.timestamp) or m.timestamp < 0:
            raise HTTPException(400, "Timestamp must be non-negative")
        if m.timestamp > asset.duration:
            raise HTTPException(400, "Some markers exceed audio duration")

    saved = storage.replace_markers(asset_id, [Marker(timestamp=m.timestamp, order=m.order) for m in body.markers])
    logger.info(f"Saved {len(saved)} marker(s) for asset {asset_id}")
    return [{"timestamp": m.timestamp, "order": m.order} for m in saved]


@router.get("/api/audio/{asset_id}/markers")
def get_markers(asset_id: str, storage=Depends(get_storage)):
    if not storage.get_asset(asset_id):
        raise HTTPException(404, "Audio file not found")
    return [{"timestamp": m.timestamp, "order": m.order} for m in storage.get_markers(asset_id)]
