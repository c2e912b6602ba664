"""
Content router.

Serves the manifest and stitch content the client-side buffer fetches.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from helix.api.auth import get_catalog
from helix.content.catalog import ContentCatalog

router = APIRouter()

MAX_BATCH_SIZE = 200


# ========================================
# Request Models
# ========================================


class BatchRequest(BaseModel):
    """Request model for batch stitch retrieval."""

    model_config = ConfigDict(populate_by_name=True)

    stitch_ids: list[str] = Field(alias="stitchIds", min_length=1, max_length=MAX_BATCH_SIZE)


# ========================================
# Content Endpoints
# ========================================


@router.get("/manifest", summary="Per-tube thread and stitch listing")
def get_manifest(catalog: ContentCatalog = Depends(get_catalog)) -> dict[str, Any]:
    return {"success": True, "manifest": catalog.manifest.model_dump(mode="json")}


@router.post("/batch", summary="Fetch several stitches")
def get_batch(request: BatchRequest, catalog: ContentCatalog = Depends(get_catalog)) -> dict[str, Any]:
    """
    Return the requested stitches that exist.

    Unknown ids are listed under `missing` rather than failing the request.
    """
    stitches = catalog.get_many(request.stitch_ids)
    found = {stitch.id for stitch in stitches}
    missing = [stitch_id for stitch_id in request.stitch_ids if stitch_id not in found]
    if missing:
        logger.debug("Batch request for {} stitches: {} unknown", len(request.stitch_ids), len(missing))

    return {
        "success": True,
        "stitches": [stitch.model_dump(mode="json", by_alias=True) for stitch in stitches],
        "missing": missing,
    }


@router.get("/stitch/{stitch_id}", summary="Fetch one stitch")
def get_stitch(stitch_id: str, catalog: ContentCatalog = Depends(get_catalog)) -> dict[str, Any]:
    stitch = catalog.get(stitch_id)
    if stitch is None:
        raise HTTPException(status_code=404, detail=f"Stitch {stitch_id} not found")
    return {"success": True, "stitch": stitch.model_dump(mode="json", by_alias=True)}
