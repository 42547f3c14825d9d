"""
Routes for synchronous STL previews.

``POST /screenshot-stl`` accepts a multipart upload in the ``stl`` field
and answers with all sixteen rendered views at once, as base64 data URLs
in camera rig order.  ``GET /cameras`` lists the rig so clients can
label views without rendering anything.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool

from .models import CameraPoint, CameraView, MeshBBox, RenderResponse, ServiceStatus
from ..services.cameras import CAMERA_RIG
from ..services.errors import GeometryError, ParseError
from ..services.preview_cache import PreviewCacheKey, get_preview_from_cache, put_preview_in_cache
from ..services.previews import PreviewBatch, render_previews
from ..services.rasterizer import DEFAULT_HEIGHT, DEFAULT_WIDTH, ProjectionMode, RenderSettings
from ..services.storage import read_stl_upload

logger = logging.getLogger(__name__)

router = APIRouter()

API_VERSION = "1.0.0"
MIN_IMAGE_SIZE = 16
MAX_IMAGE_SIZE = 2048


def camera_views() -> List[CameraView]:
    """The camera rig as API objects, 1-based like the image labels."""
    return [
        CameraView(
            index=i + 1,
            name=camera.name,
            description=camera.description,
            position=CameraPoint(x=camera.x, y=camera.y, z=camera.z),
        )
        for i, camera in enumerate(CAMERA_RIG)
    ]


@router.get("/cameras", response_model=List[CameraView])
async def list_cameras() -> List[CameraView]:
    """Return the 16 camera positions in rendering order."""
    return camera_views()


@router.get("/screenshot-stl", response_model=ServiceStatus)
async def screenshot_status() -> ServiceStatus:
    """Report that the screenshot endpoint is available."""
    return ServiceStatus(
        message="STL Screenshot API is running",
        endpoint="/api/screenshot-stl",
        method="POST",
        status="operational",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=API_VERSION,
    )


@router.post("/screenshot-stl", response_model=RenderResponse)
async def screenshot_stl(
    stl: UploadFile = File(..., description="STL file, binary or ASCII"),
    width: int = Query(DEFAULT_WIDTH, ge=MIN_IMAGE_SIZE, le=MAX_IMAGE_SIZE),
    height: int = Query(DEFAULT_HEIGHT, ge=MIN_IMAGE_SIZE, le=MAX_IMAGE_SIZE),
    projection: ProjectionMode = Query(ProjectionMode.ROTATED, description="'rotated' or 'shear'"),
) -> RenderResponse:
    """Render all camera views of an uploaded STL file.

    Returns:
        RenderResponse with sixteen images.  Views that fail to render
        are returned as placeholders with an ``Error:`` description
        rather than being dropped.

    Raises:
        HTTPException: 400 for files that fail validation, cannot be
        decoded or contain no usable geometry.
    """
    data = await read_stl_upload(stl)
    logger.info("Processing file: %s, size: %d bytes", stl.filename, len(data))

    key = PreviewCacheKey(
        file_hash=hashlib.sha256(data).hexdigest(),
        width=width,
        height=height,
        projection=projection.value,
    )
    batch = get_preview_from_cache(key)
    if batch is None:
        settings = RenderSettings(projection=projection)
        try:
            batch = await run_in_threadpool(render_previews, data, width, height, settings=settings)
        except ParseError as exc:
            logger.warning("STL parsing error for %s: %s", stl.filename, exc)
            raise HTTPException(status_code=400, detail=f"Invalid STL file format: {exc}")
        except GeometryError as exc:
            logger.warning("STL without usable geometry %s: %s", stl.filename, exc)
            raise HTTPException(status_code=400, detail=f"Invalid STL file - no geometry found: {exc}")
        put_preview_in_cache(key, batch)
    else:
        logger.info("Serving cached previews for %s", stl.filename)
    return _render_response(batch, stl.filename or "")


def _render_response(batch: PreviewBatch, filename: str) -> RenderResponse:
    return RenderResponse(
        success=True,
        screenshots=[view.data_url() for view in batch.views],
        viewNames=[view.name for view in batch.views],
        viewDescriptions=[view.description for view in batch.views],
        count=len(batch.views),
        filename=filename,
        triangles=batch.mesh.triangle_count,
        strategy=batch.mesh.strategy,
        failedViews=batch.failed_views,
        bbox=MeshBBox(min=list(batch.bounds.bbox_min), max=list(batch.bounds.bbox_max)),
        views=camera_views(),
    )
