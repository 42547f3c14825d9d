"""
Routes for asynchronous preview jobs.

Uploading an STL file returns a job identifier immediately; rendering
runs as a background task.  Clients poll the job until its status is
``completed`` (or ``failed``) and then fetch the stored images through
the URLs listed on the job, or through ``/jobs/{id}/views/{index}``.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, UploadFile, File, BackgroundTasks, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse

from .models import JobInfo, JobStatusInfo, JobView, MeshBBox, MeshResponse
from ..services.errors import GeometryError, ParseError
from ..services.jobs_store import (
    PreviewJobRecord,
    delete_job as delete_job_record,
    expire_stale_job,
    get_binary_file_by_id,
    get_job,
    get_job_view,
    list_job_views,
    list_jobs as list_job_records,
)
from ..services.preview_jobs import create_preview_job, load_mesh_for_binary, process_preview_job
from ..services.previews import IMAGE_MIME_TYPE
from ..services.rasterizer import DEFAULT_HEIGHT, DEFAULT_WIDTH, ProjectionMode
from ..services.storage import delete_preview_images
from .routes_previews import MAX_IMAGE_SIZE, MIN_IMAGE_SIZE


router = APIRouter()


def _job_status(job: PreviewJobRecord) -> JobStatusInfo:
    job = expire_stale_job(job)
    views = []
    if job.status == "completed":
        views = [
            JobView(
                index=v.view_index,
                name=v.name,
                description=v.description,
                url=v.url,
                error=v.error,
            )
            for v in list_job_views(job.job_id)
        ]
    return JobStatusInfo(
        jobId=job.job_id,
        filename=job.original_name,
        status=job.status,
        progress=job.progress,
        message=job.message,
        error=job.error_message,
        width=job.width,
        height=job.height,
        projection=job.projection,
        triangles=job.triangle_count,
        strategy=job.strategy,
        createdAt=job.created_at,
        views=views,
    )


def _require_job(job_id: str) -> PreviewJobRecord:
    job = get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs", response_model=JobInfo, status_code=201)
async def upload_stl(
    background_tasks: BackgroundTasks,
    stl: UploadFile = File(...),
    width: int = Query(DEFAULT_WIDTH, ge=MIN_IMAGE_SIZE, le=MAX_IMAGE_SIZE),
    height: int = Query(DEFAULT_HEIGHT, ge=MIN_IMAGE_SIZE, le=MAX_IMAGE_SIZE),
    projection: ProjectionMode = Query(ProjectionMode.ROTATED),
) -> JobInfo:
    """Upload an STL file and schedule rendering of all views.

    The file is stored (deduplicated by content hash) and a pending job
    is created.  Rendering runs after the response has been sent.
    """
    job = create_preview_job(stl, width, height, projection)
    background_tasks.add_task(process_preview_job, job.job_id)
    return JobInfo(jobId=job.job_id, filename=job.original_name, status=job.status)


@router.get("/jobs", response_model=list[JobStatusInfo])
async def list_jobs() -> list[JobStatusInfo]:
    """Return all jobs with their status, newest first."""
    return [_job_status(job) for job in list_job_records()]


@router.get("/jobs/{job_id}", response_model=JobStatusInfo)
async def get_job_status(job_id: str) -> JobStatusInfo:
    """Return progress and, once completed, the stored views of a job.

    Raises:
        HTTPException: If the job does not exist.
    """
    return _job_status(_require_job(job_id))


@router.get("/jobs/{job_id}/views/{index}", response_class=FileResponse)
async def get_job_view_image(job_id: str, index: int) -> FileResponse:
    """Return one stored image of a completed job.

    Args:
        job_id: Identifier returned by the upload.
        index: Zero-based view index in camera rig order.
    """
    _require_job(job_id)
    view = get_job_view(job_id, index)
    if view is None:
        raise HTTPException(status_code=404, detail="View not found")
    path = Path(view.image_path)
    if not path.exists():
        raise HTTPException(status_code=404, detail="View image not found")
    return FileResponse(path, media_type=IMAGE_MIME_TYPE, filename=path.name)


@router.get("/jobs/{job_id}/mesh", response_model=MeshResponse)
async def get_job_mesh(job_id: str) -> MeshResponse:
    """Return the decoded triangles of a job's upload.

    Raises:
        HTTPException: 404 for unknown jobs, 400 if the upload cannot be
        decoded.
    """
    job = _require_job(job_id)
    binary = get_binary_file_by_id(job.binary_file_id)
    if binary is None:
        raise HTTPException(status_code=404, detail="Stored STL file not found")
    try:
        mesh, bounds = await run_in_threadpool(load_mesh_for_binary, binary)
    except (ParseError, GeometryError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return MeshResponse(
        jobId=job_id,
        vertices=mesh.vertices.tolist(),
        triangleCount=mesh.triangle_count,
        bbox=MeshBBox(min=list(bounds.bbox_min), max=list(bounds.bbox_max)),
    )


@router.delete("/jobs/{job_id}", status_code=204)
async def delete_job(job_id: str) -> None:
    """Delete a job, its view records and its stored images.

    The uploaded binary is kept since other jobs may reference it.
    """
    _require_job(job_id)
    delete_job_record(job_id)
    delete_preview_images(job_id)
    return None
