"""
Background preview jobs.

Uploading through the job API stores the STL, creates a
``PreviewJobRecord`` in ``pending`` state and schedules
:func:`process_preview_job` as a background task.  The task moves the
job through ``processing`` to ``completed`` (or ``failed``), updating
``progress`` and ``message`` as it goes so clients can poll.

Decoded meshes are cached per uploaded binary (see :mod:`mesh_cache`),
so a job for a file that was already decoded goes straight to
rendering.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Tuple

from fastapi import UploadFile

from .errors import GeometryError, ParseError
from .geometry import MeshBounds, analyze_mesh
from .jobs_store import (
    BinaryFileRecord,
    MeshCacheRecord,
    PreviewJobRecord,
    get_binary_file_by_id,
    get_job,
    get_mesh_cache_for_binary,
    insert_job,
    replace_job_views,
    update_job,
    upsert_mesh_cache_for_binary,
)
from .mesh_cache import load_mesh_cache, save_mesh_cache
from .previews import render_all_views
from .rasterizer import ProjectionMode, RenderSettings
from .stl_decoder import TriangleMesh, decode_stl
from .storage import mesh_cache_path, read_binary_bytes, save_preview_images, save_stl_upload

logger = logging.getLogger(__name__)

# Rendering is reported as the 40..90 percent span of a job.
RENDER_PROGRESS_START = 40
RENDER_PROGRESS_END = 90


def create_preview_job(
    upload_file: UploadFile,
    width: int,
    height: int,
    projection: ProjectionMode = ProjectionMode.ROTATED,
) -> PreviewJobRecord:
    """Store an upload and register a pending job for it."""
    binary = save_stl_upload(upload_file)
    record = PreviewJobRecord(
        job_id=uuid.uuid4().hex,
        binary_file_id=binary.id,
        file_hash=binary.file_hash,
        original_name=upload_file.filename or "",
        width=width,
        height=height,
        projection=projection.value,
        message="Preparing to render STL previews",
    )
    job = insert_job(record)
    logger.info("Created preview job %s for %s (%dx%d)", job.job_id, job.original_name, width, height)
    return job


def load_mesh_for_binary(binary: BinaryFileRecord) -> Tuple[TriangleMesh, MeshBounds]:
    """Return the decoded mesh and bounds for a stored upload.

    A cached ``.npz`` archive is used when available; otherwise the
    bytes are decoded and the result cached for next time.

    Raises:
        ParseError: If the file cannot be decoded.
        GeometryError: If the mesh is empty or degenerate.
    """
    cache = get_mesh_cache_for_binary(binary.id)
    if cache is not None:
        cache_path = Path(cache.mesh_path)
        try:
            mesh, _, _ = load_mesh_cache(cache_path)
            logger.info("Loaded mesh from cache for binary_file_id=%s", binary.id)
            return mesh, analyze_mesh(mesh)
        except (FileNotFoundError, ValueError) as exc:
            logger.warning("Mesh cache for binary %s unusable, decoding again: %s", binary.id, exc)

    mesh = decode_stl(read_binary_bytes(binary))
    bounds = analyze_mesh(mesh)
    cache_path = mesh_cache_path(binary.file_hash)
    try:
        save_mesh_cache(cache_path, mesh, bounds.bbox_min, bounds.bbox_max)
        upsert_mesh_cache_for_binary(
            MeshCacheRecord(
                binary_file_id=binary.id,
                mesh_path=str(cache_path),
                triangle_count=mesh.triangle_count,
                strategy=mesh.strategy,
                bbox_min_x=bounds.bbox_min[0],
                bbox_min_y=bounds.bbox_min[1],
                bbox_min_z=bounds.bbox_min[2],
                bbox_max_x=bounds.bbox_max[0],
                bbox_max_y=bounds.bbox_max[1],
                bbox_max_z=bounds.bbox_max[2],
            )
        )
    except OSError as exc:
        # Caching is an optimisation; rendering can proceed without it.
        logger.exception("Failed to cache mesh for binary %s: %r", binary.id, exc)
    return mesh, bounds


def process_preview_job(job_id: str) -> None:
    """Render and store every view for a pending job.

    Failures never raise: they are recorded on the job as
    ``status="failed"`` with the reason in ``error_message``.
    """
    job = get_job(job_id)
    if job is None:
        logger.warning("process_preview_job(%s): job not found; skipping", job_id)
        return
    binary = get_binary_file_by_id(job.binary_file_id)
    if binary is None:
        logger.error("process_preview_job(%s): binary %s missing", job_id, job.binary_file_id)
        update_job(job_id, status="failed", message="Processing failed", error_message="Stored STL file not found")
        return

    update_job(job_id, status="processing", progress=10, message="Decoding STL file")
    try:
        mesh, bounds = load_mesh_for_binary(binary)
    except (ParseError, GeometryError) as exc:
        logger.warning("process_preview_job(%s): %s", job_id, exc)
        update_job(job_id, status="failed", progress=0, message="Invalid STL file", error_message=str(exc))
        return
    except Exception as exc:
        logger.exception("process_preview_job(%s): failed to load mesh", job_id)
        update_job(job_id, status="failed", progress=0, message="Processing failed", error_message=str(exc))
        return

    update_job(
        job_id,
        progress=RENDER_PROGRESS_START,
        message="Rendering views",
        triangle_count=mesh.triangle_count,
        strategy=mesh.strategy,
    )
    try:
        settings = RenderSettings(projection=ProjectionMode(job.projection))

        def report(done: int, total: int) -> None:
            # updated_at advances with every finished view
            update_job(
                job_id,
                progress=RENDER_PROGRESS_START + (RENDER_PROGRESS_END - RENDER_PROGRESS_START) * done // total,
                message=f"Rendered {done} of {total} views",
            )

        views = render_all_views(mesh, bounds, job.width, job.height, settings=settings, progress=report)
        update_job(job_id, progress=RENDER_PROGRESS_END, message="Storing views")
        replace_job_views(job_id, save_preview_images(job_id, views))
    except Exception as exc:
        logger.exception("process_preview_job(%s): rendering failed", job_id)
        update_job(job_id, status="failed", progress=0, message="Processing failed", error_message=str(exc))
        return

    failed = sum(1 for view in views if not view.ok)
    message = "Processing completed"
    if failed:
        message = f"Processing completed with {failed} placeholder views"
    update_job(job_id, status="completed", progress=100, message=message)
    logger.info("process_preview_job(%s): %s", job_id, message)
