"""
Local storage service for uploaded STL files and rendered previews.

Uploads are deduplicated by SHA‑256: each distinct file is written once
to ``storage/uploads/{hash}.stl`` and referenced by every job that
uploaded it.  Rendered views are written to
``storage/previews/{jobId}/{NN}-{name}.bmp`` and served by the
application under ``/previews``, which makes the returned URLs
addressable by clients.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

import hashlib
import uuid
from pathlib import Path
from typing import List, Sequence

from fastapi import UploadFile, HTTPException

from .db import STORAGE_DIR
from .jobs_store import (
    BinaryFileRecord,
    PreviewViewRecord,
    create_binary_file,
    get_binary_file_by_hash,
)
from .previews import IMAGE_EXTENSION, RenderedView

# Largest upload accepted, matching the limit the web client enforces.
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MIN_UPLOAD_BYTES = 5
UPLOAD_CHUNK_SIZE = 64 * 1024
ALLOWED_EXTENSION = ".stl"

STORAGE_UPLOADS_DIR = STORAGE_DIR / "uploads"
STORAGE_UPLOADS_DIR.mkdir(parents=True, exist_ok=True)

# Rendered images, one directory per job.  Mounted as static files at
# PREVIEWS_URL_PREFIX by the application factory.
STORAGE_PREVIEWS_DIR = STORAGE_DIR / "previews"
STORAGE_PREVIEWS_DIR.mkdir(parents=True, exist_ok=True)
PREVIEWS_URL_PREFIX = "/previews"

STORAGE_MESHES_DIR = STORAGE_DIR / "meshes"
STORAGE_MESHES_DIR.mkdir(parents=True, exist_ok=True)

# Temporary directory for streaming uploads while computing hashes.
STORAGE_TEMP_DIR = STORAGE_DIR / "tmp"
STORAGE_TEMP_DIR.mkdir(parents=True, exist_ok=True)


def validate_stl_upload(filename: str | None, size: int) -> None:
    """Reject uploads that cannot be STL files before decoding them.

    Raises:
        HTTPException: 400 for a wrong extension, an empty or tiny file,
            or a file above ``MAX_UPLOAD_BYTES``.
    """
    if not (filename or "").lower().endswith(ALLOWED_EXTENSION):
        raise HTTPException(status_code=400, detail="File must be an STL file")
    if size > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
        )
    if size < MIN_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too small to be a valid STL file")


async def read_stl_upload(upload_file: UploadFile) -> bytes:
    """Read and validate an upload held in memory for a synchronous render.

    Reading stops one chunk past ``MAX_UPLOAD_BYTES`` so oversized files
    are rejected without being buffered whole.

    Raises:
        HTTPException: If the upload fails validation.
    """
    chunks: List[bytes] = []
    size = 0
    while True:
        chunk = await upload_file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > MAX_UPLOAD_BYTES:
            break
        chunks.append(chunk)
    validate_stl_upload(upload_file.filename, size)
    return b"".join(chunks)


def save_stl_upload(upload_file: UploadFile) -> BinaryFileRecord:
    """Persist an uploaded STL file, reusing an identical earlier upload.

    The upload is streamed into a temporary file while its hash is
    computed.  If a binary with the same hash already exists the
    temporary file is discarded; otherwise it is moved into
    ``storage/uploads``.

    Args:
        upload_file: Incoming file from the client.

    Returns:
        BinaryFileRecord: The stored (or previously stored) file.

    Raises:
        HTTPException: If the upload fails validation.
    """
    logger.info("Saving uploaded STL %s", getattr(upload_file, "filename", "<unknown>"))
    sha256 = hashlib.sha256()
    temp_path = STORAGE_TEMP_DIR / f"tmp_{uuid.uuid4().hex}"
    size = 0
    try:
        with temp_path.open("wb") as tmp_file:
            while True:
                chunk = upload_file.file.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > MAX_UPLOAD_BYTES:
                    break
                tmp_file.write(chunk)
                sha256.update(chunk)
        validate_stl_upload(upload_file.filename, size)
    except HTTPException:
        temp_path.unlink(missing_ok=True)
        raise
    file_hash = sha256.hexdigest()
    canonical_path = STORAGE_UPLOADS_DIR / f"{file_hash}{ALLOWED_EXTENSION}"
    binary = get_binary_file_by_hash(file_hash)
    if binary is None:
        if not canonical_path.exists():
            temp_path.replace(canonical_path)
        else:
            # File on disk without a record (e.g. database reset)
            temp_path.unlink(missing_ok=True)
        binary = create_binary_file(file_hash, str(canonical_path), size)
    else:
        temp_path.unlink(missing_ok=True)
        logger.debug("Upload %s matches existing binary %s", upload_file.filename, binary.id)
    return binary


def read_binary_bytes(binary: BinaryFileRecord) -> bytes:
    """Return the contents of a stored upload.

    Raises:
        HTTPException: 404 if the file is missing from disk.
    """
    path = Path(binary.file_path)
    if not path.exists():
        logger.error("Stored STL missing on disk: %s", path)
        raise HTTPException(status_code=404, detail="Stored STL file not found")
    return path.read_bytes()


def mesh_cache_path(file_hash: str) -> Path:
    """Location of the decoded-mesh archive for a file hash."""
    return STORAGE_MESHES_DIR / f"{file_hash}.npz"


def save_preview_images(job_id: str, views: Sequence[RenderedView]) -> List[PreviewViewRecord]:
    """Write rendered views to disk and build their view records.

    Returns:
        One unsaved ``PreviewViewRecord`` per view, in input order, whose
        ``url`` points at the static previews mount.
    """
    job_dir = STORAGE_PREVIEWS_DIR / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    records: List[PreviewViewRecord] = []
    for index, view in enumerate(views):
        filename = f"{index + 1:02d}-{view.name}{IMAGE_EXTENSION}"
        path = job_dir / filename
        path.write_bytes(view.image)
        records.append(
            PreviewViewRecord(
                job_id=job_id,
                view_index=index,
                name=view.name,
                description=view.description,
                image_path=str(path),
                url=f"{PREVIEWS_URL_PREFIX}/{job_id}/{filename}",
                error=view.error,
            )
        )
    logger.info("Stored %d preview images for job %s in %s", len(records), job_id, job_dir)
    return records


def delete_preview_images(job_id: str) -> None:
    """Remove a job's rendered images from disk, if present."""
    job_dir = STORAGE_PREVIEWS_DIR / job_id
    if not job_dir.exists():
        return
    for path in job_dir.iterdir():
        path.unlink(missing_ok=True)
    job_dir.rmdir()
