"""
Persistence for preview jobs.

This module defines the SQLModel tables behind the asynchronous preview
API and helper functions to insert, update and query them.  A
``BinaryFileRecord`` stores each distinct uploaded STL once (keyed by
its SHA‑256 hash); every upload creates a ``PreviewJobRecord`` pointing
at it, and a finished job owns one ``PreviewViewRecord`` per rendered
camera view.  Decoded meshes are cached per binary in
``MeshCacheRecord`` so re-uploads skip the decoder.

Job status values are ``pending``, ``processing``, ``completed`` and
``failed``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, List, Sequence

from sqlmodel import DateTime, Field, SQLModel, select

from .db import create_db_and_tables, get_session

# A job still ``processing`` after this long is reported as failed.
STALE_JOB_SECONDS = 5 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset on the way back; every stored value is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _timestamp_field():
    return Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))


class BinaryFileRecord(SQLModel, table=True):
    """A unique STL file on disk, shared by every job that uploaded it."""

    id: Optional[int] = Field(default=None, primary_key=True)
    file_hash: str = Field(index=True, unique=True)
    file_path: str
    filesize_bytes: int
    created_at: datetime = _timestamp_field()


class PreviewJobRecord(SQLModel, table=True):
    """One request to render the camera rig for an uploaded STL."""

    job_id: str = Field(primary_key=True)
    binary_file_id: int = Field(foreign_key="binaryfilerecord.id")
    file_hash: str
    original_name: str
    width: int
    height: int
    projection: str = "rotated"
    status: str = Field(default="pending")
    progress: int = 0
    message: str = "Waiting to start"
    error_message: Optional[str] = None
    triangle_count: Optional[int] = None
    strategy: Optional[str] = None
    created_at: datetime = _timestamp_field()
    updated_at: datetime = _timestamp_field()


class PreviewViewRecord(SQLModel, table=True):
    """A rendered (or placeholder) image belonging to a job."""

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: str = Field(foreign_key="previewjobrecord.job_id", index=True)
    view_index: int
    name: str
    description: str
    image_path: str
    url: str
    error: Optional[str] = None


class MeshCacheRecord(SQLModel, table=True):
    """Location and summary of a decoded mesh cached as ``.npz``."""

    id: Optional[int] = Field(default=None, primary_key=True)
    binary_file_id: int = Field(foreign_key="binaryfilerecord.id", index=True)
    mesh_path: str
    triangle_count: int
    strategy: str
    bbox_min_x: float
    bbox_min_y: float
    bbox_min_z: float
    bbox_max_x: float
    bbox_max_y: float
    bbox_max_z: float
    created_at: datetime = _timestamp_field()


def init_db() -> None:
    """Create the tables if they do not exist.  Called on application startup."""
    create_db_and_tables()


def insert_job(record: PreviewJobRecord) -> PreviewJobRecord:
    """Persist a new job and return it refreshed from the database."""
    with get_session() as session:
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def get_job(job_id: str) -> Optional[PreviewJobRecord]:
    """Retrieve a job by identifier, or ``None``."""
    with get_session() as session:
        return session.get(PreviewJobRecord, job_id)


def list_jobs() -> List[PreviewJobRecord]:
    """Return all jobs, newest first."""
    with get_session() as session:
        statement = select(PreviewJobRecord).order_by(PreviewJobRecord.created_at.desc())
        return list(session.exec(statement))


def update_job(job_id: str, **fields) -> Optional[PreviewJobRecord]:
    """Set ``fields`` on a job and bump ``updated_at``.

    Returns:
        The updated record, or ``None`` if the job does not exist.
    """
    with get_session() as session:
        job = session.get(PreviewJobRecord, job_id)
        if job is None:
            return None
        for key, value in fields.items():
            setattr(job, key, value)
        job.updated_at = _utcnow()
        session.add(job)
        session.commit()
        session.refresh(job)
        return job


def expire_stale_job(job: PreviewJobRecord, now: Optional[datetime] = None) -> PreviewJobRecord:
    """Mark a job failed if it has been processing for too long.

    Returns:
        The (possibly updated) job record.
    """
    if job.status != "processing":
        return job
    now = _as_utc(now or _utcnow())
    if now - _as_utc(job.updated_at) <= timedelta(seconds=STALE_JOB_SECONDS):
        return job
    updated = update_job(
        job.job_id,
        status="failed",
        message="Processing timed out",
        error_message="The job took too long to complete",
    )
    return updated or job


def delete_job(job_id: str) -> None:
    """Delete a job and its view records.

    Image files and the shared binary are left on disk; storage cleanup
    is the caller's responsibility.
    """
    with get_session() as session:
        views = session.exec(select(PreviewViewRecord).where(PreviewViewRecord.job_id == job_id)).all()
        for view in views:
            session.delete(view)
        job = session.get(PreviewJobRecord, job_id)
        if job is not None:
            session.delete(job)
        session.commit()


def replace_job_views(job_id: str, views: Sequence[PreviewViewRecord]) -> None:
    """Replace all view records of a job with ``views``."""
    with get_session() as session:
        existing = session.exec(select(PreviewViewRecord).where(PreviewViewRecord.job_id == job_id)).all()
        for view in existing:
            session.delete(view)
        for view in views:
            session.add(view)
        session.commit()


def list_job_views(job_id: str) -> List[PreviewViewRecord]:
    """Return the views of a job in camera order."""
    with get_session() as session:
        statement = (
            select(PreviewViewRecord)
            .where(PreviewViewRecord.job_id == job_id)
            .order_by(PreviewViewRecord.view_index)
        )
        return list(session.exec(statement))


def get_job_view(job_id: str, view_index: int) -> Optional[PreviewViewRecord]:
    """Return a single view of a job by its zero-based index."""
    with get_session() as session:
        statement = select(PreviewViewRecord).where(
            PreviewViewRecord.job_id == job_id,
            PreviewViewRecord.view_index == view_index,
        )
        return session.exec(statement).first()


def get_binary_file_by_hash(file_hash: str) -> Optional[BinaryFileRecord]:
    """Retrieve a ``BinaryFileRecord`` by its file hash."""
    with get_session() as session:
        statement = select(BinaryFileRecord).where(BinaryFileRecord.file_hash == file_hash)
        return session.exec(statement).first()


def get_binary_file_by_id(binary_file_id: int) -> Optional[BinaryFileRecord]:
    """Retrieve a ``BinaryFileRecord`` by its primary key."""
    with get_session() as session:
        return session.get(BinaryFileRecord, binary_file_id)


def create_binary_file(file_hash: str, file_path: str, filesize_bytes: int) -> BinaryFileRecord:
    """Create and persist a new ``BinaryFileRecord``."""
    record = BinaryFileRecord(
        file_hash=file_hash,
        file_path=file_path,
        filesize_bytes=filesize_bytes,
    )
    with get_session() as session:
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def get_mesh_cache_for_binary(binary_file_id: int) -> Optional[MeshCacheRecord]:
    """Retrieve the mesh cache record for a binary file."""
    with get_session() as session:
        statement = select(MeshCacheRecord).where(MeshCacheRecord.binary_file_id == binary_file_id)
        return session.exec(statement).first()


def upsert_mesh_cache_for_binary(record: MeshCacheRecord) -> None:
    """Insert or replace the mesh cache record for a binary."""
    with get_session() as session:
        stmt = select(MeshCacheRecord).where(MeshCacheRecord.binary_file_id == record.binary_file_id)
        existing = session.exec(stmt).first()
        if existing is not None:
            session.delete(existing)
            session.commit()
        session.add(record)
        session.commit()
