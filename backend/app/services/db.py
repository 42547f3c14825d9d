"""
SQLite engine for the preview job registry.

Only :mod:`jobs_store` opens sessions; decoding and rendering never
touch the database.  The database file sits in ``backend/storage``
next to the uploads and rendered images.
"""

from __future__ import annotations

from pathlib import Path
from sqlmodel import SQLModel, create_engine, Session

STORAGE_DIR = Path(__file__).resolve().parents[2] / "storage"
STORAGE_DIR.mkdir(parents=True, exist_ok=True)

DATABASE_PATH = STORAGE_DIR / "previews.db"

# Background jobs update rows from a worker thread, not the request thread.
engine = create_engine(
    f"sqlite:///{DATABASE_PATH.as_posix()}",
    echo=False,
    connect_args={"check_same_thread": False},
)


def create_db_and_tables() -> None:
    """Create missing tables; existing ones are left as they are."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Session:
    """New session on the job database, meant for ``with get_session() as session:``."""
    return Session(engine)
