"""
In‑memory caching layer for rendered preview batches.

Rendering sixteen views of a large mesh is expensive, and clients often
upload the same file repeatedly (retries, re-opened pages).  This
module keeps a small LRU cache of ``PreviewBatch`` results so that an
identical upload rendered with identical options is answered from
memory.

The cache key uniquely identifies a batch by:

- ``file_hash`` – SHA‑256 of the uploaded bytes.
- ``width`` / ``height`` – image size in pixels.
- ``projection`` – projection mode name (``"rotated"`` or ``"shear"``).

Entries are stored in an ``OrderedDict`` with least‑recently‑used
eviction, guarded by a re-entrant lock.  The cache is bounded both by
entry count and by the total bytes of the cached images, since a single
2048x2048 batch is around 200 MB.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from threading import RLock
from typing import Optional

from .previews import PreviewBatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviewCacheKey:
    """Unique identifier for a cached preview batch."""

    file_hash: str
    width: int
    height: int
    projection: str


_cache: "OrderedDict[PreviewCacheKey, PreviewBatch]" = OrderedDict()
_cache_bytes = 0

# Eviction happens when either limit is exceeded; batches larger than
# MAX_CACHE_BYTES on their own are never stored.
MAX_CACHE_ENTRIES = 32
MAX_CACHE_BYTES = 256 * 1024 * 1024

_lock = RLock()


def batch_size_bytes(batch: PreviewBatch) -> int:
    """Encoded image bytes plus the triangle array held by ``batch``."""
    return sum(len(view.image) for view in batch.views) + int(batch.mesh.triangles.nbytes)


def get_preview_from_cache(key: PreviewCacheKey) -> Optional[PreviewBatch]:
    """Return the cached batch for ``key`` or ``None``."""
    with _lock:
        batch = _cache.get(key)
        if batch is not None:
            _cache.move_to_end(key)
        return batch


def put_preview_in_cache(key: PreviewCacheKey, batch: PreviewBatch) -> None:
    """Store a batch, evicting least recently used entries when over capacity.

    Batches containing placeholder views are not cached so that a
    transient failure (for example a time budget overrun) is retried on
    the next request.
    """
    global _cache_bytes
    if batch.failed_views:
        return
    size = batch_size_bytes(batch)
    if size > MAX_CACHE_BYTES:
        logger.debug("Preview batch of %d bytes exceeds cache limit; not cached", size)
        return
    with _lock:
        previous = _cache.pop(key, None)
        if previous is not None:
            _cache_bytes -= batch_size_bytes(previous)
        _cache[key] = batch
        _cache_bytes += size
        while len(_cache) > MAX_CACHE_ENTRIES or _cache_bytes > MAX_CACHE_BYTES:
            _, evicted = _cache.popitem(last=False)
            _cache_bytes -= batch_size_bytes(evicted)


def cached_bytes() -> int:
    """Total size of the cached batches."""
    with _lock:
        return _cache_bytes


def clear_preview_cache() -> None:
    """Drop every cached batch."""
    global _cache_bytes
    with _lock:
        _cache.clear()
        _cache_bytes = 0
