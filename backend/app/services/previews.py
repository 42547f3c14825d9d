"""
Multi-view preview pipeline.

``render_all_views`` renders one image per camera rig entry and always
returns one ``RenderedView`` per camera, in rig order.  A view that
fails to render, or that does not finish inside the optional time
budget, is replaced by a placeholder image whose description starts
with ``"Error: "`` and whose ``error`` field carries the reason.

``render_previews`` runs the whole chain from raw STL bytes and is what
the API layer calls.  Decode and geometry failures propagate as
``ParseError`` / ``GeometryError``; there is no meaningful partial
output without geometry.
"""

from __future__ import annotations

import base64
import logging
import os
import time
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from threading import Lock
from typing import Callable, List, Optional, Sequence

from .bmp_encoder import encode_bmp
from .cameras import CAMERA_RIG, CameraPosition
from .errors import RenderError, RenderTimeout
from .geometry import MeshBounds, analyze_mesh
from .rasterizer import (
    DEFAULT_HEIGHT,
    DEFAULT_SETTINGS,
    DEFAULT_WIDTH,
    RenderSettings,
    rasterize_view,
    render_placeholder,
)
from .stl_decoder import TriangleMesh, decode_stl

logger = logging.getLogger(__name__)

IMAGE_MIME_TYPE = "image/bmp"
IMAGE_EXTENSION = ".bmp"

# Called with (views finished, views total) after every view.
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class RenderedView:
    """Encoded image for one camera.

    ``error`` is ``None`` for a successful render and holds the failure
    reason for placeholders.
    """

    image: bytes
    name: str
    description: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def data_url(self) -> str:
        encoded = base64.b64encode(self.image).decode("ascii")
        return f"data:{IMAGE_MIME_TYPE};base64,{encoded}"


@dataclass(frozen=True)
class PreviewBatch:
    """Everything produced from one STL upload."""

    mesh: TriangleMesh
    bounds: MeshBounds
    views: List[RenderedView]
    width: int
    height: int

    @property
    def failed_views(self) -> int:
        return sum(1 for view in self.views if not view.ok)


def placeholder_view(
    camera: CameraPosition,
    index: int,
    width: int,
    height: int,
    error: Exception,
) -> RenderedView:
    """Encode a placeholder for ``camera`` carrying ``error``."""
    pixels = render_placeholder(camera, width, height, index, str(error))
    return RenderedView(
        image=encode_bmp(pixels, pixels.shape[1], pixels.shape[0]),
        name=camera.name,
        description=f"Error: {camera.description}",
        error=str(error),
    )


def _render_one(
    mesh: TriangleMesh,
    bounds: MeshBounds,
    camera: CameraPosition,
    index: int,
    width: int,
    height: int,
    settings: RenderSettings,
    deadline: Optional[float],
) -> RenderedView:
    try:
        if deadline is not None and time.monotonic() > deadline:
            raise RenderTimeout(f"Render budget exhausted before {camera.name}")
        pixels = rasterize_view(mesh, bounds, camera, width, height, index, settings)
    except RenderError as exc:
        logger.warning("View %d (%s) replaced by placeholder: %s", index + 1, camera.name, exc)
        return placeholder_view(camera, index, width, height, exc)
    logger.debug("Rendered view %d: %s", index + 1, camera.name)
    return RenderedView(
        image=encode_bmp(pixels, width, height),
        name=camera.name,
        description=camera.description,
    )


def render_all_views(
    mesh: TriangleMesh,
    bounds: MeshBounds,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    *,
    cameras: Sequence[CameraPosition] = CAMERA_RIG,
    max_workers: Optional[int] = 1,
    budget_seconds: Optional[float] = None,
    settings: RenderSettings = DEFAULT_SETTINGS,
    progress: Optional[ProgressCallback] = None,
) -> List[RenderedView]:
    """Render every camera view of a mesh.

    Args:
        mesh: Decoded mesh.
        bounds: Result of :func:`analyze_mesh` for ``mesh``.
        width: Image width in pixels.
        height: Image height in pixels.
        cameras: Camera list; defaults to the fixed 16-entry rig.
        max_workers: Worker threads.  ``1`` renders sequentially,
            ``None`` uses one thread per CPU.
        budget_seconds: Optional wall-clock budget for the whole batch.
            Views not finished in time become ``RenderTimeout``
            placeholders; finished views are kept.  In sequential mode
            the budget is checked between views.
        settings: Projection and drawing options.
        progress: Optional callback invoked after each finished view,
            from the worker thread that rendered it.

    Returns:
        One ``RenderedView`` per camera, in camera order.
    """
    started = time.monotonic()
    deadline = started + budget_seconds if budget_seconds is not None else None
    if max_workers is None:
        max_workers = os.cpu_count() or 1

    total = len(cameras)
    if max_workers <= 1:
        views = []
        for index, camera in enumerate(cameras):
            views.append(_render_one(mesh, bounds, camera, index, width, height, settings, deadline))
            if progress is not None:
                progress(index + 1, total)
    else:
        views = _render_concurrently(
            mesh, bounds, cameras, width, height, settings, deadline, max_workers, progress
        )

    failed = sum(1 for view in views if not view.ok)
    logger.info(
        "Rendered %d views (%d placeholders) at %dx%d in %.2f s",
        len(views),
        failed,
        width,
        height,
        time.monotonic() - started,
    )
    return views


def _render_concurrently(
    mesh: TriangleMesh,
    bounds: MeshBounds,
    cameras: Sequence[CameraPosition],
    width: int,
    height: int,
    settings: RenderSettings,
    deadline: Optional[float],
    max_workers: int,
    progress: Optional[ProgressCallback] = None,
) -> List[RenderedView]:
    total = len(cameras)
    finished = 0
    closed = False
    counter_lock = Lock()

    def report(_future) -> None:
        nonlocal finished
        with counter_lock:
            # Views still running past the deadline finish after the batch was returned
            if closed or _future.cancelled():
                return
            finished += 1
            if progress is not None:
                progress(finished, total)

    pool = ThreadPoolExecutor(max_workers=min(max_workers, total) or 1)
    try:
        futures = [
            pool.submit(_render_one, mesh, bounds, camera, index, width, height, settings, deadline)
            for index, camera in enumerate(cameras)
        ]
        for future in futures:
            future.add_done_callback(report)
        timeout = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        wait(futures, timeout=timeout, return_when=ALL_COMPLETED)
        views: List[RenderedView] = []
        for index, (camera, future) in enumerate(zip(cameras, futures)):
            if future.done():
                views.append(future.result())
                continue
            future.cancel()
            views.append(
                placeholder_view(
                    camera,
                    index,
                    width,
                    height,
                    RenderTimeout(f"Render budget exceeded while rendering {camera.name}"),
                )
            )
        return views
    finally:
        with counter_lock:
            closed = True
        pool.shutdown(wait=False, cancel_futures=True)


def render_previews(
    data: bytes,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    *,
    max_workers: Optional[int] = 1,
    budget_seconds: Optional[float] = None,
    settings: RenderSettings = DEFAULT_SETTINGS,
    progress: Optional[ProgressCallback] = None,
) -> PreviewBatch:
    """Decode STL bytes and render the full camera rig.

    Raises:
        ParseError: If the bytes cannot be decoded.
        GeometryError: If the mesh is empty or degenerate.
    """
    mesh = decode_stl(data)
    bounds = analyze_mesh(mesh)
    views = render_all_views(
        mesh,
        bounds,
        width,
        height,
        max_workers=max_workers,
        budget_seconds=budget_seconds,
        settings=settings,
        progress=progress,
    )
    return PreviewBatch(mesh=mesh, bounds=bounds, views=views, width=width, height=height)
