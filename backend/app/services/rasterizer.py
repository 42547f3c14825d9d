"""
Software rasteriser for STL previews.

Every view is an orthographic projection of the centred mesh, scaled
so that the largest model dimension spans ``VISIBILITY_SCALE`` of the
shorter image side.  Triangles are painted back to front (painter's
algorithm) with a barycentric coverage test over each triangle's
screen bounding box, outlined with Bresenham lines and finally
labelled with the view number and name using the bitmap font.
Triangles smaller than a pixel on screen are drawn as a single edge
coloured pixel, which keeps dense meshes fast to render.

Two projection modes exist:

- ``ROTATED`` builds an orthonormal view basis from the camera
  direction, so every rig entry gets a genuinely different view.
- ``SHEAR`` maps the six axis views onto axis pairs and draws every
  other view with a fixed oblique shear.

In both modes a triangle's depth is the mean of its vertices'
components along the camera direction, larger values being closer to
the camera.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .bitmap_font import GLYPH_ADVANCE, GLYPH_HEIGHT, draw_text, text_width
from .cameras import CameraPosition
from .errors import RenderError
from .geometry import MeshBounds
from .stl_decoder import TriangleMesh

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

DEFAULT_WIDTH = 512
DEFAULT_HEIGHT = 512
VISIBILITY_SCALE = 0.6
DEGENERATE_EPSILON = 1e-12

WHITE: RGB = (255, 255, 255)
PLACEHOLDER_BACKGROUND: RGB = (211, 211, 211)
ERROR_COLOR: RGB = (200, 30, 30)
BOUNDS_COLOR: RGB = (220, 40, 40)

LABEL_ORIGIN = (10, 10)
LABEL_MIN_WIDTH = 120
LABEL_HEIGHT = 35
LABEL_OPACITY = 0.8

# Oblique projection used for non-axis views in SHEAR mode.
SHEAR_X = 0.5
SHEAR_Y = 0.3
SHEAR_AXIS_PAIRS: Dict[str, Tuple[int, int]] = {
    "front": (0, 1),
    "back": (0, 1),
    "right": (2, 1),
    "left": (2, 1),
    "top": (0, 2),
    "bottom": (0, 2),
}


class ProjectionMode(str, Enum):
    ROTATED = "rotated"
    SHEAR = "shear"


@dataclass(frozen=True)
class RenderSettings:
    """Knobs shared by all views of a batch."""

    projection: ProjectionMode = ProjectionMode.ROTATED
    visibility_scale: float = VISIBILITY_SCALE
    background: RGB = WHITE
    draw_edges: bool = True
    draw_bounds: bool = False
    draw_label: bool = True


DEFAULT_SETTINGS = RenderSettings()


@dataclass(frozen=True, eq=False)
class ProjectedTriangles:
    """Screen-space triangles for one view.

    Attributes:
        screen: ``(N, 3, 2)`` pixel coordinates, y growing downwards.
        depth: ``(N,)`` mean view depth per triangle.
        scale: Pixels per model unit used for the projection.
    """

    screen: np.ndarray
    depth: np.ndarray
    scale: float

    def back_to_front(self) -> np.ndarray:
        """Indices ordered far to near; ties keep file order."""
        return np.argsort(self.depth, kind="stable")


def new_pixel_buffer(width: int, height: int, background: RGB = WHITE) -> np.ndarray:
    """Allocate an opaque RGBA buffer filled with ``background``."""
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = background
    pixels[:, :, 3] = 255
    return pixels


def view_basis(direction: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Return the screen ``(right, up)`` unit vectors for a camera direction.

    World ``+y`` is up, except when looking straight down or up where
    ``-z`` (resp. ``+z``) takes its place.
    """
    forward = np.asarray(direction, dtype=float)
    forward = forward / np.linalg.norm(forward)
    if abs(forward[1]) > 0.999:
        world_up = np.array([0.0, 0.0, -math.copysign(1.0, forward[1])])
    else:
        world_up = np.array([0.0, 1.0, 0.0])
    right = np.cross(world_up, forward)
    right /= np.linalg.norm(right)
    up = np.cross(forward, right)
    return right, up


def _project_points(
    points: np.ndarray,
    camera: CameraPosition,
    mode: ProjectionMode,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Project centred points (``(..., 3)``) to unscaled screen x, y and depth."""
    direction = np.asarray(camera.direction(), dtype=float)
    depth = points @ direction
    if mode == ProjectionMode.ROTATED:
        right, up = view_basis(direction)
        return points @ right, points @ up, depth
    pair = SHEAR_AXIS_PAIRS.get(camera.name)
    if pair is not None:
        return points[..., pair[0]], points[..., pair[1]], depth
    x, y, z = points[..., 0], points[..., 1], points[..., 2]
    return x + z * SHEAR_X, y + z * SHEAR_Y, depth


def projection_scale(bounds: MeshBounds, width: int, height: int, visibility_scale: float = VISIBILITY_SCALE) -> float:
    """Pixels per model unit so the largest dimension spans ``visibility_scale`` of the short side."""
    if not bounds.max_dimension > 0.0 or not math.isfinite(bounds.max_dimension):
        raise RenderError(f"Cannot scale a model of size {bounds.max_dimension}")
    return min(width, height) * visibility_scale / bounds.max_dimension


def to_screen(sx: np.ndarray, sy: np.ndarray, scale: float, width: int, height: int) -> np.ndarray:
    """Map view coordinates to pixel coordinates (y flipped)."""
    return np.stack([width / 2.0 + sx * scale, height / 2.0 - sy * scale], axis=-1)


def project_triangles(
    mesh: TriangleMesh,
    bounds: MeshBounds,
    camera: CameraPosition,
    width: int,
    height: int,
    settings: RenderSettings = DEFAULT_SETTINGS,
) -> ProjectedTriangles:
    """Centre, project and scale every triangle of ``mesh`` for ``camera``."""
    scale = projection_scale(bounds, width, height, settings.visibility_scale)
    centred = mesh.triangles.astype(np.float64) - np.asarray(bounds.center, dtype=np.float64)
    sx, sy, depth = _project_points(centred, camera, settings.projection)
    return ProjectedTriangles(
        screen=to_screen(sx, sy, scale, width, height),
        depth=depth.mean(axis=1),
        scale=scale,
    )


def shade(depth: float, max_dimension: float) -> Tuple[RGB, RGB]:
    """Fill and edge colours for a triangle at ``depth``."""
    normalized = (depth + max_dimension) / (2.0 * max_dimension)
    normalized = max(0.0, min(1.0, normalized))
    brightness = int(math.floor(80 + normalized * 120))
    fill = (brightness, brightness, min(255, int(math.floor(brightness * 1.1))))
    edge = (
        int(math.floor(brightness * 0.6)),
        int(math.floor(brightness * 0.6)),
        int(math.floor(brightness * 0.7)),
    )
    return fill, edge


def fill_triangle(pixels: np.ndarray, points: np.ndarray, color: RGB) -> int:
    """Fill the pixels whose centres fall inside the triangle.

    Returns:
        Number of pixels written.  Degenerate (edge-on) triangles and
        triangles entirely off screen write nothing.
    """
    height, width = pixels.shape[:2]
    (ax, ay), (bx, by), (cx, cy) = points.tolist()
    x0 = max(int(math.floor(min(ax, bx, cx))), 0)
    x1 = min(int(math.ceil(max(ax, bx, cx))), width - 1)
    y0 = max(int(math.floor(min(ay, by, cy))), 0)
    y1 = min(int(math.ceil(max(ay, by, cy))), height - 1)
    if x0 > x1 or y0 > y1:
        return 0
    denom = (by - cy) * (ax - cx) + (cx - bx) * (ay - cy)
    if abs(denom) < DEGENERATE_EPSILON:
        return 0

    gx, gy = np.meshgrid(np.arange(x0, x1 + 1) + 0.5, np.arange(y0, y1 + 1) + 0.5)
    w0 = ((by - cy) * (gx - cx) + (cx - bx) * (gy - cy)) / denom
    w1 = ((cy - ay) * (gx - cx) + (ax - cx) * (gy - cy)) / denom
    w2 = 1.0 - w0 - w1
    inside = (w0 >= 0.0) & (w1 >= 0.0) & (w2 >= 0.0)
    region = pixels[y0 : y1 + 1, x0 : x1 + 1]
    region[inside, :3] = color
    return int(inside.sum())


def plot_point(pixels: np.ndarray, point: Sequence[float], color: RGB) -> int:
    """Set the single pixel containing ``point``; returns 1 if it was on screen."""
    height, width = pixels.shape[:2]
    x, y = int(math.floor(point[0])), int(math.floor(point[1]))
    if 0 <= x < width and 0 <= y < height:
        pixels[y, x, :3] = color
        return 1
    return 0


def draw_line(pixels: np.ndarray, start: Sequence[float], end: Sequence[float], color: RGB) -> None:
    """Bresenham line between two pixel positions, clipped to the buffer."""
    height, width = pixels.shape[:2]
    x0, y0 = int(math.floor(start[0])), int(math.floor(start[1]))
    x1, y1 = int(math.floor(end[0])), int(math.floor(end[1]))
    dx = abs(x1 - x0)
    dy = -abs(y1 - y0)
    step_x = 1 if x0 < x1 else -1
    step_y = 1 if y0 < y1 else -1
    err = dx + dy
    while True:
        if 0 <= x0 < width and 0 <= y0 < height:
            pixels[y0, x0, :3] = color
        if x0 == x1 and y0 == y1:
            break
        e2 = 2 * err
        if e2 >= dy:
            err += dy
            x0 += step_x
        if e2 <= dx:
            err += dx
            y0 += step_y


def draw_bounds_outline(
    pixels: np.ndarray,
    bounds: MeshBounds,
    camera: CameraPosition,
    scale: float,
    settings: RenderSettings,
) -> None:
    """Stroke the 12 edges of the projected bounding box."""
    height, width = pixels.shape[:2]
    corners = bounds.corners() - np.asarray(bounds.center, dtype=float)
    sx, sy, _ = _project_points(corners, camera, settings.projection)
    screen = to_screen(sx, sy, scale, width, height)
    for i in range(8):
        for axis in range(3):
            j = i | (1 << axis)
            if j != i:
                draw_line(pixels, screen[i], screen[j], BOUNDS_COLOR)


def draw_label(pixels: np.ndarray, index: int, camera: CameraPosition) -> None:
    """Overlay the ``"N. NAME"`` title and description on a dark panel."""
    title = f"{index + 1}. {camera.name.upper()}"
    left, top = LABEL_ORIGIN
    panel_width = max(LABEL_MIN_WIDTH, text_width(title) + 10, text_width(camera.description) + 10)
    panel = pixels[top : top + LABEL_HEIGHT, left : left + panel_width, :3]
    panel[...] = (panel.astype(np.float32) * (1.0 - LABEL_OPACITY)).astype(np.uint8)
    draw_text(pixels, left + 5, top + 5, title, WHITE)
    draw_text(pixels, left + 5, top + 8 + GLYPH_HEIGHT + 5, camera.description, (220, 220, 220))


def rasterize_view(
    mesh: TriangleMesh,
    bounds: MeshBounds,
    camera: CameraPosition,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    index: int = 0,
    settings: RenderSettings = DEFAULT_SETTINGS,
) -> np.ndarray:
    """Render one view into a new RGBA buffer.

    Raises:
        RenderError: On invalid dimensions or any failure while
            projecting or drawing.
    """
    if width <= 0 or height <= 0:
        raise RenderError(f"Invalid image size {width}x{height}")
    try:
        pixels = new_pixel_buffer(width, height, settings.background)
        projected = project_triangles(mesh, bounds, camera, width, height, settings)
        max_dimension = bounds.max_dimension
        extent = projected.screen.max(axis=1) - projected.screen.min(axis=1)
        sub_pixel = (extent < 1.0).all(axis=1)
        centroids = projected.screen.mean(axis=1)
        covered = 0
        for i in projected.back_to_front():
            fill, edge = shade(float(projected.depth[i]), max_dimension)
            if sub_pixel[i] and settings.draw_edges:
                # Outline of a sub-pixel triangle collapses onto the pixel holding its centroid
                covered += plot_point(pixels, centroids[i], edge)
                continue
            points = projected.screen[i]
            covered += fill_triangle(pixels, points, fill)
            if settings.draw_edges:
                draw_line(pixels, points[0], points[1], edge)
                draw_line(pixels, points[1], points[2], edge)
                draw_line(pixels, points[2], points[0], edge)
        if settings.draw_bounds:
            draw_bounds_outline(pixels, bounds, camera, projected.scale, settings)
        if settings.draw_label:
            draw_label(pixels, index, camera)
    except RenderError:
        raise
    except Exception as exc:
        raise RenderError(f"Failed to render {camera.name}: {exc}") from exc
    logger.debug(
        "%s: %d triangles, scale=%.3f, %d pixels filled",
        camera.name,
        mesh.triangle_count,
        projected.scale,
        covered,
    )
    return pixels


def render_placeholder(
    camera: CameraPosition,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    index: int = 0,
    reason: Optional[str] = None,
) -> np.ndarray:
    """Flat grey image marking a view that could not be rendered."""
    width = max(int(width), 1)
    height = max(int(height), 1)
    pixels = new_pixel_buffer(width, height, PLACEHOLDER_BACKGROUND)
    max_chars = max((width - 10) // GLYPH_ADVANCE, 1)
    lines = [("ERROR", 2, ERROR_COLOR), (camera.name.upper(), 1, (0, 0, 0))]
    if reason:
        lines.append((reason[:max_chars], 1, (60, 60, 60)))
    y = height // 2 - 20
    for text, scale, color in lines:
        x = max((width - text_width(text, scale)) // 2, 0)
        draw_text(pixels, x, y, text, color, scale)
        y += GLYPH_HEIGHT * scale + 6
    draw_label(pixels, index, camera)
    return pixels


def render_view(
    mesh: TriangleMesh,
    bounds: MeshBounds,
    camera: CameraPosition,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    index: int = 0,
    settings: RenderSettings = DEFAULT_SETTINGS,
) -> np.ndarray:
    """Render one view, returning a placeholder instead of raising."""
    try:
        return rasterize_view(mesh, bounds, camera, width, height, index, settings)
    except RenderError as exc:
        logger.warning("Render of %s failed, using placeholder: %s", camera.name, exc)
        return render_placeholder(camera, width, height, index, str(exc))
