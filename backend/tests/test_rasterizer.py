"""
Tests for the software rasteriser.

Images are small so the pure numpy fill loop stays fast.  Expected
screen coordinates are worked out by hand from the projection scale
``min(width, height) * VISIBILITY_SCALE / max_dimension``.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.services.cameras import get_camera  # type: ignore
from app.services.errors import RenderError  # type: ignore
from app.services.geometry import MeshBounds, analyze_mesh  # type: ignore
from app.services.rasterizer import (  # type: ignore
    PLACEHOLDER_BACKGROUND,
    VISIBILITY_SCALE,
    WHITE,
    ProjectionMode,
    RenderSettings,
    draw_line,
    fill_triangle,
    new_pixel_buffer,
    project_triangles,
    projection_scale,
    rasterize_view,
    render_view,
    shade,
    view_basis,
)
from app.services.stl_decoder import TriangleMesh  # type: ignore


NO_LABEL = RenderSettings(draw_label=False)


def _mesh(*triangles):
    return TriangleMesh.from_vertices(np.asarray(triangles, dtype=float).ravel())


@pytest.fixture
def diagonal_mesh():
    # Spans [-1, 1] on every axis so the centre is the origin and max_dimension is 2
    return _mesh([(-1, -1, -1), (1, 1, 1), (1, -1, 1)])


def test_visibility_scale_constant() -> None:
    assert VISIBILITY_SCALE == 0.6


def test_largest_dimension_spans_visibility_fraction() -> None:
    mesh = _mesh([(1, 1, 1), (3, 1, 1), (1, 3, 3)], [(3, 3, 3), (1, 3, 1), (3, 1, 3)])
    bounds = analyze_mesh(mesh)
    projected = project_triangles(mesh, bounds, get_camera("front"), 200, 100)
    assert projected.scale == pytest.approx(100 * 0.6 / 2)
    xs = projected.screen[..., 0]
    ys = projected.screen[..., 1]
    assert xs.max() - xs.min() == pytest.approx(0.6 * 100)
    assert xs.min() == pytest.approx(100 - 30)
    assert ys.min() == pytest.approx(50 - 30)


def test_projection_scale_rejects_zero_dimension() -> None:
    bounds = MeshBounds((0, 0, 0), (0, 0, 0), (0, 0, 0), (0, 0, 0), 0.0)
    with pytest.raises(RenderError):
        projection_scale(bounds, 64, 64)


def test_rotated_views_use_distinct_axes(diagonal_mesh) -> None:
    bounds = analyze_mesh(diagonal_mesh)
    front = project_triangles(diagonal_mesh, bounds, get_camera("front"), 100, 100)
    right = project_triangles(diagonal_mesh, bounds, get_camera("right"), 100, 100)
    top = project_triangles(diagonal_mesh, bounds, get_camera("top"), 100, 100)
    # Vertex (1, 1, 1)
    np.testing.assert_allclose(front.screen[0, 1], (80, 20))
    np.testing.assert_allclose(right.screen[0, 1], (20, 20))
    np.testing.assert_allclose(top.screen[0, 1], (80, 80))
    assert front.depth[0] == pytest.approx(1 / 3)


def test_shear_projection(diagonal_mesh) -> None:
    bounds = analyze_mesh(diagonal_mesh)
    settings = RenderSettings(projection=ProjectionMode.SHEAR)
    iso = project_triangles(diagonal_mesh, bounds, get_camera("iso_1"), 100, 100, settings)
    top = project_triangles(diagonal_mesh, bounds, get_camera("top"), 100, 100, settings)
    np.testing.assert_allclose(iso.screen[0, 1], (50 + 1.5 * 30, 50 - 1.3 * 30))
    np.testing.assert_allclose(top.screen[0, 1], (80, 20))


def test_view_basis_is_orthonormal_for_every_camera() -> None:
    for name in ("right", "top", "bottom", "iso_3", "corner_4", "angle_2"):
        direction = np.asarray(get_camera(name).direction())
        right, up = view_basis(direction)
        assert np.dot(right, up) == pytest.approx(0.0, abs=1e-12)
        assert np.dot(right, direction) == pytest.approx(0.0, abs=1e-12)
        assert np.linalg.norm(right) == pytest.approx(1.0)
        assert np.linalg.norm(up) == pytest.approx(1.0)


def test_shade_is_clamped() -> None:
    assert shade(-10.0, 1.0)[0] == (80, 80, 88)
    assert shade(10.0, 1.0)[0] == (200, 200, 220)
    fill, edge = shade(0.0, 2.0)
    assert fill == (140, 140, 154)
    assert edge[0] < fill[0]


def test_fill_triangle_covers_interior() -> None:
    pixels = new_pixel_buffer(16, 16)
    count = fill_triangle(pixels, np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]]), (0, 0, 0))
    assert 45 <= count <= 55
    assert tuple(pixels[1, 1, :3]) == (0, 0, 0)
    assert tuple(pixels[14, 14, :3]) == WHITE
    assert (pixels[:, :, 3] == 255).all()


def test_degenerate_triangle_fills_nothing() -> None:
    pixels = new_pixel_buffer(16, 16)
    count = fill_triangle(pixels, np.array([[0.0, 0.0], [5.0, 5.0], [10.0, 10.0]]), (0, 0, 0))
    assert count == 0
    assert (pixels[:, :, :3] == 255).all()


def test_offscreen_triangle_fills_nothing() -> None:
    pixels = new_pixel_buffer(16, 16)
    points = np.array([[-50.0, -50.0], [-40.0, -50.0], [-50.0, -40.0]])
    assert fill_triangle(pixels, points, (0, 0, 0)) == 0


def test_draw_line_horizontal_and_clipped() -> None:
    pixels = new_pixel_buffer(16, 16)
    draw_line(pixels, (2, 5), (8, 5), (255, 0, 0))
    assert (pixels[5, 2:9, 0] == 255).all()
    assert (pixels[5, 2:9, 1] == 0).all()
    assert pixels[5, 9, 1] == 255
    draw_line(pixels, (-20, -20), (40, 40), (0, 255, 0))
    assert tuple(pixels[10, 10, :3]) == (0, 255, 0)


def test_near_triangle_is_painted_last() -> None:
    far = [(-1, -1, -0.5), (1, -1, -0.5), (0, 1, -0.5)]
    near = [(-1, -1, 0.5), (1, -1, 0.5), (0, 1, 0.5)]
    for order in ((far, near), (near, far)):
        mesh = _mesh(*order)
        bounds = analyze_mesh(mesh)
        pixels = rasterize_view(mesh, bounds, get_camera("front"), 512, 512, settings=NO_LABEL)
        assert tuple(pixels[256, 256, :3]) == (155, 155, 170)


def test_render_is_deterministic(diagonal_mesh) -> None:
    bounds = analyze_mesh(diagonal_mesh)
    camera = get_camera("iso_2")
    first = rasterize_view(diagonal_mesh, bounds, camera, 64, 48, 7)
    second = rasterize_view(diagonal_mesh, bounds, camera, 64, 48, 7)
    assert first.shape == (48, 64, 4)
    assert np.array_equal(first, second)


def test_side_views_differ(diagonal_mesh) -> None:
    bounds = analyze_mesh(diagonal_mesh)
    front = rasterize_view(diagonal_mesh, bounds, get_camera("front"), 64, 64, settings=NO_LABEL)
    right = rasterize_view(diagonal_mesh, bounds, get_camera("right"), 64, 64, settings=NO_LABEL)
    assert not np.array_equal(front, right)


def test_label_panel_darkens_background(diagonal_mesh) -> None:
    bounds = analyze_mesh(diagonal_mesh)
    pixels = rasterize_view(diagonal_mesh, bounds, get_camera("front"), 256, 256, 0)
    assert 45 <= int(pixels[12, 12, 0]) <= 55
    assert tuple(pixels[250, 250, :3]) == WHITE


def test_bounds_outline_is_drawn(diagonal_mesh) -> None:
    bounds = analyze_mesh(diagonal_mesh)
    settings = RenderSettings(draw_bounds=True, draw_label=False)
    pixels = rasterize_view(diagonal_mesh, bounds, get_camera("front"), 100, 100, settings=settings)
    # Left edge of the projected box runs along x = 20
    assert tuple(pixels[50, 20, :3]) == (220, 40, 40)


def test_invalid_size_raises_render_error(diagonal_mesh) -> None:
    bounds = analyze_mesh(diagonal_mesh)
    with pytest.raises(RenderError):
        rasterize_view(diagonal_mesh, bounds, get_camera("front"), 0, 64)


def test_render_view_falls_back_to_placeholder(diagonal_mesh) -> None:
    bounds = MeshBounds((0, 0, 0), (0, 0, 0), (0, 0, 0), (0, 0, 0), 0.0)
    pixels = render_view(diagonal_mesh, bounds, get_camera("top"), 64, 64, 2)
    assert pixels.shape == (64, 64, 4)
    assert tuple(pixels[63, 63, :3]) == PLACEHOLDER_BACKGROUND


def test_sub_pixel_triangle_is_drawn_as_one_pixel() -> None:
    mesh = _mesh(
        [(-1, -1, 0), (1, -1, 0), (-1, 1, 0)],
        [(0.9, 0.9, 0), (0.91, 0.9, 0), (0.9, 0.91, 0)],
    )
    bounds = analyze_mesh(mesh)
    pixels = rasterize_view(mesh, bounds, get_camera("front"), 64, 64, settings=NO_LABEL)
    # scale is 64 * 0.6 / 2 = 19.2, so the small triangle sits at pixel (49, 14)
    _, edge = shade(0.0, bounds.max_dimension)
    assert tuple(pixels[14, 49, :3]) == edge
    assert tuple(pixels[14, 50, :3]) == WHITE
    assert tuple(pixels[13, 49, :3]) == WHITE
