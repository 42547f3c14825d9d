"""
Geometry analysis for decoded meshes.

The renderer needs three derived values per mesh: the axis‑aligned
bounding box, its centre and the largest extent along any axis.  They
are computed once per mesh and shared read‑only by every view.  Empty
meshes and meshes that collapse to a single point are rejected with
``GeometryError`` so callers can substitute a placeholder instead of
dividing by zero further down the pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import GeometryError
from .stl_decoder import TriangleMesh

logger = logging.getLogger(__name__)

Vec3 = Tuple[float, float, float]


@dataclass(frozen=True)
class MeshBounds:
    """Axis‑aligned bounds of a mesh.

    Attributes:
        bbox_min: Minimum x, y, z over all vertices.
        bbox_max: Maximum x, y, z over all vertices.
        center: Midpoint of the box, ``(min + max) / 2`` per axis.
        size: Extent of the box along each axis.
        max_dimension: Largest of the three extents.
    """

    bbox_min: Vec3
    bbox_max: Vec3
    center: Vec3
    size: Vec3
    max_dimension: float

    def corners(self) -> np.ndarray:
        """Return the eight box corners as an ``(8, 3)`` array.

        Corner ``i`` takes the max coordinate on axis ``a`` when bit ``a``
        of ``i`` is set.
        """
        lo = np.asarray(self.bbox_min, dtype=float)
        hi = np.asarray(self.bbox_max, dtype=float)
        out = np.empty((8, 3), dtype=float)
        for i in range(8):
            for axis in range(3):
                out[i, axis] = hi[axis] if (i >> axis) & 1 else lo[axis]
        return out


def analyze_mesh(mesh: TriangleMesh) -> MeshBounds:
    """Compute the bounds of ``mesh``.

    Raises:
        GeometryError: If the mesh has no vertices or all of them
            coincide.
    """
    if mesh.triangle_count == 0:
        raise GeometryError("Mesh has no triangles")
    points = mesh.triangles.reshape(-1, 3).astype(np.float64)
    lo = points.min(axis=0)
    hi = points.max(axis=0)
    size = hi - lo
    max_dimension = float(size.max())
    if max_dimension == 0.0:
        raise GeometryError("Model has zero dimensions")
    center = (lo + hi) / 2.0
    bounds = MeshBounds(
        bbox_min=_vec(lo),
        bbox_max=_vec(hi),
        center=_vec(center),
        size=_vec(size),
        max_dimension=max_dimension,
    )
    logger.debug(
        "Mesh bounds min=%s max=%s max_dimension=%.4f",
        bounds.bbox_min,
        bounds.bbox_max,
        max_dimension,
    )
    return bounds


def _vec(values: np.ndarray) -> Vec3:
    return (float(values[0]), float(values[1]), float(values[2]))
