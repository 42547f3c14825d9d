"""
Mesh cache serialization utilities.

Decoded meshes are saved to disk as compressed NumPy archives
(``.npz``) so that a re-uploaded file, or a later request for the
mesh of an existing job, does not have to run the STL decoder again.
An archive holds the ``(N, 3, 3)`` triangle array, the bounding box
limits and the name of the decoding strategy that produced it.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np

from .stl_decoder import TriangleMesh


def save_mesh_cache(
    path: Path,
    mesh: TriangleMesh,
    bbox_min: Sequence[float],
    bbox_max: Sequence[float],
) -> None:
    """Write a decoded mesh to a compressed ``.npz`` file.

    Args:
        path: Destination file path.  Parent directories will not be
            created; callers should ensure the directory exists.
        mesh: Mesh whose triangles are stored as ``float32``.
        bbox_min: Minimum x, y, z of the mesh.
        bbox_max: Maximum x, y, z of the mesh.
    """
    np.savez_compressed(
        path,
        triangles=np.asarray(mesh.triangles, dtype=np.float32),
        bbox_min=np.asarray(bbox_min, dtype=np.float32),
        bbox_max=np.asarray(bbox_max, dtype=np.float32),
        strategy=np.array(mesh.strategy),
        declared_count=np.array(mesh.declared_count, dtype=np.int64),
    )


def load_mesh_cache(path: Path) -> Tuple[TriangleMesh, List[float], List[float]]:
    """Load a mesh written by :func:`save_mesh_cache`.

    Returns:
        A tuple ``(mesh, bbox_min, bbox_max)``.

    Raises:
        FileNotFoundError: If the specified path does not exist.
        ValueError: If the archive does not contain the expected fields.
    """
    if not path.exists():
        raise FileNotFoundError(f"Mesh cache file not found: {path}")
    with np.load(path, allow_pickle=False) as data:
        required_keys = {"triangles", "bbox_min", "bbox_max", "strategy", "declared_count"}
        if not required_keys.issubset(data.files):
            missing = required_keys - set(data.files)
            raise ValueError(f"Mesh cache file is missing fields: {missing}")
        triangles = data["triangles"].astype(np.float32).reshape(-1, 3, 3)
        mesh = TriangleMesh(
            triangles=triangles,
            strategy=str(data["strategy"]),
            declared_count=int(data["declared_count"]),
        )
        bbox_min = data["bbox_min"].astype(np.float32).tolist()
        bbox_max = data["bbox_max"].astype(np.float32).tolist()
    return mesh, bbox_min, bbox_max
