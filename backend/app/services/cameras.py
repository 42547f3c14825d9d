"""Fixed camera rig used for every preview batch.

The order and names below are an external contract: the API returns
``viewNames``, ``viewDescriptions`` and images as parallel arrays in
exactly this order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

DEFAULT_RADIUS = 5.0
DIAGONAL = 0.7


@dataclass(frozen=True)
class CameraPosition:
    """A named viewing direction.

    The vector points from the model centre towards the camera.  Its
    length is the nominal camera distance and has no effect on image
    scale.
    """

    name: str
    description: str
    x: float
    y: float
    z: float

    @property
    def position(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def direction(self) -> Tuple[float, float, float]:
        """Unit vector towards the camera; ``(1, 0, 0)`` for a zero vector."""
        length = math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)
        if length == 0.0:
            return (1.0, 0.0, 0.0)
        return (self.x / length, self.y / length, self.z / length)


def camera_positions(radius: float = DEFAULT_RADIUS) -> Tuple[CameraPosition, ...]:
    """Return the 16 rig positions in their fixed order."""
    r = radius
    d = radius * DIAGONAL
    return (
        CameraPosition("right", "Right Side View", r, 0.0, 0.0),
        CameraPosition("left", "Left Side View", -r, 0.0, 0.0),
        CameraPosition("top", "Top View", 0.0, r, 0.0),
        CameraPosition("bottom", "Bottom View", 0.0, -r, 0.0),
        CameraPosition("front", "Front View", 0.0, 0.0, r),
        CameraPosition("back", "Back View", 0.0, 0.0, -r),
        CameraPosition("iso_1", "Isometric View 1", d, d, d),
        CameraPosition("iso_2", "Isometric View 2", -d, d, d),
        CameraPosition("iso_3", "Isometric View 3", d, d, -d),
        CameraPosition("iso_4", "Isometric View 4", -d, d, -d),
        CameraPosition("corner_1", "Bottom Corner 1", d, -d, d),
        CameraPosition("corner_2", "Bottom Corner 2", -d, -d, d),
        CameraPosition("corner_3", "Bottom Corner 3", d, -d, -d),
        CameraPosition("corner_4", "Bottom Corner 4", -d, -d, -d),
        CameraPosition("angle_1", "Angled Right View", r * 0.9, r * 0.3, 0.0),
        CameraPosition("angle_2", "Angled Front View", 0.0, r * 0.3, r * 0.9),
    )


CAMERA_RIG: Tuple[CameraPosition, ...] = camera_positions()


def get_camera(name: str) -> CameraPosition:
    """Look up a rig entry by name.

    Raises:
        KeyError: If ``name`` is not part of the rig.
    """
    for camera in CAMERA_RIG:
        if camera.name == name:
            return camera
    raise KeyError(name)
