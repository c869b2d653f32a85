"""
Shape Projection

Radially rescales the vertices of a group so that every vertex on the same
box "ring" around the group center lands on the same sphere or cylinder.
The ring of a vertex is its Chebyshev distance to the center over the
projected axes, so concentric voxel shells map onto concentric shapes.
"""

import logging
import numpy as np

from .faces import FaceStore
from .model import Model, Shape
from .vertices import VertexStore

logger = logging.getLogger(__name__)


# Axes taking part in the projection for each shape
SHAPE_AXES = {
    Shape.SPHERE: np.array([1.0, 1.0, 1.0]),
    Shape.CYLINDER_X: np.array([0.0, 1.0, 1.0]),
    Shape.CYLINDER_Y: np.array([1.0, 0.0, 1.0]),
    Shape.CYLINDER_Z: np.array([1.0, 1.0, 0.0]),
}


def project_points(points: np.ndarray, center: np.ndarray, shape: Shape):
    """
    Project points onto the shape rings around a center.

    Args:
        points: (N, 3) positions
        center: Center of the projection
        shape: Shape to project onto

    Returns:
        Tuple of (projected points, ring radius per point)
    """
    strength = SHAPE_AXES[shape]
    offset = points - center
    ring = np.abs(offset * strength).max(axis=1)
    distance = np.sqrt((offset * offset * strength).sum(axis=1))

    # Points on the center line stay put
    factor = np.ones_like(distance)
    np.divide(ring, distance, out=factor, where=distance > 0)

    scaled = offset * (1.0 + strength * (factor[:, np.newaxis] - 1.0))
    return center + scaled, ring


def project_shapes(model: Model, vertices: VertexStore, faces: FaceStore) -> int:
    """
    Apply the shape of every group to its vertices and mark equidistant faces.

    Returns:
        Number of vertices projected
    """
    projected = 0
    for group in model.groups.values():
        if group.shape not in SHAPE_AXES:
            continue
        bounds = model.voxels.bounds(group.id)
        mask = vertices.group == group.index
        if bounds.is_empty or not mask.any():
            continue

        # Voxel bounds are inclusive cell indices; corners run to max + 1
        center = (bounds.min + bounds.max) / 2.0 + 0.5
        points, ring = project_points(vertices.positions[mask], center, group.shape)
        vertices.positions[mask] = points
        vertices.ring[mask] = ring
        projected += int(mask.sum())

    if len(faces):
        rings = vertices.ring[faces.vertices]
        known = np.all(np.isfinite(rings), axis=1)
        same = np.all(np.isclose(rings, rings[:, :1]), axis=1)
        faces.equidistant[:] = known & same

    if projected:
        logger.debug(
            "Projected %d vertices, %d equidistant faces",
            projected, int(faces.equidistant.sum()) if len(faces) else 0
        )
    return projected
