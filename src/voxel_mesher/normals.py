"""
Normal Calculation

Every face corner gets a normal from the cross product of the edges to its
previous corner and to the face midpoint. Using the midpoint instead of the
opposite corner keeps the normal stable when a deformed corner crosses the
quad diagonal.

The corner normals are accumulated per vertex into three accumulators:
- smooth: every face touching the vertex
- both:   only faces that should be shaded smooth
- sides:  one accumulator per face side

All four variants (flat, smooth, both, sides) are stored on the faces, and
select_normals() picks the one each material's lighting mode asks for.
"""

import logging
import numpy as np

from .faces import FaceStore
from .model import LightingMode, Model
from .vertices import VertexStore

logger = logging.getLogger(__name__)

SMOOTH_MODES = (LightingMode.SMOOTH, LightingMode.BOTH)


def _normalize(vectors: np.ndarray) -> np.ndarray:
    lengths = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return np.divide(vectors, lengths, out=np.zeros_like(vectors), where=lengths > 1e-12)


def corner_normals(positions: np.ndarray, faces: FaceStore) -> np.ndarray:
    """
    Compute the unit normal at every face corner.

    Args:
        positions: (N, 3) vertex positions
        faces: Frozen face store

    Returns:
        (F, 4, 3) corner normals (zero for degenerate corners)
    """
    corners = positions[faces.vertices]
    midpoints = corners.mean(axis=1, keepdims=True)
    previous = np.roll(corners, 1, axis=1)
    return _normalize(np.cross(midpoints - corners, previous - corners))


def smooth_face_mask(model: Model, faces: FaceStore) -> np.ndarray:
    """Faces whose normals go into the 'both' accumulator."""
    smooth_material = np.array(
        [material.lighting in SMOOTH_MODES for material in model.materials], dtype=bool
    )
    free = ~(faces.flattened | faces.clamped)
    return faces.equidistant | (free & smooth_material[faces.material])


def non_manifold_vertices(vertex_count: int, faces: FaceStore) -> np.ndarray:
    """
    Find vertices touched by both sides of two or more axes.

    Returns:
        (N,) bool mask
    """
    touched = np.zeros((vertex_count, 6), dtype=bool)
    sides = np.repeat(faces.side, 4)
    touched[faces.vertices.ravel(), sides] = True
    opposing = touched[:, 0::2] & touched[:, 1::2]
    return opposing.sum(axis=1) >= 2


def calculate_normals(model: Model, vertices: VertexStore, faces: FaceStore) -> int:
    """
    Fill the flat, smooth, both and side normal arrays of all faces.

    Returns:
        Number of face corners whose smooth normal was replaced by the flat
        normal because their vertex is non-manifold
    """
    n = len(vertices)
    count = len(faces)
    if count == 0:
        return 0

    normals = corner_normals(vertices.positions, faces)

    # Keep normals perpendicular to tiled and clamped boundaries
    pinned = (vertices.tile | vertices.clamp)[faces.vertices]
    face_axes = faces.side // 2
    across = np.ones((count, 4, 3), dtype=bool)
    across[np.arange(count), :, face_axes] = False
    normals[pinned & across] = 0.0
    normals = _normalize(normals)

    flat = _normalize(normals.sum(axis=1))
    smooth_face = smooth_face_mask(model, faces)

    ids = faces.vertices.ravel()
    corner = normals.reshape(-1, 3)
    smooth = np.zeros((n, 3))
    both = np.zeros((n, 3))
    sides = np.zeros((n, 6, 3))
    np.add.at(smooth, ids, corner)
    np.add.at(sides, (ids, np.repeat(faces.side, 4)), corner)
    smooth_corner = np.repeat(smooth_face, 4)
    np.add.at(both, ids[smooth_corner], corner[smooth_corner])

    smooth = _normalize(smooth)
    both = _normalize(both)
    sides = _normalize(sides)

    flat_corners = np.repeat(flat[:, np.newaxis, :], 4, axis=1)
    faces.flat_normals[:] = flat_corners
    faces.smooth_normals[:] = smooth[faces.vertices]
    faces.both_normals[:] = np.where(smooth_face[:, np.newaxis, np.newaxis], both[faces.vertices], flat_corners)
    faces.side_normals[:] = sides[faces.vertices, faces.side[:, np.newaxis]]

    # Non-manifold corners fall back to the flat normal in smooth modes
    broken = non_manifold_vertices(n, faces)[faces.vertices]
    smooth_lit = np.array(
        [material.lighting in SMOOTH_MODES for material in model.materials], dtype=bool
    )[faces.material]
    fix = broken & smooth_lit[:, np.newaxis]
    fixes = int(fix.sum())
    if fixes:
        faces.smooth_normals[fix] = flat_corners[fix]
        faces.both_normals[fix] = flat_corners[fix]
        logger.warning("Corrected normals on %d non-manifold face corners", fixes)

    # Corners without any usable accumulated normal keep the flat one
    for array in (faces.smooth_normals, faces.both_normals, faces.side_normals):
        empty = np.linalg.norm(array, axis=-1) < 1e-12
        array[empty] = flat_corners[empty]

    return fixes


def select_normals(model: Model, faces: FaceStore):
    """Copy the normal variant chosen by each face's material into faces.normals."""
    if len(faces) == 0:
        return
    modes = np.array([material.lighting.value for material in model.materials])[faces.material]
    choices = {
        LightingMode.FLAT.value: faces.flat_normals,
        LightingMode.SMOOTH.value: faces.smooth_normals,
        LightingMode.BOTH.value: faces.both_normals,
        LightingMode.SIDES.value: faces.side_normals,
    }
    for mode, source in choices.items():
        mask = modes == mode
        faces.normals[mask] = source[mask]
