"""
Directional Transforms and Group Matrices

This module implements:
- Value interpolation along a driving axis (linear or Catmull-Rom spline)
- Per-axis scale / rotate / translate effects
- Bends that wrap a span of a group around an arc
- Hierarchical group matrices with origin and resize handling
- The final vertex and normal transform

Effects read the driving coordinate from the vertex position before any
effect ran, so stacking effects never feeds one effect's output into the
next effect's parameter.
"""

import logging
import math
from typing import Sequence
import numpy as np
from scipy.interpolate import CubicHermiteSpline

from .faces import FaceStore
from .model import AxisEffect, Bend, BendDirection, EffectKind, Group, Interpolation, Model, Resize
from .vertices import VertexStore
from .voxels import BoundingBox

logger = logging.getLogger(__name__)


def interpolate(values: Sequence[float], t: np.ndarray, method: Interpolation) -> np.ndarray:
    """
    Interpolate values spread evenly over [0, 1].

    Args:
        values: Control values, the first at t=0 and the last at t=1
        t: Parameters in [0, 1]
        method: LINEAR or SPLINE (cubic Hermite with Catmull-Rom tangents)

    Returns:
        Interpolated values, same shape as t
    """
    t = np.clip(np.asarray(t, dtype=np.float64), 0.0, 1.0)
    values = np.asarray(values, dtype=np.float64)
    if len(values) == 1:
        return np.full_like(t, values[0])

    knots = np.linspace(0.0, 1.0, len(values))
    if method == Interpolation.LINEAR or len(values) == 2:
        return np.interp(t, knots, values)

    # Central differences inside, one-sided at the ends
    tangents = np.empty_like(values)
    tangents[1:-1] = (values[2:] - values[:-2]) / (knots[2:] - knots[:-2])
    tangents[0] = (values[1] - values[0]) / (knots[1] - knots[0])
    tangents[-1] = (values[-1] - values[-2]) / (knots[-1] - knots[-2])
    return CubicHermiteSpline(knots, values, tangents)(t)


def normalized_along(points: np.ndarray, bounds: BoundingBox, axis: int) -> np.ndarray:
    """Position of points along an axis as a fraction of the bounds (0 for flat bounds)."""
    extent = bounds.max[axis] - bounds.min[axis]
    if extent <= 0:
        return np.zeros(len(points))
    return (points[:, axis] - bounds.min[axis]) / extent


def rotate_about(points: np.ndarray, axis: int, angles: np.ndarray) -> np.ndarray:
    """Rotate points (relative to the origin) about a coordinate axis, angles in radians."""
    i, j = (axis + 1) % 3, (axis + 2) % 3
    cos, sin = np.cos(angles), np.sin(angles)
    rotated = points.copy()
    rotated[:, i] = cos * points[:, i] - sin * points[:, j]
    rotated[:, j] = sin * points[:, i] + cos * points[:, j]
    return rotated


def effect_offsets(effect: AxisEffect, original: np.ndarray, bounds: BoundingBox) -> np.ndarray:
    """Displacement of every point caused by one effect."""
    t = normalized_along(original, bounds, effect.along)
    value = interpolate(effect.values, t, effect.interpolation)
    center = bounds.center
    offsets = np.zeros_like(original)

    if effect.kind == EffectKind.SCALE:
        offsets[:, effect.axis] = (original[:, effect.axis] - center[effect.axis]) * (value - 1.0)
    elif effect.kind == EffectKind.ROTATE:
        relative = original - center
        offsets = rotate_about(relative, effect.axis, np.radians(value)) - relative
    elif effect.kind == EffectKind.TRANSLATE:
        offsets[:, effect.axis] = value
    return offsets


def bend_points(points: np.ndarray, original: np.ndarray, bounds: BoundingBox, bend: Bend) -> np.ndarray:
    """
    Wrap a span of points around an arc.

    A positive angle bends everything past the span start, a negative angle
    everything before the span end. The arc center lies ``radius`` away from
    the middle of the bounds on the ``toward`` axis, on the right (+) or left
    (-) side. Points beyond the span continue along the arc tangent.

    Args:
        points: Current positions
        original: Positions before any effect, used to find the span
        bounds: Vertex bounds of the group
        bend: Bend settings

    Returns:
        Bent positions
    """
    a, b = bend.axis, bend.toward
    lo, hi = bounds.min[a], bounds.max[a]
    span_start = lo + bend.start * (hi - lo)
    span_end = lo + bend.end * (hi - lo)
    length = span_end - span_start
    if length <= 0 or bend.angle == 0:
        return points

    theta = math.radians(abs(bend.angle))
    sign = 1.0 if bend.direction == BendDirection.RIGHT else -1.0
    middle = (bounds.min[b] + bounds.max[b]) / 2.0
    pivot = middle + sign * bend.radius

    coord = original[:, a]
    if bend.angle > 0:
        affected = coord > span_start
        distance = np.clip(coord - span_start, 0.0, length)
        extra = np.maximum(coord - span_end, 0.0)
        anchor, forward = span_start, 1.0
    else:
        affected = coord < span_end
        distance = np.clip(span_end - coord, 0.0, length)
        extra = np.maximum(span_start - coord, 0.0)
        anchor, forward = span_end, -1.0

    phi = distance / length * theta
    radial = bend.radius - sign * (points[:, b] - middle)

    bent = points.copy()
    bent[:, a] = anchor + forward * (radial * np.sin(phi) + extra * np.cos(phi))
    bent[:, b] = pivot - sign * radial * np.cos(phi) + sign * extra * np.sin(phi)
    return np.where(affected[:, np.newaxis], bent, points)


def update_bounds(model: Model, vertices: VertexStore):
    """Recompute voxel and vertex bounds for every group."""
    for group in model.groups.values():
        group.bounds = model.voxels.bounds(group.id)
        mask = vertices.group == group.index
        group.vertex_bounds = BoundingBox.of_points(vertices.positions[mask]) if mask.any() else BoundingBox()


def apply_effects(model: Model, vertices: VertexStore) -> int:
    """
    Apply the directional effects and bends of every group.

    Scale, rotate and translate offsets are summed, then bends run in order.

    Returns:
        Number of groups changed
    """
    changed = 0
    for group in model.groups.values():
        if not group.effects and not group.bends:
            continue
        mask = vertices.group == group.index
        bounds = group.vertex_bounds
        if not mask.any() or bounds is None or bounds.is_empty:
            continue

        original = vertices.positions[mask].copy()
        points = original.copy()
        for effect in group.effects:
            points += effect_offsets(effect, original, bounds)
        for bend in group.bends:
            points = bend_points(points, original, bounds, bend)

        vertices.positions[mask] = points
        changed += 1

    if changed:
        logger.debug("Applied directional effects to %d groups", changed)
    return changed


def translation_matrix(offset) -> np.ndarray:
    matrix = np.eye(4)
    matrix[:3, 3] = offset
    return matrix


def scale_matrix(factors) -> np.ndarray:
    return np.diag([factors[0], factors[1], factors[2], 1.0])


def rotation_matrix(degrees) -> np.ndarray:
    """Rotation about X, then Y, then Z (angles in degrees)."""
    rx, ry, rz = (math.radians(d) for d in degrees)
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    cz, sz = math.cos(rz), math.sin(rz)

    x_rot = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    y_rot = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    z_rot = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])

    matrix = np.eye(4)
    matrix[:3, :3] = z_rot @ y_rot @ x_rot
    return matrix


def group_pivot(group: Group) -> np.ndarray:
    """Pivot of a group: its vertex bounds center, moved to the bounds selected by origin."""
    bounds = group.vertex_bounds
    if bounds is None or bounds.is_empty:
        return np.zeros(3)
    pivot = bounds.center
    for axis in range(3):
        if group.origin.min[axis]:
            pivot[axis] = bounds.min[axis]
        elif group.origin.max[axis]:
            pivot[axis] = bounds.max[axis]
    return pivot


def resize_factors(group: Group) -> np.ndarray:
    """Scale that maps the deformed vertex bounds back onto the voxel bounds."""
    if group.resize == Resize.NONE or group.bounds is None or group.bounds.is_empty:
        return np.ones(3)
    if group.vertex_bounds is None or group.vertex_bounds.is_empty:
        return np.ones(3)

    voxel_extent = group.bounds.max - group.bounds.min + 1.0
    vertex_extent = group.vertex_bounds.size
    usable = vertex_extent > 1e-9
    ratios = np.ones(3)
    ratios[usable] = voxel_extent[usable] / vertex_extent[usable]

    if group.resize == Resize.FIT:
        return np.full(3, ratios[usable].min() if usable.any() else 1.0)
    return ratios


def placement_matrix(group: Group) -> np.ndarray:
    """Position, rotation and scale of a group relative to its parent."""
    offset = np.add(group.position, group.translation)
    return translation_matrix(offset) @ rotation_matrix(group.rotation) @ scale_matrix(group.scale)


def local_matrix(group: Group) -> np.ndarray:
    """Placement of a group's own vertices, including pivot and resize."""
    return (
        placement_matrix(group)
        @ scale_matrix(resize_factors(group))
        @ translation_matrix(-group_pivot(group))
    )


def compute_group_matrices(model: Model):
    """
    Compute the world matrix and normal matrix of every group.

    The pivot and resize of a group apply only to its own vertices; its
    ancestors contribute their placement, root first.

    Raises:
        ModelStructureError: If the group parents form a cycle
    """
    for group in model.groups.values():
        chain = model.group_chain(group)
        matrix = np.eye(4)
        for ancestor in chain[:-1]:
            matrix = matrix @ placement_matrix(ancestor)
        group.matrix = matrix @ local_matrix(group)

        linear = group.matrix[:3, :3]
        if abs(np.linalg.det(linear)) > 1e-12:
            group.normal_matrix = np.linalg.inv(linear).T
        else:
            group.normal_matrix = np.eye(3)


def _normalize(vectors: np.ndarray) -> np.ndarray:
    lengths = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return np.divide(vectors, lengths, out=np.zeros_like(vectors), where=lengths > 0)


def transform_vertices(model: Model, vertices: VertexStore, faces: FaceStore):
    """Move vertices into model space and rotate the face normals with them."""
    normal_arrays = (faces.flat_normals, faces.smooth_normals, faces.both_normals, faces.side_normals)
    for group in model.groups.values():
        mask = vertices.group == group.index
        if mask.any():
            points = vertices.positions[mask]
            vertices.positions[mask] = points @ group.matrix[:3, :3].T + group.matrix[:3, 3]

        face_mask = faces.group == group.index
        if face_mask.any():
            for normals in normal_arrays:
                normals[face_mask] = _normalize(normals[face_mask] @ group.normal_matrix.T)
