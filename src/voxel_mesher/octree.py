"""
Octree Spatial Index with Numba JIT Ray Queries

Builds an octree over the shadow-casting triangles of a mesh and answers
segment queries against it: does a segment hit anything, and how far away
is the nearest hit.

Build rules:
1. A partition with at most LEAF_SIZE triangles becomes a leaf
2. Otherwise triangles are split into up to 8 children by comparing their
   centroids with the mean centroid on each axis
3. A split that leaves every triangle in one child makes a forced leaf, so
   duplicated or zero-extent triangles cannot recurse forever

The tree is flattened into arrays so traversal runs inside numba with an
explicit stack. Node boxes are the tight bounds of their triangles.

Triangles are single sided: a ray only hits a triangle whose front face
(counter-clockwise winding) points back at the ray origin.
"""

import logging
from typing import List, Optional, Tuple
import numpy as np
from numba import njit

from .faces import FaceStore
from .model import Model, PlanarRule

logger = logging.getLogger(__name__)

LEAF_SIZE = 9
EPSILON = 1e-9
SHADOW_OPACITY = 0.75
SIDE_BIAS = 0.05


@njit(cache=True)
def _hits_box(origin, direction, max_distance, box_min, box_max):
    """Slab test of the segment origin + t * direction, 0 <= t <= max_distance."""
    t_min = 0.0
    t_max = max_distance
    for axis in range(3):
        d = direction[axis]
        if abs(d) < 1e-12:
            # Parallel to the slab: inside or never
            if origin[axis] < box_min[axis] or origin[axis] > box_max[axis]:
                return False
            continue
        t1 = (box_min[axis] - origin[axis]) / d
        t2 = (box_max[axis] - origin[axis]) / d
        if t1 > t2:
            t1, t2 = t2, t1
        if t1 > t_min:
            t_min = t1
        if t2 < t_max:
            t_max = t2
        if t_min > t_max:
            return False
    return True


@njit(cache=True)
def _intersect_triangle(origin, direction, v0, v1, v2):
    """
    Möller-Trumbore intersection, front faces only.

    Returns:
        Ray parameter t > EPSILON of the hit, or -1.0
    """
    e1_x = v1[0] - v0[0]
    e1_y = v1[1] - v0[1]
    e1_z = v1[2] - v0[2]
    e2_x = v2[0] - v0[0]
    e2_y = v2[1] - v0[1]
    e2_z = v2[2] - v0[2]

    p_x = direction[1] * e2_z - direction[2] * e2_y
    p_y = direction[2] * e2_x - direction[0] * e2_z
    p_z = direction[0] * e2_y - direction[1] * e2_x

    # Back faces, parallel rays and zero-area triangles all give det <= eps
    det = e1_x * p_x + e1_y * p_y + e1_z * p_z
    if det < EPSILON:
        return -1.0
    inv_det = 1.0 / det

    s_x = origin[0] - v0[0]
    s_y = origin[1] - v0[1]
    s_z = origin[2] - v0[2]
    u = (s_x * p_x + s_y * p_y + s_z * p_z) * inv_det
    if u < 0.0 or u > 1.0:
        return -1.0

    q_x = s_y * e1_z - s_z * e1_y
    q_y = s_z * e1_x - s_x * e1_z
    q_z = s_x * e1_y - s_y * e1_x
    v = (direction[0] * q_x + direction[1] * q_y + direction[2] * q_z) * inv_det
    if v < 0.0 or u + v > 1.0:
        return -1.0

    t = (e2_x * q_x + e2_y * q_y + e2_z * q_z) * inv_det
    if t > EPSILON:
        return t
    return -1.0


@njit(cache=True)
def _nearest_in_triangles(origin, direction, max_distance, triangles, any_hit):
    best = -1.0
    limit = max_distance
    for i in range(triangles.shape[0]):
        t = _intersect_triangle(origin, direction, triangles[i, 0], triangles[i, 1], triangles[i, 2])
        if t > 0.0 and t < limit:
            best = t
            limit = t
            if any_hit:
                return best
    return best


@njit(cache=True)
def nearest_in_tree(origin, direction, max_distance, node_min, node_max,
                    child_start, child_count, tri_start, tri_count,
                    tri_order, triangles, stack, any_hit):
    """Nearest hit distance below max_distance, or -1.0."""
    best = -1.0
    limit = max_distance
    top = 0
    stack[top] = 0
    top += 1

    while top > 0:
        top -= 1
        node = stack[top]
        if not _hits_box(origin, direction, limit, node_min[node], node_max[node]):
            continue

        if child_count[node] == 0:
            for k in range(tri_start[node], tri_start[node] + tri_count[node]):
                tri = tri_order[k]
                t = _intersect_triangle(origin, direction, triangles[tri, 0], triangles[tri, 1], triangles[tri, 2])
                if t > 0.0 and t < limit:
                    best = t
                    limit = t
                    if any_hit:
                        return best
        else:
            for c in range(child_count[node]):
                stack[top] = child_start[node] + c
                top += 1
    return best


@njit(cache=True)
def _nearest_batch(origins, directions, max_distances, node_min, node_max,
                   child_start, child_count, tri_start, tri_count,
                   tri_order, triangles, any_hit):
    n = origins.shape[0]
    result = np.empty(n, dtype=np.float64)
    # Every node is pushed at most once per query
    stack = np.empty(node_min.shape[0] + 1, dtype=np.int64)
    for i in range(n):
        result[i] = nearest_in_tree(
            origins[i], directions[i], max_distances[i], node_min, node_max,
            child_start, child_count, tri_start, tri_count,
            tri_order, triangles, stack, any_hit
        )
    return result


def _unit(direction) -> np.ndarray:
    direction = np.asarray(direction, dtype=np.float64)
    length = np.linalg.norm(direction)
    if length == 0:
        return direction
    return direction / length


def hits_box(origin, direction, max_distance: float, box_min, box_max) -> bool:
    """Check whether a segment overlaps an axis-aligned box."""
    return bool(_hits_box(
        np.asarray(origin, dtype=np.float64), _unit(direction), float(max_distance),
        np.asarray(box_min, dtype=np.float64), np.asarray(box_max, dtype=np.float64)
    ))


def distance_to_triangles(origin, direction, max_distance: float, triangles: np.ndarray) -> Optional[float]:
    """
    Nearest hit of a segment against a triangle list.

    Args:
        origin: Segment start
        direction: Segment direction (normalized here)
        max_distance: Segment length
        triangles: (T, 3, 3) triangle corners

    Returns:
        Distance to the nearest hit, or None
    """
    if len(triangles) == 0:
        return None
    t = _nearest_in_triangles(
        np.asarray(origin, dtype=np.float64), _unit(direction), float(max_distance),
        np.ascontiguousarray(triangles, dtype=np.float64), False
    )
    return float(t) if t >= 0.0 else None


class Octree:
    """
    Flattened octree over a triangle soup.

    Attributes:
        triangles: (T, 3, 3) triangle corners
        node_min, node_max: (M, 3) node boxes
        child_start, child_count: children of node i are the contiguous
            nodes child_start[i] .. child_start[i] + child_count[i] - 1
        tri_start, tri_count: leaf ranges into tri_order
        tri_order: triangle indices grouped by leaf
    """

    def __init__(self, triangles: np.ndarray, leaf_size: int = LEAF_SIZE):
        self.triangles = np.ascontiguousarray(np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3))
        self.leaf_size = leaf_size
        self._build()

    def _build(self):
        count = len(self.triangles)
        centroids = self.triangles.mean(axis=1)

        mins: List[np.ndarray] = [np.zeros(3)]
        maxs: List[np.ndarray] = [np.zeros(3)]
        child_start = [0]
        child_count = [0]
        tri_start = [0]
        tri_count = [0]
        order: List[int] = []

        work: List[Tuple[int, np.ndarray]] = [(0, np.arange(count))]
        while work:
            node, indices = work.pop()
            if len(indices) == 0:
                # Empty tree: a box no segment can reach
                mins[node] = np.full(3, np.inf)
                maxs[node] = np.full(3, -np.inf)
                continue

            corners = self.triangles[indices].reshape(-1, 3)
            mins[node] = corners.min(axis=0)
            maxs[node] = corners.max(axis=0)

            parts = []
            if len(indices) > self.leaf_size:
                points = centroids[indices]
                codes = ((points > points.mean(axis=0)) * np.array([1, 2, 4])).sum(axis=1)
                parts = [indices[codes == code] for code in range(8)]
                parts = [part for part in parts if len(part)]

            if len(parts) < 2:
                tri_start[node] = len(order)
                tri_count[node] = len(indices)
                order.extend(int(i) for i in indices)
                continue

            first = len(mins)
            for _ in parts:
                mins.append(np.zeros(3))
                maxs.append(np.zeros(3))
                child_start.append(0)
                child_count.append(0)
                tri_start.append(0)
                tri_count.append(0)
            child_start[node] = first
            child_count[node] = len(parts)
            for offset, part in enumerate(parts):
                work.append((first + offset, part))

        self.node_min = np.array(mins, dtype=np.float64)
        self.node_max = np.array(maxs, dtype=np.float64)
        self.child_start = np.array(child_start, dtype=np.int64)
        self.child_count = np.array(child_count, dtype=np.int64)
        self.tri_start = np.array(tri_start, dtype=np.int64)
        self.tri_count = np.array(tri_count, dtype=np.int64)
        self.tri_order = np.array(order, dtype=np.int64)

    @classmethod
    def merged(cls, first: "Octree", second: "Octree") -> "Octree":
        """
        Join two trees under a new root.

        Node layout: new root, first root, second root, then the remaining
        nodes of each tree in their original order, so every child range
        stays contiguous.
        """
        a, b = first.node_count, second.node_count
        remap_a = np.arange(a) + 2
        remap_a[0] = 1
        remap_b = np.arange(b) + a + 1
        remap_b[0] = 2
        total = 1 + a + b

        tree = cls.__new__(cls)
        tree.leaf_size = first.leaf_size
        tree.triangles = np.ascontiguousarray(np.concatenate([first.triangles, second.triangles]))

        tree.node_min = np.empty((total, 3))
        tree.node_max = np.empty((total, 3))
        tree.node_min[0] = np.minimum(first.node_min[0], second.node_min[0])
        tree.node_max[0] = np.maximum(first.node_max[0], second.node_max[0])
        tree.child_start = np.zeros(total, dtype=np.int64)
        tree.child_count = np.zeros(total, dtype=np.int64)
        tree.tri_start = np.zeros(total, dtype=np.int64)
        tree.tri_count = np.zeros(total, dtype=np.int64)
        tree.child_start[0] = 1
        tree.child_count[0] = 2

        triangle_offset = len(first.tri_order)
        for source, remap, tri_offset in ((first, remap_a, 0), (second, remap_b, triangle_offset)):
            tree.node_min[remap] = source.node_min
            tree.node_max[remap] = source.node_max
            tree.child_count[remap] = source.child_count
            tree.child_start[remap] = np.where(source.child_count > 0, remap[source.child_start], 0)
            tree.tri_start[remap] = source.tri_start + tri_offset
            tree.tri_count[remap] = source.tri_count

        tree.tri_order = np.concatenate([
            first.tri_order, second.tri_order + len(first.triangles)
        ]).astype(np.int64)
        return tree

    @property
    def arrays(self) -> tuple:
        """Tree arrays in the argument order of nearest_in_tree()."""
        return (
            self.node_min, self.node_max, self.child_start, self.child_count,
            self.tri_start, self.tri_count, self.tri_order, self.triangles,
        )

    @property
    def node_count(self) -> int:
        return len(self.node_min)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    def distances(self, origins: np.ndarray, directions: np.ndarray, max_distance,
                  any_hit: bool = False) -> np.ndarray:
        """
        Nearest hit distance for many segments.

        Args:
            origins: (R, 3) segment starts
            directions: (R, 3) unit directions
            max_distance: Segment length, scalar or one per segment
            any_hit: Stop at the first hit found (for shadow tests)

        Returns:
            (R,) distances, -1.0 where nothing was hit
        """
        origins = np.ascontiguousarray(origins, dtype=np.float64).reshape(-1, 3)
        directions = np.ascontiguousarray(directions, dtype=np.float64).reshape(-1, 3)
        if self.triangle_count == 0 or len(origins) == 0:
            return np.full(len(origins), -1.0)
        limits = np.ascontiguousarray(
            np.broadcast_to(np.asarray(max_distance, dtype=np.float64), (len(origins),))
        )
        return _nearest_batch(origins, directions, limits, *self.arrays, any_hit)

    def distance(self, origin, direction, max_distance: float) -> Optional[float]:
        t = self.distances(np.asarray(origin)[np.newaxis], _unit(direction)[np.newaxis], max_distance)[0]
        return float(t) if t >= 0.0 else None

    def hits(self, origin, direction, max_distance: float) -> bool:
        t = self.distances(np.asarray(origin)[np.newaxis], _unit(direction)[np.newaxis], max_distance, True)[0]
        return bool(t >= 0.0)


def hits_octree(octree: Octree, origin, direction, max_distance: float) -> bool:
    """Check whether the segment from origin along direction hits any triangle."""
    return octree.hits(origin, direction, max_distance)


def distance_to_octree(octree: Octree, origin, direction, max_distance: float) -> Optional[float]:
    """Distance to the nearest triangle along a segment, or None if nothing is hit."""
    return octree.distance(origin, direction, max_distance)


def shadow_triangles(model: Model, positions: np.ndarray, faces: FaceStore) -> np.ndarray:
    """
    Collect the triangles that cast shadows and occlude AO rays.

    Returns:
        (T, 3, 3) triangles, two per qualifying face
    """
    casts = np.array(
        [m.cast_shadow and m.opacity >= SHADOW_OPACITY for m in model.materials], dtype=bool
    )
    selected = faces.alive & ~faces.hidden & casts[faces.material]
    corners = positions[faces.vertices[selected]]
    first = corners[:, [0, 1, 2]]
    second = corners[:, [0, 2, 3]]
    return np.stack([first, second], axis=1).reshape(-1, 3, 3)


def _wall(axis: int, coordinate: float, facing: int, low: np.ndarray, high: np.ndarray) -> np.ndarray:
    """Two triangles of an axis-aligned rectangle facing +axis (facing=1) or -axis."""
    i, j = (axis + 1) % 3, (axis + 2) % 3
    quad = np.zeros((4, 3))
    quad[:, axis] = coordinate
    quad[:, i] = [low[i], high[i], high[i], low[i]]
    quad[:, j] = [low[j], low[j], high[j], high[j]]
    if facing < 0:
        quad = quad[::-1]
    return np.array([quad[[0, 1, 2]], quad[[0, 2, 3]]])


def sides_octree(box_min: np.ndarray, box_max: np.ndarray, sides: PlanarRule,
                 bias: float = SIDE_BIAS) -> Optional[Octree]:
    """
    Build occluding walls around a box.

    Every selected side gets an inward-facing wall on the bound and a second
    copy pushed outward by ``bias``, so surfaces lying exactly on the bound
    are still occluded without shadowing themselves.

    Returns:
        The walls octree, or None when no side is selected
    """
    if sides.is_empty:
        return None
    margin = float(np.max(box_max - box_min)) + 1.0
    low = box_min - margin
    high = box_max + margin

    walls = []
    for axis in range(3):
        if sides.at_min(axis):
            for shift in (0.0, bias):
                walls.append(_wall(axis, box_min[axis] - shift, 1, low, high))
        if sides.at_max(axis):
            for shift in (0.0, bias):
                walls.append(_wall(axis, box_max[axis] + shift, -1, low, high))
    return Octree(np.concatenate(walls))


def build_octree(model: Model, positions: np.ndarray, faces: FaceStore,
                 sides: Optional[PlanarRule] = None) -> Octree:
    """
    Build the visibility octree of a mesh, optionally with side walls.

    Returns:
        The octree (possibly empty)
    """
    octree = Octree(shadow_triangles(model, positions, faces))
    if sides is not None and not sides.is_empty and octree.triangle_count:
        walls = sides_octree(octree.node_min[0], octree.node_max[0], sides)
        octree = Octree.merged(octree, walls)
    logger.debug("Octree: %d nodes over %d triangles", octree.node_count, octree.triangle_count)
    return octree
