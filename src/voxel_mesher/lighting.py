"""
Ambient Occlusion and Light Evaluation

Handles:
- Ray-cast ambient occlusion: Fibonacci-sphere samples around each corner
  normal, cast against the visibility octree
- Quick AO: occlusion from the occupancy of the voxels around each corner
- Ambient, directional, positional and at-color lights with optional
  shadow rays

Results are written per face corner: faces.ao holds the occlusion factor
(0 = open, 1 = fully occluded) and faces.light the RGB irradiance.
"""

import logging
import math
from typing import Callable, Dict, List, Optional
import numpy as np
from numba import njit

from .faces import CORNER_OFFSETS, SIDE_OFFSETS, FaceStore
from .model import AmbientOcclusion, Light, Material, Model, PlanarRule, ShadowQuality
from .octree import Octree, nearest_in_tree
from .vertices import VertexStore

logger = logging.getLogger(__name__)

# Ray origins are nudged off the surface by these fractions
TOWARD_OPPOSITE = 0.01
ALONG_NORMAL = 0.01
KEY_DECIMALS = 5


def fibonacci_sphere(samples: int) -> np.ndarray:
    """
    Evenly spread unit directions over the sphere.

    Args:
        samples: Number of directions

    Returns:
        (samples, 3) unit vectors
    """
    i = np.arange(samples, dtype=np.float64) + 0.5
    polar = np.arccos(1.0 - 2.0 * i / samples)
    azimuth = math.pi * (1.0 + math.sqrt(5.0)) * i
    return np.stack([
        np.cos(azimuth) * np.sin(polar),
        np.sin(azimuth) * np.sin(polar),
        np.cos(polar),
    ], axis=1)


@njit(cache=True)
def _occlusion(origins, normals, directions, cos_limit, max_distance, intensity,
               node_min, node_max, child_start, child_count,
               tri_start, tri_count, tri_order, triangles):
    """AO factor per origin from the hemisphere samples within the cone."""
    count = origins.shape[0]
    result = np.zeros(count, dtype=np.float64)
    stack = np.empty(node_min.shape[0] + 1, dtype=np.int64)

    for k in range(count):
        total = 0.0
        accepted = 0
        for s in range(directions.shape[0]):
            dot = (normals[k, 0] * directions[s, 0] + normals[k, 1] * directions[s, 1]
                   + normals[k, 2] * directions[s, 2])
            if dot < cos_limit:
                continue
            t = nearest_in_tree(
                origins[k], directions[s], max_distance, node_min, node_max,
                child_start, child_count, tri_start, tri_count,
                tri_order, triangles, stack, False
            )
            if t >= 0.0:
                total += t / max_distance
            else:
                total += 1.0
            accepted += 1
        if accepted > 0:
            result[k] = 1.0 - (total / accepted) ** intensity
    return result


def ao_settings(model: Model, material: Material) -> Optional[AmbientOcclusion]:
    """Ray-cast AO settings of a material (quick AO replaces the model default)."""
    if material.quick_ao is not None:
        return None
    return material.ao or model.ao


def group_scales(model: Model) -> np.ndarray:
    """Uniform scale of each group's matrix, indexed by group index."""
    scales = np.ones(len(model.groups))
    for group in model.groups.values():
        det = abs(np.linalg.det(group.matrix[:3, :3]))
        if det > 0:
            scales[group.index] = det ** (1.0 / 3.0)
    return scales


def _ray_origins(positions: np.ndarray, faces: FaceStore, ids: np.ndarray, scales: np.ndarray) -> np.ndarray:
    """Corner positions nudged toward the opposite corner and out along the normal."""
    corners = positions[faces.vertices[ids]]
    opposite = np.roll(corners, 2, axis=1)
    bias = (ALONG_NORMAL * scales[faces.group[ids]])[:, np.newaxis, np.newaxis]
    return corners + (opposite - corners) * TOWARD_OPPOSITE + faces.normals[ids] * bias


def _dedupe(points: np.ndarray, normals: np.ndarray):
    """Unique (position, normal) rows: returns (first index per key, inverse)."""
    keys = np.round(np.hstack([points, normals]), KEY_DECIMALS)
    _, first, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
    return first, inverse.reshape(-1)


def compute_ambient_occlusion(
    model: Model,
    vertices: VertexStore,
    faces: FaceStore,
    octree_for: Callable[[Optional[PlanarRule]], Octree]
) -> int:
    """
    Ray-cast ambient occlusion for every visible face that asks for it.

    Corners sharing a position and normal are computed once.

    Args:
        model: The model
        vertices: Vertex store with final positions
        faces: Face store with final normals
        octree_for: Returns the octree to use for a set of AO sides

    Returns:
        Number of corners served from the cache
    """
    per_material = [ao_settings(model, m) for m in model.materials]
    visible = faces.visible
    scales = group_scales(model)
    cache_hits = 0

    for settings in dict.fromkeys(s for s in per_material if s is not None):
        uses = np.array([s == settings for s in per_material], dtype=bool)
        ids = visible[uses[faces.material[visible]]]
        if len(ids) == 0:
            continue

        octree = octree_for(settings.sides if not settings.sides.is_empty else None)
        if octree.triangle_count == 0:
            faces.ao[ids] = 0.0
            continue

        origins = _ray_origins(vertices.positions, faces, ids, scales).reshape(-1, 3)
        normals = faces.normals[ids].reshape(-1, 3)
        points = vertices.positions[faces.vertices[ids]].reshape(-1, 3)
        first, inverse = _dedupe(points, normals)
        cache_hits += len(points) - len(first)

        values = _occlusion(
            np.ascontiguousarray(origins[first]), np.ascontiguousarray(normals[first]),
            fibonacci_sphere(settings.samples), math.cos(math.radians(settings.angle)),
            float(settings.max_distance), float(settings.intensity), *octree.arrays
        )
        faces.ao[ids] = values[inverse].reshape(-1, 4)

    if cache_hits:
        logger.debug("AO cache served %d corners", cache_hits)
    return cache_hits


def _quick_ao_table() -> np.ndarray:
    """
    Neighbor offsets for quick AO.

    Returns:
        (6, 4, 3, 3) offsets from the voxel to [side 1, side 2, corner] for
        every side and face corner
    """
    table = np.zeros((6, 4, 3, 3), dtype=np.int64)
    for side in range(6):
        axis = side // 2
        normal = SIDE_OFFSETS[side]
        for c in range(4):
            corner = CORNER_OFFSETS[side, c]
            steps = []
            for t in range(3):
                if t == axis:
                    continue
                step = np.zeros(3, dtype=np.int64)
                step[t] = 1 if corner[t] else -1
                steps.append(step)
            table[side, c, 0] = normal + steps[0]
            table[side, c, 1] = normal + steps[1]
            table[side, c, 2] = normal + steps[0] + steps[1]
    return table


QUICK_AO_NEIGHBORS = _quick_ao_table()


def compute_quick_ao(model: Model, faces: FaceStore) -> int:
    """
    Neighbor based AO for faces of materials with quick AO.

    Any neighbor voxel that is not fully transparent counts as occupied.
    A corner with both side neighbors occupied is fully occluded (level 3),
    otherwise the level is the number of occupied neighbors. The AO factor is
    level / 3 * intensity.

    Returns:
        Number of faces processed
    """
    group_ids = {group.index: group.id for group in model.groups.values()}
    processed = 0
    for face in faces.visible:
        material = model.materials[faces.material[face]]
        settings = material.quick_ao
        if settings is None:
            continue
        group = group_ids[int(faces.group[face])]
        x, y, z = (int(v) for v in faces.voxel[face])
        side = int(faces.side[face])

        for c in range(4):
            occupied = []
            for dx, dy, dz in QUICK_AO_NEIGHBORS[side, c]:
                neighbor = model.voxels.get_voxel(x + int(dx), y + int(dy), z + int(dz), group)
                occupied.append(
                    neighbor is not None and model.material_of(neighbor.color).opacity > 0.0
                )
            side1, side2, corner = occupied
            level = 3 if side1 and side2 else int(side1) + int(side2) + int(corner)
            faces.ao[face, c] = level / 3.0 * settings.intensity
        processed += 1
    return processed


def light_position(model: Model, light: Light) -> Optional[np.ndarray]:
    """
    Model-space position of a positional or at-color light.

    At-color lights sit at the centroid of the transformed centers of all
    voxels of that color. Returns None for other lights or unused colors.
    """
    if light.position is not None:
        return np.asarray(light.position, dtype=np.float64)
    if light.at_color is None:
        return None

    centers = []
    for voxel in model.voxels.iter_voxels():
        if voxel.color.id != light.at_color:
            continue
        matrix = model.groups[voxel.group].matrix
        center = np.array([voxel.x + 0.5, voxel.y + 0.5, voxel.z + 0.5])
        centers.append(matrix[:3, :3] @ center + matrix[:3, 3])
    if not centers:
        return None
    return np.mean(centers, axis=0)


def _irradiance(
    model: Model,
    points: np.ndarray,
    normals: np.ndarray,
    origins: np.ndarray,
    receives: np.ndarray,
    octree: Octree,
    positions: List[Optional[np.ndarray]]
) -> np.ndarray:
    """RGB irradiance at points from every light."""
    total = np.zeros((len(points), 3))
    shadows = octree.triangle_count > 0
    far = float(np.linalg.norm(octree.node_max[0] - octree.node_min[0])) * 2.0 + 1.0 if shadows else 0.0

    for light, position in zip(model.lights, positions):
        color = np.asarray(light.color, dtype=np.float64) * light.intensity
        if light.is_ambient:
            total += color
            continue

        if light.direction is not None:
            direction = np.asarray(light.direction, dtype=np.float64)
            directions = np.broadcast_to(direction / np.linalg.norm(direction), points.shape)
            reach = np.full(len(points), far)
            falloff = np.ones(len(points))
        elif position is not None:
            offset = position - points
            distance = np.linalg.norm(offset, axis=1)
            directions = np.divide(offset, distance[:, np.newaxis], out=np.zeros_like(offset),
                                   where=distance[:, np.newaxis] > 0)
            reach = distance
            if light.distance > 0:
                falloff = np.clip(1.0 - distance / light.distance, 0.0, None)
            else:
                falloff = np.ones(len(points))
        else:
            continue

        strength = np.clip((normals * directions).sum(axis=1), 0.0, None) * falloff
        if light.cast_shadow and shadows:
            test = receives & (strength > 0)
            if test.any():
                hit = octree.distances(origins[test], directions[test], reach[test], any_hit=True) >= 0.0
                blocked = np.flatnonzero(test)[hit]
                strength[blocked] = 0.0
        total += strength[:, np.newaxis] * color
    return total


def compute_lighting(model: Model, vertices: VertexStore, faces: FaceStore, octree: Octree) -> int:
    """
    Evaluate the lights at every visible face corner.

    Faces of materials with lights disabled, and every face of a model with
    no lights, get full irradiance. Low shadow quality evaluates each unique
    (position, normal) once.

    Returns:
        Number of corners evaluated
    """
    faces.light[:] = 1.0
    if not model.lights:
        return 0

    lit = np.array([m.lights for m in model.materials], dtype=bool)
    receive = np.array([m.receive_shadow for m in model.materials], dtype=bool)
    ids = faces.visible
    ids = ids[lit[faces.material[ids]]]
    if len(ids) == 0:
        return 0

    positions = [light_position(model, light) for light in model.lights]
    points = vertices.positions[faces.vertices[ids]].reshape(-1, 3)
    normals = faces.normals[ids].reshape(-1, 3)
    receives = np.repeat(receive[faces.material[ids]], 4)
    scales = group_scales(model)

    if model.shadow_quality == ShadowQuality.LOW:
        bias = np.repeat(ALONG_NORMAL * scales[faces.group[ids]], 4)[:, np.newaxis]
        first, inverse = _dedupe(points, normals)
        origins = points[first] + normals[first] * bias[first]
        values = _irradiance(model, points[first], normals[first], origins, receives[first], octree, positions)
        light = values[inverse]
        evaluated = len(first)
    else:
        origins = _ray_origins(vertices.positions, faces, ids, scales).reshape(-1, 3)
        light = _irradiance(model, points, normals, origins, receives, octree, positions)
        evaluated = len(points)

    faces.light[ids] = light.reshape(-1, 4, 3)
    logger.debug("Evaluated %d lights at %d corners", len(model.lights), evaluated)
    return evaluated


class OctreeCache:
    """Builds the visibility octree once per set of AO sides."""

    def __init__(self, build: Callable[[Optional[PlanarRule]], Octree]):
        self._build = build
        self._trees: Dict[Optional[PlanarRule], Octree] = {}

    def __call__(self, sides: Optional[PlanarRule] = None) -> Octree:
        tree = self._trees.get(sides)
        if tree is None:
            tree = self._trees[sides] = self._build(sides)
        return tree

    @property
    def trees(self) -> Dict[Optional[PlanarRule], Octree]:
        """Octrees built so far."""
        return dict(self._trees)
