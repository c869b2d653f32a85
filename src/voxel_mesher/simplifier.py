"""
Face Simplification and Alignment

The simplifier merges runs of coplanar faces into larger quads. It sweeps
three times: along Y, then X, then Z. In each sweep a face is compared with
the face owning the voxel cell just before it (same group and side); if
everything that ends up in the vertex buffer would be identical, the
leading face is stretched over the trailing face and the trailing face is
removed.

Merge conditions:
1. Same color and material, simplification enabled on model and material
2. Normals equal within tolerance (unless the material ignores normals)
3. Identical vertex colors and AO on corresponding corners
4. The shared edge is the same pair of vertices
5. On each rail the three corners are colinear, the middle one at the
   ratio given by the two faces' spans

The face aligner then picks the quad diagonal for triangulation.
"""

import logging
from typing import Dict, List, Tuple
import numpy as np

from .faces import FaceStore
from .model import Model, UVMode
from .vertices import VertexStore

logger = logging.getLogger(__name__)

SWEEP_AXES = (1, 0, 2)
NORMAL_TOLERANCE = 1e-4
POSITION_TOLERANCE = 1e-5

Cell = Tuple[int, int, int, int, int]


class Simplifier:
    """
    Merges coplanar faces along three sweep axes.

    Attributes:
        merged: Number of faces removed so far
    """

    def __init__(self, model: Model, vertices: VertexStore, faces: FaceStore):
        self.model = model
        self.vertices = vertices
        self.faces = faces
        self.merged = 0
        materials = model.materials
        self._mergeable = np.array(
            [model.simplify and m.simplify and m.uv != UVMode.CUBE for m in materials], dtype=bool
        )
        self._ignores_normals = np.array([m.ignores_normals for m in materials], dtype=bool)

    def _cell(self, face: int, voxel) -> Cell:
        return (int(self.faces.group[face]), int(self.faces.side[face]),
                int(voxel[0]), int(voxel[1]), int(voxel[2]))

    def _rails(self, face: int, sweep: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Corner indices of a face at its low and high end along the sweep axis.

        Both pairs are ordered by the coordinate on the remaining tangent axis.
        """
        grid = self.vertices.grid[self.faces.vertices[face]]
        normal_axis = int(self.faces.side[face]) // 2
        across = 3 - sweep - normal_axis
        low_value = grid[:, sweep].min()
        low = np.flatnonzero(grid[:, sweep] == low_value)
        high = np.flatnonzero(grid[:, sweep] != low_value)
        low = low[np.argsort(grid[low, across])]
        high = high[np.argsort(grid[high, across])]
        return low, high

    def _can_merge(self, prev: int, face: int, sweep: int) -> bool:
        faces = self.faces
        material = faces.material[face]
        if faces.material[prev] != material or not self._mergeable[material]:
            return False
        if faces.colors[prev] != faces.colors[face]:
            return False
        if faces.hidden[prev] != faces.hidden[face]:
            return False

        prev_low, prev_high = self._rails(prev, sweep)
        low, high = self._rails(face, sweep)
        if len(prev_low) != 2 or len(prev_high) != 2 or len(low) != 2 or len(high) != 2:
            return False

        # The shared edge must be the same two vertices
        if not np.array_equal(faces.vertices[prev, prev_high], faces.vertices[face, low]):
            return False

        # Corresponding corners: low to low, high to high
        mine = np.concatenate([low, high])
        theirs = np.concatenate([prev_low, prev_high])
        if not np.array_equal(faces.vertex_colors[face, mine], faces.vertex_colors[prev, theirs]):
            return False
        if not np.array_equal(faces.ao[face, mine], faces.ao[prev, theirs]):
            return False
        if not self._ignores_normals[material]:
            if not np.allclose(faces.normals[face, mine], faces.normals[prev, theirs], atol=NORMAL_TOLERANCE):
                return False

        grid = self.vertices.grid
        positions = self.vertices.positions
        prev_span = grid[faces.vertices[prev, prev_high[0]], sweep] - grid[faces.vertices[prev, prev_low[0]], sweep]
        span = grid[faces.vertices[face, high[0]], sweep] - grid[faces.vertices[face, low[0]], sweep]
        ratio = prev_span / float(prev_span + span)
        for rail in range(2):
            start = positions[faces.vertices[prev, prev_low[rail]]]
            middle = positions[faces.vertices[face, low[rail]]]
            end = positions[faces.vertices[face, high[rail]]]
            if not np.allclose(start + (end - start) * ratio, middle, atol=POSITION_TOLERANCE):
                return False
        return True

    def _merge(self, prev: int, face: int, sweep: int):
        """Stretch prev over face: prev's high corners take face's high corners."""
        _, prev_high = self._rails(prev, sweep)
        _, high = self._rails(face, sweep)
        for array in self.faces.corner_arrays.values():
            array[prev, prev_high] = array[face, high]
        self.faces.alive[face] = False
        self.merged += 1

    def sweep(self, axis: int) -> int:
        """
        Run one sweep pass.

        Returns:
            Number of faces merged in this pass
        """
        faces = self.faces
        candidates = [f for f in faces.live if int(faces.side[f]) // 2 != axis]
        if not candidates:
            return 0

        # Cells covered by every live face, and the face owning each cell
        owner: Dict[Cell, int] = {}
        covered: Dict[int, List[Cell]] = {}
        for f in faces.live:
            cell = self._cell(f, faces.voxel[f])
            owner[cell] = int(f)
            covered[int(f)] = [cell]

        step = np.zeros(3, dtype=np.int64)
        step[axis] = 1
        candidates.sort(key=lambda f: faces.voxel[f, axis])
        before = self.merged

        for f in candidates:
            f = int(f)
            prev = owner.get(self._cell(f, faces.voxel[f] - step))
            if prev is None or prev == f or not faces.alive[prev]:
                continue
            if not self._can_merge(prev, f, axis):
                continue
            self._merge(prev, f, axis)
            for cell in covered.pop(f):
                owner[cell] = prev
                covered[prev].append(cell)

        return self.merged - before

    def simplify(self) -> int:
        """
        Run all three sweeps.

        Returns:
            Total number of faces merged
        """
        if not self.model.simplify or len(self.faces) == 0:
            return 0
        for axis in SWEEP_AXES:
            merged = self.sweep(axis)
            logger.debug("Sweep along axis %d merged %d faces", axis, merged)
        return self.merged


def align_faces(faces: FaceStore, positions: np.ndarray, center: np.ndarray) -> int:
    """
    Choose the triangulation diagonal of every live face.

    Faces are split along corners 0-2. When the 1-3 diagonal is shorter the
    corners are rotated by one. On a tie the diagonal whose line passes
    closer to the model center wins, which keeps symmetric models symmetric.

    Returns:
        Number of faces rotated
    """
    live = faces.live
    if len(live) == 0:
        return 0
    corners = positions[faces.vertices[live]]
    d02 = np.linalg.norm(corners[:, 0] - corners[:, 2], axis=1)
    d13 = np.linalg.norm(corners[:, 1] - corners[:, 3], axis=1)

    def line_distance(a, b):
        direction = b - a
        length = np.linalg.norm(direction, axis=1, keepdims=True)
        direction = np.divide(direction, length, out=np.zeros_like(direction), where=length > 0)
        offset = center - a
        along = (offset * direction).sum(axis=1, keepdims=True)
        return np.linalg.norm(offset - along * direction, axis=1)

    tolerance = 1e-9
    rotate = d13 < d02 - tolerance
    tie = np.abs(d13 - d02) <= tolerance
    if tie.any():
        near02 = line_distance(corners[:, 0], corners[:, 2])
        near13 = line_distance(corners[:, 1], corners[:, 3])
        rotate |= tie & (near13 < near02 - tolerance)

    chosen = live[rotate]
    for array in faces.corner_arrays.values():
        array[chosen] = np.roll(array[chosen], -1, axis=1)
    return int(rotate.sum())
