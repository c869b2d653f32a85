"""
Face Tables, Face Storage and the Face Builder

For every live voxel and each of its 6 sides the builder decides whether a
face exists and, if it does, fetches its 4 corner vertices from the vertex
store. Corners are listed counter-clockwise seen from outside, so triangles
(0, 1, 2) and (0, 2, 3) face outward.

Face visibility rules:
1. A voxel whose material has zero opacity makes no faces
2. A neighbor of the same material hides the face
3. An opaque neighbor hides the face of an opaque voxel
4. A face selected by the skip planar rule is not created
"""

import logging
from typing import Dict, List, Tuple
import numpy as np

from .model import Color, Material, MaterialSide, Model, PlanarRule, Side
from .vertices import VertexStore
from .voxels import BoundingBox, Voxel

logger = logging.getLogger(__name__)


# Unit step to the neighbor voxel for each side
SIDE_OFFSETS = np.array([
    [-1, 0, 0],  # NX
    [1, 0, 0],   # PX
    [0, -1, 0],  # NY
    [0, 1, 0],   # PY
    [0, 0, -1],  # NZ
    [0, 0, 1],   # PZ
], dtype=np.int64)

# Corner offsets from the voxel minimum corner, counter-clockwise from outside
CORNER_OFFSETS = np.array([
    [[0, 0, 0], [0, 0, 1], [0, 1, 1], [0, 1, 0]],  # NX
    [[1, 0, 0], [1, 1, 0], [1, 1, 1], [1, 0, 1]],  # PX
    [[0, 0, 0], [1, 0, 0], [1, 0, 1], [0, 0, 1]],  # NY
    [[0, 1, 0], [0, 1, 1], [1, 1, 1], [1, 1, 0]],  # PY
    [[0, 0, 0], [0, 1, 0], [1, 1, 0], [1, 0, 0]],  # NZ
    [[0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 1, 1]],  # PZ
], dtype=np.int64)

FACE_NORMALS = SIDE_OFFSETS.astype(np.float64)


class FaceStore:
    """
    Struct-of-arrays face records.

    Faces are appended by the builder and frozen into arrays. Per-corner
    arrays have shape (F, 4, ...) and follow the corner order of
    ``vertices``. Merged faces stay in the arrays with ``alive`` False.
    """

    def __init__(self):
        self._vertices: List[Tuple[int, int, int, int]] = []
        self._side: List[int] = []
        self._group: List[int] = []
        self._voxel: List[Tuple[int, int, int]] = []
        self._material: List[int] = []
        self._flattened: List[bool] = []
        self._clamped: List[bool] = []
        self._hidden: List[bool] = []
        self.colors: List[Color] = []
        self.frozen = False

    def __len__(self) -> int:
        return len(self._side)

    def add(
        self,
        vertex_ids: Tuple[int, int, int, int],
        side: int,
        group: int,
        voxel: Voxel,
        material_index: int,
        flattened: bool,
        clamped: bool,
        hidden: bool
    ) -> int:
        """Append a face and return its index."""
        self._vertices.append(vertex_ids)
        self._side.append(side)
        self._group.append(group)
        self._voxel.append(voxel.position)
        self._material.append(material_index)
        self._flattened.append(flattened)
        self._clamped.append(clamped)
        self._hidden.append(hidden)
        self.colors.append(voxel.color)
        return len(self._side) - 1

    def freeze(self):
        """Convert the build lists to arrays and allocate per-corner outputs."""
        n = len(self._side)
        self.vertices = np.array(self._vertices, dtype=np.int64).reshape(n, 4)
        self.side = np.array(self._side, dtype=np.int64)
        self.group = np.array(self._group, dtype=np.int32)
        self.voxel = np.array(self._voxel, dtype=np.int64).reshape(n, 3)
        self.material = np.array(self._material, dtype=np.int32)
        self.flattened = np.array(self._flattened, dtype=bool)
        self.clamped = np.array(self._clamped, dtype=bool)
        self.hidden = np.array(self._hidden, dtype=bool)
        self.equidistant = np.zeros(n, dtype=bool)
        self.alive = np.ones(n, dtype=bool)

        # Per-corner attributes, filled by later passes
        self.ao = np.zeros((n, 4), dtype=np.float64)
        self.uvs = np.zeros((n, 4, 2), dtype=np.float64)
        self.flat_normals = np.zeros((n, 4, 3), dtype=np.float64)
        self.smooth_normals = np.zeros((n, 4, 3), dtype=np.float64)
        self.both_normals = np.zeros((n, 4, 3), dtype=np.float64)
        self.side_normals = np.zeros((n, 4, 3), dtype=np.float64)
        self.normals = np.zeros((n, 4, 3), dtype=np.float64)
        self.light = np.ones((n, 4, 3), dtype=np.float64)
        self.vertex_colors = np.zeros((n, 4, 3), dtype=np.float64)
        self.frozen = True

    @property
    def corner_arrays(self) -> Dict[str, np.ndarray]:
        """Every per-corner array, keyed by attribute name."""
        return {
            "vertices": self.vertices,
            "ao": self.ao,
            "uvs": self.uvs,
            "flat_normals": self.flat_normals,
            "smooth_normals": self.smooth_normals,
            "both_normals": self.both_normals,
            "side_normals": self.side_normals,
            "normals": self.normals,
            "vertex_colors": self.vertex_colors,
        }

    @property
    def live(self) -> np.ndarray:
        """Indices of faces that have not been merged away."""
        return np.flatnonzero(self.alive)

    @property
    def visible(self) -> np.ndarray:
        """Indices of live faces that are not hidden."""
        return np.flatnonzero(self.alive & ~self.hidden)


class FaceBuilder:
    """
    Creates faces and their shared vertices for a whole model.

    Planar rules (skip, flatten, clamp, hide) come from the material when it
    defines them, evaluated against the bounds of that material's voxels in
    the group. Otherwise the model-wide rule is used with the group bounds.
    """

    def __init__(self, model: Model):
        self.model = model
        self._material_bounds: Dict[Tuple[str, int], BoundingBox] = {}
        self._group_bounds: Dict[str, BoundingBox] = {}
        for index, group in enumerate(model.groups.values()):
            group.index = index

    def _collect_material_bounds(self):
        for voxel in self.model.voxels.iter_voxels():
            key = (voxel.group, voxel.color.material)
            box = self._material_bounds.get(key)
            if box is None:
                box = self._material_bounds[key] = BoundingBox()
            box.add(voxel.x, voxel.y, voxel.z)
        for group_id in self.model.voxels.groups:
            self._group_bounds[group_id] = self.model.voxels.bounds(group_id)

    def _planar(self, name: str, voxel: Voxel, material: Material, side: Side) -> bool:
        """Evaluate one planar rule for a face."""
        rule: PlanarRule = getattr(material, name)
        if not rule.is_empty:
            bounds = self._material_bounds[(voxel.group, voxel.color.material)]
        else:
            rule = getattr(self.model, name)
            if rule.is_empty:
                return False
            bounds = self._group_bounds[voxel.group]
        axis = side.axis
        return rule.matches(side, voxel.position[axis], bounds.min[axis], bounds.max[axis])

    def _is_visible(self, voxel: Voxel, material: Material, side: Side) -> bool:
        if material.opacity <= 0.0:
            return False

        dx, dy, dz = (int(d) for d in SIDE_OFFSETS[side])
        neighbor = self.model.voxels.get_voxel(voxel.x + dx, voxel.y + dy, voxel.z + dz, voxel.group)
        if neighbor is not None:
            if neighbor.color.material == voxel.color.material and material.side != MaterialSide.BACK:
                return False
            other = self.model.material_of(neighbor.color)
            if other.is_opaque and other.side != MaterialSide.BACK and material.is_opaque:
                return False

        return not self._planar("skip", voxel, material, side)

    def build(self, vertices: VertexStore, faces: FaceStore) -> int:
        """
        Create all faces of the model.

        Args:
            vertices: Empty vertex store to fill
            faces: Empty face store to fill

        Returns:
            Number of faces created
        """
        self._collect_material_bounds()

        for voxel in self.model.voxels.iter_voxels():
            voxel.faces.clear()
            material = self.model.material_of(voxel.color)
            group_index = self.model.groups[voxel.group].index

            for side in Side:
                if not self._is_visible(voxel, material, side):
                    continue

                flattened = self._planar("flatten", voxel, material, side)
                clamped = self._planar("clamp", voxel, material, side)
                hidden = self._planar("hide", voxel, material, side)

                ids = []
                for ox, oy, oz in CORNER_OFFSETS[side]:
                    vertex_id = vertices.get_or_create(
                        group_index, voxel.x + int(ox), voxel.y + int(oy), voxel.z + int(oz), material
                    )
                    vertices.add_color(vertex_id, voxel)
                    if flattened:
                        vertices.lock_flatten(vertex_id, side.axis)
                    if clamped:
                        vertices.lock_clamp(vertex_id, side.axis)
                    ids.append(vertex_id)

                face_index = faces.add(
                    tuple(ids), int(side), group_index, voxel, voxel.color.material,
                    flattened, clamped, hidden
                )
                voxel.faces[int(side)] = face_index

        logger.debug("Created %d faces over %d shared vertices", len(faces), len(vertices))
        return len(faces)


def face_midpoints(positions: np.ndarray, faces: FaceStore) -> np.ndarray:
    """Average of the 4 corner positions of every face, shape (F, 3)."""
    return positions[faces.vertices].mean(axis=1)
