"""
UV Assignment

PLANAR: every face is projected onto the plane of its side using the
integer grid coordinates of its corners, so textures tile seamlessly across
neighboring faces and survive face merging.

CUBE: every voxel face gets one cell of a 4x3 cross layout:

            +Y
        -X  +Z  +X  -Z
            -Y

Both modes pull the coordinates inward by half a texel (or a tiny epsilon
without a known texture size) so neighboring texels never bleed in.
"""

import numpy as np

from .faces import FaceStore
from .model import Model, UVMode
from .vertices import VertexStore

BLEED_EPSILON = 1e-4

# (u axis, u sign, v axis, v sign) per side, as seen from outside
PLANAR_AXES = (
    (2, 1.0, 1, 1.0),    # NX
    (2, -1.0, 1, 1.0),   # PX
    (0, 1.0, 2, 1.0),    # NY
    (0, 1.0, 2, -1.0),   # PY
    (0, -1.0, 1, 1.0),   # NZ
    (0, 1.0, 1, 1.0),    # PZ
)

# (column, row) of each side in the cube cross, row 0 at the bottom
CUBE_CELLS = (
    (0, 1),  # NX
    (2, 1),  # PX
    (1, 0),  # NY
    (1, 2),  # PY
    (3, 1),  # NZ
    (1, 1),  # PZ
)


def planar_uvs(grid: np.ndarray, side: int) -> np.ndarray:
    """Project (4, 3) grid corners onto the plane of a side, returns (4, 2)."""
    u_axis, u_sign, v_axis, v_sign = PLANAR_AXES[side]
    return np.stack([grid[:, u_axis] * u_sign, grid[:, v_axis] * v_sign], axis=1).astype(np.float64)


def _bleed(texture_size) -> np.ndarray:
    if texture_size:
        return 0.5 / np.asarray(texture_size, dtype=np.float64)
    return np.full(2, BLEED_EPSILON)


def _inset(uvs: np.ndarray, amount: np.ndarray) -> np.ndarray:
    """Move corners toward the face center by amount on each UV axis."""
    center = uvs.mean(axis=0)
    return uvs + np.sign(center - uvs) * amount


def assign_uvs(model: Model, vertices: VertexStore, faces: FaceStore) -> int:
    """
    Fill faces.uvs for materials that use UVs.

    Returns:
        Number of faces given UVs
    """
    assigned = 0
    for index, material in enumerate(model.materials):
        if material.uv == UVMode.NONE:
            continue
        ids = np.flatnonzero(faces.material == index)
        bleed = _bleed(material.texture_size)
        scale = np.asarray(material.uv_scale, dtype=np.float64)

        for face in ids:
            side = int(faces.side[face])
            flat = planar_uvs(vertices.grid[faces.vertices[face]], side)
            if material.uv == UVMode.PLANAR:
                faces.uvs[face] = _inset(flat / scale, bleed)
            else:
                column, row = CUBE_CELLS[side]
                low = flat.min(axis=0)
                extent = np.maximum(flat.max(axis=0) - low, 1e-12)
                local = (flat - low) / extent
                # Bleed is in atlas units; one cell spans 1/4 by 1/3 of the atlas
                local = _inset(local, bleed * np.array([4.0, 3.0]))
                faces.uvs[face] = (np.array([column, row]) + local) / np.array([4.0, 3.0])
            assigned += 1
    return assigned
