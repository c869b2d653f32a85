"""
Coordinate System Conversion

Meshes are produced Y-up, right-handed (+X right, +Y up, +Z toward the
viewer), which is what glTF and Godot expect. Blender and MagicaVoxel are
Z-up.
"""

from enum import Enum
import numpy as np


class CoordinateSystem(Enum):
    """Target coordinate system for export."""
    INTERNAL = "internal"    # Y-up, right-handed
    GODOT = "godot"          # Y-up, right-handed (same as internal)
    BLENDER = "blender"      # Z-up, right-handed


def get_coordinate_transform(target: CoordinateSystem) -> np.ndarray:
    """
    Get the 3x3 rotation from internal coordinates to a target system.

    Args:
        target: Target coordinate system

    Returns:
        3x3 transformation matrix
    """
    if target == CoordinateSystem.BLENDER:
        # x' = x, y' = -z, z' = y
        return np.array([
            [1, 0, 0],
            [0, 0, -1],
            [0, 1, 0]
        ], dtype=np.float64)
    return np.eye(3, dtype=np.float64)


def transform_vertices(vertices: np.ndarray, target: CoordinateSystem) -> np.ndarray:
    """
    Transform (N, 3) positions or normals from internal coordinates.

    Returns:
        Transformed float32 array of shape (N, 3)
    """
    matrix = get_coordinate_transform(target)
    return (matrix @ np.asarray(vertices, dtype=np.float64).T).T.astype(np.float32)
