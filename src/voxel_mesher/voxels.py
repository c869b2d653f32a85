"""
Sparse Voxel Storage

This module provides:
- BoundingBox: Incrementally grown axis-aligned bounds
- Voxel: A single colored cell and the faces created for it
- VoxelStore: Chunked sparse map of (group, x, y, z) -> Voxel

Voxels are kept in 16³ chunks keyed by (group, chunk x, chunk y, chunk z),
so memory follows the number of occupied regions rather than the extent of
the model. Coordinates are non-negative in each group's local space.
"""

from typing import Dict, Iterator, List, Optional, Tuple
import numpy as np

from .errors import ModelStructureError

ROOT_GROUP = "model"

CHUNK_BITS = 4
CHUNK_SIZE = 1 << CHUNK_BITS
CHUNK_MASK = CHUNK_SIZE - 1


class BoundingBox:
    """
    Axis-aligned bounds that grow as points are added.

    An empty box has min = +inf and max = -inf on every axis.
    """

    __slots__ = ("min", "max")

    def __init__(self, minimum=None, maximum=None):
        self.min = np.full(3, np.inf) if minimum is None else np.asarray(minimum, dtype=np.float64).copy()
        self.max = np.full(3, -np.inf) if maximum is None else np.asarray(maximum, dtype=np.float64).copy()

    @classmethod
    def of_points(cls, points: np.ndarray) -> "BoundingBox":
        box = cls()
        if len(points):
            box.min = points.min(axis=0).astype(np.float64)
            box.max = points.max(axis=0).astype(np.float64)
        return box

    @property
    def is_empty(self) -> bool:
        return bool(np.any(self.min > self.max))

    def add(self, x: float, y: float, z: float):
        """Grow the box to include a point."""
        if x < self.min[0]:
            self.min[0] = x
        if y < self.min[1]:
            self.min[1] = y
        if z < self.min[2]:
            self.min[2] = z
        if x > self.max[0]:
            self.max[0] = x
        if y > self.max[1]:
            self.max[1] = y
        if z > self.max[2]:
            self.max[2] = z

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(np.minimum(self.min, other.min), np.maximum(self.max, other.max))

    @property
    def size(self) -> np.ndarray:
        if self.is_empty:
            return np.zeros(3)
        return self.max - self.min

    @property
    def center(self) -> np.ndarray:
        if self.is_empty:
            return np.zeros(3)
        return (self.min + self.max) / 2

    def copy(self) -> "BoundingBox":
        return BoundingBox(self.min, self.max)

    def __eq__(self, other) -> bool:
        if not isinstance(other, BoundingBox):
            return NotImplemented
        return bool(np.array_equal(self.min, other.min) and np.array_equal(self.max, other.max))

    def __repr__(self) -> str:
        if self.is_empty:
            return "BoundingBox(empty)"
        return f"BoundingBox(min={self.min.tolist()}, max={self.max.tolist()})"


class Voxel:
    """
    A single voxel.

    The color is fixed at creation. ``faces`` maps a side index to the index
    of the face created for that side, and is filled in by the face builder.
    """

    __slots__ = ("x", "y", "z", "color", "group", "faces", "visible")

    def __init__(self, x: int, y: int, z: int, color, group: str):
        self.x = x
        self.y = y
        self.z = z
        self.color = color
        self.group = group
        self.faces: Dict[int, int] = {}
        self.visible = True

    @property
    def position(self) -> Tuple[int, int, int]:
        return (self.x, self.y, self.z)

    @property
    def material(self):
        return self.color.material

    def __repr__(self) -> str:
        return f"Voxel({self.x}, {self.y}, {self.z}, color={self.color.id!r}, group={self.group!r})"


class VoxelStore:
    """
    Sparse chunked voxel map.

    A running bounding box and voxel count are kept per group while voxels
    are set. Clearing a voxel marks the boxes stale; they are rebuilt from
    the live voxels the next time bounds are read.
    """

    def __init__(self):
        self._chunks: Dict[Tuple[str, int, int, int], Dict[int, Voxel]] = {}
        self._count = 0
        self._bounds: Dict[str, BoundingBox] = {}
        self._stale = False

    @staticmethod
    def _keys(x: int, y: int, z: int, group: str) -> Tuple[Tuple[str, int, int, int], int]:
        chunk = (group, x >> CHUNK_BITS, y >> CHUNK_BITS, z >> CHUNK_BITS)
        local = (x & CHUNK_MASK) | ((y & CHUNK_MASK) << CHUNK_BITS) | ((z & CHUNK_MASK) << (2 * CHUNK_BITS))
        return chunk, local

    def set_voxel(self, x: int, y: int, z: int, color, group: str = ROOT_GROUP) -> Voxel:
        """
        Set a voxel, replacing any voxel already in that cell.

        Args:
            x, y, z: Non-negative voxel coordinates within the group
            color: The voxel's color record
            group: Owning group id

        Returns:
            The new voxel
        """
        if x < 0 or y < 0 or z < 0:
            raise ModelStructureError(f"Voxel coordinates must be non-negative, got {(x, y, z)}")

        chunk_key, local = self._keys(x, y, z, group)
        chunk = self._chunks.get(chunk_key)
        if chunk is None:
            chunk = self._chunks[chunk_key] = {}
        if local not in chunk:
            self._count += 1

        voxel = Voxel(int(x), int(y), int(z), color, group)
        chunk[local] = voxel

        box = self._bounds.get(group)
        if box is None:
            box = self._bounds[group] = BoundingBox()
        box.add(x, y, z)
        return voxel

    def get_voxel(self, x: int, y: int, z: int, group: str = ROOT_GROUP) -> Optional[Voxel]:
        """Get the voxel in a cell, or None if the cell is empty."""
        if x < 0 or y < 0 or z < 0:
            return None
        chunk_key, local = self._keys(x, y, z, group)
        chunk = self._chunks.get(chunk_key)
        if chunk is None:
            return None
        return chunk.get(local)

    def clear_voxel(self, x: int, y: int, z: int, group: str = ROOT_GROUP) -> bool:
        """
        Remove a voxel.

        Returns:
            True if a voxel was removed
        """
        if x < 0 or y < 0 or z < 0:
            return False
        chunk_key, local = self._keys(x, y, z, group)
        chunk = self._chunks.get(chunk_key)
        if chunk is None or local not in chunk:
            return False
        del chunk[local]
        if not chunk:
            del self._chunks[chunk_key]
        self._count -= 1
        self._stale = True
        return True

    def clear(self):
        """Remove all voxels."""
        self._chunks.clear()
        self._bounds.clear()
        self._count = 0
        self._stale = False

    def prepare_for_write(self):
        """Rebuild counts and bounds exactly from the live voxels."""
        for chunk_key in [k for k, chunk in self._chunks.items() if not chunk]:
            del self._chunks[chunk_key]
        live = list(self.iter_voxels())
        self._count = 0
        self._bounds = {}
        self._stale = False
        for voxel in live:
            self._count += 1
            box = self._bounds.get(voxel.group)
            if box is None:
                box = self._bounds[voxel.group] = BoundingBox()
            box.add(voxel.x, voxel.y, voxel.z)

    @property
    def count(self) -> int:
        return self._count

    @property
    def groups(self) -> List[str]:
        """Ids of the groups that hold voxels."""
        if self._stale:
            self.prepare_for_write()
        return list(self._bounds.keys())

    def bounds(self, group: Optional[str] = None) -> BoundingBox:
        """
        Get inclusive voxel bounds.

        Args:
            group: Group id, or None for the union over all groups

        Returns:
            A copy of the bounds (empty if there are no voxels)
        """
        if self._stale:
            self.prepare_for_write()
        if group is not None:
            box = self._bounds.get(group)
            return box.copy() if box is not None else BoundingBox()
        result = BoundingBox()
        for box in self._bounds.values():
            result = result.union(box)
        return result

    def iter_voxels(self, group: Optional[str] = None) -> Iterator[Voxel]:
        """
        Iterate over voxels in a deterministic order.

        Voxels are ordered by group (in order of first use), then x, y, z.
        """
        group_order = {g: i for i, g in enumerate(self._bounds.keys())}
        keys = sorted(
            (k for k in self._chunks if group is None or k[0] == group),
            key=lambda k: (group_order.get(k[0], len(group_order)), k[0], k[1], k[2], k[3]),
        )
        for chunk_key in keys:
            chunk = self._chunks[chunk_key]
            for voxel in sorted(chunk.values(), key=lambda v: (v.x, v.y, v.z)):
                yield voxel

    def to_sparse(self, group: str = ROOT_GROUP) -> Tuple[np.ndarray, list]:
        """
        Convert a group to sparse representation.

        Returns:
            Tuple of (coordinates, colors) where coordinates has shape (N, 3)
        """
        voxels = list(self.iter_voxels(group))
        coords = np.array([v.position for v in voxels], dtype=np.int64).reshape(-1, 3)
        return coords, [v.color for v in voxels]

    def from_sparse(self, coords: np.ndarray, colors: list, group: str = ROOT_GROUP):
        """
        Load voxels from sparse representation.

        Args:
            coords: Array of shape (N, 3) with xyz indices
            colors: N color records
        """
        for (x, y, z), color in zip(coords, colors):
            self.set_voxel(int(x), int(y), int(z), color, group)

    def __len__(self) -> int:
        return self._count
