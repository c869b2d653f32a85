"""
Shared Vertex Storage

Vertices are identified by (group, x, y, z) on the integer voxel-corner
grid and are shared by every face that touches that corner. They live in
an arena: faces and adjacency links refer to them by integer id.

While faces are being created the store grows through plain Python lists.
freeze() turns it into numpy arrays for the vectorized passes.
"""

from typing import Callable, Dict, List, Optional, Set, Tuple, TypeVar
import numpy as np

from .model import Color, Deform, Material, Warp

T = TypeVar("T")

NO_DEFORM = Deform(count=0)
NO_WARP = Warp((0.0, 0.0, 0.0), 0.0)


def favor_least(current: T, incoming: T, metric: Callable[[T], float]) -> T:
    """
    Reduce two settings to the least aggressive one.

    Args:
        current: Setting already on the vertex
        incoming: Setting of another voxel sharing the vertex
        metric: Comparable aggressiveness of a setting

    Returns:
        The setting with the lower metric (current on ties)
    """
    return incoming if metric(incoming) < metric(current) else current


def favor_least_deform(current: Deform, incoming: Deform) -> Deform:
    return favor_least(current, incoming, lambda d: d.integral)


def favor_least_warp(current: Warp, incoming: Warp) -> Warp:
    return favor_least(current, incoming, lambda w: w.magnitude)


def favor_least_scatter(current: float, incoming: float) -> float:
    return favor_least(current, incoming, abs)


class VertexStore:
    """
    Arena of shared vertices.

    Attributes (available after freeze()):
        positions: (N, 3) float64 current positions
        grid: (N, 3) int64 integer corner positions
        group: (N,) group index per vertex
        deform_count, deform_strength, deform_damping: (N,) deform settings
        warp_amplitude: (N, 3), warp_frequency: (N,)
        scatter: (N,)
        flatten, clamp, tile: (N, 3) bool axis locks
        ring: (N,) shape ring radius, NaN where no shape applies
    """

    def __init__(self):
        self._index: Dict[Tuple[int, int, int, int], int] = {}
        self._grid: List[Tuple[int, int, int]] = []
        self._group: List[int] = []
        self._deform: List[Deform] = []
        self._warp: List[Warp] = []
        self._scatter: List[float] = []
        self._flatten: List[List[bool]] = []
        self._clamp: List[List[bool]] = []
        self._voxels_seen: List[Set[Tuple[int, int, int]]] = []
        self.colors: List[List[Color]] = []
        self.frozen = False

    def __len__(self) -> int:
        return len(self._grid)

    def find(self, group: int, x: int, y: int, z: int) -> Optional[int]:
        return self._index.get((group, x, y, z))

    def get_or_create(self, group: int, x: int, y: int, z: int, material: Material) -> int:
        """
        Get the vertex at a grid corner, creating it if needed.

        When the vertex already exists the material's deform, warp and
        scatter settings are merged in, keeping the least aggressive.

        Returns:
            The vertex id
        """
        if self.frozen:
            raise RuntimeError("Vertex store is frozen")

        deform = material.deform or NO_DEFORM
        warp = material.warp or NO_WARP
        key = (group, x, y, z)
        vertex_id = self._index.get(key)
        if vertex_id is None:
            vertex_id = len(self._grid)
            self._index[key] = vertex_id
            self._grid.append((x, y, z))
            self._group.append(group)
            self._deform.append(deform)
            self._warp.append(warp)
            self._scatter.append(material.scatter)
            self._flatten.append([False, False, False])
            self._clamp.append([False, False, False])
            self._voxels_seen.append(set())
            self.colors.append([])
        else:
            self._deform[vertex_id] = favor_least_deform(self._deform[vertex_id], deform)
            self._warp[vertex_id] = favor_least_warp(self._warp[vertex_id], warp)
            self._scatter[vertex_id] = favor_least_scatter(self._scatter[vertex_id], material.scatter)
        return vertex_id

    def add_color(self, vertex_id: int, voxel):
        """Record the color of a voxel whose face uses this vertex."""
        if voxel.position not in self._voxels_seen[vertex_id]:
            self._voxels_seen[vertex_id].add(voxel.position)
            self.colors[vertex_id].append(voxel.color)

    def lock_flatten(self, vertex_id: int, axis: int):
        self._flatten[vertex_id][axis] = True

    def lock_clamp(self, vertex_id: int, axis: int):
        self._clamp[vertex_id][axis] = True

    def freeze(self):
        """Convert the build lists to numpy arrays."""
        n = len(self._grid)
        self.grid = np.array(self._grid, dtype=np.int64).reshape(n, 3)
        self.positions = self.grid.astype(np.float64)
        self.group = np.array(self._group, dtype=np.int32)
        self.deform_count = np.array([d.count for d in self._deform], dtype=np.int64)
        self.deform_strength = np.array([d.strength for d in self._deform], dtype=np.float64)
        self.deform_damping = np.array([d.damping for d in self._deform], dtype=np.float64)
        self.warp_amplitude = np.array([w.amplitude for w in self._warp], dtype=np.float64).reshape(n, 3)
        self.warp_frequency = np.array([w.frequency for w in self._warp], dtype=np.float64)
        self.scatter = np.array(self._scatter, dtype=np.float64)
        self.flatten = np.array(self._flatten, dtype=bool).reshape(n, 3)
        self.clamp = np.array(self._clamp, dtype=bool).reshape(n, 3)
        self.tile = np.zeros((n, 3), dtype=bool)
        self.ring = np.full(n, np.nan)
        self.frozen = True

    @property
    def locked(self) -> np.ndarray:
        """(N, 3) axes that deformation and warp may not move."""
        return self.flatten | self.clamp | self.tile
