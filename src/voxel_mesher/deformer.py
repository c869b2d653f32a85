"""
Vertex Adjacency Graph and Deformation

Handles:
- Link building from face topology (cyclic quad neighbors, never diagonals)
- Laplacian-style deformation with per-vertex count/strength/damping
- Tile boundary marking
- Noise warp and random scatter

All position updates are staged for every vertex first and committed
afterwards, so the result does not depend on vertex order. Committing skips
the axes a vertex has locked by flatten, clamp or tile.
"""

import logging
from typing import Dict, List, NamedTuple, Optional
import numpy as np
from noise import snoise3

from .faces import FaceStore
from .model import Model
from .vertices import VertexStore

logger = logging.getLogger(__name__)

# Decorrelate the three noise channels
WARP_CHANNEL_OFFSETS = np.array([
    [0.0, 0.0, 0.0],
    [19.1, 33.4, 47.2],
    [74.2, -124.5, 99.4],
])


class AdjacencyGraph(NamedTuple):
    """Vertex links in compressed sparse row form."""
    indptr: np.ndarray   # (N + 1,) offsets into indices
    indices: np.ndarray  # (L,) linked vertex ids

    @property
    def degrees(self) -> np.ndarray:
        return np.diff(self.indptr)

    def links(self, vertex_id: int) -> np.ndarray:
        return self.indices[self.indptr[vertex_id]:self.indptr[vertex_id + 1]]


def _to_csr(links: List[Dict[int, None]]) -> AdjacencyGraph:
    degrees = np.array([len(entry) for entry in links], dtype=np.int64)
    indptr = np.zeros(len(links) + 1, dtype=np.int64)
    np.cumsum(degrees, out=indptr[1:])
    indices = np.fromiter(
        (v for entry in links for v in entry), dtype=np.int64, count=int(indptr[-1])
    )
    return AdjacencyGraph(indptr, indices)


def build_links(vertices: VertexStore, faces: FaceStore) -> AdjacencyGraph:
    """
    Build the vertex adjacency graph.

    Ordinary faces link every corner both ways to the two corners next to it
    in the quad. Clamped faces only add a self link, so a clamp plane does
    not pull its vertices inward while the average still counts them.
    Vertices that end up with nothing but self links are relinked through
    their ordinary quad neighbors.

    Returns:
        The adjacency graph
    """
    # dicts keep insertion order, which keeps builds deterministic
    links: List[Dict[int, None]] = [{} for _ in range(len(vertices))]

    for face in range(len(faces)):
        corners = faces.vertices[face]
        if faces.clamped[face]:
            for v in corners:
                links[v][int(v)] = None
            continue
        for c in range(4):
            v = int(corners[c])
            nxt = int(corners[(c + 1) % 4])
            links[v][nxt] = None
            links[nxt][v] = None

    fully_clamped = [v for v, entry in enumerate(links) if entry and all(k == v for k in entry)]
    if fully_clamped:
        rebuild = set(fully_clamped)
        for v in fully_clamped:
            links[v] = {}
        for face in range(len(faces)):
            corners = faces.vertices[face]
            for c in range(4):
                v = int(corners[c])
                if v in rebuild:
                    links[v][int(corners[(c + 1) % 4])] = None
                    links[v][int(corners[(c + 3) % 4])] = None
        logger.debug("Relinked %d fully clamped vertices", len(fully_clamped))

    return _to_csr(links)


def _commit(vertices: VertexStore, offsets: np.ndarray):
    """Apply staged offsets on every unlocked axis."""
    offsets[vertices.locked] = 0.0
    vertices.positions += offsets


def deform(vertices: VertexStore, graph: AdjacencyGraph) -> int:
    """
    Run the deformation passes.

    At step s, every vertex with a deform count above s moves toward the mean
    of its linked vertices by strength * damping**s of the distance.

    Returns:
        Number of passes run
    """
    n = len(vertices)
    if n == 0:
        return 0
    passes = int(vertices.deform_count.max())
    if passes <= 0:
        return 0

    degrees = graph.degrees
    owners = np.repeat(np.arange(n), degrees)
    linked = degrees > 0
    safe_degrees = np.maximum(degrees, 1)[:, np.newaxis]

    for step in range(passes):
        active = linked & (vertices.deform_count > step)
        if not active.any():
            return step

        sums = np.zeros((n, 3))
        np.add.at(sums, owners, vertices.positions[graph.indices])
        mean = sums / safe_degrees

        weight = vertices.deform_strength * vertices.deform_damping ** step
        offsets = (mean - vertices.positions) * weight[:, np.newaxis]
        offsets[~active] = 0.0
        _commit(vertices, offsets)

    logger.debug("Ran %d deformation passes over %d vertices", passes, n)
    return passes


def mark_tiles(model: Model, vertices: VertexStore) -> int:
    """
    Flag vertices that sit on tiled group bounds.

    Returns:
        Number of tiled vertices
    """
    rule = model.tile
    if rule.is_empty or len(vertices) == 0:
        return 0

    for group in model.groups.values():
        bounds = model.voxels.bounds(group.id)
        if bounds.is_empty:
            continue
        in_group = vertices.group == group.index
        for axis in range(3):
            coords = vertices.grid[:, axis]
            if rule.at_min(axis):
                vertices.tile[in_group & (coords == bounds.min[axis]), axis] = True
            if rule.at_max(axis):
                vertices.tile[in_group & (coords == bounds.max[axis] + 1), axis] = True

    return int(vertices.tile.any(axis=1).sum())


def warp(vertices: VertexStore, rng: Optional[np.random.Generator] = None) -> int:
    """
    Displace vertices by 3D simplex noise, then by random scatter.

    Vertices on tiled bounds are left alone so tiles keep matching.

    Args:
        vertices: Frozen vertex store
        rng: Random generator for scatter

    Returns:
        Number of vertices moved
    """
    n = len(vertices)
    if n == 0:
        return 0
    free = ~vertices.tile.any(axis=1)
    moved = np.zeros(n, dtype=bool)

    warped = free & (np.abs(vertices.warp_amplitude).sum(axis=1) > 0) & (vertices.warp_frequency != 0)
    if warped.any():
        offsets = np.zeros((n, 3))
        for v in np.flatnonzero(warped):
            p = vertices.positions[v] * vertices.warp_frequency[v]
            for channel, shift in enumerate(WARP_CHANNEL_OFFSETS):
                offsets[v, channel] = snoise3(p[0] + shift[0], p[1] + shift[1], p[2] + shift[2])
        offsets *= vertices.warp_amplitude
        _commit(vertices, offsets)
        moved |= warped

    scattered = free & (vertices.scatter != 0)
    if scattered.any():
        rng = rng or np.random.default_rng()
        offsets = rng.uniform(-1.0, 1.0, size=(n, 3)) * vertices.scatter[:, np.newaxis]
        offsets[~scattered] = 0.0
        _commit(vertices, offsets)
        moved |= scattered

    count = int(moved.sum())
    if count:
        logger.debug("Warped/scattered %d vertices", count)
    return count
