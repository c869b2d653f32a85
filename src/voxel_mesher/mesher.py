"""
Main MeshGenerator Class

This is the primary interface for the voxel meshing pipeline.
It runs the passes in a fixed order, each one relying on the results of
the passes before it:

1. Face creation (visibility rules, shared vertices)
2. Shape projection, deformation, warp and scatter
3. Directional effects and bends
4. Normals, then group transforms into model space
5. Ambient occlusion, quick AO and lighting against the octree
6. Color combination and UVs
7. Face merging, face alignment and indexing

Example Usage:
    model = Model()
    model.add_color(Color.from_hex("A", "#F80"))
    model.voxels.set_voxel(0, 0, 0, model.colors["A"])

    generator = MeshGenerator(model)
    mesh = generator.generate()
    print(generator.statistics)
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Optional
import numpy as np

from .buffers import Indexer, MeshData
from .deformer import build_links, deform, mark_tiles, warp
from .errors import VoxelMeshError
from .faces import FaceBuilder, FaceStore
from .lighting import (
    OctreeCache, compute_ambient_occlusion, compute_lighting, compute_quick_ao
)
from .color import ColorCombiner
from .model import Color, Model
from .normals import calculate_normals, select_normals
from .octree import build_octree
from .shapes import project_shapes
from .simplifier import Simplifier, align_faces
from .transform import (
    apply_effects, compute_group_matrices, transform_vertices, update_bounds
)
from .uvs import assign_uvs
from .vertices import VertexStore
from .voxels import BoundingBox

logger = logging.getLogger(__name__)

PLACEHOLDER_COLOR = "#FF00FF"


@dataclass
class MeshStatistics:
    """Counters collected during one build."""
    voxels: int = 0
    faces_created: int = 0
    faces_merged: int = 0
    shared_vertices: int = 0
    deform_passes: int = 0
    non_manifold_fixes: int = 0
    octree_nodes: int = 0
    octree_triangles: int = 0
    ao_cache_hits: int = 0
    output_vertices: int = 0
    output_triangles: int = 0
    seconds: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


class MeshGenerator:
    """
    Runs the meshing passes over one model.

    A generator owns the vertex and face stores of its last build. Builds
    are not re-entrant; use one generator per concurrent build.

    Attributes:
        model: The model being meshed
        vertices: Shared vertex store of the last build
        faces: Face store of the last build
        statistics: Counters of the last build
    """

    def __init__(self, model: Model):
        self.model = model
        self.vertices: Optional[VertexStore] = None
        self.faces: Optional[FaceStore] = None
        self.statistics = MeshStatistics()
        self._timings = {}

    def _timed(self, name: str, started: float) -> float:
        now = time.perf_counter()
        self._timings[name] = now - started
        logger.debug("%s took %.3fs", name, now - started)
        return now

    def generate(self) -> MeshData:
        """
        Build the mesh.

        Returns:
            Indexed mesh buffers

        Raises:
            ModelStructureError: If the model is structurally invalid
        """
        model = self.model
        stats = self.statistics = MeshStatistics()
        start = clock = time.perf_counter()

        model.validate()
        vertices = self.vertices = VertexStore()
        faces = self.faces = FaceStore()
        stats.voxels = model.voxels.count
        stats.faces_created = FaceBuilder(model).build(vertices, faces)
        vertices.freeze()
        faces.freeze()
        stats.shared_vertices = len(vertices)
        clock = self._timed("faces", clock)

        update_bounds(model, vertices)
        mark_tiles(model, vertices)
        project_shapes(model, vertices, faces)
        stats.deform_passes = deform(vertices, build_links(vertices, faces))
        warp(vertices, np.random.default_rng(model.seed))
        clock = self._timed("deform", clock)

        update_bounds(model, vertices)
        apply_effects(model, vertices)
        clock = self._timed("effects", clock)

        stats.non_manifold_fixes = calculate_normals(model, vertices, faces)
        update_bounds(model, vertices)
        compute_group_matrices(model)
        transform_vertices(model, vertices, faces)
        update_bounds(model, vertices)
        select_normals(model, faces)
        clock = self._timed("normals", clock)

        octrees = OctreeCache(lambda sides: build_octree(model, vertices.positions, faces, sides))
        stats.ao_cache_hits = compute_ambient_occlusion(model, vertices, faces, octrees)
        compute_quick_ao(model, faces)
        if model.lights:
            compute_lighting(model, vertices, faces, octrees())
        for tree in octrees.trees.values():
            stats.octree_nodes += tree.node_count
            stats.octree_triangles += tree.triangle_count
        clock = self._timed("lighting", clock)

        ColorCombiner(model).combine(vertices, faces)
        assign_uvs(model, vertices, faces)
        stats.faces_merged = Simplifier(model, vertices, faces).simplify()
        clock = self._timed("simplify", clock)

        live = faces.live
        used = vertices.positions[np.unique(faces.vertices[live])] if len(live) else np.zeros((0, 3))
        bounds = BoundingBox.of_points(used) if len(used) else BoundingBox()
        center = bounds.center if not bounds.is_empty else np.zeros(3)
        align_faces(faces, vertices.positions, center)

        indexer = Indexer(model)
        indexer.add_faces(vertices, faces)
        indexer.add_shells(vertices, faces)
        indexer.add_light_spheres()
        mesh = indexer.build()
        self._timed("index", clock)

        stats.output_vertices = mesh.vertex_count
        stats.output_triangles = mesh.triangle_count
        stats.seconds = time.perf_counter() - start
        logger.debug(
            "Meshed %d voxels into %d triangles in %.3fs",
            stats.voxels, stats.output_triangles, stats.seconds
        )
        return mesh

    @property
    def timings(self) -> dict:
        """Seconds spent per pass in the last build."""
        return dict(self._timings)


def generate_mesh(model: Model) -> MeshData:
    """
    Mesh a model in one call.

    Raises:
        ModelStructureError: If the model is structurally invalid
    """
    return MeshGenerator(model).generate()


def placeholder_model() -> Model:
    """A single magenta voxel."""
    model = Model()
    color = model.add_color(Color.from_hex("error", PLACEHOLDER_COLOR))
    model.voxels.set_voxel(0, 0, 0, color)
    return model


def generate_mesh_or_placeholder(model: Model) -> MeshData:
    """
    Mesh a model, falling back to a magenta cube if it cannot be built.

    The fallback mesh has placeholder set so callers can tell it apart.
    """
    try:
        return generate_mesh(model)
    except VoxelMeshError as e:
        logger.error("Mesh generation failed, using placeholder: %s", e)
    mesh = generate_mesh(placeholder_model())
    return mesh._replace(placeholder=True)
