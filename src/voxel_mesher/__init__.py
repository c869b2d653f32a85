"""
Voxel Mesher
============

A geometry engine that turns sparse, colored voxel models into smooth or
stylized triangle meshes.

Shared vertices let faces bend together, so the blocky look of voxel art can
be traded for organic or low-poly surfaces.

Key Features:
- Shared-vertex meshing with per-material visibility rules
- Laplacian deformation, noise warp, scatter and sphere/cylinder shapes
- Per-axis scale/rotate/translate effects, bends and group hierarchies
- Flat, smooth, mixed and per-side normals with non-manifold repair
- Ray traced ambient occlusion and shadowed lights on a Numba octree
- Coplanar face merging and compact indexed output buffers
- MagicaVoxel (.vox) input, glTF 2.0 (.glb) and Wavefront (.obj) output

Example Usage:
    from voxel_mesher import Color, Model, generate_mesh

    model = Model()
    model.add_color(Color.from_hex("A", "#F80"))
    model.voxels.set_voxel(0, 0, 0, model.colors["A"])
    mesh = generate_mesh(model)
"""

__version__ = "1.0.0"
__author__ = "Voxel Mesher Team"

from .errors import VoxelMeshError, ModelStructureError
from .voxels import BoundingBox, VoxelStore
from .model import (
    AmbientOcclusion, AxisEffect, Bend, BendDirection, Color, Deform, EffectKind,
    Group, Interpolation, Light, LightingMode, Material, MaterialSide, MaterialType,
    Model, PlanarRule, QuickAO, Resize, ShadowQuality, Shape, Shell, Side, UVMode, Warp
)
from .buffers import DrawGroup, MeshData
from .mesher import MeshGenerator, MeshStatistics, generate_mesh, generate_mesh_or_placeholder
from .color import srgb_to_linear, linear_to_srgb

__all__ = [
    "VoxelMeshError",
    "ModelStructureError",
    "BoundingBox",
    "VoxelStore",
    "AmbientOcclusion",
    "AxisEffect",
    "Bend",
    "BendDirection",
    "Color",
    "Deform",
    "EffectKind",
    "Group",
    "Interpolation",
    "Light",
    "LightingMode",
    "Material",
    "MaterialSide",
    "MaterialType",
    "Model",
    "PlanarRule",
    "QuickAO",
    "Resize",
    "ShadowQuality",
    "Shape",
    "Shell",
    "Side",
    "UVMode",
    "Warp",
    "DrawGroup",
    "MeshData",
    "MeshGenerator",
    "MeshStatistics",
    "generate_mesh",
    "generate_mesh_or_placeholder",
    "srgb_to_linear",
    "linear_to_srgb",
]
