"""
Exceptions raised by the meshing engine.

Structural problems in the input model abort a build with a
ModelStructureError. Degenerate geometry never raises; the passes handle
it locally.
"""


class VoxelMeshError(Exception):
    """Base class for all meshing errors."""


class ModelStructureError(VoxelMeshError, ValueError):
    """
    The model cannot be meshed as given.

    Raised for circular group parents, references to unknown groups,
    colors or materials, and invalid voxel coordinates.
    """
