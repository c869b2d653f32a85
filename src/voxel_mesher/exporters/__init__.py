"""
Export modules for various 3D formats.

Supported formats:
- glTF 2.0 (.glb) - Optimal for game engines (Godot, Unity)
- Wavefront (.obj) - Universal legacy support
"""

from .coordinates import CoordinateSystem
from .gltf_exporter import GLTFExporter
from .obj_exporter import OBJExporter

__all__ = ["CoordinateSystem", "GLTFExporter", "OBJExporter"]
