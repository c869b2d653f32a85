"""
glTF 2.0 Exporter (.glb binary format)

glTF is the preferred format for game engines (Godot, Unity, Unreal).
This exporter writes the indexed mesh as one glTF mesh with one primitive
per draw group:
- Vertex colors in linear space (converted here unless already linear)
- Smooth/flat normals exactly as produced by the mesher
- Optional UVs and custom vertex data channels
- One glTF material per mesher material

glTF Structure:
- JSON header describing scene graph
- Binary buffer containing geometry data
  - Indices (uint16/uint32), shared by all primitives
  - Positions (float32 vec3)
  - Normals (float32 vec3)
  - Colors (uint8 vec4 normalized)
  - UVs (float32 vec2, optional)
  - Custom data (float32, one accessor per channel, optional)
"""

from pathlib import Path
from typing import Any, Dict, List, Union
import json
import logging
import struct
import numpy as np

from ..buffers import MeshData
from ..color import srgb_to_linear, to_uint8
from ..model import Material, MaterialSide, MaterialType
from .coordinates import CoordinateSystem, transform_vertices

logger = logging.getLogger(__name__)

# glTF constants
GLTF_VERSION = "2.0"
GENERATOR = "VoxelMesher"

# Component types
UNSIGNED_SHORT = 5123
UNSIGNED_INT = 5125
FLOAT = 5126
UNSIGNED_BYTE = 5121

# Buffer view targets
ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

# Primitive modes
TRIANGLES = 4

ACCESSOR_TYPES = {1: "SCALAR", 2: "VEC2", 3: "VEC3", 4: "VEC4"}


class _BufferBuilder:
    """Packs arrays into one 4-byte aligned binary buffer."""

    def __init__(self):
        self.parts: List[bytes] = []
        self.length = 0
        self.views: List[Dict[str, Any]] = []

    def add(self, array: np.ndarray, target: int) -> int:
        """Append an array and return its buffer view index."""
        data = np.ascontiguousarray(array).tobytes()
        self.views.append({
            "buffer": 0,
            "byteOffset": self.length,
            "byteLength": len(data),
            "target": target,
        })
        padding = (4 - len(data) % 4) % 4
        self.parts.append(data + b'\x00' * padding)
        self.length += len(data) + padding
        return len(self.views) - 1

    def tobytes(self) -> bytes:
        return b''.join(self.parts)


def material_to_gltf(material: Material) -> Dict[str, Any]:
    """Translate a mesher material into a glTF material."""
    gltf = {
        "name": material.name or "VoxelMaterial",
        "pbrMetallicRoughness": {
            "baseColorFactor": [1.0, 1.0, 1.0, float(material.opacity)],
            "metallicFactor": float(material.metalness),
            "roughnessFactor": float(material.roughness),
        },
        "doubleSided": material.side == MaterialSide.DOUBLE,
    }
    if material.transparent or material.opacity < 1.0:
        gltf["alphaMode"] = "BLEND"
    if material.type == MaterialType.BASIC:
        gltf["extensions"] = {"KHR_materials_unlit": {}}
    return gltf


class GLTFExporter:
    """
    Export mesh data to glTF 2.0 binary format (.glb).

    Usage:
        exporter = GLTFExporter()
        exporter.export(mesh, "model.glb")
    """

    def __init__(
        self,
        coordinate_system: CoordinateSystem = CoordinateSystem.GODOT,
        scale: float = 1.0
    ):
        """
        Initialize the exporter.

        Args:
            coordinate_system: Target coordinate system
            scale: Scale factor for vertex positions
        """
        self.coordinate_system = coordinate_system
        self.scale = scale

    def export(
        self,
        mesh: MeshData,
        output_path: Union[str, Path],
        mesh_name: str = "VoxelMesh"
    ):
        """
        Export mesh to .glb file.

        Args:
            mesh: MeshData from the mesher
            output_path: Output file path
            mesh_name: Name for the mesh and its node
        """
        gltf, buffer_data = self.build(mesh, mesh_name)
        self._write_glb(Path(output_path), gltf, buffer_data)
        logger.info(
            "Wrote %s: %d vertices, %d triangles, %d primitives",
            output_path, mesh.vertex_count, mesh.triangle_count, len(mesh.groups)
        )

    def build(self, mesh: MeshData, mesh_name: str = "VoxelMesh"):
        """
        Build the glTF JSON and binary buffer without writing them.

        Returns:
            Tuple of (gltf dict, buffer bytes)

        Raises:
            ValueError: If the mesh is empty
        """
        if mesh.vertex_count == 0 or len(mesh.indices) == 0:
            raise ValueError("Cannot export empty mesh")

        positions = transform_vertices(mesh.positions * self.scale, self.coordinate_system)
        normals = transform_vertices(mesh.normals, self.coordinate_system)

        # glTF vertex colors are linear
        colors = mesh.colors if mesh.linear else srgb_to_linear(np.ascontiguousarray(mesh.colors))
        rgba = np.full((mesh.vertex_count, 4), 255, dtype=np.uint8)
        rgba[:, :3] = to_uint8(colors)

        if mesh.indices.max() < 65536:
            index_type, indices = UNSIGNED_SHORT, mesh.indices.astype(np.uint16)
        else:
            index_type, indices = UNSIGNED_INT, mesh.indices.astype(np.uint32)

        buffer = _BufferBuilder()
        accessors: List[Dict[str, Any]] = []

        def accessor(view: int, component: int, count: int, kind: str, **extra) -> int:
            accessors.append({
                "bufferView": view, "componentType": component,
                "count": count, "type": kind, **extra
            })
            return len(accessors) - 1

        attributes = {
            "POSITION": accessor(
                buffer.add(positions, ARRAY_BUFFER), FLOAT, len(positions), "VEC3",
                min=positions.min(axis=0).tolist(), max=positions.max(axis=0).tolist()
            ),
            "NORMAL": accessor(buffer.add(normals, ARRAY_BUFFER), FLOAT, len(normals), "VEC3"),
            "COLOR_0": accessor(
                buffer.add(rgba, ARRAY_BUFFER), UNSIGNED_BYTE, len(rgba), "VEC4", normalized=True
            ),
        }
        if mesh.uvs is not None:
            uvs = mesh.uvs.astype(np.float32)
            attributes["TEXCOORD_0"] = accessor(buffer.add(uvs, ARRAY_BUFFER), FLOAT, len(uvs), "VEC2")
        for name, values in mesh.data.items():
            kind = ACCESSOR_TYPES.get(values.shape[1])
            if kind is None:
                logger.warning("Skipping vertex data '%s': width %d has no glTF type", name, values.shape[1])
                continue
            # Application specific attributes must start with an underscore
            attributes["_" + name.upper()] = accessor(
                buffer.add(values.astype(np.float32), ARRAY_BUFFER), FLOAT, len(values), kind
            )

        index_view = buffer.add(indices, ELEMENT_ARRAY_BUFFER)
        primitives = []
        for group in mesh.groups:
            primitives.append({
                "attributes": attributes,
                "indices": accessor(
                    index_view, index_type, group.count, "SCALAR",
                    byteOffset=group.start * indices.itemsize
                ),
                "material": group.material_index,
                "mode": TRIANGLES,
            })

        materials = [material_to_gltf(m) for m in mesh.materials]
        gltf = {
            "asset": {
                "version": GLTF_VERSION,
                "generator": GENERATOR
            },
            "scene": 0,
            "scenes": [{"nodes": [0]}],
            "nodes": [{"mesh": 0, "name": mesh_name}],
            "meshes": [{"primitives": primitives, "name": mesh_name}],
            "materials": materials,
            "accessors": accessors,
            "bufferViews": buffer.views,
            "buffers": [{"byteLength": buffer.length}],
        }
        if any("extensions" in m for m in materials):
            gltf["extensionsUsed"] = ["KHR_materials_unlit"]
        if mesh.placeholder:
            gltf["asset"]["extras"] = {"placeholder": True}

        return gltf, buffer.tobytes()

    def _write_glb(
        self,
        output_path: Path,
        gltf: Dict[str, Any],
        buffer_data: bytes
    ):
        """Write the GLB binary file."""
        json_bytes = json.dumps(gltf, separators=(',', ':')).encode('utf-8')

        # Pad JSON to 4-byte alignment
        json_bytes += b' ' * ((4 - len(json_bytes) % 4) % 4)

        # GLB header
        # Magic: "glTF" (0x46546C67)
        # Version: 2
        # Length: total file size
        total_length = 12 + 8 + len(json_bytes) + 8 + len(buffer_data)

        with open(output_path, 'wb') as f:
            # Header
            f.write(struct.pack('<I', 0x46546C67))  # glTF magic
            f.write(struct.pack('<I', 2))           # Version 2
            f.write(struct.pack('<I', total_length))

            # JSON chunk
            f.write(struct.pack('<I', len(json_bytes)))
            f.write(struct.pack('<I', 0x4E4F534A))  # JSON magic
            f.write(json_bytes)

            # Binary chunk
            f.write(struct.pack('<I', len(buffer_data)))
            f.write(struct.pack('<I', 0x004E4942))  # BIN magic
            f.write(buffer_data)


def read_glb_json(path: Union[str, Path]) -> Dict[str, Any]:
    """Read the JSON chunk of a .glb file."""
    data = Path(path).read_bytes()
    magic, version, _ = struct.unpack_from('<III', data, 0)
    if magic != 0x46546C67 or version != 2:
        raise ValueError(f"Not a glTF 2.0 binary file: {path}")
    json_length, _ = struct.unpack_from('<II', data, 12)
    return json.loads(data[20:20 + json_length].decode('utf-8'))
