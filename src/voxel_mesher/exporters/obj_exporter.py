"""
Wavefront OBJ Format Exporter

OBJ is a universal text-based format supported by virtually all 3D software.
While it doesn't natively support vertex colors, we provide options for:
- Geometry-only export
- Extended format with vertex colors (v x y z r g b)
- MTL file with one material per draw group

OBJ viewers treat colors as sRGB, so linear meshes are converted back.

Limitations:
- Text format = larger file sizes
- No native vertex color support
- Custom vertex data channels are dropped
"""

from pathlib import Path
from typing import List, Union
import logging
import numpy as np

from ..buffers import MeshData
from ..color import linear_to_srgb
from .coordinates import CoordinateSystem, transform_vertices

logger = logging.getLogger(__name__)


class OBJExporter:
    """
    Export mesh data to Wavefront OBJ format.

    Supports:
    - Extended OBJ with vertex colors (v x y z r g b)
    - MTL materials per draw group
    - Coordinate system transformation
    """

    def __init__(
        self,
        coordinate_system: CoordinateSystem = CoordinateSystem.BLENDER,
        scale: float = 1.0,
        include_normals: bool = True,
        vertex_colors: bool = True,
        write_mtl: bool = True
    ):
        """
        Initialize the exporter.

        Args:
            coordinate_system: Target coordinate system
            scale: Scale factor for vertex positions
            include_normals: Whether to include vertex normals
            vertex_colors: Write v x y z r g b lines
            write_mtl: Write an .mtl file next to the .obj
        """
        self.coordinate_system = coordinate_system
        self.scale = scale
        self.include_normals = include_normals
        self.vertex_colors = vertex_colors
        self.write_mtl = write_mtl

    def export(
        self,
        mesh: MeshData,
        output_path: Union[str, Path],
        model_name: str = "voxel_model"
    ):
        """
        Export mesh to OBJ file.

        Args:
            mesh: MeshData from the mesher
            output_path: Output file path (.obj)
            model_name: Name for the model/object

        Raises:
            ValueError: If the mesh is empty
        """
        output_path = Path(output_path)
        lines = self.build(mesh, model_name, output_path.with_suffix('.mtl').name)

        with open(output_path, 'w') as f:
            f.write('\n'.join(lines) + '\n')

        if self.write_mtl:
            self._write_mtl(mesh, output_path.with_suffix('.mtl'))
        logger.info("Wrote %s: %d vertices, %d triangles", output_path, mesh.vertex_count, mesh.triangle_count)

    def build(self, mesh: MeshData, model_name: str = "voxel_model", mtl_name: str = "") -> List[str]:
        """Build the OBJ lines."""
        if mesh.vertex_count == 0:
            raise ValueError("Cannot export empty mesh")

        positions = transform_vertices(mesh.positions * self.scale, self.coordinate_system)
        normals = transform_vertices(mesh.normals, self.coordinate_system)
        colors = linear_to_srgb(np.ascontiguousarray(mesh.colors)) if mesh.linear else mesh.colors

        lines = [
            "# Voxel Mesher OBJ Export",
            f"# Vertices: {mesh.vertex_count}",
            f"# Triangles: {mesh.triangle_count}",
            "",
        ]
        if self.write_mtl and mtl_name:
            lines.append(f"mtllib {mtl_name}")
            lines.append("")

        lines.append(f"o {model_name}")
        lines.append("")

        if self.vertex_colors:
            for v, c in zip(positions, colors):
                lines.append(f"v {v[0]:.6f} {v[1]:.6f} {v[2]:.6f} {c[0]:.4f} {c[1]:.4f} {c[2]:.4f}")
        else:
            for v in positions:
                lines.append(f"v {v[0]:.6f} {v[1]:.6f} {v[2]:.6f}")
        lines.append("")

        has_uvs = mesh.uvs is not None
        if has_uvs:
            for uv in mesh.uvs:
                lines.append(f"vt {uv[0]:.6f} {uv[1]:.6f}")
            lines.append("")

        if self.include_normals:
            for n in normals:
                lines.append(f"vn {n[0]:.6f} {n[1]:.6f} {n[2]:.6f}")
            lines.append("")

        # Every attribute is indexed like the position
        for number, group in enumerate(mesh.groups):
            if self.write_mtl:
                lines.append(f"usemtl {self._material_name(mesh, number)}")
            indices = mesh.indices[group.start:group.start + group.count] + 1
            for i0, i1, i2 in indices.reshape(-1, 3):
                lines.append("f " + " ".join(self._corner(i, has_uvs) for i in (i0, i1, i2)))
            lines.append("")

        return lines

    def _corner(self, index: int, has_uvs: bool) -> str:
        if self.include_normals and has_uvs:
            return f"{index}/{index}/{index}"
        if self.include_normals:
            return f"{index}//{index}"
        if has_uvs:
            return f"{index}/{index}"
        return f"{index}"

    @staticmethod
    def _material_name(mesh: MeshData, group_number: int) -> str:
        material = mesh.materials[mesh.groups[group_number].material_index]
        return material.name or f"material_{group_number}"

    def _write_mtl(self, mesh: MeshData, mtl_path: Path):
        """Write MTL material file."""
        lines = ["# Voxel Mesher MTL Export", ""]

        for number, group in enumerate(mesh.groups):
            material = mesh.materials[group.material_index]
            lines.append(f"newmtl {self._material_name(mesh, number)}")
            lines.append("Kd 1.0 1.0 1.0")  # Colors come from the vertices
            lines.append("Ks 0.0 0.0 0.0")  # Specular (none for voxels)
            lines.append("Ns 0")  # Specular exponent
            lines.append(f"d {material.opacity:.4f}")  # Opacity
            lines.append("illum 1")  # Illumination model
            lines.append("")

        with open(mtl_path, 'w') as f:
            f.write('\n'.join(lines))
