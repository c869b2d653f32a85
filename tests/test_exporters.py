"""
Unit tests for file input and output.
"""

import sys
import tempfile
from pathlib import Path
import numpy as np
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from voxel_mesher import Color, Group, Material, MaterialType, Model, generate_mesh
from voxel_mesher.cli import main
from voxel_mesher.exporters import CoordinateSystem, GLTFExporter, OBJExporter
from voxel_mesher.exporters.coordinates import transform_vertices
from voxel_mesher.exporters.gltf_exporter import read_glb_json
from voxel_mesher.mesher import placeholder_model
from voxel_mesher.vox import load_vox, read_vox, save_vox


def two_color_model() -> Model:
    model = Model()
    glow = model.add_material(Material(name="glow", type=MaterialType.BASIC))
    red = model.add_color(Color.from_hex("red", "#FF0000"))
    blue = model.add_color(Color.from_hex("blue", "#0000FF", material=glow))
    model.voxels.set_voxel(0, 0, 0, red)
    model.voxels.set_voxel(1, 0, 0, red)
    model.voxels.set_voxel(1, 1, 0, blue)
    return model


class TestCoordinates(unittest.TestCase):
    """Tests for coordinate conversion."""

    def test_internal(self):
        """Test that internal and Godot coordinates are unchanged."""
        points = np.array([[1.0, 2.0, 3.0]])
        assert np.allclose(transform_vertices(points, CoordinateSystem.GODOT), points)

    def test_blender(self):
        """Test the Y-up to Z-up conversion."""
        points = np.array([[1.0, 2.0, 3.0]])
        result = transform_vertices(points, CoordinateSystem.BLENDER)
        assert result.dtype == np.float32
        assert np.allclose(result, [[1.0, -3.0, 2.0]])


class TestGLTFExporter(unittest.TestCase):
    """Tests for GLTFExporter class."""

    def test_build(self):
        """Test the glTF document of a two material mesh."""
        mesh = generate_mesh(two_color_model())
        gltf, data = GLTFExporter().build(mesh)

        assert gltf["asset"]["version"] == "2.0"
        primitives = gltf["meshes"][0]["primitives"]
        assert len(primitives) == 2
        assert len(gltf["materials"]) == 2
        assert gltf["extensionsUsed"] == ["KHR_materials_unlit"]
        assert len(data) == gltf["buffers"][0]["byteLength"]
        assert len(data) % 4 == 0

        index_counts = [gltf["accessors"][p["indices"]]["count"] for p in primitives]
        assert sum(index_counts) == len(mesh.indices)
        color = gltf["accessors"][primitives[0]["attributes"]["COLOR_0"]]
        assert color["normalized"] is True
        assert color["count"] == mesh.vertex_count

    def test_export_glb(self):
        """Test writing and reading back a .glb file."""
        mesh = generate_mesh(two_color_model())
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "model.glb"
            GLTFExporter(scale=2.0).export(mesh, path, mesh_name="Test")

            gltf = read_glb_json(path)
            assert gltf["nodes"][0]["name"] == "Test"
            position = gltf["accessors"][gltf["meshes"][0]["primitives"][0]["attributes"]["POSITION"]]
            assert np.allclose(position["max"], mesh.positions.max(axis=0) * 2.0)

    def test_placeholder_flag(self):
        """Test that placeholder meshes are marked in the file."""
        mesh = generate_mesh(placeholder_model())._replace(placeholder=True)
        gltf, _ = GLTFExporter().build(mesh)
        assert gltf["asset"]["extras"]["placeholder"] is True

    def test_empty_mesh(self):
        """Test that empty meshes are rejected."""
        with self.assertRaises(ValueError):
            GLTFExporter().build(generate_mesh(Model()))


class TestOBJExporter(unittest.TestCase):
    """Tests for OBJExporter class."""

    def test_build(self):
        """Test OBJ lines for a cube."""
        mesh = generate_mesh(placeholder_model())
        lines = OBJExporter().build(mesh, "cube", "cube.mtl")

        vertices = [line for line in lines if line.startswith("v ")]
        faces = [line for line in lines if line.startswith("f ")]
        assert len(vertices) == mesh.vertex_count
        assert len(faces) == 12
        assert "mtllib cube.mtl" in lines
        assert faces[0].count("//") == 3
        assert vertices[0].split()[4:] == ["1.0000", "0.0000", "1.0000"]

    def test_export(self):
        """Test writing OBJ and MTL files."""
        mesh = generate_mesh(two_color_model())
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "model.obj"
            OBJExporter().export(mesh, path)

            text = path.read_text()
            mtl = path.with_suffix(".mtl").read_text()
            assert text.count("usemtl") == 2
            assert "newmtl glow" in mtl


class TestVox(unittest.TestCase):
    """Tests for .vox reading and writing."""

    def test_roundtrip(self):
        """Test that saved voxels load back in place."""
        model = Model()
        red = model.add_color(Color.from_hex("red", "#FF0000"))
        green = model.add_color(Color.from_hex("green", "#00FF00"))
        model.voxels.set_voxel(0, 0, 0, red)
        model.voxels.set_voxel(2, 1, 0, green)
        model.voxels.set_voxel(2, 1, 3, red)

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "model.vox"
            save_vox(model, path)

            vox = read_vox(path)
            assert len(vox.models) == 1
            assert vox.models[0].size == (3, 4, 2)

            loaded = load_vox(path)

        assert loaded.voxels.count == 3
        assert len(loaded.colors) == 2
        for voxel in model.voxels.iter_voxels():
            copy = loaded.voxels.get_voxel(*voxel.position)
            assert copy is not None
            assert np.allclose(copy.color.rgb, voxel.color.rgb)

    def test_bad_magic(self):
        """Test that other files are rejected."""
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "model.vox"
            path.write_bytes(b"NOPE" + bytes(16))
            with self.assertRaises(ValueError):
                read_vox(path)

    def test_empty_group(self):
        """Test that empty groups cannot be saved."""
        model = Model()
        model.add_group(Group(id="empty"))
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ValueError):
                save_vox(model, Path(tmp) / "model.vox", group="empty")


class TestCLI(unittest.TestCase):
    """Tests for the voxmesh command."""

    def test_convert(self):
        """Test meshing a .vox file to glTF and OBJ."""
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "model.vox"
            save_vox(two_color_model(), source)

            status = main([
                str(source), "-o", str(Path(tmp) / "out"), "-f", "glb", "obj",
                "--lighting", "smooth", "--deform", "2", "1", "1", "--quick-ao", "0.5"
            ])

            assert status == 0
            assert (Path(tmp) / "out.glb").exists()
            assert (Path(tmp) / "out.obj").exists()

    def test_missing_input(self):
        """Test the exit status for a missing file."""
        assert main(["/nonexistent/model.vox"]) == 1


if __name__ == "__main__":
    unittest.main(verbosity=2)
