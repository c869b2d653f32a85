"""
Unit tests for the octree, ambient occlusion, lights and colors.
"""

import sys
from pathlib import Path
import numpy as np
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from voxel_mesher import (
    AmbientOcclusion, Color, Light, Material, Model, PlanarRule, QuickAO, ShadowQuality, Side
)
from voxel_mesher.color import ColorCombiner, linear_to_srgb, srgb_to_linear, to_uint8
from voxel_mesher.faces import FaceBuilder, FaceStore
from voxel_mesher.lighting import (
    OctreeCache, compute_ambient_occlusion, compute_lighting, compute_quick_ao,
    fibonacci_sphere, light_position
)
from voxel_mesher.normals import calculate_normals, select_normals
from voxel_mesher.octree import (
    Octree, build_octree, distance_to_octree, distance_to_triangles, hits_box,
    hits_octree, sides_octree
)
from voxel_mesher.transform import compute_group_matrices, update_bounds
from voxel_mesher.vertices import VertexStore


# A unit square at z=0 facing +z, split into two triangles
SQUARE = np.array([
    [[0, 0, 0], [1, 0, 0], [1, 1, 0]],
    [[0, 0, 0], [1, 1, 0], [0, 1, 0]],
], dtype=np.float64)


def prepared(model: Model):
    """Build faces and normals without moving any vertex."""
    vertices = VertexStore()
    faces = FaceStore()
    FaceBuilder(model).build(vertices, faces)
    vertices.freeze()
    faces.freeze()
    calculate_normals(model, vertices, faces)
    update_bounds(model, vertices)
    select_normals(model, faces)
    return vertices, faces


def cube_model(positions, **material_settings) -> Model:
    model = Model()
    model.materials[0] = Material(**material_settings)
    color = model.add_color(Color.from_hex("A", "#FFFFFF"))
    for position in positions:
        model.voxels.set_voxel(*position, color)
    return model


class TestIntersection(unittest.TestCase):
    """Tests for segment and triangle queries."""

    def test_front_face_hit(self):
        """Test a hit on the front of a triangle."""
        t = distance_to_triangles([0.25, 0.25, 2.0], [0, 0, -1], 5.0, SQUARE)
        assert t is not None
        assert np.isclose(t, 2.0)

    def test_back_face_miss(self):
        """Test that back faces are ignored."""
        assert distance_to_triangles([0.25, 0.25, -2.0], [0, 0, 1], 5.0, SQUARE) is None

    def test_short_segment(self):
        """Test that hits beyond the segment are ignored."""
        assert distance_to_triangles([0.25, 0.25, 2.0], [0, 0, -1], 1.5, SQUARE) is None

    def test_parallel_ray(self):
        """Test that rays in the triangle plane never hit."""
        assert distance_to_triangles([-1.0, 0.5, 0.0], [1, 0, 0], 5.0, SQUARE) is None

    def test_box(self):
        """Test segment and box overlap."""
        assert hits_box([-1, 0.5, 0.5], [1, 0, 0], 2.0, [0, 0, 0], [1, 1, 1])
        assert not hits_box([-1, 0.5, 0.5], [1, 0, 0], 0.5, [0, 0, 0], [1, 1, 1])
        assert not hits_box([-1, 2.0, 0.5], [1, 0, 0], 5.0, [0, 0, 0], [1, 1, 1])


class TestOctree(unittest.TestCase):
    """Tests for Octree class."""

    def setUp(self):
        # A grid of small squares, enough to force interior nodes
        squares = []
        for x in range(6):
            for y in range(6):
                squares.append(SQUARE + [x, y, 0])
        self.octree = Octree(np.concatenate(squares))

    def test_structure(self):
        """Test that large soups are split into nodes."""
        assert self.octree.triangle_count == 72
        assert self.octree.node_count > 1
        assert sorted(self.octree.tri_order.tolist()) == list(range(72))

    def test_distance(self):
        """Test nearest hit distance and misses."""
        assert np.isclose(distance_to_octree(self.octree, [3.5, 4.5, 1.0], [0, 0, -1], 3.0), 1.0)
        assert distance_to_octree(self.octree, [3.5, 4.5, 1.0], [0, 0, 1], 3.0) is None
        assert distance_to_octree(self.octree, [10.0, 10.0, 1.0], [0, 0, -1], 3.0) is None

    def test_distance_below_max(self):
        """Test that reported distances never reach the segment length."""
        rng = np.random.default_rng(7)
        origins = rng.uniform(-1, 7, size=(200, 3))
        origins[:, 2] = rng.uniform(0.1, 3.0, size=200)
        directions = rng.normal(size=(200, 3))
        directions[:, 2] = -np.abs(directions[:, 2])
        directions /= np.linalg.norm(directions, axis=1, keepdims=True)

        distances = self.octree.distances(origins, directions, 2.0)
        hit = distances >= 0
        assert hit.any()
        assert np.all(distances[hit] < 2.0)

        for origin, direction, distance in zip(origins[:20], directions[:20], distances[:20]):
            assert hits_octree(self.octree, origin, direction, 2.0) == (distance >= 0)

    def test_empty(self):
        """Test queries against an empty tree."""
        octree = Octree(np.zeros((0, 3, 3)))
        assert octree.triangle_count == 0
        assert not octree.hits([0, 0, 1], [0, 0, -1], 5.0)

    def test_merged(self):
        """Test that merged trees answer for both inputs."""
        other = Octree(SQUARE + [0, 0, -5])
        merged = Octree.merged(self.octree, other)

        assert merged.triangle_count == 74
        assert np.isclose(merged.distance([3.5, 4.5, 1.0], [0, 0, -1], 10.0), 1.0)
        assert np.isclose(merged.distance([0.5, 0.5, -4.0], [0, 0, -1], 10.0), 1.0)

    def test_sides(self):
        """Test that side walls face inward."""
        walls = sides_octree(np.zeros(3), np.ones(3), PlanarRule.parse("-y"))
        assert walls.triangle_count == 4
        assert walls.hits([0.5, 0.5, 0.5], [0, -1, 0], 2.0)
        assert not walls.hits([0.5, -1.0, 0.5], [0, 1, 0], 2.0)
        assert sides_octree(np.zeros(3), np.ones(3), PlanarRule()) is None


class TestAmbientOcclusion(unittest.TestCase):
    """Tests for ray traced and quick ambient occlusion."""

    def test_fibonacci_sphere(self):
        """Test that sample directions are unit length and balanced."""
        directions = fibonacci_sphere(500)
        assert directions.shape == (500, 3)
        assert np.allclose(np.linalg.norm(directions, axis=1), 1.0)
        assert np.all(np.abs(directions.mean(axis=0)) < 0.05)

    def test_isolated_voxel(self):
        """Test that a lone voxel has no occlusion."""
        model = cube_model([(0, 0, 0)], ao=AmbientOcclusion(max_distance=2.0, samples=64))
        vertices, faces = prepared(model)
        octrees = OctreeCache(lambda sides: build_octree(model, vertices.positions, faces, sides))

        compute_ambient_occlusion(model, vertices, faces, octrees)

        assert np.allclose(faces.ao, 0.0)

    def test_inner_corner(self):
        """Test occlusion in the corner of an L shape."""
        model = cube_model(
            [(0, 0, 0), (1, 0, 0), (0, 1, 0)],
            ao=AmbientOcclusion(max_distance=2.0, samples=128)
        )
        vertices, faces = prepared(model)
        octrees = OctreeCache(lambda sides: build_octree(model, vertices.positions, faces, sides))

        hits = compute_ambient_occlusion(model, vertices, faces, octrees)

        # The top of (1, 0, 0) meets the +x wall of (0, 1, 0)
        top = [f for f in range(len(faces)) if faces.side[f] == Side.PY and tuple(faces.voxel[f]) == (1, 0, 0)][0]
        inner = [c for c in range(4) if vertices.grid[faces.vertices[top, c], 0] == 1]
        outer = [c for c in range(4) if vertices.grid[faces.vertices[top, c], 0] == 2]
        assert np.all(faces.ao[top, inner] > faces.ao[top, outer])
        assert np.all(faces.ao >= 0.0) and np.all(faces.ao <= 1.0)
        assert hits > 0
        assert len(octrees.trees) == 1

    def test_floor_sides(self):
        """Test that a floor wall darkens the bottom edge."""
        model = cube_model(
            [(0, 0, 0)],
            ao=AmbientOcclusion(max_distance=2.0, samples=128, sides=PlanarRule.parse("-y"))
        )
        vertices, faces = prepared(model)
        octrees = OctreeCache(lambda sides: build_octree(model, vertices.positions, faces, sides))

        compute_ambient_occlusion(model, vertices, faces, octrees)

        side = [f for f in range(len(faces)) if faces.side[f] == Side.PX][0]
        low = vertices.grid[faces.vertices[side], 1] == 0
        assert np.all(faces.ao[side, low] > 0.0)
        assert np.all(faces.ao[side, low] > faces.ao[side, ~low])

    def test_quick_ao(self):
        """Test neighbor based occlusion in an inner corner."""
        model = cube_model([(0, 0, 0), (1, 0, 0), (0, 1, 0)], quick_ao=QuickAO(intensity=0.9))
        vertices, faces = prepared(model)

        compute_quick_ao(model, faces)

        top = [f for f in range(len(faces)) if faces.side[f] == Side.PY and tuple(faces.voxel[f]) == (1, 0, 0)][0]
        inner = vertices.grid[faces.vertices[top], 0] == 1
        assert np.all(faces.ao[top, inner] > 0.0)
        assert np.allclose(faces.ao[top, ~inner], 0.0)
        assert faces.ao.max() <= 0.9 + 1e-9

    def quick_ao_top(self, opacity: float):
        model = cube_model([(0, 0, 0), (1, 0, 0)], quick_ao=QuickAO(intensity=0.9))
        other = model.add_material(Material(opacity=opacity))
        model.voxels.set_voxel(0, 1, 0, model.add_color(Color.from_hex("B", "#80C0FF", material=other)))
        vertices, faces = prepared(model)

        compute_quick_ao(model, faces)

        top = [f for f in range(len(faces)) if faces.side[f] == Side.PY and tuple(faces.voxel[f]) == (1, 0, 0)][0]
        inner = vertices.grid[faces.vertices[top], 0] == 1
        return faces.ao[top], inner

    def test_quick_ao_translucent_neighbor(self):
        """Test that translucent voxels occlude like opaque ones."""
        ao, inner = self.quick_ao_top(0.5)
        assert np.all(ao[inner] > 0.0)
        assert np.allclose(ao[~inner], 0.0)

    def test_quick_ao_invisible_neighbor(self):
        """Test that fully transparent voxels do not occlude."""
        ao, inner = self.quick_ao_top(0.0)
        assert np.allclose(ao, 0.0)


class TestLights(unittest.TestCase):
    """Tests for light evaluation."""

    def lit(self, model: Model):
        vertices, faces = prepared(model)
        compute_group_matrices(model)
        octree = build_octree(model, vertices.positions, faces)
        compute_lighting(model, vertices, faces, octree)
        return vertices, faces

    def test_no_lights(self):
        """Test that models without lights are fully lit."""
        vertices, faces = self.lit(cube_model([(0, 0, 0)]))
        assert np.allclose(faces.light, 1.0)

    def test_ambient(self):
        """Test that ambient light reaches every face."""
        model = cube_model([(0, 0, 0)])
        model.lights.append(Light(color=(1.0, 0.5, 0.0), intensity=0.5))
        vertices, faces = self.lit(model)
        assert np.allclose(faces.light, [0.5, 0.25, 0.0])

    def test_directional(self):
        """Test that a directional light only reaches faces turned toward it."""
        model = cube_model([(0, 0, 0)])
        model.lights.append(Light(direction=(0.0, 1.0, 0.0)))
        vertices, faces = self.lit(model)

        for face in range(len(faces)):
            expected = 1.0 if faces.side[face] == Side.PY else 0.0
            assert np.allclose(faces.light[face], expected)

    def test_shadow(self):
        """Test that a shadow casting light is blocked by a roof."""
        model = cube_model([(0, 0, 0), (0, 3, 0)])
        model.lights.append(Light(direction=(0.0, 1.0, 0.0), cast_shadow=True))
        vertices, faces = self.lit(model)

        floor_top = [f for f in range(len(faces)) if faces.side[f] == Side.PY and tuple(faces.voxel[f]) == (0, 0, 0)][0]
        roof_top = [f for f in range(len(faces)) if faces.side[f] == Side.PY and tuple(faces.voxel[f]) == (0, 3, 0)][0]
        assert np.allclose(faces.light[floor_top], 0.0)
        assert np.allclose(faces.light[roof_top], 1.0)

    def test_low_shadow_quality(self):
        """Test that low quality lights each shared corner once with the same result."""
        def light(quality: ShadowQuality):
            model = cube_model([(0, 0, 0), (1, 0, 0)])
            model.shadow_quality = quality
            model.lights.append(Light(direction=(0.3, 1.0, 0.2)))
            vertices, faces = prepared(model)
            compute_group_matrices(model)
            octree = build_octree(model, vertices.positions, faces)
            return compute_lighting(model, vertices, faces, octree), faces.light

        high_count, high = light(ShadowQuality.HIGH)
        low_count, low = light(ShadowQuality.LOW)

        assert high_count == 40
        # Top, bottom, front and back faces share two corners each
        assert low_count == 32
        assert np.allclose(low, high)

    def test_at_color_position(self):
        """Test that at-color lights sit at the center of their voxels."""
        model = cube_model([(0, 0, 0), (2, 0, 0)])
        model.lights.append(Light(at_color="A"))
        compute_group_matrices(model)
        assert np.allclose(light_position(model, model.lights[0]), [1.5, 0.5, 0.5])


class TestColor(unittest.TestCase):
    """Tests for color conversion and combination."""

    def test_srgb_linear_roundtrip(self):
        """Test sRGB to linear and back."""
        colors = np.random.rand(100, 3).astype(np.float32)
        back = linear_to_srgb(srgb_to_linear(colors))
        assert np.allclose(colors, back, atol=1e-4)

    def test_linear_zero_one(self):
        """Test the end points of the conversion."""
        colors = np.array([[0.0, 1.0, 0.5]], dtype=np.float64)
        linear = srgb_to_linear(colors)
        assert np.isclose(linear[0, 0], 0.0)
        assert np.isclose(linear[0, 1], 1.0)
        assert np.isclose(linear[0, 2], 0.2140, atol=1e-3)

    def test_to_uint8(self):
        """Test quantization with clipping."""
        assert list(to_uint8(np.array([-0.5, 0.0, 0.5, 1.0, 2.0]))) == [0, 0, 128, 255, 255]

    def test_combine_ao(self):
        """Test mixing toward the AO color."""
        model = cube_model([(0, 0, 0)], quick_ao=QuickAO(color=(1.0, 0.0, 0.0)))
        model.colors["A"] = Color.from_hex("A", "#000000")
        model.voxels.set_voxel(0, 0, 0, model.colors["A"])
        vertices, faces = prepared(model)
        faces.ao[:] = 0.25

        ColorCombiner(model).combine(vertices, faces)

        assert np.allclose(faces.vertex_colors, [0.25, 0.0, 0.0])

    def test_fade(self):
        """Test that fading materials blend the colors sharing a vertex."""
        model = Model()
        model.materials[0] = Material(fade=True)
        red = model.add_color(Color.from_hex("red", "#FF0000"))
        blue = model.add_color(Color.from_hex("blue", "#0000FF"))
        model.voxels.set_voxel(0, 0, 0, red)
        model.voxels.set_voxel(1, 0, 0, blue)
        vertices, faces = prepared(model)

        ColorCombiner(model).combine(vertices, faces)

        top = [f for f in range(len(faces)) if faces.side[f] == Side.PY and tuple(faces.voxel[f]) == (0, 0, 0)][0]
        shared = vertices.grid[faces.vertices[top], 0] == 1
        assert np.allclose(faces.vertex_colors[top, shared], [0.5, 0.0, 0.5])
        assert np.allclose(faces.vertex_colors[top, ~shared], [1.0, 0.0, 0.0])


if __name__ == "__main__":
    unittest.main(verbosity=2)
