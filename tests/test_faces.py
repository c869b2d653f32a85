"""
Unit tests for face building, normals and deformation.
"""

import sys
from pathlib import Path
import numpy as np
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from voxel_mesher import (
    Color, Deform, LightingMode, Material, MaterialSide, Model, PlanarRule, Shape, Side, Warp
)
from voxel_mesher.faces import FaceBuilder, FaceStore, face_midpoints
from voxel_mesher.vertices import VertexStore
from voxel_mesher.deformer import build_links, deform, mark_tiles, warp
from voxel_mesher.normals import calculate_normals, non_manifold_vertices, select_normals
from voxel_mesher.shapes import project_shapes


def build(model: Model):
    """Run the face builder and freeze the stores."""
    vertices = VertexStore()
    faces = FaceStore()
    FaceBuilder(model).build(vertices, faces)
    vertices.freeze()
    faces.freeze()
    return vertices, faces


def single_color_model(positions, material: Material = None) -> Model:
    model = Model()
    if material is not None:
        model.materials[0] = material
    color = model.add_color(Color.from_hex("A", "#808080"))
    for position in positions:
        model.voxels.set_voxel(*position, color)
    return model


class TestFaceBuilder(unittest.TestCase):
    """Tests for FaceBuilder class."""

    def test_single_voxel(self):
        """Test that a lone voxel gets 6 faces over 8 shared vertices."""
        vertices, faces = build(single_color_model([(0, 0, 0)]))

        assert len(faces) == 6
        assert len(vertices) == 8
        assert sorted(faces.side.tolist()) == [0, 1, 2, 3, 4, 5]

    def test_hidden_shared_face(self):
        """Test that touching voxels of one material hide their shared faces."""
        vertices, faces = build(single_color_model([(0, 0, 0), (1, 0, 0)]))

        assert len(faces) == 10
        assert len(vertices) == 12
        assert (faces.side == Side.PX).sum() == 1
        assert (faces.side == Side.NX).sum() == 1

    def test_transparent_neighbor(self):
        """Test faces between an opaque and a transparent material."""
        model = Model()
        glass_index = model.add_material(Material(name="glass", opacity=0.5))
        solid = model.add_color(Color.from_hex("solid", "#808080"))
        glass = model.add_color(Color.from_hex("glass", "#80C0FF", material=glass_index))
        model.voxels.set_voxel(0, 0, 0, solid)
        model.voxels.set_voxel(1, 0, 0, glass)

        vertices, faces = build(model)

        # Both faces of the shared wall stay
        assert len(faces) == 12
        solid_px = (faces.side == Side.PX) & (faces.material == 0)
        glass_nx = (faces.side == Side.NX) & (faces.material == glass_index)
        assert solid_px.sum() == 1
        assert glass_nx.sum() == 1

    def test_opaque_neighbor(self):
        """Test that two opaque materials hide the wall between them."""
        model = Model()
        stone_index = model.add_material(Material(name="stone", roughness=0.5))
        wood = model.add_color(Color.from_hex("wood", "#806040"))
        stone = model.add_color(Color.from_hex("stone", "#808080", material=stone_index))
        model.voxels.set_voxel(0, 0, 0, wood)
        model.voxels.set_voxel(1, 0, 0, stone)

        vertices, faces = build(model)

        assert len(faces) == 10
        assert len(vertices) == 12

    def test_invisible_material(self):
        """Test that fully transparent voxels create no faces."""
        vertices, faces = build(single_color_model([(0, 0, 0)], Material(opacity=0.0)))
        assert len(faces) == 0

    def test_skip_rule(self):
        """Test that skipped bounds create no faces."""
        model = single_color_model([(0, 0, 0), (0, 1, 0)])
        model.skip = PlanarRule.parse("-y")

        vertices, faces = build(model)

        assert len(faces) == 9
        assert (faces.side == Side.NY).sum() == 0

    def test_material_rule_overrides_model(self):
        """Test that a material rule replaces the model rule."""
        model = single_color_model([(0, 0, 0)], Material(hide=PlanarRule.parse("+y")))
        model.hide = PlanarRule.parse("x")

        vertices, faces = build(model)

        assert faces.hidden.sum() == 1
        assert faces.side[faces.hidden][0] == Side.PY
        assert len(faces.visible) == 5

    def test_flatten_locks(self):
        """Test that flattened faces lock their vertices on the face axis."""
        model = single_color_model([(0, 0, 0)])
        model.flatten = PlanarRule.parse("-y")

        vertices, faces = build(model)

        bottom = faces.vertices[faces.side == Side.NY][0]
        assert vertices.flatten[bottom, 1].all()
        assert not vertices.flatten[:, 0].any()

    def test_midpoints(self):
        """Test face midpoints."""
        vertices, faces = build(single_color_model([(0, 0, 0)]))
        midpoints = face_midpoints(vertices.positions, faces)
        top = np.flatnonzero(faces.side == Side.PY)[0]
        assert np.allclose(midpoints[top], [0.5, 1.0, 0.5])

    def test_back_side_same_material(self):
        """Test that back-sided voxels of one material keep their shared faces."""
        vertices, faces = build(
            single_color_model([(0, 0, 0), (1, 0, 0)], Material(side=MaterialSide.BACK))
        )

        assert len(faces) == 12
        inner = (faces.side == Side.PX) & (faces.voxel[:, 0] == 0)
        assert inner.sum() == 1

    def test_skip_after_clear(self):
        """Test that planar rules follow the bounds left after clearing a voxel."""
        model = single_color_model([(x, 0, 0) for x in range(4)])
        model.voxels.clear_voxel(3, 0, 0)
        model.skip = PlanarRule.parse("+x")

        vertices, faces = build(model)

        assert (faces.side == Side.PX).sum() == 0
        assert len(faces) == 13


class TestNormals(unittest.TestCase):
    """Tests for normal calculation."""

    def tilted_top_normal(self, tile: bool) -> np.ndarray:
        model = single_color_model([(0, 0, 0)])
        if tile:
            model.tile = PlanarRule.parse("x")
        vertices, faces = build(model)
        mark_tiles(model, vertices)

        raised = (vertices.grid[:, 0] == 1) & (vertices.grid[:, 1] == 1)
        vertices.positions[raised, 1] += 0.5
        calculate_normals(model, vertices, faces)
        return faces.flat_normals[faces.side == Side.PY][0, 0]

    def test_tiled_normals(self):
        """Test that tiled vertices drop the normal component across the tile."""
        assert self.tilted_top_normal(tile=False)[0] < -0.1
        assert np.allclose(self.tilted_top_normal(tile=True), [0.0, 1.0, 0.0])

    def test_equidistant_both_normals(self):
        """Test that faces on one shape ring use smooth normals in 'both' mode."""
        model = single_color_model([(0, 0, 0)])
        model.root.shape = Shape.SPHERE
        vertices, faces = build(model)
        project_shapes(model, vertices, faces)
        calculate_normals(model, vertices, faces)

        assert faces.equidistant.all()
        assert np.allclose(faces.both_normals, faces.smooth_normals)
        assert not np.allclose(faces.both_normals, faces.flat_normals)

    def test_box_both_normals(self):
        """Test that flat materials without a shape keep flat 'both' normals."""
        model = single_color_model([(0, 0, 0)])
        vertices, faces = build(model)
        project_shapes(model, vertices, faces)
        calculate_normals(model, vertices, faces)

        assert not faces.equidistant.any()
        assert np.allclose(faces.both_normals, faces.flat_normals)

    def test_flat_normals_point_outward(self):
        """Test flat normals on a cube."""
        model = single_color_model([(0, 0, 0)])
        vertices, faces = build(model)
        calculate_normals(model, vertices, faces)
        select_normals(model, faces)

        for face in range(len(faces)):
            expected = Side(int(faces.side[face])).normal
            assert np.allclose(faces.normals[face], expected)

    def test_smooth_normals(self):
        """Test averaged normals on a cube corner."""
        model = single_color_model([(0, 0, 0)], Material(lighting=LightingMode.SMOOTH))
        vertices, faces = build(model)
        calculate_normals(model, vertices, faces)
        select_normals(model, faces)

        origin = vertices.find(0, 0, 0, 0)
        face, corner = np.argwhere(faces.vertices == origin)[0]
        assert np.allclose(faces.normals[face, corner], -np.ones(3) / np.sqrt(3))

    def test_side_normals(self):
        """Test that side normals follow the face side on a flat cube."""
        model = single_color_model([(0, 0, 0)], Material(lighting=LightingMode.SIDES))
        vertices, faces = build(model)
        calculate_normals(model, vertices, faces)
        select_normals(model, faces)

        assert np.allclose(faces.normals, faces.flat_normals)

    def test_non_manifold_edge(self):
        """Test detection of voxels touching along an edge only."""
        model = single_color_model([(0, 0, 0), (1, 1, 0)], Material(lighting=LightingMode.SMOOTH))
        vertices, faces = build(model)
        broken = non_manifold_vertices(len(vertices), faces)

        # The two vertices on the shared edge
        assert broken.sum() == 2
        assert broken[vertices.find(0, 1, 1, 0)]
        assert broken[vertices.find(0, 1, 1, 1)]

        fixes = calculate_normals(model, vertices, faces)
        assert fixes > 0
        select_normals(model, faces)
        edge_corners = np.isin(faces.vertices, np.flatnonzero(broken))
        assert np.allclose(faces.normals[edge_corners], faces.flat_normals[edge_corners])


class TestDeformer(unittest.TestCase):
    """Tests for Laplacian deformation."""

    def test_links(self):
        """Test that cube corners link to their 3 edge neighbors."""
        vertices, faces = build(single_color_model([(0, 0, 0)]))
        graph = build_links(vertices, faces)

        assert np.all(graph.degrees == 3)
        origin = vertices.find(0, 0, 0, 0)
        linked = {tuple(vertices.grid[v]) for v in graph.links(origin)}
        assert linked == {(1, 0, 0), (0, 1, 0), (0, 0, 1)}

    def test_no_deform(self):
        """Test that materials without deform leave vertices in place."""
        vertices, faces = build(single_color_model([(0, 0, 0)]))
        before = vertices.positions.copy()

        assert deform(vertices, build_links(vertices, faces)) == 0
        assert np.array_equal(vertices.positions, before)

    def test_zero_strength(self):
        """Test that zero strength leaves vertices in place."""
        vertices, faces = build(single_color_model([(0, 0, 0)], Material(deform=Deform(count=2, strength=0.0))))
        before = vertices.positions.copy()

        deform(vertices, build_links(vertices, faces))
        assert np.allclose(vertices.positions, before)

    def test_single_pass(self):
        """Test that one full pass moves a vertex to the mean of its links."""
        vertices, faces = build(single_color_model([(0, 0, 0)], Material(deform=Deform(count=1))))

        assert deform(vertices, build_links(vertices, faces)) == 1
        origin = vertices.find(0, 0, 0, 0)
        assert np.allclose(vertices.positions[origin], [1 / 3, 1 / 3, 1 / 3])

    def test_clamped_face(self):
        """Test that clamped faces keep their vertices on the plane."""
        model = single_color_model(
            [(x, 0, z) for x in range(3) for z in range(3)],
            Material(deform=Deform(count=3))
        )
        model.clamp = PlanarRule.parse("-y")
        vertices, faces = build(model)

        deform(vertices, build_links(vertices, faces))

        bottom = vertices.grid[:, 1] == 0
        assert np.allclose(vertices.positions[bottom, 1], 0.0)
        assert not np.allclose(vertices.positions[~bottom, 1], vertices.grid[~bottom, 1])

    def test_damping(self):
        """Test that each pass is weakened by the damping factor."""
        vertices, faces = build(single_color_model([(0, 0, 0)], Material(deform=Deform(count=2, damping=0.5))))

        assert deform(vertices, build_links(vertices, faces)) == 2
        # First pass to 1/3, second pass half way on to 4/9
        origin = vertices.find(0, 0, 0, 0)
        assert np.allclose(vertices.positions[origin], [7 / 18, 7 / 18, 7 / 18])

    def test_clamped_self_link(self):
        """Test that clamped faces link their corners to themselves."""
        model = single_color_model([(0, 0, 0)])
        model.clamp = PlanarRule.parse("-y")
        vertices, faces = build(model)
        graph = build_links(vertices, faces)

        origin = vertices.find(0, 0, 0, 0)
        assert origin in graph.links(origin)
        assert graph.degrees[origin] == 4

    def test_fully_clamped_relink(self):
        """Test that vertices on clamped faces only are linked to their quad neighbors."""
        model = single_color_model([(0, 0, 0)])
        model.clamp = PlanarRule.parse("x y z")
        vertices, faces = build(model)
        graph = build_links(vertices, faces)

        assert np.all(graph.degrees == 3)
        origin = vertices.find(0, 0, 0, 0)
        linked = {tuple(vertices.grid[v]) for v in graph.links(origin)}
        assert linked == {(1, 0, 0), (0, 1, 0), (0, 0, 1)}

    def test_tiled_axis_locked(self):
        """Test that deformation keeps tiled vertices on their tile plane."""
        model = single_color_model([(0, 0, 0), (1, 0, 0)], Material(deform=Deform(count=2)))
        model.tile = PlanarRule.parse("x")
        vertices, faces = build(model)

        assert mark_tiles(model, vertices) == 8
        deform(vertices, build_links(vertices, faces))

        tiled = vertices.tile[:, 0]
        assert np.allclose(vertices.positions[tiled, 0], vertices.grid[tiled, 0])
        assert not np.allclose(vertices.positions[tiled, 1], vertices.grid[tiled, 1])


class TestWarp(unittest.TestCase):
    """Tests for noise warp and scatter."""

    def test_flatten_axis_locked(self):
        """Test that warp leaves flattened axes alone."""
        model = single_color_model([(0, 0, 0)], Material(warp=Warp.uniform(0.4, 0.37)))
        model.flatten = PlanarRule.parse("-y")
        vertices, faces = build(model)

        assert warp(vertices) == 8

        bottom = vertices.flatten[:, 1]
        assert bottom.sum() == 4
        assert np.allclose(vertices.positions[bottom, 1], 0.0)
        assert not np.allclose(vertices.positions[~bottom], vertices.grid[~bottom])

    def test_clamp_axis_locked(self):
        """Test that warp leaves clamped axes alone."""
        model = single_color_model([(0, 0, 0)], Material(warp=Warp.uniform(0.4, 0.37)))
        model.clamp = PlanarRule.parse("+y")
        vertices, faces = build(model)

        warp(vertices)

        top = vertices.clamp[:, 1]
        assert top.sum() == 4
        assert np.allclose(vertices.positions[top, 1], 1.0)

    def test_scatter_seeded(self):
        """Test that scatter repeats for one seed and stays within its distance."""
        def scattered(seed: int) -> np.ndarray:
            vertices, faces = build(single_color_model([(0, 0, 0)], Material(scatter=0.2)))
            warp(vertices, np.random.default_rng(seed))
            return vertices.positions - vertices.grid

        first = scattered(5)
        assert np.array_equal(first, scattered(5))
        assert not np.allclose(first, scattered(6))
        assert np.all(np.abs(first) <= 0.2)

    def test_tiles_skip_warp(self):
        """Test that tiled vertices are not scattered."""
        model = single_color_model([(0, 0, 0), (1, 0, 0)], Material(scatter=0.3))
        model.tile = PlanarRule.parse("x")
        vertices, faces = build(model)
        mark_tiles(model, vertices)

        assert warp(vertices, np.random.default_rng(1)) == 4

        tiled = vertices.tile.any(axis=1)
        assert np.array_equal(vertices.positions[tiled], vertices.grid[tiled])
        assert not np.allclose(vertices.positions[~tiled], vertices.grid[~tiled])


class TestShapeFaces(unittest.TestCase):
    """Tests for equidistant face marking."""

    def test_row_on_sphere(self):
        """Test which faces of a row share one ring after sphere projection."""
        model = single_color_model([(0, 0, 0), (1, 0, 0), (2, 0, 0)])
        model.root.shape = Shape.SPHERE
        vertices, faces = build(model)

        assert project_shapes(model, vertices, faces) == 16

        # Both end caps and the four sides of the middle voxel
        assert faces.equidistant.sum() == 6
        caps = (faces.side == Side.NX) | (faces.side == Side.PX)
        assert faces.equidistant[caps].all()
        middle = faces.voxel[:, 0] == 1
        assert faces.equidistant[middle].all()


if __name__ == "__main__":
    unittest.main(verbosity=2)
