"""
Unit tests for shapes, directional effects and group matrices.
"""

import sys
from pathlib import Path
import numpy as np
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from voxel_mesher import (
    AxisEffect, Bend, BendDirection, EffectKind, Group, Interpolation, Model, ModelStructureError,
    Resize, Shape
)
from voxel_mesher.voxels import BoundingBox
from voxel_mesher.shapes import project_points
from voxel_mesher.transform import (
    bend_points, compute_group_matrices, effect_offsets, interpolate, resize_factors,
    rotation_matrix
)


class TestInterpolation(unittest.TestCase):
    """Tests for effect interpolation."""

    def test_single_value(self):
        """Test that one value is constant."""
        result = interpolate([2.0], np.linspace(0, 1, 5), Interpolation.LINEAR)
        assert np.allclose(result, 2.0)

    def test_linear(self):
        """Test linear interpolation between evenly spread values."""
        result = interpolate([0.0, 1.0, 4.0], np.array([0.0, 0.25, 0.5, 0.75, 1.0]), Interpolation.LINEAR)
        assert np.allclose(result, [0.0, 0.5, 1.0, 2.5, 4.0])

    def test_spline_hits_knots(self):
        """Test that the spline passes through its control values."""
        values = [1.0, 3.0, 2.0, 5.0]
        knots = np.linspace(0, 1, len(values))
        result = interpolate(values, knots, Interpolation.SPLINE)
        assert np.allclose(result, values)

    def test_clamped_parameter(self):
        """Test that parameters outside [0, 1] are clamped."""
        result = interpolate([1.0, 2.0], np.array([-1.0, 2.0]), Interpolation.LINEAR)
        assert np.allclose(result, [1.0, 2.0])


class TestShapes(unittest.TestCase):
    """Tests for sphere and cylinder projection."""

    def test_sphere_ring(self):
        """Test that points on one box ring land on one sphere."""
        points = np.array([[1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [1.0, 1.0, 1.0]])
        projected, ring = project_points(points, np.zeros(3), Shape.SPHERE)

        assert np.allclose(ring, 1.0)
        assert np.allclose(np.linalg.norm(projected, axis=1), 1.0)

    def test_cylinder_keeps_axis(self):
        """Test that a cylinder leaves its own axis alone."""
        points = np.array([[1.0, 5.0, 1.0]])
        projected, _ = project_points(points, np.zeros(3), Shape.CYLINDER_Y)

        assert np.isclose(projected[0, 1], 5.0)
        assert np.isclose(np.hypot(projected[0, 0], projected[0, 2]), 1.0)

    def test_center_stays(self):
        """Test that the projection center does not move."""
        projected, _ = project_points(np.zeros((1, 3)), np.zeros(3), Shape.SPHERE)
        assert np.allclose(projected, 0.0)


class TestEffects(unittest.TestCase):
    """Tests for directional effects and bends."""

    def setUp(self):
        self.bounds = BoundingBox([0, 0, 0], [2, 4, 2])

    def test_scale_along(self):
        """Test a scale that grows along another axis."""
        points = np.array([[0.0, 0.0, 1.0], [0.0, 4.0, 1.0]])
        effect = AxisEffect(kind=EffectKind.SCALE, axis=0, along=1, values=(1.0, 2.0))
        moved = points + effect_offsets(effect, points, self.bounds)

        # Bottom untouched, top twice as far from the center on x
        assert np.allclose(moved[0], points[0])
        assert np.allclose(moved[1], [-1.0, 4.0, 1.0])

    def test_translate_along(self):
        """Test a translation that varies along another axis."""
        points = np.array([[1.0, 0.0, 1.0], [1.0, 2.0, 1.0], [1.0, 4.0, 1.0]])
        effect = AxisEffect(kind=EffectKind.TRANSLATE, axis=2, along=1, values=(0.0, 1.0))
        offsets = effect_offsets(effect, points, self.bounds)
        assert np.allclose(offsets[:, 2], [0.0, 0.5, 1.0])

    def test_rotate_keeps_distance(self):
        """Test that a twist keeps distances to the center."""
        points = np.array([[2.0, 4.0, 1.0]])
        effect = AxisEffect(kind=EffectKind.ROTATE, axis=1, along=1, values=(0.0, 90.0))
        moved = points + effect_offsets(effect, points, self.bounds)

        center = self.bounds.center
        assert np.isclose(np.linalg.norm(moved[0] - center), np.linalg.norm(points[0] - center))
        assert np.allclose(moved[0], [1.0, 4.0, 0.0])

    def test_parallel_effect_rejected(self):
        """Test that a scale cannot be driven by its own axis."""
        with self.assertRaises(ValueError):
            AxisEffect(kind=EffectKind.SCALE, axis=1, along=1, values=(1.0, 2.0))

    def test_bend_keeps_length(self):
        """Test that bending keeps the length of the bent center line."""
        line = np.array([[1.0, y, 1.0] for y in np.linspace(0, 4, 9)])
        # Arc length radius * angle matches the span length
        bend = Bend(axis=1, toward=0, angle=90.0, radius=8.0 / np.pi)
        bent = bend_points(line.copy(), line, self.bounds, bend)

        assert np.allclose(bent[0], line[0])
        length = np.linalg.norm(np.diff(bent, axis=0), axis=1).sum()
        assert np.isclose(length, 4.0, atol=0.05)
        # A quarter turn leaves the end pointing along the bend direction
        assert bent[-1, 1] < 4.0

    def test_zero_bend(self):
        """Test that a zero angle leaves points alone."""
        points = np.array([[1.0, 2.0, 1.0]])
        bend = Bend(axis=1, toward=0, angle=0.0, radius=1.0)
        assert np.allclose(bend_points(points, points, self.bounds, bend), points)

    def test_bend_left(self):
        """Test that a left bend mirrors a right bend across the center line."""
        top = np.array([[1.0, 4.0, 1.0]])
        radius = 8.0 / np.pi
        right = bend_points(top, top, self.bounds, Bend(axis=1, toward=0, angle=90.0, radius=radius))
        left = bend_points(
            top, top, self.bounds,
            Bend(axis=1, toward=0, angle=90.0, radius=radius, direction=BendDirection.LEFT)
        )

        assert np.allclose(right[0], [1.0 + radius, radius, 1.0])
        assert np.allclose(left[0], [1.0 - radius, radius, 1.0])

    def test_negative_bend(self):
        """Test that a negative angle bends the part below the span end."""
        points = np.array([[1.0, 0.0, 1.0], [1.0, 4.0, 1.0]])
        radius = 8.0 / np.pi
        bent = bend_points(points, points, self.bounds, Bend(axis=1, toward=0, angle=-90.0, radius=radius))

        assert np.allclose(bent[1], points[1])
        assert np.allclose(bent[0], [1.0 + radius, 4.0 - radius, 1.0])


class TestGroupMatrices(unittest.TestCase):
    """Tests for group transform composition."""

    def test_rotation_matrix(self):
        """Test a quarter turn about Y."""
        matrix = rotation_matrix((0.0, 90.0, 0.0))
        assert np.allclose(matrix[:3, :3] @ [1.0, 0.0, 0.0], [0.0, 0.0, -1.0])

    def test_root_centered(self):
        """Test that the root group is centered on its vertex bounds."""
        model = Model()
        model.root.vertex_bounds = BoundingBox([0, 0, 0], [2, 2, 2])
        compute_group_matrices(model)
        assert np.allclose(model.root.matrix[:3, 3], [-1.0, -1.0, -1.0])

    def test_child_placement(self):
        """Test that a child inherits its parent's placement only."""
        model = Model()
        model.root.vertex_bounds = BoundingBox([0, 0, 0], [2, 2, 2])
        model.root.position = (10.0, 0.0, 0.0)
        child = Group(id="child", position=(0.0, 5.0, 0.0))
        child.vertex_bounds = BoundingBox([0, 0, 0], [4, 4, 4])
        model.add_group(child)

        compute_group_matrices(model)

        # Root pivot (1, 1, 1) is not applied to the child
        assert np.allclose(child.matrix[:3, 3], [10.0 - 2.0, 5.0 - 2.0, -2.0])

    def test_cycle_detection(self):
        """Test that circular parents abort matrix composition."""
        model = Model()
        model.add_group(Group(id="a", parent="b"))
        model.add_group(Group(id="b", parent="a"))
        with self.assertRaises(ModelStructureError):
            compute_group_matrices(model)

    def test_resize_fill(self):
        """Test that resize maps vertex bounds back onto voxel bounds."""
        group = Group(resize=Resize.FILL)
        group.bounds = BoundingBox([0, 0, 0], [3, 3, 3])
        group.vertex_bounds = BoundingBox([0.5, 0.5, 0.5], [2.5, 3.5, 4.5])
        assert np.allclose(resize_factors(group), [2.0, 4.0 / 3.0, 1.0])

        group.resize = Resize.FIT
        assert np.allclose(resize_factors(group), 1.0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
