#!/usr/bin/env python3
"""
Voxel Mesher Demo Script

This script demonstrates the full meshing pipeline by:
1. Creating synthetic voxel models (no external files needed)
2. Meshing them with several lighting and deformation settings
3. Exporting to glTF and OBJ
4. Printing statistics and comparisons

Run with: python examples/demo.py
"""

import sys
from pathlib import Path
import numpy as np
import time

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from voxel_mesher import (
    AmbientOcclusion, AxisEffect, Color, Deform, EffectKind, Light, LightingMode,
    Material, MeshGenerator, Model, Shape
)
from voxel_mesher.exporters import GLTFExporter, OBJExporter


def create_blob(size: int = 10) -> Model:
    """A rough ball that smooths nicely."""
    model = Model()
    color = model.add_color(Color.from_hex("blob", "#6496C8"))
    center = (size - 1) / 2
    for x in range(size):
        for y in range(size):
            for z in range(size):
                if np.sqrt((x - center)**2 + (y - center)**2 + (z - center)**2) < size / 2:
                    model.voxels.set_voxel(x, y, z, color)
    return model


def create_house() -> Model:
    """A box house with a glossy roof material and a twisted chimney."""
    model = Model()
    roof_material = model.add_material(Material(name="roof", roughness=0.3))
    walls = model.add_color(Color.from_hex("walls", "#E0D0B0"))
    roof = model.add_color(Color.from_hex("roof", "#A03020", material=roof_material))

    for x in range(8):
        for y in range(5):
            for z in range(6):
                model.voxels.set_voxel(x, y, z, walls)
    for layer in range(4):
        for x in range(layer, 8 - layer):
            for z in range(6):
                model.voxels.set_voxel(x, 5 + layer, z, roof)

    model.root.effects.append(
        AxisEffect(kind=EffectKind.SCALE, axis=0, along=1, values=(1.0, 1.0, 0.8))
    )
    model.lights.append(Light(intensity=0.4))
    model.lights.append(Light(direction=(1.0, 2.0, 1.0), intensity=0.8, cast_shadow=True))
    return model


def run_demo():
    """Run the demonstration."""
    print("=" * 60)
    print("Voxel Mesher - Demo")
    print("=" * 60)
    print()

    # Create output directory
    output_dir = Path(__file__).parent / "output"
    output_dir.mkdir(exist_ok=True)

    settings = [
        ("flat", LightingMode.FLAT, None, Shape.BOX),
        ("smooth", LightingMode.SMOOTH, Deform(count=3), Shape.BOX),
        ("sphere", LightingMode.SMOOTH, None, Shape.SPHERE),
    ]

    total_start = time.time()

    for name, lighting, deform, shape in settings:
        print(f"\n--- Blob: {name} ---")
        model = create_blob()
        for material in model.materials:
            material.lighting = lighting
            material.deform = deform
        model.root.shape = shape
        model.ao = AmbientOcclusion(intensity=0.5, max_distance=2.0, samples=32)

        generator = MeshGenerator(model)
        mesh = generator.generate()
        stats = generator.statistics

        print(f"  Voxels: {stats.voxels}")
        print(f"  Faces: {stats.faces_created} created, {stats.faces_merged} merged")
        print(f"  Output: {stats.output_vertices} vertices, {stats.output_triangles} triangles")
        for step, seconds in generator.timings.items():
            print(f"    {step}: {seconds*1000:.1f}ms")

        GLTFExporter().export(mesh, output_dir / f"blob_{name}.glb")
        print(f"  Saved: {output_dir / f'blob_{name}.glb'}")

    print("\n--- House ---")
    generator = MeshGenerator(create_house())
    mesh = generator.generate()
    print(f"  Draw groups: {len(mesh.groups)}")
    print(f"  Triangles: {mesh.triangle_count}")
    GLTFExporter().export(mesh, output_dir / "house.glb")
    OBJExporter().export(mesh, output_dir / "house.obj")
    print(f"  Saved: {output_dir / 'house.glb'}, {output_dir / 'house.obj'}")

    total_time = time.time() - total_start

    print("\n" + "=" * 60)
    print(f"Demo complete! Total time: {total_time:.2f}s")
    print(f"Output files in: {output_dir}")
    print("=" * 60)

    return 0


def benchmark_simplifier():
    """Compare face counts with and without face merging."""
    print("\n--- Simplifier Benchmark ---\n")

    for size in (8, 16, 24):
        model = Model()
        color = model.add_color(Color.from_hex("c", "#808080"))
        for x in range(size):
            for y in range(size):
                for z in range(size):
                    model.voxels.set_voxel(x, y, z, color)

        for simplify in (False, True):
            model.simplify = simplify
            start = time.time()
            generator = MeshGenerator(model)
            mesh = generator.generate()
            elapsed = time.time() - start
            label = "merged" if simplify else "plain "
            print(f"{size}^3 {label}: {elapsed*1000:.1f}ms, {mesh.triangle_count} triangles")
        print()


if __name__ == "__main__":
    run_demo()

    # Uncomment to run benchmark
    # benchmark_simplifier()
