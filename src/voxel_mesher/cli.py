"""
Command-Line Interface for Voxel Mesher

Usage:
    voxmesh model.vox -o output.glb
    voxmesh model.vox --lighting smooth --deform 3 1 1 -o output
    voxmesh model.vox --ao 0.5 --format glb obj -o output

"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional
import time

from . import __version__
from .errors import VoxelMeshError
from .exporters import CoordinateSystem, GLTFExporter, OBJExporter
from .mesher import MeshGenerator, generate_mesh_or_placeholder
from .model import (
    AmbientOcclusion, Deform, LightingMode, Light, Model, QuickAO, Shape, Warp
)
from .vox import load_vox


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="voxmesh",
        description="Voxel Mesher - Turn voxel models into smooth or stylized meshes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  voxmesh model.vox -o model.glb
      Mesh model.vox with flat shading and write glTF

  voxmesh model.vox --lighting smooth --deform 3 1 1 -o model
      Smooth the model with three deformation passes

  voxmesh model.vox --shape sphere --ao 0.6 --format glb obj -o model
      Sphere projection with ray traced ambient occlusion, glTF and OBJ

Lighting Modes:
  flat    - One normal per face (default)
  smooth  - Normals averaged over shared vertices
  both    - Smooth inside a surface, flat at sharp edges
  sides   - Normals averaged per side direction
        """
    )

    parser.add_argument(
        "input",
        help="Input MagicaVoxel file (.vox)"
    )

    parser.add_argument(
        "-o", "--output",
        help="Output file path (extension is replaced per format)"
    )

    parser.add_argument(
        "-f", "--format",
        nargs="+",
        choices=["glb", "gltf", "obj"],
        default=["glb"],
        help="Output format(s) (default: glb)"
    )

    # Meshing settings
    parser.add_argument(
        "--lighting",
        choices=[m.value for m in LightingMode],
        default="flat",
        help="Normal mode for all materials (default: flat)"
    )

    parser.add_argument(
        "--deform",
        nargs=3,
        type=float,
        metavar=("COUNT", "STRENGTH", "DAMPING"),
        help="Deformation passes, strength and damping"
    )

    parser.add_argument(
        "--warp",
        nargs=2,
        type=float,
        metavar=("AMPLITUDE", "FREQUENCY"),
        help="Noise warp amplitude and frequency"
    )

    parser.add_argument(
        "--scatter",
        type=float,
        default=0.0,
        help="Random vertex scatter distance (default: 0)"
    )

    parser.add_argument(
        "--shape",
        choices=[s.value for s in Shape],
        default="box",
        help="Shape projection of the root group (default: box)"
    )

    parser.add_argument(
        "--ao",
        type=float,
        metavar="INTENSITY",
        help="Ray traced ambient occlusion with the given intensity"
    )

    parser.add_argument(
        "--ao-samples",
        type=int,
        default=64,
        help="Ambient occlusion samples per vertex (default: 64)"
    )

    parser.add_argument(
        "--quick-ao",
        type=float,
        metavar="INTENSITY",
        help="Neighbor based ambient occlusion with the given intensity"
    )

    parser.add_argument(
        "--light",
        nargs=3,
        type=float,
        metavar=("X", "Y", "Z"),
        help="Add a white directional light; the vector points toward the light"
    )

    parser.add_argument(
        "--no-simplify",
        action="store_true",
        help="Keep one quad per voxel face"
    )

    parser.add_argument(
        "--color-management",
        action="store_true",
        help="Produce linear vertex colors"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Random seed for scatter (default: 0)"
    )

    # Output settings
    parser.add_argument(
        "--scale",
        type=float,
        default=1.0,
        help="Output scale factor (default: 1.0)"
    )

    parser.add_argument(
        "--coordinate-system",
        choices=["godot", "blender", "internal"],
        default="godot",
        help="Target coordinate system (default: godot)"
    )

    parser.add_argument(
        "--placeholder-on-error",
        action="store_true",
        help="Write a magenta placeholder cube if the model cannot be meshed"
    )

    # Misc
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Verbose output (-vv for debug logging)"
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print mesh statistics"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def configure_model(model: Model, args) -> Model:
    """Apply the command line options to every material of a model."""
    for material in model.materials:
        material.lighting = LightingMode(args.lighting)
        if args.deform:
            count, strength, damping = args.deform
            material.deform = Deform(int(count), strength, damping)
        if args.warp:
            material.warp = Warp.uniform(*args.warp)
        material.scatter = args.scatter
        if args.quick_ao is not None:
            material.quick_ao = QuickAO(intensity=args.quick_ao)

    if args.ao is not None:
        model.ao = AmbientOcclusion(intensity=args.ao, samples=args.ao_samples)
    if args.light:
        model.lights.append(Light(direction=tuple(args.light)))
    model.root.shape = Shape(args.shape)
    model.simplify = not args.no_simplify
    model.color_management = args.color_management
    model.seed = args.seed
    return model


def get_coordinate_system(name: str) -> CoordinateSystem:
    """Convert string to CoordinateSystem enum."""
    return {
        "godot": CoordinateSystem.GODOT,
        "blender": CoordinateSystem.BLENDER,
        "internal": CoordinateSystem.INTERNAL,
    }[name]


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=(logging.WARNING, logging.INFO, logging.DEBUG)[min(args.verbose, 2)],
        format="%(levelname)s %(name)s: %(message)s"
    )

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        return 1

    output_base = Path(args.output) if args.output else input_path.with_suffix("")
    start_time = time.time()

    try:
        model = configure_model(load_vox(input_path), args)

        if args.placeholder_on_error:
            generator = None
            mesh = generate_mesh_or_placeholder(model)
        else:
            generator = MeshGenerator(model)
            mesh = generator.generate()

        if args.stats and generator is not None:
            print("\nMesh Statistics:")
            for name, value in generator.statistics.as_dict().items():
                print(f"  {name.replace('_', ' ').capitalize()}: {value}")

        coord_sys = get_coordinate_system(args.coordinate_system)
        for fmt in dict.fromkeys(args.format):
            if fmt in ("glb", "gltf"):
                output_path = output_base.with_suffix(".glb")
                GLTFExporter(coordinate_system=coord_sys, scale=args.scale).export(mesh, output_path)
            else:
                output_path = output_base.with_suffix(".obj")
                OBJExporter(coordinate_system=coord_sys, scale=args.scale).export(mesh, output_path)
            if args.verbose:
                print(f"Exported: {output_path}")

        elapsed = time.time() - start_time
        if args.verbose:
            print(f"\nCompleted in {elapsed:.2f}s")
        return 0

    except (VoxelMeshError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
