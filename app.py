#!/usr/bin/env python3
"""
Voxel Mesher Web Interface

A simple Gradio-based web UI for turning MagicaVoxel models into smooth or
stylized meshes.

Run with: python app.py
Then open http://localhost:7860 in your browser
"""

import sys
from pathlib import Path
import tempfile
import numpy as np

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

import gradio as gr
from voxel_mesher import (
    AmbientOcclusion, Color, Deform, Light, LightingMode, Model, Shape,
    MeshGenerator, VoxelMeshError
)
from voxel_mesher.exporters import GLTFExporter, OBJExporter
from voxel_mesher.vox import load_vox, save_vox


def create_demo_model(style: str) -> Model:
    """Create a demo voxel model for testing."""
    model = Model()
    size = 12

    if style == "Ball":
        color = model.add_color(Color.from_hex("ball", "#6496DC"))
        center = (size - 1) / 2
        for x in range(size):
            for y in range(size):
                for z in range(size):
                    if np.sqrt((x - center)**2 + (y - center)**2 + (z - center)**2) < size / 2:
                        model.voxels.set_voxel(x, y, z, color)

    elif style == "Tree":
        trunk = model.add_color(Color.from_hex("trunk", "#654321"))
        leaves = model.add_color(Color.from_hex("leaves", "#228B22"))
        cx = size // 2
        for y in range(size // 2):
            for x in range(cx - 1, cx + 1):
                for z in range(cx - 1, cx + 1):
                    model.voxels.set_voxel(x, y, z, trunk)
        for y in range(size // 2, size + 4):
            half = max(1, (size + 4 - y) // 2)
            for x in range(cx - half, cx + half):
                for z in range(cx - half, cx + half):
                    model.voxels.set_voxel(x, y, z, leaves)

    else:  # Tower
        stone = model.add_color(Color.from_hex("stone", "#A0A0A8"))
        roof = model.add_color(Color.from_hex("roof", "#B03030"))
        for y in range(size):
            for x in range(4):
                for z in range(4):
                    model.voxels.set_voxel(x, y, z, stone)
        for x in range(4):
            for z in range(4):
                model.voxels.set_voxel(x, size, z, roof)

    return model


def process_model(
    vox_file,
    demo_style: str,
    lighting: str,
    deform_count: int,
    shape: str,
    ambient_occlusion: bool,
    directional_light: bool,
    simplify: bool,
    export_obj: bool
):
    """
    Mesh an uploaded .vox file (or a demo model).

    Returns preview path, stats text, and file paths for downloads.
    """
    try:
        if vox_file is not None:
            model = load_vox(vox_file if isinstance(vox_file, str) else vox_file.name)
        elif demo_style:
            model = create_demo_model(demo_style)
        else:
            return None, "Please upload a .vox file or pick a demo first.", None, None, None

        for material in model.materials:
            material.lighting = LightingMode(lighting.lower())
            if deform_count > 0:
                material.deform = Deform(count=int(deform_count), strength=1.0, damping=1.0)
        model.root.shape = Shape(shape.lower())
        model.simplify = simplify
        if ambient_occlusion:
            model.ao = AmbientOcclusion(intensity=0.6, max_distance=2.0, samples=64)
        if directional_light:
            model.lights.append(Light(intensity=0.6))
            model.lights.append(Light(direction=(1.0, 2.0, 1.5), intensity=0.6, cast_shadow=True))

        generator = MeshGenerator(model)
        mesh = generator.generate()
    except (VoxelMeshError, ValueError) as e:
        return None, f"**Error:** {e}", None, None, None

    stats = generator.statistics
    stats_text = f"""## Meshing Complete!

| Metric | Value |
|--------|-------|
| Voxel Count | {stats.voxels:,} |
| Faces Created | {stats.faces_created:,} |
| Faces Merged | {stats.faces_merged:,} |
| Vertices | {stats.output_vertices:,} |
| Triangles | {stats.output_triangles:,} |
| Non-manifold Fixes | {stats.non_manifold_fixes:,} |
| Time | {stats.seconds:.2f}s |

**Settings:** {lighting}, Deform={deform_count}, Shape={shape}
"""

    # Create temp directory for exports
    export_dir = Path(tempfile.mkdtemp(prefix="voxmesh_"))

    glb_path = str(export_dir / "model.glb")
    GLTFExporter().export(mesh, glb_path)

    vox_path = None
    if vox_file is None:
        vox_path = str(export_dir / "model.vox")
        save_vox(model, vox_path)

    obj_path = None
    if export_obj:
        obj_path = str(export_dir / "model.obj")
        OBJExporter().export(mesh, obj_path)

    return glb_path, stats_text, glb_path, vox_path, obj_path


# Build the Gradio interface
with gr.Blocks(title="Voxel Mesher") as app:

    gr.Markdown("""
    # Voxel Mesher
    ### Turn Voxel Models into Smooth or Stylized Meshes

    Upload a MagicaVoxel file or try a demo, adjust the settings, and download your mesh!
    """)

    with gr.Row():
        # Left column - Input
        with gr.Column(scale=1):
            gr.Markdown("### Input Model")

            vox_input = gr.File(label="Upload .vox", file_types=[".vox"])

            demo_dropdown = gr.Dropdown(
                choices=["Ball", "Tree", "Tower"],
                value="Ball",
                label="Or use a demo (when nothing is uploaded)"
            )

            gr.Markdown("### Settings")

            lighting = gr.Dropdown(
                choices=["Flat", "Smooth", "Both", "Sides"],
                value="Smooth",
                label="Normals"
            )

            deform_count = gr.Slider(
                minimum=0,
                maximum=10,
                value=2,
                step=1,
                label="Deform Passes"
            )

            shape = gr.Dropdown(
                choices=["Box", "Sphere", "Cylinder-X", "Cylinder-Y", "Cylinder-Z"],
                value="Box",
                label="Shape"
            )

            with gr.Row():
                ambient_occlusion = gr.Checkbox(value=True, label="Ambient Occlusion")
                directional_light = gr.Checkbox(value=False, label="Light + Shadows")
                simplify = gr.Checkbox(value=True, label="Merge Faces")

            export_obj = gr.Checkbox(value=False, label="Also export OBJ")

            generate_btn = gr.Button("Generate Mesh", variant="primary")

        # Middle column - 3D Preview
        with gr.Column(scale=2):
            gr.Markdown("### 3D Preview")
            gr.Markdown("*Click and drag to rotate, scroll to zoom*")

            model_preview = gr.Model3D(
                label="3D Model Preview",
                clear_color=[0.1, 0.1, 0.1, 1.0]
            )

            stats_output = gr.Markdown(
                value="Upload a model and click 'Generate' to see results."
            )

        # Right column - Downloads
        with gr.Column(scale=1):
            gr.Markdown("### Downloads")

            glb_output = gr.File(label="GLB (Godot/Blender)")
            vox_output = gr.File(label="VOX (demo model)")
            obj_output = gr.File(label="OBJ (Universal)")

            gr.Markdown("""
            ---
            **Tips:**
            - **Smooth** + deform = organic
            - **Flat** + no deform = classic voxels
            - **Both** keeps sharp edges sharp
            - **Sphere** rounds the whole model
            """)

    generate_btn.click(
        fn=process_model,
        inputs=[
            vox_input,
            demo_dropdown,
            lighting,
            deform_count,
            shape,
            ambient_occlusion,
            directional_light,
            simplify,
            export_obj
        ],
        outputs=[model_preview, stats_output, glb_output, vox_output, obj_output]
    )


if __name__ == "__main__":
    print("\n" + "="*60)
    print("Voxel Mesher Web Interface")
    print("="*60)
    print("\nStarting server...")
    print("Open http://localhost:7860 in your browser\n")

    app.launch(
        server_name="0.0.0.0",
        server_port=7860,
        share=False
    )
