"""
Output Buffers and Vertex Indexing

Turns the surviving faces (plus shells and visible light spheres) into one
indexed triangle buffer. Corners with identical position, normal, color,
UV and custom data are stored once; the first occurrence decides the
vertex order. Triangles are drawn in groups, one per distinct base
material in order of first use, with the light spheres last.
"""

import logging
from typing import Dict, List, NamedTuple, Optional, Tuple
import numpy as np

from .color import srgb_to_linear
from .errors import ModelStructureError
from .faces import FaceStore
from .model import LightingMode, Material, MaterialType, Model, UVMode
from .lighting import light_position
from .vertices import VertexStore

logger = logging.getLogger(__name__)

QUAD_TRIANGLES = np.array([0, 1, 2, 0, 2, 3])

LIGHT_MATERIAL = Material(name="light", type=MaterialType.BASIC, lighting=LightingMode.FLAT)


class DrawGroup(NamedTuple):
    """A contiguous range of the index buffer drawn with one material."""
    start: int
    count: int
    material_index: int


class MeshData(NamedTuple):
    """Container for indexed mesh buffers."""
    positions: np.ndarray            # (N, 3) float32
    normals: np.ndarray              # (N, 3) float32 unit normals
    colors: np.ndarray               # (N, 3) float32 RGB [0, 1]
    indices: np.ndarray              # (M,) uint32 triangle indices
    uvs: Optional[np.ndarray]        # (N, 2) float32, None without textures
    data: Dict[str, np.ndarray]      # name -> (N, width) float32
    groups: List[DrawGroup]
    materials: List[Material]        # indexed by DrawGroup.material_index
    linear: bool = False             # colors are in linear space
    placeholder: bool = False

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    def split_groups(self) -> List["MeshData"]:
        """One self-contained buffer set per draw group."""
        parts = []
        for group in self.groups:
            used = self.indices[group.start:group.start + group.count]
            keep, local = np.unique(used, return_inverse=True)
            parts.append(MeshData(
                positions=self.positions[keep],
                normals=self.normals[keep],
                colors=self.colors[keep],
                indices=local.reshape(-1).astype(np.uint32),
                uvs=None if self.uvs is None else self.uvs[keep],
                data={name: values[keep] for name, values in self.data.items()},
                groups=[DrawGroup(0, group.count, 0)],
                materials=[self.materials[group.material_index]],
                linear=self.linear,
                placeholder=self.placeholder,
            ))
        return parts


class _Triangles(NamedTuple):
    """Unindexed triangle corners of one draw group, 3 rows per triangle."""
    positions: np.ndarray
    normals: np.ndarray
    colors: np.ndarray
    uvs: np.ndarray
    data: np.ndarray


def data_channels(model: Model) -> Dict[str, int]:
    """
    Names and widths of the custom vertex data channels.

    Raises:
        ModelStructureError: If a channel is declared with different widths
    """
    channels: Dict[str, int] = {}
    sources = [model.data] + [m.data for m in model.materials]
    for source in sources:
        for name, values in (source or {}).items():
            width = len(values)
            if channels.setdefault(name, width) != width:
                raise ModelStructureError(
                    f"Vertex data '{name}' has width {width}, expected {channels[name]}"
                )
    return channels


def _data_row(model: Model, material: Material, channels: Dict[str, int]) -> np.ndarray:
    row = []
    for name, width in channels.items():
        values = (material.data or {}).get(name)
        if values is None:
            values = (model.data or {}).get(name, (0.0,) * width)
        row.extend(values)
    return np.array(row, dtype=np.float64)


def octahedron_sphere(detail: int) -> np.ndarray:
    """
    Unit sphere from a subdivided octahedron.

    Args:
        detail: Number of subdivisions (each splits every triangle in 4)

    Returns:
        (T, 3, 3) outward-wound triangles
    """
    triangles = []
    for sx in (1.0, -1.0):
        for sy in (1.0, -1.0):
            for sz in (1.0, -1.0):
                a, b, c = np.array([sx, 0, 0]), np.array([0, sy, 0]), np.array([0, 0, sz])
                triangles.append([a, b, c] if sx * sy * sz > 0 else [a, c, b])
    tris = np.array(triangles, dtype=np.float64)

    for _ in range(detail):
        a, b, c = tris[:, 0], tris[:, 1], tris[:, 2]
        ab, bc, ca = (a + b) / 2, (b + c) / 2, (c + a) / 2
        tris = np.concatenate([
            np.stack([a, ab, ca], axis=1),
            np.stack([ab, b, bc], axis=1),
            np.stack([ca, bc, c], axis=1),
            np.stack([ab, bc, ca], axis=1),
        ])
        tris /= np.linalg.norm(tris, axis=2, keepdims=True)
    return tris


class Indexer:
    """
    Collects draw groups and builds the indexed MeshData.
    """

    def __init__(self, model: Model):
        self.model = model
        self.channels = data_channels(model)
        self.data_width = sum(self.channels.values())
        self.has_uvs = any(m.uv != UVMode.NONE for m in model.materials)
        self._keys: Dict[tuple, int] = {}
        self._materials: List[Material] = []
        self._parts: List[List[_Triangles]] = []

    def _slot(self, material: Material, key=None) -> int:
        key = material.base_key if key is None else key
        slot = self._keys.get(key)
        if slot is None:
            slot = self._keys[key] = len(self._materials)
            self._materials.append(material)
            self._parts.append([])
        return slot

    def _output_color(self, rgb: np.ndarray) -> np.ndarray:
        if self.model.color_management:
            return srgb_to_linear(np.ascontiguousarray(rgb.reshape(-1, 3))).reshape(rgb.shape)
        return rgb

    def _add_quads(self, material: Material, positions, normals, colors, uvs, data_row):
        """Queue quads (Q, 4, ...) for a material, split into two triangles each."""
        count = len(positions)
        if count == 0:
            return
        tri = QUAD_TRIANGLES
        data = np.broadcast_to(data_row, (count * 6, self.data_width))
        self._parts[self._slot(material)].append(_Triangles(
            positions[:, tri].reshape(-1, 3),
            normals[:, tri].reshape(-1, 3),
            colors[:, tri].reshape(-1, 3),
            uvs[:, tri].reshape(-1, 2),
            data,
        ))

    def add_faces(self, vertices: VertexStore, faces: FaceStore) -> int:
        """Queue every live, visible face. Returns the number queued."""
        ids = faces.visible
        positions = vertices.positions[faces.vertices[ids]]
        for index, material in enumerate(self.model.materials):
            chosen = faces.material[ids] == index
            if not chosen.any():
                continue
            picked = ids[chosen]
            self._add_quads(
                material, positions[chosen], faces.normals[picked],
                faces.vertex_colors[picked], faces.uvs[picked],
                _data_row(self.model, material, self.channels),
            )
        return len(ids)

    def add_shells(self, vertices: VertexStore, faces: FaceStore) -> int:
        """
        Queue offset shells of the visible faces.

        Each corner moves along its smooth normal by the shell distance.
        Shells take the shell color's material for grouping and lighting.

        Returns:
            Number of shell quads queued
        """
        ids = faces.visible
        variants = {
            LightingMode.FLAT: faces.flat_normals,
            LightingMode.SMOOTH: faces.smooth_normals,
            LightingMode.BOTH: faces.both_normals,
            LightingMode.SIDES: faces.side_normals,
        }
        queued = 0
        for index, material in enumerate(self.model.materials):
            shells = self.model.shells_for(material)
            if not shells:
                continue
            picked = ids[faces.material[ids] == index]
            if len(picked) == 0:
                continue
            corners = vertices.positions[faces.vertices[picked]]
            for shell in shells:
                color = self.model.colors[shell.color]
                shell_material = self.model.material_of(color)
                offset = corners + faces.smooth_normals[picked] * shell.distance
                rgb = self._output_color(np.broadcast_to(color.rgb, offset.shape).copy())
                self._add_quads(
                    shell_material, offset, variants[shell_material.lighting][picked], rgb,
                    faces.uvs[picked], _data_row(self.model, shell_material, self.channels),
                )
                queued += len(picked)
        return queued

    def add_light_spheres(self) -> int:
        """Queue a sphere for every visible positional light. Returns the count."""
        added = 0
        for light in self.model.lights:
            if light.size <= 0:
                continue
            center = light_position(self.model, light)
            if center is None:
                continue
            unit = octahedron_sphere(light.detail).reshape(-1, 3)
            rgb = self._output_color(np.broadcast_to(np.asarray(light.color, dtype=np.float64), unit.shape).copy())
            slot = self._slot(LIGHT_MATERIAL, key=("light",))
            self._parts[slot].append(_Triangles(
                center + unit * (light.size / 2.0),
                unit,
                rgb,
                np.zeros((len(unit), 2)),
                np.zeros((len(unit), self.data_width)),
            ))
            added += 1
        return added

    def build(self, placeholder: bool = False) -> MeshData:
        """
        Deduplicate all queued corners into the final buffers.

        Returns:
            The indexed mesh
        """
        # Keep the light group last
        order = sorted(range(len(self._materials)), key=lambda i: self._materials[i] is LIGHT_MATERIAL)
        rows = []
        groups = []
        materials = []
        start = 0
        for slot in order:
            parts = self._parts[slot]
            if not parts:
                continue
            block = np.vstack([
                np.hstack([p.positions, p.normals, p.colors, p.uvs, p.data]) for p in parts
            ]).astype(np.float32)
            rows.append(block)
            groups.append(DrawGroup(start, len(block), len(materials)))
            materials.append(self._materials[slot])
            start += len(block)

        width = 11 + self.data_width
        table = np.vstack(rows) if rows else np.zeros((0, width), dtype=np.float32)
        vertices, indices = dedupe_rows(table)

        data = {}
        column = 11
        for name, channel_width in self.channels.items():
            data[name] = vertices[:, column:column + channel_width]
            column += channel_width

        mesh = MeshData(
            positions=vertices[:, 0:3],
            normals=vertices[:, 3:6],
            colors=vertices[:, 6:9],
            indices=indices,
            uvs=vertices[:, 9:11] if self.has_uvs else None,
            data=data,
            groups=groups,
            materials=materials,
            linear=self.model.color_management,
            placeholder=placeholder,
        )
        logger.debug(
            "Indexed %d corners into %d vertices, %d groups",
            len(table), mesh.vertex_count, len(groups)
        )
        return mesh


def dedupe_rows(table: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Remove duplicate rows, keeping first-occurrence order.

    Returns:
        Tuple of (unique rows, uint32 index of each input row)
    """
    if len(table) == 0:
        return table, np.zeros(0, dtype=np.uint32)
    unique, first, inverse = np.unique(table, axis=0, return_index=True, return_inverse=True)
    order = np.argsort(first)
    rank = np.empty_like(order)
    rank[order] = np.arange(len(order))
    return unique[order], rank[inverse.reshape(-1)].astype(np.uint32)
