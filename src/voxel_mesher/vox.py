"""
MagicaVoxel .vox Format Reader and Writer

The .vox format is a RIFF-style chunk-based binary format used by MagicaVoxel.
It stores voxels as sparse data with a 256-color palette.

File Structure:
- Header: "VOX " (4 bytes) + version (4 bytes, int32)
- MAIN chunk (container)
  - PACK chunk (optional): number of models
  - SIZE chunk: dimensions (x, y, z)
  - XYZI chunk: voxel data (x, y, z, color_index per voxel)
  - (SIZE, XYZI repeat for every model)
  - RGBA chunk: 256-color palette

Every model in the file becomes a group of the resulting Model, so
multi-model files keep their parts apart. MagicaVoxel is Z-up; the mesher is
Y-up, so (x, y, z) in the file becomes (x, z, size_y - 1 - y).

Limitations:
- Scene graph chunks (nTRN, nGRP, nSHP) and materials are skipped
- Coordinates are uint8
"""

from pathlib import Path
from typing import List, NamedTuple, Union
import logging
import struct
import numpy as np

from .color import to_uint8
from .model import Color, Group, Model
from .voxels import ROOT_GROUP

logger = logging.getLogger(__name__)

# VOX format constants
VOX_MAGIC = b'VOX '
VOX_VERSION = 150  # Current version


class VoxModel(NamedTuple):
    """One SIZE/XYZI pair."""
    size: tuple
    voxels: np.ndarray  # (N, 4) uint8 x, y, z, color_index


class VoxFile(NamedTuple):
    models: List[VoxModel]
    palette: np.ndarray  # (256, 4) uint8, entry i is color index i + 1
    version: int


class VoxChunk:
    """Base class for VOX chunks."""

    def __init__(self, chunk_id: bytes, content: bytes = b''):
        self.chunk_id = chunk_id
        self.content = content
        self.children = b''

    def add_child(self, chunk: "VoxChunk"):
        self.children += chunk.pack()

    def pack(self) -> bytes:
        """Pack the chunk into bytes."""
        return (
            self.chunk_id +
            struct.pack('<II', len(self.content), len(self.children)) +
            self.content +
            self.children
        )


def default_palette() -> np.ndarray:
    """Gray ramp used when a file carries no RGBA chunk."""
    palette = np.zeros((256, 4), dtype=np.uint8)
    palette[:, :3] = np.arange(256, dtype=np.uint8)[::-1, np.newaxis]
    palette[:, 3] = 255
    return palette


def read_vox(file_path: Union[str, Path]) -> VoxFile:
    """
    Read the models and palette of a .vox file.

    Args:
        file_path: Path to .vox file

    Returns:
        The parsed file

    Raises:
        ValueError: If the file is not a valid .vox file
    """
    data = Path(file_path).read_bytes()
    if data[:4] != VOX_MAGIC:
        raise ValueError(f"Invalid VOX file: bad magic {data[:4]!r}")
    version = struct.unpack_from('<I', data, 4)[0]

    if data[8:12] != b'MAIN':
        raise ValueError("Expected MAIN chunk")
    content_size, children_size = struct.unpack_from('<II', data, 12)
    offset = 20 + content_size
    end = offset + children_size

    models = []
    size = None
    palette = None
    while offset + 12 <= end:
        chunk_id = data[offset:offset + 4]
        content_size, children_size = struct.unpack_from('<II', data, offset + 4)
        content = data[offset + 12:offset + 12 + content_size]
        offset += 12 + content_size + children_size

        if chunk_id == b'SIZE':
            size = struct.unpack_from('<III', content)
        elif chunk_id == b'XYZI':
            if size is None:
                raise ValueError("XYZI chunk without a preceding SIZE chunk")
            count = struct.unpack_from('<I', content)[0]
            voxels = np.frombuffer(content, dtype=np.uint8, count=count * 4, offset=4).reshape(-1, 4)
            models.append(VoxModel(size, voxels.copy()))
            size = None
        elif chunk_id == b'RGBA':
            palette = np.frombuffer(content, dtype=np.uint8, count=1024).reshape(256, 4).copy()
        else:
            logger.debug("Skipping %s chunk", chunk_id.decode('ascii', 'replace'))

    return VoxFile(models, default_palette() if palette is None else palette, version)


def load_vox(file_path: Union[str, Path]) -> Model:
    """
    Load a .vox file as a model.

    Palette entries used by the file become colors named by their index
    ("1" to "255"). The first model goes into the root group, the others
    into groups "model-1", "model-2" and so on.
    """
    vox = read_vox(file_path)
    model = Model()

    for number, part in enumerate(vox.models):
        if number == 0:
            group = ROOT_GROUP
        else:
            group = model.add_group(Group(id=f"model-{number}"))
        size_y = part.size[1]
        for x, y, z, index in part.voxels:
            key = str(int(index))
            color = model.colors.get(key)
            if color is None:
                r, g, b, _ = vox.palette[int(index) - 1]
                color = model.add_color(Color(key, r / 255.0, g / 255.0, b / 255.0))
            model.voxels.set_voxel(int(x), int(z), size_y - 1 - int(y), color, group)

    model.voxels.prepare_for_write()
    logger.info(
        "Loaded %d voxels in %d models with %d colors from %s",
        model.voxels.count, len(vox.models), len(model.colors), file_path
    )
    return model


def save_vox(model: Model, output_path: Union[str, Path], group: str = ROOT_GROUP):
    """
    Write the voxels of one group to a .vox file.

    Args:
        model: The model
        output_path: Output file path
        group: Group to write

    Raises:
        ValueError: If the group is empty, too large or has too many colors
    """
    voxels = list(model.voxels.iter_voxels(group))
    if not voxels:
        raise ValueError("Cannot export empty voxel group")

    bounds = model.voxels.bounds(group)
    size = (bounds.max - bounds.min + 1).astype(int)
    if any(s > 256 for s in size):
        raise ValueError(f"VOX format limited to 256x256x256. Group size: {size}")

    colors = list(dict.fromkeys(v.color.id for v in voxels))
    if len(colors) > 255:
        raise ValueError(f"VOX format limited to 255 colors, group uses {len(colors)}")
    index_of = {color_id: i + 1 for i, color_id in enumerate(colors)}

    palette = np.zeros((256, 4), dtype=np.uint8)
    palette[:, 3] = 255
    for color_id, index in index_of.items():
        palette[index - 1, :3] = to_uint8(model.colors[color_id].rgb)

    # Back to Z-up
    size_x, size_y, size_z = int(size[0]), int(size[2]), int(size[1])
    xyzi = bytearray(struct.pack('<I', len(voxels)))
    for v in voxels:
        x, y, z = (np.array(v.position) - bounds.min).astype(int)
        xyzi += struct.pack('<BBBB', x, size_y - 1 - z, y, index_of[v.color.id])

    main = VoxChunk(b'MAIN')
    main.add_child(VoxChunk(b'SIZE', struct.pack('<III', size_x, size_y, size_z)))
    main.add_child(VoxChunk(b'XYZI', bytes(xyzi)))
    main.add_child(VoxChunk(b'RGBA', palette.tobytes()))

    with open(output_path, 'wb') as f:
        f.write(VOX_MAGIC)
        f.write(struct.pack('<I', VOX_VERSION))
        f.write(main.pack())
