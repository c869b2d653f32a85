"""
Color Management and Vertex Color Combination

Handles:
- sRGB to Linear color space conversion (color managed output, glTF export)
- Linear to sRGB conversion (OBJ export, display)
- Combining base colors, fade, light and ambient occlusion into the final
  color of every face corner

Color Space Background:
- Palette colors are authored in sRGB (perceptual) space
- glTF expects Linear (physical) vertex colors
- Failure to convert causes "washed out" colors in engines
"""

import logging
import numpy as np
from numba import njit, prange

from .faces import FaceStore
from .lighting import ao_settings
from .model import Model
from .vertices import VertexStore

logger = logging.getLogger(__name__)


@njit(cache=True)
def _srgb_to_linear_component(c: float) -> float:
    """
    Convert a single sRGB component to Linear.

    The sRGB standard uses a piecewise function:
    - Linear below threshold (0.04045)
    - Gamma curve above threshold

    Args:
        c: sRGB value normalized to [0, 1]

    Returns:
        Linear value
    """
    if c <= 0.04045:
        return c / 12.92
    else:
        return ((c + 0.055) / 1.055) ** 2.4


@njit(cache=True)
def _linear_to_srgb_component(c: float) -> float:
    if c <= 0.0031308:
        return c * 12.92
    else:
        return 1.055 * (c ** (1.0 / 2.4)) - 0.055


@njit(cache=True, parallel=True)
def srgb_to_linear(colors: np.ndarray) -> np.ndarray:
    """
    Convert sRGB colors to Linear color space.

    Args:
        colors: Array of shape (N, 3) or (N, 4) with float sRGB values [0, 1]

    Returns:
        Array of same shape with float32 Linear values [0, 1]
    """
    n = colors.shape[0]
    channels = colors.shape[1]
    result = np.empty((n, channels), dtype=np.float32)

    for i in prange(n):
        for c in range(min(channels, 3)):  # Only convert RGB, not alpha
            value = max(0.0, min(1.0, colors[i, c]))
            result[i, c] = _srgb_to_linear_component(value)

        if channels == 4:
            result[i, 3] = colors[i, 3]

    return result


@njit(cache=True, parallel=True)
def linear_to_srgb(colors: np.ndarray) -> np.ndarray:
    """
    Convert Linear colors to sRGB color space.

    Args:
        colors: Array of shape (N, 3) or (N, 4) with float Linear values [0, 1]

    Returns:
        Array of same shape with float32 sRGB values [0, 1]
    """
    n = colors.shape[0]
    channels = colors.shape[1]
    result = np.empty((n, channels), dtype=np.float32)

    for i in prange(n):
        for c in range(min(channels, 3)):
            value = max(0.0, min(1.0, colors[i, c]))
            result[i, c] = _linear_to_srgb_component(value)

        if channels == 4:
            result[i, 3] = colors[i, 3]

    return result


def to_uint8(colors: np.ndarray) -> np.ndarray:
    """Quantize [0, 1] float colors to uint8."""
    return (np.clip(colors, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)


class ColorCombiner:
    """
    Computes the final color of every face corner.

    color = base * light, then mixed toward the AO color by the AO factor:
        color * (1 - ao) + ao_color * ao

    The base color is the voxel color, or for fading materials the average
    of the colors of all voxels of the same material that share the vertex.
    """

    def __init__(self, model: Model):
        self.model = model
        self._ao_colors = np.zeros((len(model.materials), 3))
        for index, material in enumerate(model.materials):
            if material.quick_ao is not None:
                self._ao_colors[index] = material.quick_ao.color
            else:
                settings = ao_settings(model, material)
                if settings is not None:
                    self._ao_colors[index] = settings.color

    def base_colors(self, vertices: VertexStore, faces: FaceStore) -> np.ndarray:
        """(F, 4, 3) base color per face corner."""
        count = len(faces)
        base = np.empty((count, 4, 3))
        if count == 0:
            return base
        base[:] = np.array([c.rgb for c in faces.colors])[:, np.newaxis, :]

        fading = np.array([m.fade for m in self.model.materials], dtype=bool)
        for face in np.flatnonzero(fading[faces.material]):
            material = faces.material[face]
            for c, vertex_id in enumerate(faces.vertices[face]):
                shared = [color.rgb for color in vertices.colors[vertex_id] if color.material == material]
                if shared:
                    base[face, c] = np.mean(shared, axis=0)
        return base

    def combine(self, vertices: VertexStore, faces: FaceStore):
        """Write faces.vertex_colors."""
        if len(faces) == 0:
            return
        colors = self.base_colors(vertices, faces) * faces.light
        ao = faces.ao[..., np.newaxis]
        ao_color = self._ao_colors[faces.material][:, np.newaxis, :]
        colors = colors * (1.0 - ao) + ao_color * ao

        if self.model.color_management:
            colors = srgb_to_linear(np.ascontiguousarray(colors.reshape(-1, 3))).reshape(-1, 4, 3)

        faces.vertex_colors[:] = colors
        logger.debug("Combined colors for %d faces", len(faces))
