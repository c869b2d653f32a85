"""
Model Description Records

The meshing engine consumes an already-parsed model: colors, materials,
groups, lights and a populated voxel store. This module defines those
records and the enums for every closed option set.

Axis convention: X-right, Y-up, Z-front (right-handed). Sides follow the
order -X, +X, -Y, +Y, -Z, +Z so that ``side // 2`` is the axis and
``side % 2`` tells the direction.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
import itertools
import re

import numpy as np

from .errors import ModelStructureError
from .voxels import ROOT_GROUP, BoundingBox, VoxelStore


AXIS_NAMES = ("x", "y", "z")

Vector3 = Tuple[float, float, float]


class Side(IntEnum):
    """Face sides, named after their outward normal."""
    NX = 0  # -X
    PX = 1  # +X
    NY = 2  # -Y
    PY = 3  # +Y
    NZ = 4  # -Z
    PZ = 5  # +Z

    @property
    def axis(self) -> int:
        return int(self) // 2

    @property
    def sign(self) -> int:
        return 1 if int(self) % 2 else -1

    @property
    def normal(self) -> np.ndarray:
        n = np.zeros(3)
        n[self.axis] = self.sign
        return n

    @property
    def opposite(self) -> "Side":
        return Side(int(self) ^ 1)


class LightingMode(Enum):
    """How face normals are chosen for shading."""
    FLAT = "flat"
    SMOOTH = "smooth"
    BOTH = "both"
    SIDES = "sides"


class MaterialSide(Enum):
    """Which side of the faces the renderer draws."""
    FRONT = "front"
    BACK = "back"
    DOUBLE = "double"


class MaterialType(Enum):
    """Renderer material family. BASIC materials are unlit."""
    BASIC = "basic"
    LAMBERT = "lambert"
    PHONG = "phong"
    STANDARD = "standard"
    PHYSICAL = "physical"
    TOON = "toon"
    NORMAL = "normal"
    MATCAP = "matcap"


class Shape(Enum):
    """Radial projection applied to a group before deformation."""
    BOX = "box"
    SPHERE = "sphere"
    CYLINDER_X = "cylinder-x"
    CYLINDER_Y = "cylinder-y"
    CYLINDER_Z = "cylinder-z"


class Resize(Enum):
    """Rescaling of deformed geometry back onto the voxel bounds."""
    NONE = "none"
    FIT = "fit"
    FILL = "fill"


class Interpolation(Enum):
    LINEAR = "linear"
    SPLINE = "spline"


class EffectKind(Enum):
    SCALE = "scale"
    ROTATE = "rotate"
    TRANSLATE = "translate"


class BendDirection(Enum):
    """Side of the bend axis the arc center lies on."""
    LEFT = "left"
    RIGHT = "right"


class ShadowQuality(Enum):
    LOW = "low"
    HIGH = "high"


class UVMode(Enum):
    NONE = "none"
    PLANAR = "planar"
    CUBE = "cube"


_PLANAR_TOKEN = re.compile(r"^([+-]?)([xyz])$")


@dataclass(frozen=True)
class PlanarRule:
    """
    Per-axis planar selection used by skip, flatten, clamp, hide, tile,
    origin and AO sides.

    Notation (whitespace or comma separated, case-insensitive):
        x   every face on the x axis
        -x  faces at the minimum x bound
        +x  faces at the maximum x bound
    """

    all: Tuple[bool, bool, bool] = (False, False, False)
    min: Tuple[bool, bool, bool] = (False, False, False)
    max: Tuple[bool, bool, bool] = (False, False, False)

    @classmethod
    def parse(cls, text: Optional[str]) -> "PlanarRule":
        if not text:
            return cls()
        every = [False, False, False]
        lower = [False, False, False]
        upper = [False, False, False]
        for token in re.split(r"[\s,]+", text.strip().lower()):
            if not token:
                continue
            match = _PLANAR_TOKEN.match(token)
            if match is None:
                raise ValueError(f"Invalid planar token '{token}' in '{text}'")
            sign, axis_name = match.groups()
            axis = AXIS_NAMES.index(axis_name)
            if sign == "-":
                lower[axis] = True
            elif sign == "+":
                upper[axis] = True
            else:
                every[axis] = True
        return cls(tuple(every), tuple(lower), tuple(upper))

    @property
    def is_empty(self) -> bool:
        return not (any(self.all) or any(self.min) or any(self.max))

    def at_min(self, axis: int) -> bool:
        """True if the minimum bound on this axis is selected."""
        return self.all[axis] or self.min[axis]

    def at_max(self, axis: int) -> bool:
        return self.all[axis] or self.max[axis]

    def matches(self, side: Side, position: int, bounds_min: int, bounds_max: int) -> bool:
        """
        Check whether a face is selected by this rule.

        Args:
            side: Face side
            position: Voxel coordinate on the side's axis
            bounds_min, bounds_max: Inclusive voxel bounds on that axis

        Returns:
            True if the face is planar under this rule
        """
        axis = side.axis
        if self.all[axis]:
            return True
        if side.sign < 0:
            return self.min[axis] and position <= bounds_min
        return self.max[axis] and position >= bounds_max

    def __str__(self) -> str:
        tokens = []
        for axis, name in enumerate(AXIS_NAMES):
            if self.all[axis]:
                tokens.append(name)
            if self.min[axis]:
                tokens.append("-" + name)
            if self.max[axis]:
                tokens.append("+" + name)
        return " ".join(tokens)


@dataclass(frozen=True)
class Deform:
    """Laplacian smoothing settings of a material."""

    count: int = 1
    strength: float = 1.0
    damping: float = 1.0

    def __post_init__(self):
        if self.count < 0:
            raise ValueError(f"Deform count must be >= 0, got {self.count}")

    @property
    def integral(self) -> float:
        """Total displacement weight over all iterations."""
        return self.strength * sum(self.damping ** s for s in range(self.count))


@dataclass(frozen=True)
class Warp:
    """Noise displacement settings of a material."""

    amplitude: Vector3 = (1.0, 1.0, 1.0)
    frequency: float = 1.0

    @classmethod
    def uniform(cls, amplitude: float, frequency: float = 1.0) -> "Warp":
        return cls((amplitude, amplitude, amplitude), frequency)

    @property
    def magnitude(self) -> float:
        return float(sum(abs(a) for a in self.amplitude))


@dataclass(frozen=True)
class Shell:
    """An offset copy of the surface drawn in another color."""

    color: str
    distance: float


@dataclass(frozen=True)
class AmbientOcclusion:
    """Ray-cast ambient occlusion settings."""

    color: Vector3 = (0.0, 0.0, 0.0)
    max_distance: float = 1.0
    intensity: float = 1.0
    angle: float = 70.0
    samples: int = 50
    sides: PlanarRule = PlanarRule()

    def __post_init__(self):
        if not 8 <= self.samples <= 3000:
            raise ValueError(f"AO samples must be in 8..3000, got {self.samples}")
        if self.max_distance <= 0:
            raise ValueError("AO max_distance must be positive")
        if not 0 < self.angle <= 180:
            raise ValueError("AO angle must be in (0, 180]")


@dataclass(frozen=True)
class QuickAO:
    """Neighbor based ambient occlusion settings."""

    color: Vector3 = (0.0, 0.0, 0.0)
    intensity: float = 0.5


@dataclass
class Material:
    """
    Rendering and meshing settings shared by a set of colors.

    Planar rules left empty fall back to the model-wide rules.
    """

    name: str = ""
    type: MaterialType = MaterialType.STANDARD
    lighting: LightingMode = LightingMode.FLAT
    side: MaterialSide = MaterialSide.FRONT
    opacity: float = 1.0
    transparent: bool = False
    wireframe: bool = False
    roughness: float = 1.0
    metalness: float = 0.0
    fade: bool = False
    simplify: bool = True
    deform: Optional[Deform] = None
    warp: Optional[Warp] = None
    scatter: float = 0.0
    skip: PlanarRule = PlanarRule()
    flatten: PlanarRule = PlanarRule()
    clamp: PlanarRule = PlanarRule()
    hide: PlanarRule = PlanarRule()
    ao: Optional[AmbientOcclusion] = None
    quick_ao: Optional[QuickAO] = None
    lights: bool = True
    cast_shadow: bool = True
    receive_shadow: bool = True
    shells: Optional[List[Shell]] = None
    uv: UVMode = UVMode.NONE
    uv_scale: Tuple[float, float] = (1.0, 1.0)
    texture_size: Optional[Tuple[int, int]] = None
    data: Optional[Dict[str, Tuple[float, ...]]] = None

    def __post_init__(self):
        if self.ao is not None and self.quick_ao is not None:
            raise ValueError(
                f"Material '{self.name}' cannot use both ao and quick_ao"
            )
        if not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"Opacity must be in [0, 1], got {self.opacity}")

    @property
    def is_opaque(self) -> bool:
        """Fully opaque and not wireframe, so it hides what is behind it."""
        return self.opacity >= 1.0 and not self.transparent and not self.wireframe

    @property
    def ignores_normals(self) -> bool:
        return self.type == MaterialType.BASIC

    @property
    def base_key(self) -> tuple:
        """Settings that need a distinct renderer material."""
        return (
            self.type, self.side, self.opacity, self.transparent,
            self.wireframe, self.roughness, self.metalness,
            self.uv != UVMode.NONE,
        )


@dataclass(frozen=True)
class Color:
    """A palette entry. Components are sRGB in [0, 1]."""

    id: str
    r: float
    g: float
    b: float
    material: int = 0

    @classmethod
    def from_hex(cls, color_id: str, text: str, material: int = 0) -> "Color":
        """Create a color from '#RGB' or '#RRGGBB'."""
        digits = text.lstrip("#")
        if len(digits) == 3:
            digits = "".join(c * 2 for c in digits)
        if len(digits) != 6:
            raise ValueError(f"Invalid hex color '{text}'")
        r, g, b = (int(digits[i:i + 2], 16) / 255.0 for i in (0, 2, 4))
        return cls(color_id, r, g, b, material)

    @property
    def rgb(self) -> np.ndarray:
        return np.array([self.r, self.g, self.b])


@dataclass(frozen=True)
class AxisEffect:
    """
    A scale, rotation or translation that varies along a driving axis.

    ``values`` are spread evenly over the extent of ``along`` in the group's
    vertex bounds. Scale values are factors, rotations are degrees around
    ``axis`` and translations are voxel units along ``axis``.
    """

    kind: EffectKind
    axis: int
    along: int
    values: Tuple[float, ...]
    interpolation: Interpolation = Interpolation.LINEAR

    def __post_init__(self):
        if self.axis not in (0, 1, 2) or self.along not in (0, 1, 2):
            raise ValueError("Effect axes must be 0, 1 or 2")
        if self.kind != EffectKind.ROTATE and self.axis == self.along:
            raise ValueError(f"{self.kind.value} must be driven by a perpendicular axis")
        if len(self.values) == 0:
            raise ValueError("Effect needs at least one value")


@dataclass(frozen=True)
class Bend:
    """
    Wrap a span of the group around an arc.

    The span runs along ``axis`` from ``start`` to ``end`` (fractions of the
    vertex bounds). It bends toward ``toward`` by ``angle`` degrees around a
    center ``radius`` away from the middle of the group. A positive angle
    bends the part above the span start, a negative angle the part below the
    span end.
    """

    axis: int
    toward: int
    angle: float
    radius: float
    direction: BendDirection = BendDirection.RIGHT
    start: float = 0.0
    end: float = 1.0

    def __post_init__(self):
        if self.axis == self.toward:
            raise ValueError("Bend axis and direction axis must differ")
        if not 0.0 <= self.start < self.end <= 1.0:
            raise ValueError("Bend span must satisfy 0 <= start < end <= 1")
        if self.radius < 0:
            raise ValueError("Bend radius must not be negative")


@dataclass(eq=False)
class Group:
    """
    A hierarchical node owning voxels and a transform.

    Bounds and matrices are filled in by the mesh generator.
    """

    id: Optional[str] = None
    parent: Optional[str] = None
    shape: Shape = Shape.BOX
    origin: PlanarRule = PlanarRule()
    resize: Resize = Resize.NONE
    scale: Vector3 = (1.0, 1.0, 1.0)
    rotation: Vector3 = (0.0, 0.0, 0.0)
    position: Vector3 = (0.0, 0.0, 0.0)
    translation: Vector3 = (0.0, 0.0, 0.0)
    effects: List[AxisEffect] = field(default_factory=list)
    bends: List[Bend] = field(default_factory=list)

    index: int = field(default=-1, init=False)
    bounds: Optional[BoundingBox] = field(default=None, init=False, repr=False)
    vertex_bounds: Optional[BoundingBox] = field(default=None, init=False, repr=False)
    matrix: np.ndarray = field(default_factory=lambda: np.eye(4), init=False, repr=False)
    normal_matrix: np.ndarray = field(default_factory=lambda: np.eye(3), init=False, repr=False)


@dataclass(frozen=True)
class Light:
    """
    A light source.

    Exactly one of direction, position or at_color may be set; with none of
    them the light is ambient. ``direction`` points toward the light.
    """

    color: Vector3 = (1.0, 1.0, 1.0)
    intensity: float = 1.0
    direction: Optional[Vector3] = None
    position: Optional[Vector3] = None
    at_color: Optional[str] = None
    distance: float = 0.0
    size: float = 0.0
    detail: int = 1
    cast_shadow: bool = False

    def __post_init__(self):
        placements = [p for p in (self.direction, self.position, self.at_color) if p is not None]
        if len(placements) > 1:
            raise ValueError("A light takes only one of direction, position or at_color")
        if self.direction is not None and not np.any(self.direction):
            raise ValueError("Light direction must not be zero")
        if not 0 <= self.detail <= 3:
            raise ValueError("Light detail must be in 0..3")

    @property
    def is_ambient(self) -> bool:
        return self.direction is None and self.position is None and self.at_color is None


@dataclass
class Model:
    """
    A complete model ready for meshing.

    Example:
        model = Model()
        model.add_color(Color.from_hex("A", "#F80"))
        model.voxels.set_voxel(0, 0, 0, model.colors["A"])
        mesh = generate_mesh(model)
    """

    colors: Dict[str, Color] = field(default_factory=dict)
    materials: List[Material] = field(default_factory=lambda: [Material()])
    voxels: VoxelStore = field(default_factory=VoxelStore)
    groups: Dict[str, Group] = field(default_factory=dict)
    lights: List[Light] = field(default_factory=list)
    skip: PlanarRule = PlanarRule()
    flatten: PlanarRule = PlanarRule()
    clamp: PlanarRule = PlanarRule()
    hide: PlanarRule = PlanarRule()
    tile: PlanarRule = PlanarRule()
    ao: Optional[AmbientOcclusion] = None
    shells: List[Shell] = field(default_factory=list)
    shadow_quality: ShadowQuality = ShadowQuality.HIGH
    simplify: bool = True
    color_management: bool = False
    data: Optional[Dict[str, Tuple[float, ...]]] = None
    seed: int = 0

    _group_ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), init=False, repr=False)

    def __post_init__(self):
        if ROOT_GROUP not in self.groups:
            self.groups[ROOT_GROUP] = Group(id=ROOT_GROUP)

    @property
    def root(self) -> Group:
        return self.groups[ROOT_GROUP]

    def add_color(self, color: Color) -> Color:
        self.colors[color.id] = color
        return color

    def add_material(self, material: Material) -> int:
        """Register a material and return its index."""
        self.materials.append(material)
        return len(self.materials) - 1

    def add_group(self, group: Group) -> str:
        """
        Register a group, naming it if it has no id.

        Returns:
            The group id
        """
        if group.id is None:
            group.id = f"group-{next(self._group_ids)}"
            while group.id in self.groups:
                group.id = f"group-{next(self._group_ids)}"
        self.groups[group.id] = group
        return group.id

    def material_of(self, color: Color) -> Material:
        return self.materials[color.material]

    def parent_of(self, group: Group) -> Optional[Group]:
        if group.id == ROOT_GROUP:
            return None
        parent_id = group.parent or ROOT_GROUP
        parent = self.groups.get(parent_id)
        if parent is None:
            raise ModelStructureError(
                f"Group '{group.id}' refers to unknown parent '{parent_id}'"
            )
        return parent

    def group_chain(self, group: Group) -> List[Group]:
        """
        Get the ancestors of a group, root first, ending with the group.

        Raises:
            ModelStructureError: If the parent links form a cycle
        """
        chain = [group]
        seen = {id(group)}
        parent = self.parent_of(group)
        while parent is not None:
            if id(parent) in seen:
                names = " -> ".join(g.id for g in chain + [parent])
                raise ModelStructureError(f"Circular group parents: {names}")
            seen.add(id(parent))
            chain.append(parent)
            parent = self.parent_of(parent)
        chain.reverse()
        return chain

    def shells_for(self, material: Material) -> Sequence[Shell]:
        return self.shells if material.shells is None else material.shells

    def validate(self):
        """
        Check the structural integrity of the model.

        Raises:
            ModelStructureError: On the first structural problem found
        """
        for color in self.colors.values():
            if not 0 <= color.material < len(self.materials):
                raise ModelStructureError(
                    f"Color '{color.id}' refers to unknown material {color.material}"
                )
        for group in self.groups.values():
            self.group_chain(group)

        for group_id in self.voxels.groups:
            if group_id not in self.groups:
                raise ModelStructureError(f"Voxels refer to unknown group '{group_id}'")
        for voxel in self.voxels.iter_voxels():
            known = self.colors.get(voxel.color.id)
            if known is not voxel.color and known != voxel.color:
                raise ModelStructureError(
                    f"Voxel at {voxel.position} uses unknown color '{voxel.color.id}'"
                )

        for light in self.lights:
            if light.at_color is not None and light.at_color not in self.colors:
                raise ModelStructureError(f"Light placed at unknown color '{light.at_color}'")
        for material in self.materials:
            for shell in self.shells_for(material):
                if shell.color not in self.colors:
                    raise ModelStructureError(f"Shell uses unknown color '{shell.color}'")
