"""Shape catalog — condition kinds, shapes, and their grid footprints.

Every pool item belongs to one ConditionKind. A kind owns an ordered
list of Variants; each Variant is a concrete Shape with a fixed footprint
in grid cells. Catalog order matters: the planner walks variants in this
order when filling finite quotas, and the first variant is the last-resort
fallback.

Footprint convention:
    - w: width in columns, h: height in rows
    - A footprint is anchored at its top-left cell (r0, c0)

Shape metadata (layer, group) feeds the placement scorer: shapes in the
same group repel each other up to their separation distance.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from scene_field.hashing import hash32
from scene_field.validation import invariant


class ConditionKind(str, Enum):
    """Coarse population category driven by the control value."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"


CONDITION_KINDS: tuple[ConditionKind, ...] = tuple(ConditionKind)


class Shape(str, Enum):
    """A concrete drawable entity."""

    CLOUDS = "clouds"
    SNOW = "snow"
    HOUSE = "house"
    POWER = "power"
    SUN = "sun"
    VILLA = "villa"
    CAR = "car"
    SEA = "sea"
    CAR_FACTORY = "car_factory"
    BUS = "bus"
    TREES = "trees"


class ShapeLayer(str, Enum):
    SKY = "sky"
    GROUND = "ground"


class ShapeGroup(str, Enum):
    """Separation group. Same-group shapes keep their distance."""

    SKY = "sky"
    BUILDING = "building"
    VEHICLE = "vehicle"
    NATURE = "nature"


@dataclass(frozen=True)
class Size:
    """Footprint size in grid cells."""

    w: int
    h: int


@dataclass(frozen=True)
class Variant:
    shape: Shape
    footprint: Size


@dataclass(frozen=True)
class ShapeMeta:
    """Scoring metadata for a shape.

    Attributes:
        layer: Coarse placement layer (sky or ground)
        group: Separation group
        separation: Soft minimum distance (cells) to same-group shapes.
            0 means no spacing preference.
    """

    layer: ShapeLayer
    group: ShapeGroup
    separation: float = 0.0


# ---------------------------------------------------------------------------
# Catalog tables
# ---------------------------------------------------------------------------

CONDITIONS: dict[ConditionKind, tuple[Variant, ...]] = {
    ConditionKind.A: (
        Variant(Shape.CLOUDS, Size(2, 3)),
        Variant(Shape.SUN, Size(2, 2)),
        Variant(Shape.BUS, Size(2, 1)),
    ),
    ConditionKind.B: (
        Variant(Shape.SNOW, Size(1, 3)),
        Variant(Shape.VILLA, Size(2, 2)),
        Variant(Shape.TREES, Size(1, 1)),
    ),
    ConditionKind.C: (
        Variant(Shape.HOUSE, Size(1, 3)),
        Variant(Shape.POWER, Size(1, 3)),
    ),
    ConditionKind.D: (
        Variant(Shape.CAR, Size(1, 1)),
        Variant(Shape.SEA, Size(2, 1)),
        Variant(Shape.CAR_FACTORY, Size(2, 2)),
    ),
}

# Layer + group per shape. Separation distances are per scene mode and
# live in scene_field.rules.
SHAPE_GROUPS: dict[Shape, tuple[ShapeLayer, ShapeGroup]] = {
    # sky
    Shape.SUN: (ShapeLayer.SKY, ShapeGroup.SKY),
    Shape.CLOUDS: (ShapeLayer.SKY, ShapeGroup.SKY),
    Shape.SNOW: (ShapeLayer.SKY, ShapeGroup.SKY),
    # buildings
    Shape.HOUSE: (ShapeLayer.GROUND, ShapeGroup.BUILDING),
    Shape.VILLA: (ShapeLayer.GROUND, ShapeGroup.BUILDING),
    Shape.POWER: (ShapeLayer.GROUND, ShapeGroup.BUILDING),
    Shape.CAR_FACTORY: (ShapeLayer.GROUND, ShapeGroup.BUILDING),
    # vehicles
    Shape.CAR: (ShapeLayer.GROUND, ShapeGroup.VEHICLE),
    Shape.BUS: (ShapeLayer.GROUND, ShapeGroup.VEHICLE),
    # nature
    Shape.SEA: (ShapeLayer.GROUND, ShapeGroup.NATURE),
    Shape.TREES: (ShapeLayer.GROUND, ShapeGroup.NATURE),
}


def shape_meta_table(separation: dict[Shape, float]) -> dict[Shape, ShapeMeta]:
    """Combine the static layer/group table with per-mode separations."""
    return {
        shape: ShapeMeta(layer, group, float(separation.get(shape, 0.0)))
        for shape, (layer, group) in SHAPE_GROUPS.items()
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def variants_for(
    kind: ConditionKind,
    catalog: dict[ConditionKind, tuple[Variant, ...]] | None = None,
) -> tuple[Variant, ...]:
    """Variants for a kind. A kind with no variants is a config error."""
    catalog = CONDITIONS if catalog is None else catalog
    variants = catalog.get(kind, ())
    invariant(len(variants) > 0, f"no variants for kind {kind.value}")
    return variants


def footprint_for(
    kind: ConditionKind,
    shape: Shape,
    catalog: dict[ConditionKind, tuple[Variant, ...]] | None = None,
) -> Size:
    """Static footprint size of *shape* within *kind*'s catalog."""
    for v in variants_for(kind, catalog):
        if v.shape == shape:
            return v.footprint
    raise KeyError(f"shape {shape.value!r} is not a variant of kind {kind.value}")


def pick_variant(
    kind: ConditionKind,
    id: int,
    salt: int = 0,
    catalog: dict[ConditionKind, tuple[Variant, ...]] | None = None,
) -> Variant:
    """Deterministic variant for (kind, id, salt).

    Two-variant kinds use a single hash bit for a stable 50/50 split.
    """
    variants = variants_for(kind, catalog)
    h = hash32(kind.value, id, salt)
    if len(variants) == 2:
        return variants[h & 1]
    return variants[h % len(variants)]
