"""Scene rule tables — padding, bands, separation, quotas, pool sizes.

All tables are plain data keyed by enums. A SceneProfile bundles the
tables for one resolved scene state; compose_field only ever sees a
profile, never the mode that produced it.

Scene state is a base mode (start or overlay) plus an optional
questionnaire modifier. The questionnaire swaps padding, bands,
separation and pool sizes; quota curves and background stay with the
base mode.

Usage:
    profile = RULESETS["intro"].profile(SceneMode.START, questionnaire_open=True)
    pool = ensure_pool_size(pool, target_pool_size(profile, width=1280))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from scene_field.catalog import (
    CONDITION_KINDS,
    CONDITIONS,
    SHAPE_GROUPS,
    ConditionKind,
    Shape,
    ShapeMeta,
    shape_meta_table,
)
from scene_field.grid import GridSpec, RowRule, make_row_forbidden
from scene_field.placement import Band
from scene_field.planner import UNBOUNDED, Capped, Catalog, QuotaAnchor, QuotaCurves
from scene_field.quota import DEFAULT_WEIGHT_ANCHORS, WeightAnchor
from scene_field.validation import invariant, require_keys

log = logging.getLogger(__name__)


class SceneMode(str, Enum):
    """Table lookup key. START and OVERLAY are base modes."""

    START = "start"
    QUESTIONNAIRE = "questionnaire"
    OVERLAY = "overlay"


BASE_MODES: tuple[SceneMode, ...] = (SceneMode.START, SceneMode.OVERLAY)


class DeviceType(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    LAPTOP = "laptop"


DEVICE_TYPES: tuple[DeviceType, ...] = tuple(DeviceType)


def device_type(width: float | None) -> DeviceType:
    """Device bucket for a canvas width in pixels (None means laptop)."""
    if width is None:
        return DeviceType.LAPTOP
    if width <= 767:
        return DeviceType.MOBILE
    if width <= 1024:
        return DeviceType.TABLET
    return DeviceType.LAPTOP


# ---------------------------------------------------------------------------
# Canvas padding (grid rows + forbidden cells)
# ---------------------------------------------------------------------------

_CENTER_100 = RowRule(center="100%")
_LR_0 = RowRule(left="0%", right="0%")


def _lr(left: str, right: str, center: str | None = None) -> RowRule:
    return RowRule(left=left, right=right, center=center)


def _mid(center: str) -> RowRule:
    return RowRule(left="0%", right="0%", center=center)


def _padding(rows: int, use_top_ratio: float, rules: Sequence[RowRule]) -> GridSpec:
    return GridSpec(rows=rows, use_top_ratio=use_top_ratio, forbidden=make_row_forbidden(rules))


CANVAS_PADDING: dict[SceneMode, dict[DeviceType, GridSpec]] = {
    SceneMode.START: {
        DeviceType.MOBILE: _padding(18, 0.9, [_LR_0] * 8 + [_CENTER_100] * 8),
        DeviceType.TABLET: _padding(
            17, 0.8, [_CENTER_100] * 2 + [_lr("2%", "2%")] * 9 + [_CENTER_100] * 5
        ),
        DeviceType.LAPTOP: _padding(
            12,
            0.8,
            [
                _CENTER_100,
                _lr("28%", "30%"),
                _lr("14%", "22%"),
                _lr("10%", "20%"),
                _lr("8%", "15%"),
                _lr("8%", "15%"),
                _lr("8%", "15%", "30%"),
                _lr("6%", "12%", "50%"),
                *[_CENTER_100] * 5,
            ],
        ),
    },
    SceneMode.QUESTIONNAIRE: {
        DeviceType.MOBILE: _padding(
            20,
            1.0,
            [_CENTER_100] * 13
            + [_mid("50%")] * 3
            + [_mid("60%")]
            + [_mid("20%")] * 6,
        ),
        DeviceType.TABLET: _padding(
            22,
            1.0,
            [_CENTER_100] * 11
            + [_mid("50%"), _mid("56%"), _mid("56%"), _mid("66%"), _mid("66%")]
            + [_mid("40%")] * 4,
        ),
        DeviceType.LAPTOP: _padding(
            13,
            0.85,
            [
                _CENTER_100,
                *[_lr("5%", "5%")] * 4,
                _lr("5%", "5%", "40%"),
                _lr("5%", "15%", "50%"),
                _lr("5%", "15%", "50%"),
                _lr("5%", "5%", "60%"),
                *[_lr("5%", "5%", "65%")] * 3,
                *[_CENTER_100] * 2,
            ],
        ),
    },
    SceneMode.OVERLAY: {
        DeviceType.MOBILE: _padding(24, 1.0, [_LR_0] * 21),
        DeviceType.TABLET: _padding(22, 1.0, [_LR_0] * 21),
        DeviceType.LAPTOP: _padding(16, 0.9, [_LR_0] * 21),
    },
}


# ---------------------------------------------------------------------------
# Vertical bands (0 = top of the used rows, 1 = bottom)
# ---------------------------------------------------------------------------


def _bands(**bands: tuple[float, float]) -> dict[Shape, Band]:
    return {Shape(name): Band(top, bot) for name, (top, bot) in bands.items()}


SHAPE_BANDS: dict[SceneMode, dict[DeviceType, dict[Shape, Band]]] = {
    SceneMode.START: {
        DeviceType.MOBILE: _bands(
            sun=(0.02, 0.1), clouds=(0.1, 0.3), snow=(0.1, 0.42),
            house=(0.24, 0.58), villa=(0.24, 0.58), power=(0.2, 0.4),
            car_factory=(0.3, 0.6), car=(0.3, 0.78), bus=(0.3, 0.82),
            sea=(0.3, 0.9), trees=(0.3, 0.9),
        ),
        DeviceType.TABLET: _bands(
            sun=(0.3, 0.45), clouds=(0.3, 0.4), snow=(0.3, 0.5),
            house=(0.5, 0.8), villa=(0.45, 0.8), power=(0.4, 0.8),
            car_factory=(0.5, 0.9), car=(0.5, 0.7), bus=(0.5, 0.82),
            sea=(0.4, 1.0), trees=(0.7, 1.0),
        ),
        DeviceType.LAPTOP: _bands(
            sun=(0.08, 0.15), clouds=(0.04, 0.2), snow=(0.1, 0.4),
            house=(0.3, 0.54), villa=(0.2, 0.54), power=(0.2, 0.5),
            car_factory=(0.5, 0.7), car=(0.5, 0.7), bus=(0.4, 0.82),
            sea=(0.6, 0.9), trees=(0.6, 0.9),
        ),
    },
    SceneMode.QUESTIONNAIRE: {
        DeviceType.MOBILE: _bands(
            sun=(0.0, 0.8), clouds=(0.0, 0.8), snow=(0.0, 0.8),
            house=(0.0, 1.0), villa=(0.0, 1.0), power=(0.7, 1.0),
            car_factory=(0.8, 1.0), car=(0.0, 1.0), bus=(0.0, 1.0),
            sea=(0.8, 1.0), trees=(0.0, 1.0),
        ),
        DeviceType.TABLET: _bands(
            sun=(0.0, 0.8), clouds=(0.0, 0.65), snow=(0.0, 0.8),
            house=(0.0, 1.0), villa=(0.0, 1.0), power=(0.7, 1.0),
            car_factory=(0.8, 1.0), car=(0.0, 1.0), bus=(0.0, 1.0),
            sea=(0.8, 1.0), trees=(0.0, 1.0),
        ),
        DeviceType.LAPTOP: _bands(
            sun=(0.0, 0.2), clouds=(0.2, 1.0), snow=(0.3, 0.6),
            house=(0.4, 1.0), villa=(0.2, 1.0), power=(0.3, 1.0),
            car_factory=(0.4, 1.0), car=(0.4, 1.0), bus=(0.4, 1.0),
            sea=(0.4, 1.0), trees=(0.45, 1.0),
        ),
    },
    SceneMode.OVERLAY: {
        DeviceType.MOBILE: _bands(
            sun=(0.0, 0.2), clouds=(0.1, 0.5), snow=(0.3, 0.6),
            house=(0.2, 1.0), villa=(0.2, 1.0), power=(0.3, 1.0),
            car=(0.3, 0.8), bus=(0.3, 0.8), trees=(0.3, 1.0),
            sea=(0.2, 1.0), car_factory=(0.3, 1.0),
        ),
        DeviceType.TABLET: _bands(
            sun=(0.0, 0.2), clouds=(0.1, 0.3), snow=(0.3, 0.4),
            house=(0.2, 0.7), villa=(0.2, 0.8), power=(0.3, 0.9),
            car=(0.4, 0.9), bus=(0.5, 0.8), trees=(0.6, 1.0),
            sea=(0.5, 1.0), car_factory=(0.3, 1.0),
        ),
        DeviceType.LAPTOP: _bands(
            sun=(0.0, 0.2), clouds=(0.1, 0.3), snow=(0.3, 0.4),
            house=(0.2, 0.7), villa=(0.2, 0.8), power=(0.3, 0.9),
            car=(0.4, 0.7), bus=(0.5, 0.8), trees=(0.1, 1.0),
            sea=(0.5, 0.9), car_factory=(0.3, 0.9),
        ),
    },
}


# ---------------------------------------------------------------------------
# Separation (cells). None = no override, use the base mode's table.
# ---------------------------------------------------------------------------

SEPARATION: dict[SceneMode, dict[Shape, float] | None] = {
    SceneMode.START: {
        Shape.SUN: 1, Shape.CLOUDS: 2, Shape.SNOW: 3,
        Shape.HOUSE: 2, Shape.VILLA: 1, Shape.POWER: 1, Shape.CAR_FACTORY: 2,
        Shape.CAR: 2, Shape.BUS: 2,
        Shape.SEA: 0, Shape.TREES: 1,
    },
    SceneMode.QUESTIONNAIRE: None,
    SceneMode.OVERLAY: {
        Shape.SUN: 6, Shape.CLOUDS: 4, Shape.SNOW: 4,
        Shape.HOUSE: 3, Shape.VILLA: 3, Shape.POWER: 3, Shape.CAR_FACTORY: 3,
        Shape.CAR: 2, Shape.BUS: 2,
        Shape.SEA: 0, Shape.TREES: 1,
    },
}


# ---------------------------------------------------------------------------
# Quota curves. None = no override, use the base mode's table.
# ---------------------------------------------------------------------------

_A, _B, _C, _D = CONDITION_KINDS

QUOTA_SPECIFICATION: dict[SceneMode, dict[ConditionKind, tuple[QuotaAnchor, ...]] | None] = {
    SceneMode.START: {
        _A: (
            QuotaAnchor(0.0, {Shape.SUN: Capped(1), Shape.BUS: Capped(0), Shape.CLOUDS: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.SUN: Capped(3), Shape.BUS: Capped(3), Shape.CLOUDS: UNBOUNDED}),
        ),
        _B: (
            QuotaAnchor(0.0, {Shape.SNOW: Capped(1), Shape.TREES: Capped(3), Shape.VILLA: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.SNOW: Capped(2), Shape.TREES: Capped(3), Shape.VILLA: UNBOUNDED}),
        ),
        _C: (
            QuotaAnchor(0.0, {Shape.POWER: Capped(3), Shape.HOUSE: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.POWER: Capped(2), Shape.HOUSE: UNBOUNDED}),
        ),
        _D: (
            QuotaAnchor(0.0, {Shape.SEA: Capped(1), Shape.CAR_FACTORY: Capped(2), Shape.CAR: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.SEA: Capped(1), Shape.CAR_FACTORY: Capped(1), Shape.CAR: UNBOUNDED}),
        ),
    },
    SceneMode.QUESTIONNAIRE: None,
    SceneMode.OVERLAY: {
        _A: (
            QuotaAnchor(0.0, {Shape.SUN: Capped(4), Shape.BUS: Capped(5), Shape.CLOUDS: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.SUN: Capped(6), Shape.BUS: Capped(9), Shape.CLOUDS: UNBOUNDED}),
        ),
        _B: (
            QuotaAnchor(0.0, {Shape.SNOW: Capped(1), Shape.TREES: Capped(4), Shape.VILLA: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.SNOW: Capped(5), Shape.TREES: Capped(10), Shape.VILLA: UNBOUNDED}),
        ),
        _C: (
            QuotaAnchor(0.0, {Shape.POWER: Capped(9), Shape.HOUSE: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.POWER: Capped(6), Shape.HOUSE: UNBOUNDED}),
        ),
        _D: (
            QuotaAnchor(0.0, {Shape.SEA: Capped(5), Shape.CAR_FACTORY: Capped(6), Shape.CAR: UNBOUNDED}),
            QuotaAnchor(1.0, {Shape.SEA: Capped(8), Shape.CAR_FACTORY: Capped(3), Shape.CAR: UNBOUNDED}),
        ),
    },
}


# ---------------------------------------------------------------------------
# Pool sizes and backgrounds
# ---------------------------------------------------------------------------

POOL_SIZES: dict[SceneMode, dict[DeviceType, int]] = {
    SceneMode.START: {DeviceType.MOBILE: 18, DeviceType.TABLET: 26, DeviceType.LAPTOP: 28},
    SceneMode.QUESTIONNAIRE: {DeviceType.MOBILE: 24, DeviceType.TABLET: 32, DeviceType.LAPTOP: 28},
    SceneMode.OVERLAY: {DeviceType.MOBILE: 60, DeviceType.TABLET: 80, DeviceType.LAPTOP: 100},
}

# Base canvas colour (RGB) per base mode
BACKGROUNDS: dict[SceneMode, tuple[int, int, int]] = {
    SceneMode.START: (229, 246, 255),
    SceneMode.OVERLAY: (229, 246, 255),
}


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SceneProfile:
    """Resolved rule tables for one scene state.

    Attributes:
        mode: Lookup key the tables came from (informational)
        padding: Grid spec per device type
        bands: Vertical band per shape, per device type
        separation: Same-group spacing per shape, in cells
        pool_sizes: Desired pool size per device type
        quota_curves: Quota anchors per condition kind
        weight_anchors: Kind weights along u
        catalog: Variants per condition kind
        background: Base canvas colour (RGB)
    """

    mode: SceneMode
    padding: Mapping[DeviceType, GridSpec]
    bands: Mapping[DeviceType, Mapping[Shape, Band]]
    separation: Mapping[Shape, float]
    pool_sizes: Mapping[DeviceType, int]
    quota_curves: QuotaCurves
    weight_anchors: tuple[WeightAnchor, ...] = DEFAULT_WEIGHT_ANCHORS
    catalog: Catalog = field(default_factory=lambda: CONDITIONS)
    background: tuple[int, int, int] = (229, 246, 255)

    @property
    def shape_meta(self) -> dict[Shape, ShapeMeta]:
        return shape_meta_table(dict(self.separation))

    def padding_for(self, width: float | None) -> GridSpec:
        dt = device_type(width)
        invariant(dt in self.padding, f"padding has no entry for device {dt.value}")
        return self.padding[dt]

    def bands_for(self, width: float | None) -> Mapping[Shape, Band]:
        dt = device_type(width)
        invariant(dt in self.bands, f"bands have no entry for device {dt.value}")
        return self.bands[dt]


def _base_profile(mode: SceneMode) -> SceneProfile:
    separation = SEPARATION[mode]
    quotas = QUOTA_SPECIFICATION[mode]
    invariant(separation is not None, f"base mode {mode.value} has no separation table")
    invariant(quotas is not None, f"base mode {mode.value} has no quota table")
    return SceneProfile(
        mode=mode,
        padding=CANVAS_PADDING[mode],
        bands=SHAPE_BANDS[mode],
        separation=separation,
        pool_sizes=POOL_SIZES[mode],
        quota_curves=quotas,
        background=BACKGROUNDS[mode],
    )


def _with_questionnaire(base: SceneProfile) -> SceneProfile:
    q = SceneMode.QUESTIONNAIRE
    return SceneProfile(
        mode=q,
        padding=CANVAS_PADDING[q],
        bands=SHAPE_BANDS[q],
        separation=SEPARATION[q] if SEPARATION[q] is not None else base.separation,
        pool_sizes=POOL_SIZES[q],
        quota_curves=(
            QUOTA_SPECIFICATION[q] if QUOTA_SPECIFICATION[q] is not None else base.quota_curves
        ),
        weight_anchors=base.weight_anchors,
        catalog=base.catalog,
        background=base.background,
    )


def resolve_profile(
    base_mode: SceneMode = SceneMode.START,
    questionnaire_open: bool = False,
) -> SceneProfile:
    """Profile for a base mode, with the questionnaire overrides if open."""
    base_mode = SceneMode(base_mode)
    invariant(
        base_mode in BASE_MODES,
        f"{base_mode.value!r} is not a base mode (expected one of "
        f"{', '.join(m.value for m in BASE_MODES)})",
    )
    base = _base_profile(base_mode)
    return _with_questionnaire(base) if questionnaire_open else base


def validate_profile(profile: SceneProfile, label: str = "profile") -> None:
    """Raise SceneConfigError if any table the composer reads is incomplete."""
    require_keys(profile.padding, DEVICE_TYPES, f"[{label}] padding")
    for dt, spec in profile.padding.items():
        invariant(spec.rows >= 1, f"[{label}] padding[{dt.value}] needs rows >= 1")

    require_keys(profile.bands, DEVICE_TYPES, f"[{label}] bands")
    for dt, table in profile.bands.items():
        require_keys(table, SHAPE_GROUPS, f"[{label}] bands[{dt.value}]")

    require_keys(profile.separation, SHAPE_GROUPS, f"[{label}] separation")

    require_keys(profile.pool_sizes, DEVICE_TYPES, f"[{label}] pool sizes")
    for dt, n in profile.pool_sizes.items():
        invariant(
            isinstance(n, int) and n >= 0,
            f"[{label}] pool size for {dt.value} must be a non-negative int, got {n!r}",
        )

    invariant(len(profile.weight_anchors) > 0, f"[{label}] weight anchors are empty")
    for anchor in profile.weight_anchors:
        invariant(
            len(anchor.weights) == len(CONDITION_KINDS),
            f"[{label}] weight anchor at t={anchor.t} needs {len(CONDITION_KINDS)} weights",
        )

    require_keys(profile.catalog, CONDITION_KINDS, f"[{label}] catalog")
    require_keys(profile.quota_curves, CONDITION_KINDS, f"[{label}] quota curves")
    for kind in CONDITION_KINDS:
        variants = profile.catalog[kind]
        invariant(len(variants) > 0, f"[{label}] no variants for kind {kind.value}")
        shapes = {v.shape for v in variants}

        anchors = profile.quota_curves[kind]
        invariant(len(anchors) > 0, f"[{label}] quota curve for kind {kind.value} is empty")
        for anchor in anchors:
            unknown = [s.value for s in anchor.limits if s not in shapes]
            invariant(
                not unknown,
                f"[{label}] quota for kind {kind.value} at t={anchor.t} names "
                f"shapes outside its catalog: {', '.join(unknown)}",
            )


def target_pool_size(profile: SceneProfile, width: float | None = None) -> int:
    """Desired pool size for a canvas width (None means laptop)."""
    dt = device_type(width)
    invariant(dt in profile.pool_sizes, f"pool sizes have no entry for device {dt.value}")
    return profile.pool_sizes[dt]


# ---------------------------------------------------------------------------
# Rule sets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleSet:
    """Named profile resolver. Every profile it hands out is validated."""

    id: str
    resolver: Callable[[SceneMode, bool], SceneProfile]

    def profile(
        self,
        base_mode: SceneMode = SceneMode.START,
        questionnaire_open: bool = False,
    ) -> SceneProfile:
        profile = self.resolver(base_mode, questionnaire_open)
        validate_profile(profile, self.id)
        log.debug("ruleset %s resolved to %s", self.id, profile.mode.value)
        return profile


RULESETS: dict[str, RuleSet] = {
    "intro": RuleSet("intro", resolve_profile),
    # city is always an overlay scene
    "city": RuleSet("city", lambda _mode, q: resolve_profile(SceneMode.OVERLAY, q)),
}


def get_ruleset(name: str) -> RuleSet:
    """Look up a rule set by name."""
    if name not in RULESETS:
        available = ", ".join(sorted(RULESETS))
        raise KeyError(f"Unknown rule set {name!r}. Available: {available}")
    return RULESETS[name]
