"""Scene composer — turns a persistent pool into placed shapes.

One composition pass, given a canvas size, a control value u and a
resolved SceneProfile:

    1. Pick the device bucket and grid spec, build the grid
    2. Degenerate grid -> nothing placed, pool passed through untouched
    3. Reset volatile fields (shape, size, footprint, position)
    4. Kind counts at u, then minimal-churn retarget of existing kinds
    5. Shape plan per kind bucket (quota curves)
    6. Greedy placement in pool order
    7. Post-fix hooks over the placed list

The pass is pure: the caller owns the pool and gets a fresh one back.
Only ids and kinds carry over from one pass to the next.

Usage:
    profile = RULESETS["intro"].profile()
    pool = ensure_pool_size(None, target_pool_size(profile, width=1280))

    result = compose_field(Canvas(1280, 800), u=0.4, pool=pool, profile=profile)
    for item in result.placed:
        draw(item.shape, item.x, item.y)
    pool = result.next_pool  # feed back in on the next pass
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from scene_field.catalog import CONDITION_KINDS, ConditionKind, Shape, Size
from scene_field.config import ComposeConfig, PostFixConfig
from scene_field.grid import (
    Grid,
    GridSpec,
    OccupancyGrid,
    make_cell_forbidden,
    make_centered_grid,
    round_half_up,
)
from scene_field.placement import Band, PlacedItem, PoolItem, band_rows, place_pool_items
from scene_field.planner import assign_shapes
from scene_field.quota import DEFAULT_COUNT_HOOKS, allocate, churn, clamp01
from scene_field.rules import DeviceType, SceneMode, SceneProfile, device_type, validate_profile

log = logging.getLogger(__name__)

# Spatial-hash primes for the default salt
_SALT_ROW_PRIME = 73856093
_SALT_COL_PRIME = 19349663


@dataclass(frozen=True)
class Canvas:
    """Canvas size in pixels."""

    w: float
    h: float


@dataclass
class ComposeMeta:
    """What the pass saw and did. For logging and debugging only."""

    device: DeviceType
    mode: SceneMode
    spec: GridSpec
    rows: int
    cols: int
    cell: float
    used_rows: int
    u: float
    salt: int | None = None
    counts: tuple[int, ...] = ()
    churn: int = 0
    fallback_ids: list[int] = field(default_factory=list)
    widened_ids: list[int] = field(default_factory=list)
    dropped_ids: list[int] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.dropped_ids)


@dataclass
class ComposeResult:
    placed: list[PlacedItem]
    next_pool: list[PoolItem]
    meta: ComposeMeta


# ---------------------------------------------------------------------------
# Post-fix hooks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostFixContext:
    u: float
    grid: Grid
    bands: Mapping[Shape, Band]
    config: PostFixConfig


# (placed, ctx) -> placed
PostFix = Callable[[list[PlacedItem], PostFixContext], list[PlacedItem]]


def ensure_shape_at_low_u(placed: list[PlacedItem], ctx: PostFixContext) -> list[PlacedItem]:
    """At very low u, turn one placed 1x1 item into the configured shape.

    Only existing placements are touched; the footprint stays 1x1 and no
    new space is claimed. Preference order for the item to swap:
        1. non-decorative, inside the shape's band
        2. any, inside the band
        3. non-decorative, anywhere
        4. any
    No-op when u is above the threshold, the shape is already present,
    or no 1x1 item exists.
    """
    cfg = ctx.config
    if not cfg.enabled or ctx.u > cfg.low_u_threshold:
        return placed
    if any(p.shape == cfg.shape for p in placed):
        return placed

    band = ctx.bands.get(cfg.shape)
    if band is not None:
        r_min, r_max = band_rows(band, ctx.grid.used_rows, 1)
    else:
        r_min, r_max = 0, ctx.grid.used_rows - 1

    small = [i for i, p in enumerate(placed) if p.footprint.w == 1 and p.footprint.h == 1]

    def in_band(i: int) -> bool:
        return r_min <= placed[i].footprint.r0 <= r_max

    def plain(i: int) -> bool:
        return placed[i].shape not in cfg.decorative

    tiers = (
        lambda i: plain(i) and in_band(i),
        in_band,
        plain,
        lambda i: True,
    )
    for pick in tiers:
        hits = [i for i in small if pick(i)]
        if hits:
            idx = hits[0]
            out = list(placed)
            out[idx] = dataclasses.replace(placed[idx], shape=cfg.shape)
            log.debug("post-fix: item %d -> %s", placed[idx].id, cfg.shape.value)
            return out
    return placed


DEFAULT_POST_FIXES: tuple[PostFix, ...] = (ensure_shape_at_low_u,)


# ---------------------------------------------------------------------------
# Pool helpers
# ---------------------------------------------------------------------------


def make_default_pool_item(id: int) -> PoolItem:
    return PoolItem(id=id, kind=ConditionKind.A)


def ensure_pool_size(
    pool: Sequence[PoolItem] | None,
    desired: int,
    make_item: Callable[[int], PoolItem] = make_default_pool_item,
) -> list[PoolItem]:
    """Grow or shrink *pool* to *desired* items, keeping existing ids.

    New items get ids above the current maximum; shrinking drops items
    from the end.
    """
    if desired <= 0:
        return []
    if not pool:
        return [make_item(i + 1) for i in range(desired)]
    if len(pool) >= desired:
        return list(pool[:desired])

    max_id = max(p.id for p in pool)
    extra = [make_item(max_id + k + 1) for k in range(desired - len(pool))]
    return list(pool) + extra


def default_salt(rows: int, cols: int) -> int:
    return ((rows * _SALT_ROW_PRIME) ^ (cols * _SALT_COL_PRIME)) & 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def compose_field(
    canvas: Canvas,
    u: float | None,
    pool: Sequence[PoolItem],
    profile: SceneProfile,
    salt: int | None = None,
    config: ComposeConfig | None = None,
    post_fixes: Iterable[PostFix] | None = None,
) -> ComposeResult:
    """Run one composition pass. See the module docstring for the steps.

    Raises SceneConfigError if the profile tables are incomplete.
    """
    config = config or ComposeConfig()
    post_fixes = DEFAULT_POST_FIXES if post_fixes is None else tuple(post_fixes)
    validate_profile(profile, profile.mode.value)

    w = round_half_up(canvas.w)
    h = round_half_up(canvas.h)
    u = clamp01(u)

    device = device_type(w)
    spec = profile.padding_for(w)
    grid = make_centered_grid(w, h, spec.rows, spec.use_top_ratio)

    meta = ComposeMeta(
        device=device,
        mode=profile.mode,
        spec=spec,
        rows=grid.rows,
        cols=grid.cols,
        cell=grid.cell,
        used_rows=grid.used_rows,
        u=u,
    )

    if grid.degenerate:
        log.debug("degenerate grid for canvas %dx%d, nothing placed", w, h)
        return ComposeResult(placed=[], next_pool=list(pool), meta=meta)

    if salt is None:
        salt = default_salt(grid.rows, grid.cols)
    meta.salt = salt

    # only id and kind survive into the new pass
    next_pool = [PoolItem(id=p.id, kind=p.kind) for p in pool]

    hooks = DEFAULT_COUNT_HOOKS if config.quota.ensure_dominant else ()
    before = [p.kind for p in next_pool]
    after = allocate(before, u, profile.weight_anchors, hooks=hooks)
    for item, kind in zip(next_pool, after):
        item.kind = kind
    meta.counts = tuple(sum(1 for k in after if k == kind) for kind in CONDITION_KINDS)
    meta.churn = churn(before, after)

    assign_shapes(next_pool, u, salt, profile.quota_curves, profile.catalog)

    occ = OccupancyGrid(grid.rows, grid.cols, make_cell_forbidden(spec, grid.rows, grid.cols))
    bands = profile.bands_for(w)
    outcome = place_pool_items(
        next_pool, grid, occ, bands, profile.shape_meta, salt, config.placement
    )
    meta.fallback_ids = outcome.fallback_ids
    meta.widened_ids = outcome.widened_ids
    meta.dropped_ids = outcome.dropped_ids

    ctx = PostFixContext(u=u, grid=grid, bands=bands, config=config.post_fix)
    placed = outcome.placed
    for fix in post_fixes:
        placed = fix(placed, ctx)

    # post-fixes may change shapes; keep the pool in step
    by_id = {p.id: p for p in placed}
    for item in next_pool:
        p = by_id.get(item.id)
        if p is not None and p.shape != item.shape:
            item.shape = p.shape
            item.size = Size(p.footprint.w, p.footprint.h)

    log.debug(
        "compose %s/%s %dx%d grid, u=%.3f: %d placed, %d dropped, churn %d",
        profile.mode.value,
        device.value,
        grid.rows,
        grid.cols,
        u,
        len(placed),
        meta.dropped,
        meta.churn,
    )
    return ComposeResult(placed=placed, next_pool=next_pool, meta=meta)


# ---------------------------------------------------------------------------
# Description
# ---------------------------------------------------------------------------


def describe_item(item: PlacedItem) -> str:
    """One-line description of a placed item."""
    fp = item.footprint
    return (
        f"{item.shape.value} #{item.id} at ({item.x:.1f}, {item.y:.1f})"
        f"  cells r{fp.r0} c{fp.c0} {fp.w}x{fp.h}"
    )


def describe_field(result: ComposeResult) -> str:
    """Multi-line textual description of a composed field.

    Example output:
        Field start/laptop u=0.50  12x25 grid (used 10 rows)  28 placed, 0 dropped
          counts A=7 B=8 C=7 D=6
          [0] house #3 at (612.0, 300.0)  cells r4 c12 1x3
          [1] car #9 at (640.0, 420.0)  cells r7 c13 1x1
    """
    m = result.meta
    lines = [
        f"Field {m.mode.value}/{m.device.value} u={m.u:.2f}"
        f"  {m.rows}x{m.cols} grid (used {m.used_rows} rows)"
        f"  {len(result.placed)} placed, {m.dropped} dropped"
    ]
    if m.counts:
        kinds = " ".join(f"{k.value}={n}" for k, n in zip(CONDITION_KINDS, m.counts))
        lines.append(f"  counts {kinds}")
    if m.fallback_ids:
        lines.append(f"  fallback ids {m.fallback_ids}")
    if m.widened_ids:
        lines.append(f"  widened-band ids {m.widened_ids}")
    for i, item in enumerate(result.placed):
        lines.append(f"  [{i}] {describe_item(item)}")
    return "\n".join(lines)
