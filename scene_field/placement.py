"""Greedy grid placement of planned pool items.

Items are placed one at a time in pool order against the current
occupancy; there is no backtracking, so pool order is part of the
contract.

Per item:
    1. Vertical band [row_min, row_max] from the shape's Band and used rows
    2. Candidates: every legal left edge on every band row. Ground shapes
       walk their rows from 30% down the band outward
    3. Score = centre preference + same-group separation penalty + jitter,
       plus layer terms: ground (edges, lanes, segment pull, band bottom)
       and sky (spread from sky shapes already placed)
    4. Commit the best-scoring candidate that is still free
    5. No candidates: widenable ground shapes retry on the band padded by
       a few rows; everything else walks the shared fallback cell order,
       inside the band only
    6. Still nothing -> the item stays unplaced (not an error)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from scene_field.catalog import ConditionKind, Shape, ShapeLayer, ShapeMeta, Size
from scene_field.config import PlacementConfig
from scene_field.grid import Footprint, Grid, OccupancyGrid, footprint_center_px
from scene_field.hashing import hash_string32, rand01_keyed
from scene_field.validation import invariant

log = logging.getLogger(__name__)

LANE_COUNT = 3
GROUND_ROW_PREF = 0.3  # Ground rows are tried from this far down the band

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass
class PoolItem:
    """One member of the persistent pool.

    Only ``id`` is stable across compositions. Everything else is
    recomputed on each pass; ``kind`` is kept so the next pass can
    retarget with minimal churn.
    """

    id: int
    kind: ConditionKind = ConditionKind.A
    shape: Shape | None = None
    size: Size | None = None
    footprint: Footprint | None = None
    x: float | None = None
    y: float | None = None


@dataclass(frozen=True)
class PlacedItem:
    """Draw instruction in pixel space."""

    id: int
    x: float
    y: float
    shape: Shape
    footprint: Footprint


@dataclass(frozen=True)
class Band:
    """Legal vertical range as fractions of the used rows (0 = top)."""

    top_k: float
    bot_k: float


@dataclass
class PlacementOutcome:
    """Placed items plus which ids took a non-standard path.

    ``fallback_ids`` went through the fallback cell walk (still inside
    their band). ``widened_ids`` are ground shapes placed on the padded
    band, so they may sit up to ``widen_rows`` outside it.
    """

    placed: list[PlacedItem] = field(default_factory=list)
    fallback_ids: list[int] = field(default_factory=list)
    widened_ids: list[int] = field(default_factory=list)
    dropped_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ItemContext:
    """What scoring needs to know about the item being placed."""

    w: int
    h: int
    meta: ShapeMeta | None = None
    shape: Shape | None = None
    band_bot: int = 0
    lane: int | None = None

    @property
    def layer(self) -> ShapeLayer | None:
        return None if self.meta is None else self.meta.layer


# ---------------------------------------------------------------------------
# Bands and row order
# ---------------------------------------------------------------------------


def band_rows(band: Band, used_rows: int, h: int = 1) -> tuple[int, int]:
    """Row range (top, bot) for a footprint of height h.

    bot is clamped so the footprint fits inside the used rows; when it
    cannot fit, bot < top and the band is empty.
    """
    top_k = max(0.0, min(1.0, band.top_k))
    bot_k = max(top_k, min(1.0, band.bot_k))

    top = math.floor(used_rows * top_k)
    bot = math.floor(used_rows * bot_k)
    bot = min(used_rows - h, bot)
    top = max(0, min(top, bot))
    return top, bot


def row_order_from_band(top: int, bot: int) -> list[int]:
    """Band rows starting 30% down the band, then fanning outward.

    Each step goes two rows up and one row down, so ground shapes fill
    the upper middle of their band before its bottom edge.
    """
    if top > bot:
        return []
    pref = math.floor(top + (bot - top) * GROUND_ROW_PREF)
    order = [pref]
    d = 1
    while True:
        step = [r for r in (pref - d, pref - d - 1) if r >= top]
        if pref + d <= bot:
            step.append(pref + d)
        if not step:
            break
        order.extend(step)
        d += 1
    return list(dict.fromkeys(order))


def widened_rows(top: int, bot: int, pad: int, rows: int, h: int) -> range:
    """Band rows padded by ``pad`` on both sides, clipped to the grid."""
    return range(max(0, top - pad), min(rows - h, bot + pad) + 1)


def pick_lane(shape: Shape, id: int, salt: int) -> int:
    """Stable column lane (c0 % 3) for a lane shape."""
    return hash_string32(f"{shape.value}|{id}|{salt}") % LANE_COUNT


# ---------------------------------------------------------------------------
# Fallback order
# ---------------------------------------------------------------------------


def build_fallback_cells(rows: int, cols: int, used_rows: int) -> list[tuple[int, int]]:
    """All cells sorted by distance to the centre of the used region.

    Overflow rows below the used region count double, so they are
    reached only after nearby used cells. Ties keep row-major order.
    """
    if rows < 1 or cols < 1:
        return []
    r = np.arange(rows)
    r_in_used = np.where(r < used_rows, r, (used_rows - 1) + (r - used_rows + 1) * 2)
    dr = r_in_used - (used_rows - 1) / 2
    dc = np.arange(cols) - (cols - 1) / 2
    d2 = (dr[:, None] ** 2 + dc[None, :] ** 2).ravel()
    order = np.argsort(d2, kind="stable")
    return [(int(i // cols), int(i % cols)) for i in order]


@dataclass
class FallbackCursor:
    """Shared walk over the fallback cells for one composition pass.

    The position only moves forward, so repeated fallbacks never rescan
    from the start. After a hit it rests ``lookback`` cells behind it.
    """

    cells: list[tuple[int, int]]
    lookback: int = 2
    pos: int = 0

    def place(
        self,
        occ: OccupancyGrid,
        w: int,
        h: int,
        row_min: int,
        row_max: int,
    ) -> Footprint | None:
        """First free fallback cell with row_min <= r <= row_max that fits w*h."""
        for k in range(self.pos, len(self.cells)):
            r, c = self.cells[k]
            if r < row_min or r > row_max:
                continue
            if not occ.footprint_allowed(r, c, w, h):
                continue
            hit = occ.try_place_at(r, c, w, h)
            if hit is not None:
                self.pos = max(self.pos, k - self.lookback)
                return hit
        return None


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Candidates:
    """Candidate left edges for one item, in generation order.

    ``seg_center`` is the column centre of the free segment each
    candidate came from.
    """

    r0: np.ndarray
    c0: np.ndarray
    seg_center: np.ndarray

    def __len__(self) -> int:
        return len(self.r0)


def candidate_cells(occ: OccupancyGrid, rows: Iterable[int], w: int, h: int) -> Candidates:
    """Every (r0, c0) on the given rows whose footprint avoids forbidden cells."""
    r_parts: list[np.ndarray] = []
    c_parts: list[np.ndarray] = []
    s_parts: list[np.ndarray] = []
    for r0 in rows:
        for c_start, c_end in occ.allowed_segments(r0, w, h):
            n = c_end - c_start + 1
            r_parts.append(np.full(n, r0, dtype=np.int64))
            c_parts.append(np.arange(c_start, c_end + 1, dtype=np.int64))
            s_parts.append(np.full(n, (c_start + c_end + w) / 2))
    if not r_parts:
        empty = np.zeros(0, dtype=np.int64)
        return Candidates(empty, empty, np.zeros(0))
    return Candidates(np.concatenate(r_parts), np.concatenate(c_parts), np.concatenate(s_parts))


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Anchor:
    cx: float
    cy: float
    meta: ShapeMeta | None


@dataclass
class JitterField:
    """Per-pass jitter by footprint size.

    Jitter depends only on (r0, c0, w, h, salt), so each size is hashed
    over the grid once and shared by every item of that size.
    """

    rows: int
    cols: int
    salt: int
    amplitude: float
    _by_size: dict[tuple[int, int], np.ndarray] = field(default_factory=dict, repr=False)

    def values(self, w: int, h: int) -> np.ndarray:
        """(rows, cols) table of jitter for a w*h footprint at each (r0, c0)."""
        table = self._by_size.get((w, h))
        if table is None:
            table = np.zeros((self.rows, self.cols))
            if self.amplitude:
                for r0 in range(self.rows):
                    for c0 in range(self.cols):
                        key = f"cand|{r0},{c0},{w},{h}|{self.salt}"
                        table[r0, c0] = (rand01_keyed(key) - 0.5) * self.amplitude
            self._by_size[(w, h)] = table
        return table


def _min_distance(cx: np.ndarray, cy: np.ndarray, anchors: Sequence[_Anchor]) -> np.ndarray:
    ax = np.array([a.cx for a in anchors])
    ay = np.array([a.cy for a in anchors])
    return np.hypot(cx[:, None] - ax[None, :], cy[:, None] - ay[None, :]).min(axis=1)


def sky_terms(
    cx: np.ndarray,
    cy: np.ndarray,
    placed: Sequence[_Anchor],
    config: PlacementConfig,
) -> np.ndarray:
    """Spread bonus: grows with distance to the nearest placed sky shape."""
    sky = [p for p in placed if p.meta is not None and p.meta.layer == ShapeLayer.SKY]
    if not sky:
        return np.zeros(len(cx))
    return config.sky_spread_weight * _min_distance(cx, cy, sky)


def ground_terms(
    cands: Candidates,
    item: ItemContext,
    cols: int,
    config: PlacementConfig,
) -> np.ndarray:
    """Ground-layer shaping on top of the shared score.

    - edge: penalty per footprint column inside the outer ``edge_margin``
    - segment pull: quadratic pull to the middle of the candidate's free run
    - lane: flat penalty when a lane shape's c0 % 3 is off its lane
    - band bottom: listed shapes sink toward the bottom row of their band
    """
    c0 = cands.c0
    m = config.edge_margin
    edge = np.maximum(0, m - c0) + np.maximum(0, c0 + item.w - (cols - m))
    out = -config.edge_weight * edge
    out = out - config.segment_pull * (c0 + item.w / 2 - cands.seg_center) ** 2

    if item.lane is not None:
        out = out - np.where(c0 % LANE_COUNT != item.lane, config.lane_penalty, 0.0)

    if item.shape in config.band_bottom_shapes:
        dist = cands.r0 + item.h / 2 - (item.band_bot + 0.5)
        out = out - config.band_bottom_weight * dist**2
    return out


def score_candidates(
    cands: Candidates,
    item: ItemContext,
    cols: int,
    used_rows: int,
    placed: Sequence[_Anchor],
    jitter: np.ndarray,
    config: PlacementConfig,
) -> np.ndarray:
    """Score per candidate, higher is better. Deterministic for identical inputs.

    ``jitter`` is the (rows, cols) table from JitterField.values for the
    item's footprint size.
    """
    cx = cands.c0 + item.w / 2
    cy = cands.r0 + item.h / 2

    grid_cx = (cols - 1) / 2
    used_cy = (used_rows - 1) / 2
    score = -config.center_weight * ((cx - grid_cx) ** 2 + (cy - used_cy) ** 2)

    meta = item.meta
    if meta is not None and meta.separation > 0:
        same = [p for p in placed if p.meta is not None and p.meta.group == meta.group]
        if same:
            shortfall = np.maximum(0.0, meta.separation - _min_distance(cx, cy, same))
            score = score - config.separation_weight * shortfall**2

    score = score + jitter[cands.r0, cands.c0]

    if item.layer == ShapeLayer.SKY:
        score = score + sky_terms(cx, cy, placed, config)
    elif item.layer == ShapeLayer.GROUND:
        score = score + ground_terms(cands, item, cols, config)
    return score


# ---------------------------------------------------------------------------
# Placement pass
# ---------------------------------------------------------------------------


def place_pool_items(
    pool: Sequence[PoolItem],
    grid: Grid,
    occ: OccupancyGrid,
    bands: Mapping[Shape, Band],
    shape_meta: Mapping[Shape, ShapeMeta],
    salt: int,
    config: PlacementConfig | None = None,
) -> PlacementOutcome:
    """Place every sized item in pool order, writing footprint/x/y in place.

    Items without a shape or size are skipped. Items that fit nowhere keep
    footprint=None and are listed in ``dropped_ids``.
    """
    config = config or PlacementConfig()
    fallback = FallbackCursor(
        build_fallback_cells(grid.rows, grid.cols, grid.used_rows),
        lookback=config.fallback_lookback,
    )
    jitter = JitterField(grid.rows, grid.cols, salt, config.jitter_amplitude)
    outcome = PlacementOutcome()
    anchors: list[_Anchor] = []

    for item in pool:
        if item.shape is None or item.size is None:
            continue
        invariant(item.shape in bands, f"bands table missing shape {item.shape.value!r}")

        w, h = item.size.w, item.size.h
        meta = shape_meta.get(item.shape)
        row_min, row_max = band_rows(bands[item.shape], grid.used_rows, h)
        ground = meta is not None and meta.layer == ShapeLayer.GROUND

        lane = None
        if ground and item.shape in config.lane_shapes:
            lane = pick_lane(item.shape, item.id, salt)
        ctx = ItemContext(w=w, h=h, meta=meta, shape=item.shape, band_bot=row_max, lane=lane)

        if ground:
            cands = candidate_cells(occ, row_order_from_band(row_min, row_max), w, h)
        else:
            cands = candidate_cells(occ, range(row_min, row_max + 1), w, h)

        widened = False
        if not len(cands) and ground and item.shape in config.widen_shapes:
            rows = widened_rows(row_min, row_max, config.widen_rows, grid.rows, h)
            cands = candidate_cells(occ, rows, w, h)
            widened = len(cands) > 0

        hit: Footprint | None = None
        if len(cands):
            scores = score_candidates(
                cands, ctx, grid.cols, grid.used_rows, anchors, jitter.values(w, h), config
            )
            # stable: equal scores keep generation order
            for i in np.argsort(-scores, kind="stable"):
                hit = occ.try_place_at(int(cands.r0[i]), int(cands.c0[i]), w, h)
                if hit is not None:
                    break
            if hit is not None and widened:
                outcome.widened_ids.append(item.id)
        else:
            hit = fallback.place(occ, w, h, row_min, row_max)
            if hit is not None:
                outcome.fallback_ids.append(item.id)

        if hit is None:
            outcome.dropped_ids.append(item.id)
            continue

        x, y = footprint_center_px(grid, hit)
        item.footprint = hit
        item.x = x
        item.y = y

        cx, cy = hit.center
        anchors.append(_Anchor(cx, cy, meta))
        outcome.placed.append(PlacedItem(item.id, x, y, item.shape, hit))

    log.debug(
        "placed %d items (%d via fallback, %d on widened bands, %d dropped)",
        len(outcome.placed),
        len(outcome.fallback_ids),
        len(outcome.widened_ids),
        len(outcome.dropped_ids),
    )
    return outcome
