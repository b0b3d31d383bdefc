"""Square-cell grid layout and occupancy tracking.

The grid is driven by the canvas height: ``rows`` is authoritative and the
column count is derived so cells stay square. Only the top
``use_top_ratio`` of the canvas is used to size cells; the grid is then
centred horizontally.

Coordinate convention:
    - (r, c) = (row, column), row 0 at the top
    - Footprints are anchored at their top-left cell (r0, c0)
    - Pixel positions are relative to the canvas top-left corner

Usage:
    grid = make_centered_grid(1280, 800, rows=12, use_top_ratio=0.8)
    occ = OccupancyGrid(grid.rows, grid.cols, make_cell_forbidden(spec, grid.rows, grid.cols))
    fp = occ.try_place_at(3, 5, w=2, h=1)   # Footprint or None
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np

# (r, c, rows, cols) -> True if the cell may never hold a footprint
ForbiddenFn = Callable[[int, int, int, int], bool]
# (r, c) -> bool, already bound to a grid size
CellForbidden = Callable[[int, int], bool]


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def round_half_up(x: float) -> int:
    """Round to nearest, halves up (2.5 -> 3). Builtin round() goes to even."""
    return math.floor(x + 0.5)


@dataclass(frozen=True)
class RectFrac:
    """Rectangle in fractions of the grid (0 = top/left, 1 = bottom/right)."""

    top: float
    left: float
    bottom: float
    right: float


@dataclass(frozen=True)
class GridSpec:
    """How to lay a grid over a canvas.

    Attributes:
        rows: Row count (authoritative; columns are derived)
        use_top_ratio: Fraction of the canvas height used to size cells
        forbidden: Optional per-cell predicate (r, c, rows, cols) -> bool
        forbidden_rects: Fractional rectangles that are always blocked
    """

    rows: int
    use_top_ratio: float = 1.0
    forbidden: ForbiddenFn | None = None
    forbidden_rects: tuple[RectFrac, ...] = ()


@dataclass(frozen=True)
class Grid:
    """A concrete grid laid over a canvas (cell sizes in pixels)."""

    rows: int
    cols: int
    cell: float
    origin_x: float
    origin_y: float
    used_rows: int

    @property
    def degenerate(self) -> bool:
        """True when nothing can be placed on this grid."""
        return self.rows < 1 or self.cols < 1 or self.cell <= 0


@dataclass(frozen=True)
class Footprint:
    """An occupied rectangle in grid cells."""

    r0: int
    c0: int
    w: int
    h: int

    @property
    def center(self) -> tuple[float, float]:
        """Centre in cell units as (col, row)."""
        return (self.c0 + self.w / 2, self.r0 + self.h / 2)

    def cells(self) -> list[tuple[int, int]]:
        return [
            (self.r0 + dr, self.c0 + dc) for dr in range(self.h) for dc in range(self.w)
        ]


# ---------------------------------------------------------------------------
# Grid construction
# ---------------------------------------------------------------------------


def used_rows_from_spec(rows: int, use_top_ratio: float | None = None) -> int:
    """Rows inside the "used" region. Rows below it are overflow."""
    use_top = _clamp(1.0 if use_top_ratio is None else use_top_ratio, 0.01, 1.0)
    return max(1, round_half_up(rows * use_top))


def _degenerate(rows: int) -> Grid:
    return Grid(rows=max(0, rows), cols=0, cell=0.0, origin_x=0.0, origin_y=0.0, used_rows=0)


def make_centered_grid(
    w: float,
    h: float,
    rows: int,
    use_top_ratio: float = 1.0,
) -> Grid:
    """Build a square-cell grid sized by the used canvas height.

    Returns a degenerate grid (cell=0) for rows < 1 or a non-positive
    canvas size. Callers must treat that as "nothing placeable".
    """
    if rows < 1 or w <= 0 or h <= 0:
        return _degenerate(rows)

    usable_h = max(1, round_half_up(h * _clamp(use_top_ratio, 0.01, 1.0)))
    cell = usable_h / rows
    cols = max(1, round_half_up(w / cell))
    if cols < 1:
        return _degenerate(rows)

    return Grid(
        rows=rows,
        cols=cols,
        cell=cell,
        origin_x=(w - cols * cell) / 2,
        origin_y=0.0,
        used_rows=used_rows_from_spec(rows, use_top_ratio),
    )


# ---------------------------------------------------------------------------
# Forbidden cells
# ---------------------------------------------------------------------------


def rect_frac_to_cell_range(
    rect: RectFrac, rows: int, cols: int
) -> tuple[int, int, int, int]:
    """Inclusive (r0, r1, c0, c1) covered by a fractional rectangle."""
    r0 = math.floor(rect.top * rows)
    r1 = math.ceil(rect.bottom * rows) - 1
    c0 = math.floor(rect.left * cols)
    c1 = math.ceil(rect.right * cols) - 1
    return r0, r1, c0, c1


def make_cell_forbidden(spec: GridSpec, rows: int, cols: int) -> CellForbidden:
    """Combine a spec's rectangles and predicate into one (r, c) check."""
    ranges = [rect_frac_to_cell_range(rect, rows, cols) for rect in spec.forbidden_rects]
    fn = spec.forbidden

    def is_forbidden(r: int, c: int) -> bool:
        for r0, r1, c0, c1 in ranges:
            if r0 <= r <= r1 and c0 <= c <= c1:
                return True
        return bool(fn is not None and fn(r, c, rows, cols))

    return is_forbidden


# A row trim is an absolute column count (int >= 1), a fraction (< 1) of
# the column count, or a percentage string like "30%".
Trim = int | float | str


@dataclass(frozen=True)
class RowRule:
    """Per-row trimming: block columns on the left, right, and/or centre."""

    left: Trim | None = None
    right: Trim | None = None
    center: Trim | None = None


def _trim_to_cols(val: Trim | None, cols: int) -> int:
    if val is None:
        return 0
    if isinstance(val, str):
        if not val.endswith("%"):
            raise ValueError(f"row trim string must be a percentage, got {val!r}")
        p = _clamp(float(val[:-1]), 0.0, 100.0)
        return math.floor(p / 100 * cols)
    if val >= 1:
        return math.floor(val)
    return math.floor(_clamp(val, 0.0, 1.0) * cols)


def make_row_forbidden(rules: Sequence[RowRule]) -> ForbiddenFn:
    """Forbidden predicate from row-oriented trims.

    Row r uses rules[r]; rows past the end reuse the last rule.
    """
    rules = tuple(rules)

    def forbidden(r: int, c: int, rows: int, cols: int) -> bool:
        if not rules:
            return False
        rule = rules[min(r, len(rules) - 1)]
        left = _trim_to_cols(rule.left, cols)
        right = _trim_to_cols(rule.right, cols)
        center = _trim_to_cols(rule.center, cols)

        if left > 0 and c < left:
            return True
        if right > 0 and c >= cols - right:
            return True
        if center > 0:
            start = max(0, (cols - center) // 2)
            end = min(cols - 1, start + center - 1)
            if start <= c <= end:
                return True
        return False

    return forbidden


def forbidden_mask(rows: int, cols: int, is_forbidden: CellForbidden | None) -> np.ndarray:
    """Boolean (rows, cols) array, True where a cell is forbidden."""
    mask = np.zeros((rows, cols), dtype=bool)
    if is_forbidden is not None:
        for r in range(rows):
            for c in range(cols):
                if is_forbidden(r, c):
                    mask[r, c] = True
    return mask


# ---------------------------------------------------------------------------
# Occupancy
# ---------------------------------------------------------------------------


@dataclass
class OccupancyGrid:
    """Tracks occupied cells for one composition pass.

    Forbidden cells are pre-marked as occupied. Not thread-safe; create a
    fresh grid per pass.
    """

    rows: int
    cols: int
    is_forbidden: CellForbidden | None = None
    forbidden: np.ndarray = field(init=False, repr=False)
    _used: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        self.forbidden = forbidden_mask(self.rows, self.cols, self.is_forbidden)
        self._used = self.forbidden.copy()

    def _in_bounds(self, r0: int, c0: int, w: int, h: int) -> bool:
        return (
            w > 0
            and h > 0
            and r0 >= 0
            and c0 >= 0
            and r0 + h <= self.rows
            and c0 + w <= self.cols
        )

    def can_place(self, r0: int, c0: int, w: int, h: int) -> bool:
        """In bounds and every covered cell is free."""
        if not self._in_bounds(r0, c0, w, h):
            return False
        return not self._used[r0 : r0 + h, c0 : c0 + w].any()

    def try_place_at(self, r0: int, c0: int, w: int, h: int) -> Footprint | None:
        """Check and mark in one step. Returns None if the rect is not free."""
        if not self.can_place(r0, c0, w, h):
            return None
        self._used[r0 : r0 + h, c0 : c0 + w] = True
        return Footprint(r0, c0, w, h)

    def footprint_allowed(self, r0: int, c0: int, w: int, h: int) -> bool:
        """In bounds and clear of forbidden cells (ignores placed items)."""
        if not self._in_bounds(r0, c0, w, h):
            return False
        return not self.forbidden[r0 : r0 + h, c0 : c0 + w].any()

    def allowed_segments(self, r0: int, w: int, h: int) -> list[tuple[int, int]]:
        """Maximal runs [c_start, c_end] of legal left edges on row r0.

        A left edge c is legal when the w*h footprint at (r0, c) is in
        bounds and covers no forbidden cell. c_end is inclusive.
        """
        if not self._in_bounds(r0, 0, w, h):
            return []
        blocked_cols = self.forbidden[r0 : r0 + h, :].any(axis=0).astype(np.int64)
        # blocked count within each window [c, c + w)
        csum = np.concatenate(([0], np.cumsum(blocked_cols)))
        legal = (csum[w:] - csum[:-w]) == 0

        segs: list[tuple[int, int]] = []
        start: int | None = None
        for c, ok in enumerate(legal):
            if ok and start is None:
                start = c
            elif not ok and start is not None:
                segs.append((start, c - 1))
                start = None
        if start is not None:
            segs.append((start, len(legal) - 1))
        return segs

    @property
    def occupied(self) -> np.ndarray:
        """Read-only copy of the occupancy mask (forbidden + placed)."""
        return self._used.copy()


# ---------------------------------------------------------------------------
# Grid -> pixel coordinates
# ---------------------------------------------------------------------------


def cell_center_to_px(grid: Grid, r: int, c: int) -> tuple[float, float]:
    """Pixel centre of a single cell."""
    return (
        grid.origin_x + (c + 0.5) * grid.cell,
        grid.origin_y + (r + 0.5) * grid.cell,
    )


def cell_rect_to_px(grid: Grid, fp: Footprint) -> tuple[float, float, float, float]:
    """Pixel rectangle (x, y, w, h) of a footprint, top-left anchored."""
    return (
        grid.origin_x + fp.c0 * grid.cell,
        grid.origin_y + fp.r0 * grid.cell,
        fp.w * grid.cell,
        fp.h * grid.cell,
    )


def footprint_center_px(grid: Grid, fp: Footprint) -> tuple[float, float]:
    """Pixel centre of a footprint: origin + (c0 + w/2) * cell."""
    return (
        grid.origin_x + (fp.c0 + fp.w / 2) * grid.cell,
        grid.origin_y + (fp.r0 + fp.h / 2) * grid.cell,
    )
