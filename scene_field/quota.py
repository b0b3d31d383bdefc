"""Kind allocation — how many pool items belong to each condition kind.

Two steps, both deterministic:

1. **Weights -> counts.** Weight anchors along the control value u are
   interpolated, then scaled to the pool size with the largest remainder
   method. This is the single source of rounding and always sums exactly
   to the pool size. Optional count hooks adjust the result afterwards
   (by default: the weight-dominant kind keeps at least one item).

2. **Minimal-churn retarget.** Existing pool items keep their kind unless
   the new counts force a change; surplus items are moved one at a time
   to the kinds that need them. Kind changes cascade into shape and
   footprint changes, so fewer changes means less visible "pop".

Counts are tuples in CONDITION_KINDS order.

Usage:
    counts = counts_from_control(u, len(pool), DEFAULT_WEIGHT_ANCHORS)
    kinds = retarget_kinds([p.kind for p in pool], counts)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

from scene_field.catalog import CONDITION_KINDS, ConditionKind

log = logging.getLogger(__name__)

TMapper = Callable[[float], float]
# (weights, counts) -> counts
CountHook = Callable[[Sequence[float], tuple[int, ...]], tuple[int, ...]]


def clamp01(v: float | None) -> float:
    """Clamp to [0, 1]; None and NaN map to the neutral midpoint."""
    if v is None or (isinstance(v, float) and math.isnan(v)):
        return 0.5
    return max(0.0, min(1.0, float(v)))


def lerp(a: float, b: float, k: float) -> float:
    return a + (b - a) * k


@dataclass(frozen=True)
class WeightAnchor:
    """Relative kind weights at control value t (one weight per kind)."""

    t: float
    weights: tuple[float, ...]


# Relative weights for kinds A/B/C/D along u. Scaled to the pool size by
# largest remainder, so only ratios matter.
DEFAULT_WEIGHT_ANCHORS: tuple[WeightAnchor, ...] = (
    WeightAnchor(0.0, (2, 4, 10, 8)),
    WeightAnchor(0.25, (4, 6, 10, 4)),
    WeightAnchor(0.5, (5, 7, 7, 5)),
    WeightAnchor(0.75, (4, 10, 6, 4)),
    WeightAnchor(1.0, (10, 9, 3, 4)),
)


# ---------------------------------------------------------------------------
# Control remapping
# ---------------------------------------------------------------------------


def make_t_mapper(checkpoints: Sequence[tuple[float, float]]) -> TMapper:
    """Piecewise-linear remap of u through (x, y) checkpoints.

    Outside the checkpoint range the end values are held. An empty
    checkpoint list gives the identity (clamped).
    """
    pts = sorted(checkpoints)
    if not pts:
        return clamp01

    def mapper(t_in: float) -> float:
        t = clamp01(t_in)
        if t <= pts[0][0]:
            return clamp01(pts[0][1])
        if t >= pts[-1][0]:
            return clamp01(pts[-1][1])
        i = 0
        while i < len(pts) - 1 and t > pts[i + 1][0]:
            i += 1
        (ax, ay), (bx, by) = pts[i], pts[i + 1]
        k = (t - ax) / max(1e-6, bx - ax)
        return clamp01(lerp(ay, by, k))

    return mapper


def bracket(ts: Sequence[float], t: float) -> tuple[int, int, float]:
    """Indices (i, j) of the anchors around t and the blend factor k.

    *ts* must be sorted ascending. i == j when t sits at or beyond an end.
    """
    i = 0
    while i < len(ts) - 1 and t > ts[i + 1]:
        i += 1
    j = min(i + 1, len(ts) - 1)
    if ts[i] == ts[j]:
        return i, i, 0.0
    k = (t - ts[i]) / max(1e-6, ts[j] - ts[i])
    return i, j, max(0.0, min(1.0, k))


def interpolate_weights(
    u: float | None,
    anchors: Sequence[WeightAnchor] = DEFAULT_WEIGHT_ANCHORS,
    t_mapper: TMapper | None = None,
) -> tuple[float, ...]:
    """Kind weights at control value u (floats, not counts)."""
    if not anchors:
        raise ValueError("interpolate_weights needs at least one anchor")
    ordered = sorted(anchors, key=lambda a: a.t)
    t = clamp01(u)
    if t_mapper is not None:
        t = clamp01(t_mapper(t))

    i, j, k = bracket([a.t for a in ordered], t)
    a, b = ordered[i], ordered[j]
    if i == j:
        return tuple(float(w) for w in a.weights)
    return tuple(lerp(wa, wb, k) for wa, wb in zip(a.weights, b.weights))


# ---------------------------------------------------------------------------
# Largest remainder
# ---------------------------------------------------------------------------


def largest_remainder(weights: Sequence[float], total: int) -> tuple[int, ...]:
    """Scale non-negative weights to integers summing exactly to *total*.

    Each bucket gets floor(w_i * total / sum(w)); the leftover units go
    one at a time to the largest fractional remainders, ties broken by
    index order. Negative weights count as zero; all-zero weights are
    treated as equal.
    """
    n = len(weights)
    if n == 0 or total <= 0:
        return (0,) * n

    w = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    s = float(w.sum())
    if s <= 0:
        w = np.ones(n)
        s = float(n)

    scaled = w * (total / s)
    floors = np.floor(scaled).astype(np.int64)
    frac = scaled - floors
    # stable sort on -frac keeps index order among equal remainders
    order = np.argsort(-frac, kind="stable")

    out = floors.copy()
    remaining = total - int(out.sum())
    idx = 0
    # cycles only when float error leaves n or more units over
    while remaining > 0:
        out[order[idx % n]] += 1
        remaining -= 1
        idx += 1
    return tuple(int(v) for v in out)


def _argmax(values: Sequence[float]) -> int:
    best = 0
    for i in range(1, len(values)):
        if values[i] > values[best]:
            best = i
    return best


def ensure_dominant_present(
    weights: Sequence[float], counts: tuple[int, ...]
) -> tuple[int, ...]:
    """Give the weight-dominant kind one item if it rounded to zero.

    The unit is taken from the largest other bucket.
    """
    if not counts or sum(counts) <= 0:
        return counts
    dom = _argmax(weights)
    if counts[dom] > 0:
        return counts

    donor = -1
    best = 0
    for i, c in enumerate(counts):
        if i == dom:
            continue
        if c > best:
            best = c
            donor = i
    if donor == -1:
        return counts

    out = list(counts)
    out[donor] -= 1
    out[dom] += 1
    return tuple(out)


DEFAULT_COUNT_HOOKS: tuple[CountHook, ...] = (ensure_dominant_present,)


def counts_from_control(
    u: float | None,
    total: int,
    anchors: Sequence[WeightAnchor] = DEFAULT_WEIGHT_ANCHORS,
    t_mapper: TMapper | None = None,
    hooks: Sequence[CountHook] = DEFAULT_COUNT_HOOKS,
) -> tuple[int, ...]:
    """Per-kind counts at u for a pool of *total* items.

    Count hooks run in order after rounding; each must preserve the sum.
    """
    if total <= 0:
        return (0,) * len(anchors[0].weights) if anchors else ()

    weights = interpolate_weights(u, anchors, t_mapper)
    counts = largest_remainder(weights, total)
    for hook in hooks:
        counts = hook(weights, counts)
    if sum(counts) != total:
        raise ValueError(f"count hook broke the total: {counts} != {total}")
    return counts


# ---------------------------------------------------------------------------
# Minimal-churn retarget
# ---------------------------------------------------------------------------


def retarget_kinds(
    current: Sequence[ConditionKind],
    target_counts: Sequence[int],
    kinds: Sequence[ConditionKind] = CONDITION_KINDS,
) -> list[ConditionKind]:
    """Reassign kinds to hit *target_counts* while changing as few items as possible.

    target_counts are COUNTS in *kinds* order. When they do not sum to
    len(current) they are renormalised with largest_remainder. Donors are
    picked by largest surplus; within a donor kind, the most recently
    listed item moves first. Recipients are picked by largest need, ties
    in kind order. No randomness is involved.
    """
    n = len(current)
    if n == 0:
        return []
    if len(target_counts) != len(kinds):
        raise ValueError(
            f"expected {len(kinds)} target counts, got {len(target_counts)}"
        )

    target = [int(c) for c in target_counts]
    if sum(target) != n or any(c < 0 for c in target):
        target = list(largest_remainder(target, n))

    slot = {k: i for i, k in enumerate(kinds)}
    idx_by: list[list[int]] = [[] for _ in kinds]
    for i, k in enumerate(current):
        idx_by[slot[k]].append(i)

    cur_counts = [len(ix) for ix in idx_by]
    need = [t - c for t, c in zip(target, cur_counts)]
    surplus = [c - t for t, c in zip(target, cur_counts)]

    out = list(current)
    while True:
        recipient = _argmax(need)
        if need[recipient] <= 0:
            break
        donor = _argmax(surplus)
        if surplus[donor] <= 0:
            break
        if not idx_by[donor]:
            surplus[donor] = 0
            continue

        i = idx_by[donor].pop()
        out[i] = kinds[recipient]
        idx_by[recipient].append(i)
        surplus[donor] -= 1
        need[recipient] -= 1

    return out


def churn(before: Sequence[ConditionKind], after: Sequence[ConditionKind]) -> int:
    """Number of positions whose kind differs."""
    return sum(1 for a, b in zip(before, after) if a != b)


def allocate(
    current: Sequence[ConditionKind],
    u: float | None,
    anchors: Sequence[WeightAnchor] = DEFAULT_WEIGHT_ANCHORS,
    t_mapper: TMapper | None = None,
    hooks: Sequence[CountHook] = DEFAULT_COUNT_HOOKS,
    kinds: Sequence[ConditionKind] = CONDITION_KINDS,
) -> list[ConditionKind]:
    """Counts at u for len(current) items, then minimal-churn retarget."""
    counts = counts_from_control(u, len(current), anchors, t_mapper, hooks)
    if not current:
        return []
    out = retarget_kinds(current, counts, kinds)
    log.debug(
        "allocate u=%.3f counts=%s churn=%d", clamp01(u), counts, churn(current, out)
    )
    return out
