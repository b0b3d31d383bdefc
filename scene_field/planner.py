"""Shape planning — which concrete shape each pool item becomes.

Each condition kind has a quota curve: anchors along u that cap how many
items of the kind may take each shape. A cap is either ``Capped(n)`` or
``UNBOUNDED``; unbounded shapes absorb whatever the capped shapes leave.

Assignment within a kind bucket:
    1. Order members by a stable hash of (id, salt), not pool position
    2. Give each member the first catalog shape with spare capacity
    3. Otherwise round-robin over the unbounded "fill" shapes
    4. Otherwise (no fill shape configured) the kind's first variant

Only shape and static footprint size are decided here; positions come
from scene_field.placement.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from scene_field.catalog import CONDITIONS, ConditionKind, Shape, Size, Variant, variants_for
from scene_field.hashing import hash32
from scene_field.quota import bracket, clamp01, lerp
from scene_field.validation import invariant

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capped:
    """At most *limit* items may take this shape (fractions allowed in tables)."""

    limit: float


@dataclass(frozen=True)
class Unbounded:
    """Fill shape: takes any number of items."""


UNBOUNDED = Unbounded()

Quota = Capped | Unbounded


@dataclass(frozen=True)
class QuotaAnchor:
    """Per-shape limits at control value t."""

    t: float
    limits: Mapping[Shape, Quota]


QuotaCurves = Mapping[ConditionKind, Sequence[QuotaAnchor]]
Catalog = Mapping[ConditionKind, tuple[Variant, ...]]


class Plannable(Protocol):
    id: int
    kind: ConditionKind
    shape: Shape | None
    size: Size | None


# ---------------------------------------------------------------------------
# Quota resolution
# ---------------------------------------------------------------------------


def blend_quota(a: Quota | None, b: Quota | None, k: float) -> Quota:
    """Blend two quotas. Unbounded on either side stays unbounded.

    None is a shape the anchor does not list; it blends as unbounded.
    """
    if a is None or b is None or isinstance(a, Unbounded) or isinstance(b, Unbounded):
        return UNBOUNDED
    return Capped(lerp(a.limit, b.limit, k))


def _finalize(
    kind: ConditionKind, raw: Mapping[Shape, Quota], catalog: Catalog
) -> dict[Shape, Quota]:
    shapes = [v.shape for v in variants_for(kind, catalog)]
    for shape in raw:
        invariant(
            shape in shapes,
            f"quota for kind {kind.value} names shape {shape.value!r} "
            f"which is not one of its variants",
        )

    out: dict[Shape, Quota] = {}
    for shape in shapes:
        q = raw.get(shape, Capped(0))
        if isinstance(q, Capped):
            q = Capped(max(0, math.floor(q.limit)))
        out[shape] = q
    return out


def resolve_quotas(
    kind: ConditionKind,
    anchors: Sequence[QuotaAnchor],
    u: float | None,
    catalog: Catalog = CONDITIONS,
) -> dict[Shape, Quota]:
    """Integer caps per shape for *kind* at u, in catalog order.

    Shapes no anchor mentions get Capped(0). A shape listed on only one
    side of the bracket is unbounded between the two anchors.
    """
    if not anchors:
        return _finalize(kind, {}, catalog)

    ordered = sorted(anchors, key=lambda a: a.t)
    i, j, k = bracket([a.t for a in ordered], clamp01(u))
    a, b = ordered[i], ordered[j]

    if i == j:
        merged = dict(a.limits)
        # coincident anchors: the lower one wins, the next fills gaps
        if j + 1 < len(ordered) and ordered[j + 1].t == a.t:
            for shape, q in ordered[j + 1].limits.items():
                merged.setdefault(shape, q)
        return _finalize(kind, merged, catalog)

    keys = list(dict.fromkeys([*a.limits, *b.limits]))
    blended = {s: blend_quota(a.limits.get(s), b.limits.get(s), k) for s in keys}
    return _finalize(kind, blended, catalog)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


def stable_order_key(id: int, salt: int) -> tuple[int, int]:
    return (hash32("planForBucket", id, salt), id)


def plan_bucket(
    kind: ConditionKind,
    items: Iterable[Plannable],
    u: float | None,
    salt: int,
    anchors: Sequence[QuotaAnchor],
    catalog: Catalog = CONDITIONS,
) -> dict[int, Variant]:
    """Shape + footprint for every member of one kind bucket, keyed by id."""
    members = sorted(items, key=lambda it: stable_order_key(it.id, salt))
    if not members:
        return {}

    variants = variants_for(kind, catalog)
    by_shape = {v.shape: v for v in variants}
    quotas = resolve_quotas(kind, anchors, u, catalog)

    finite = [(s, int(q.limit)) for s, q in quotas.items() if isinstance(q, Capped)]
    fill = [s for s, q in quotas.items() if isinstance(q, Unbounded)]
    used = {s: 0 for s, _ in finite}
    fill_idx = 0

    plan: dict[int, Variant] = {}
    for it in members:
        chosen: Shape | None = None
        for shape, cap in finite:
            if used[shape] < cap:
                used[shape] += 1
                chosen = shape
                break

        if chosen is None and fill:
            chosen = fill[fill_idx % len(fill)]
            fill_idx += 1

        if chosen is None:
            chosen = variants[0].shape

        plan[it.id] = by_shape[chosen]

    return plan


def assign_shapes(
    pool: Sequence[Plannable],
    u: float | None,
    salt: int,
    quota_curves: QuotaCurves,
    catalog: Catalog = CONDITIONS,
) -> None:
    """Set shape and size on every pool item, bucket by bucket (in place)."""
    buckets: dict[ConditionKind, list[Plannable]] = {}
    for it in pool:
        buckets.setdefault(it.kind, []).append(it)

    for kind, items in buckets.items():
        invariant(kind in quota_curves, f"quota curves missing kind {kind.value}")
        plan = plan_bucket(kind, items, u, salt, quota_curves[kind], catalog)
        for it in items:
            v = plan[it.id]
            it.shape = v.shape
            it.size = v.footprint

    log.debug(
        "assign_shapes: %s",
        {k.value: len(v) for k, v in sorted(buckets.items(), key=lambda kv: kv[0].value)},
    )
