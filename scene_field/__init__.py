"""Procedural 2D scene composition on a square-cell grid.

Populates a decorative scene with typed shapes. A control value u in
[0, 1] drives both the mix of condition kinds and which shapes they
become; placement is greedy, deterministic and hash-seeded, so the same
inputs always give the same field.

Usage:
    from scene_field import Canvas, RULESETS, compose_field, ensure_pool_size, target_pool_size

    profile = RULESETS["intro"].profile()
    pool = ensure_pool_size(None, target_pool_size(profile, width=1280))
    result = compose_field(Canvas(1280, 800), u=0.3, pool=pool, profile=profile)
    pool = result.next_pool            # carry ids and kinds into the next pass
"""

from scene_field.composer import (
    Canvas,
    ComposeResult,
    compose_field,
    describe_field,
    ensure_pool_size,
)
from scene_field.config import ComposeConfig
from scene_field.placement import PlacedItem, PoolItem
from scene_field.quota import allocate, retarget_kinds
from scene_field.rules import RULESETS, SceneMode, resolve_profile, target_pool_size
from scene_field.validation import SceneConfigError

__all__ = [
    "Canvas",
    "ComposeConfig",
    "ComposeResult",
    "PlacedItem",
    "PoolItem",
    "RULESETS",
    "SceneConfigError",
    "SceneMode",
    "allocate",
    "compose_field",
    "describe_field",
    "ensure_pool_size",
    "resolve_profile",
    "retarget_kinds",
    "target_pool_size",
]
