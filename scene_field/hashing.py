"""Deterministic 32-bit hashing for reproducible pseudo-randomness.

Every "random" choice in the engine (variant picks, planner ordering,
candidate jitter) is a pure function of a key. There is no generator
state, so the same (tag, id, salt) always yields the same value.

Usage:
    from scene_field.hashing import hash32, rand01, rand01_keyed

    h = hash32("planForBucket", item_id, salt)     # uint32
    r = rand01("variant", item_id)                 # float in [0, 1]
    j = rand01_keyed(f"cand|{r0},{c0}|{salt}")     # float in [0, 1]
"""

from __future__ import annotations

_MASK32 = 0xFFFFFFFF

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619
_GOLDEN = 0x9E3779B9


def _as_bytes(data: str | bytes) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return data


def fnv1a32(data: str | bytes) -> int:
    """32-bit FNV-1a over the UTF-8 bytes of *data*."""
    h = _FNV_OFFSET
    for b in _as_bytes(data):
        h ^= b
        h = (h * _FNV_PRIME) & _MASK32
    return h


def fmix32(h: int) -> int:
    """MurmurHash3 finaliser (avalanches all 32 bits)."""
    h &= _MASK32
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK32
    h ^= h >> 16
    return h


def hash32(tag: str, id: int, salt: int = 0) -> int:
    """Hash a (tag, id, salt) triple to a uint32."""
    mixed = (((id + salt) & _MASK32) * _GOLDEN) & _MASK32
    return fmix32(fnv1a32(tag) ^ mixed)


def hash_string32(key: str | bytes) -> int:
    """Hash an arbitrary composite key to a uint32."""
    return fmix32(fnv1a32(key))


def _unit(h: int) -> float:
    return ((h >> 8) & 0xFFFF) / 0xFFFF


def rand01(tag: str, id: int, salt: int = 0) -> float:
    """Pseudo-random float in [0, 1] keyed by (tag, id, salt)."""
    return _unit(hash32(tag, id, salt))


def rand01_keyed(key: str | bytes) -> float:
    """Pseudo-random float in [0, 1] keyed by an arbitrary string."""
    return _unit(hash_string32(key))


def _to_int32(v: int) -> int:
    v &= _MASK32
    return v - (1 << 32) if v & 0x80000000 else v


def phase_from_index(idx: int, seed: int = 0) -> float:
    """Stable phase in [0, 2*pi) for an index, used for per-item wobble."""
    t = _to_int32((idx + (seed & _MASK32)) ^ _GOLDEN)
    t ^= (t & _MASK32) >> 15
    t = _to_int32(t * 0x85EBCA6B)
    t ^= (t & _MASK32) >> 13
    t = _to_int32(t * 0xC2B2AE35)
    t ^= (t & _MASK32) >> 16
    t = _to_int32(t)
    return (abs(t) % 628318530) / 1e8
