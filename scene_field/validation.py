"""Configuration checks for rule tables.

A broken data table (missing band, empty quota curve, kind with no
variants) is a programming error, not a runtime condition. These checks
fail loudly at composition start instead of patching over the hole.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

log = logging.getLogger(__name__)


class SceneConfigError(ValueError):
    """A scene rule table is missing an entry or is malformed."""


def invariant(condition: object, message: str) -> None:
    """Raise SceneConfigError with *message* unless *condition* holds."""
    if not condition:
        log.error("scene config validation failed: %s", message)
        raise SceneConfigError(message)


def require_keys(
    table: Mapping | None,
    keys: Iterable,
    label: str,
) -> None:
    """Every key in *keys* must be present in *table*."""
    invariant(table is not None, f"{label} table is missing")
    missing = [str(getattr(k, "value", k)) for k in keys if k not in table]
    invariant(not missing, f"{label} missing entries: {', '.join(missing)}")
