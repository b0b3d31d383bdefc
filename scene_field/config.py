"""
Tunables for scene composition.

Scoring weights, fallback behaviour and post-fix thresholds in one place.
Rule tables (padding, bands, quotas, pool sizes) are data and live in
scene_field.rules; this module only holds the knobs that shape how those
tables are applied.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from scene_field.catalog import Shape


@dataclass(frozen=True)
class PlacementConfig:
    """Candidate scoring and fallback configuration."""

    center_weight: float = 0.08  # Pull towards the centre of the used region
    separation_weight: float = 3.0  # Same-group crowding penalty (quadratic)
    jitter_amplitude: float = 0.25  # Hash jitter, breaks ties between equal spots
    fallback_lookback: int = 2  # Cursor steps kept behind the last fallback hit

    # Ground layer
    edge_margin: int = 2  # Columns at each side that ground shapes avoid
    edge_weight: float = 6.0  # Per footprint column inside the margin
    segment_pull: float = 0.9  # Pull to the middle of the free run (quadratic)
    lane_penalty: float = 2.0  # Lane shapes off their c0 % 3 lane
    lane_shapes: tuple[Shape, ...] = (Shape.HOUSE, Shape.VILLA)
    band_bottom_weight: float = 0.25  # Sink toward the band bottom (quadratic)
    band_bottom_shapes: tuple[Shape, ...] = (Shape.CAR,)
    widen_rows: int = 2  # Band padding when a widenable shape has no candidates
    widen_shapes: tuple[Shape, ...] = (Shape.HOUSE, Shape.VILLA, Shape.POWER, Shape.CAR)

    # Sky layer
    sky_spread_weight: float = 1.2  # Bonus per cell to the nearest placed sky shape


@dataclass(frozen=True)
class QuotaConfig:
    """Kind allocation configuration."""

    ensure_dominant: bool = True  # Weight-dominant kind keeps at least one item


@dataclass(frozen=True)
class PostFixConfig:
    """Low-u shape guarantee (a sun on an otherwise grey field)."""

    enabled: bool = True
    low_u_threshold: float = 0.02  # Applies when u <= this
    shape: Shape = Shape.SUN
    decorative: tuple[Shape, ...] = (Shape.CLOUDS,)  # Swapped only as a last resort


@dataclass(frozen=True)
class ComposeConfig:
    """Top-level config aggregating all sections."""

    placement: PlacementConfig = field(default_factory=PlacementConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    post_fix: PostFixConfig = field(default_factory=PostFixConfig)

    def to_flat_dict(self) -> dict:
        """
        Convert to flat dict for logging.

        Prefixes each section's keys with section name.
        Example: placement.center_weight -> "placement/center_weight"
        """
        result = {}
        for section_name, section in [
            ("placement", self.placement),
            ("quota", self.quota),
            ("post_fix", self.post_fix),
        ]:
            for key, value in asdict(section).items():
                if isinstance(value, Shape):
                    value = value.value
                elif isinstance(value, tuple):
                    value = [getattr(v, "value", v) for v in value]
                result[f"{section_name}/{key}"] = value
        return result

    @classmethod
    def for_tests(cls) -> ComposeConfig:
        """Config with jitter disabled, so scores depend only on geometry."""
        return cls(placement=PlacementConfig(jitter_amplitude=0.0))
