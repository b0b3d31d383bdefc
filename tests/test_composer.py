"""End-to-end tests for field composition, rule tables and the preview CLI.

Validates that:
- compose_field is deterministic and never overlaps or uses forbidden cells
- Placed items stay inside their band unless placed on a widened ground band
- The pool carries ids and kinds between passes with minimal churn
- Broken rule tables fail loudly at composition start
- The low-u post-fix guarantees a sun
- The preview renderer writes an image of the expected size
"""

import dataclasses
from collections import Counter

import pytest

from scene_field import RULESETS, Canvas, SceneConfigError, compose_field, ensure_pool_size
from scene_field.catalog import CONDITION_KINDS, SHAPE_GROUPS, ConditionKind, Shape, Size, Variant
from scene_field.composer import (
    PostFixContext,
    default_salt,
    describe_field,
    ensure_shape_at_low_u,
)
from scene_field.config import ComposeConfig, PostFixConfig
from scene_field.grid import Footprint, GridSpec, forbidden_mask, make_cell_forbidden, make_centered_grid
from scene_field.placement import Band, PlacedItem, PoolItem, band_rows
from scene_field.planner import UNBOUNDED, QuotaAnchor
from scene_field.render_field import main as render_main
from scene_field.render_field import profile_for_mode, render_field_panel
from scene_field.rules import (
    CANVAS_PADDING,
    DEVICE_TYPES,
    POOL_SIZES,
    QUOTA_SPECIFICATION,
    SEPARATION,
    DeviceType,
    SceneMode,
    SceneProfile,
    device_type,
    get_ruleset,
    resolve_profile,
    target_pool_size,
    validate_profile,
)

LAPTOP = Canvas(1280, 800)


@pytest.fixture(scope="module")
def start_profile():
    return RULESETS["intro"].profile(SceneMode.START)


def _single_shape_profile() -> SceneProfile:
    """Every kind becomes a 1x1 tree on a plain 10-row grid."""
    def every_device(value):
        return {dt: value for dt in DEVICE_TYPES}

    return SceneProfile(
        mode=SceneMode.START,
        padding=every_device(GridSpec(rows=10)),
        bands=every_device({s: Band(0.0, 1.0) for s in SHAPE_GROUPS}),
        separation={s: 0.0 for s in SHAPE_GROUPS},
        pool_sizes=every_device(5),
        quota_curves={k: (QuotaAnchor(0.0, {Shape.TREES: UNBOUNDED}),) for k in CONDITION_KINDS},
        catalog={k: (Variant(Shape.TREES, Size(1, 1)),) for k in CONDITION_KINDS},
    )


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


class TestComposeField:
    """compose_field end to end."""

    @pytest.fixture(params=[0.0, 0.3, 0.5, 0.8, 1.0])
    def u(self, request):
        return request.param

    def test_single_shape_scenario(self):
        profile = _single_shape_profile()
        pool = ensure_pool_size(None, 5)
        r1 = compose_field(Canvas(100, 100), 0.5, pool, profile)
        r2 = compose_field(Canvas(100, 100), 0.5, pool, profile)
        assert (r1.meta.rows, r1.meta.cols) == (10, 10)
        assert len(r1.placed) == 5
        assert len({p.footprint for p in r1.placed}) == 5
        assert r1.placed == r2.placed

    def test_deterministic(self, start_profile, u):
        pool = ensure_pool_size(None, 28)
        r1 = compose_field(LAPTOP, u, pool, start_profile)
        r2 = compose_field(LAPTOP, u, pool, start_profile)
        assert r1.placed == r2.placed
        assert [p.kind for p in r1.next_pool] == [p.kind for p in r2.next_pool]

    def test_no_overlap_no_forbidden(self, start_profile, u):
        pool = ensure_pool_size(None, 28)
        result = compose_field(LAPTOP, u, pool, start_profile)
        m = result.meta
        mask = forbidden_mask(m.rows, m.cols, make_cell_forbidden(m.spec, m.rows, m.cols))
        cells = [cell for p in result.placed for cell in p.footprint.cells()]
        assert len(cells) == len(set(cells))
        assert not any(mask[r, c] for r, c in cells)

    def test_band_containment(self, start_profile, u):
        pool = ensure_pool_size(None, 28)
        result = compose_field(LAPTOP, u, pool, start_profile, post_fixes=())
        bands = start_profile.bands_for(LAPTOP.w)
        for p in result.placed:
            # only widened ground bands may leave the band; the fallback walk stays inside
            if p.id in result.meta.widened_ids:
                continue
            top, bot = band_rows(bands[p.shape], result.meta.used_rows, p.footprint.h)
            assert top <= p.footprint.r0 <= bot, f"{p.shape.value} #{p.id} outside its band"

    def test_counts_and_pool(self, start_profile, u):
        pool = ensure_pool_size(None, 28)
        result = compose_field(LAPTOP, u, pool, start_profile)
        assert sum(result.meta.counts) == 28
        assert [p.id for p in result.next_pool] == [p.id for p in pool]
        assert len(result.placed) + result.meta.dropped == 28
        # the caller's pool is left alone
        assert all(p.shape is None and p.kind == ConditionKind.A for p in pool)

    def test_next_pool_matches_placed(self, start_profile):
        result = compose_field(LAPTOP, 0.4, ensure_pool_size(None, 28), start_profile)
        by_id = {p.id: p for p in result.next_pool}
        for p in result.placed:
            item = by_id[p.id]
            assert item.footprint == p.footprint
            assert (item.x, item.y) == (p.x, p.y)

    def test_repeat_pass_has_no_churn(self, start_profile):
        first = compose_field(LAPTOP, 0.5, ensure_pool_size(None, 28), start_profile)
        second = compose_field(LAPTOP, 0.5, first.next_pool, start_profile)
        assert second.meta.churn == 0
        assert second.placed == first.placed

    def test_small_u_step_small_churn(self, start_profile):
        first = compose_field(LAPTOP, 0.5, ensure_pool_size(None, 28), start_profile)
        second = compose_field(LAPTOP, 0.55, first.next_pool, start_profile)
        before = Counter(p.kind for p in first.next_pool)
        after = Counter(p.kind for p in second.next_pool)
        moved = sum(max(0, before[k] - after[k]) for k in CONDITION_KINDS)
        assert second.meta.churn == moved

    def test_degenerate_canvas(self, start_profile):
        pool = ensure_pool_size(None, 10)
        result = compose_field(Canvas(0, 800), 0.5, pool, start_profile)
        assert result.placed == []
        assert result.next_pool == pool
        assert result.meta.cell == 0

    def test_salt_default(self, start_profile):
        result = compose_field(LAPTOP, 0.5, ensure_pool_size(None, 28), start_profile)
        assert result.meta.salt == default_salt(result.meta.rows, result.meta.cols)

    def test_explicit_salt_changes_layout(self, start_profile):
        pool = ensure_pool_size(None, 28)
        a = compose_field(LAPTOP, 0.5, pool, start_profile, salt=1)
        b = compose_field(LAPTOP, 0.5, pool, start_profile, salt=2)
        assert a.placed != b.placed

    def test_low_u_has_sun(self, start_profile):
        result = compose_field(LAPTOP, 0.0, ensure_pool_size(None, 28), start_profile)
        assert any(p.shape == Shape.SUN for p in result.placed)

    def test_overlay_mode(self):
        profile = RULESETS["city"].profile()
        width = 1280
        pool = ensure_pool_size(None, target_pool_size(profile, width))
        result = compose_field(Canvas(width, 800), 0.5, pool, profile)
        assert len(pool) == 100
        assert result.meta.mode == SceneMode.OVERLAY
        assert len(result.placed) > 0

    def test_describe_field(self, start_profile):
        result = compose_field(LAPTOP, 0.5, ensure_pool_size(None, 28), start_profile)
        desc = describe_field(result)
        assert desc.startswith("Field start/laptop")
        assert "placed" in desc
        assert len(desc.splitlines()) >= len(result.placed) + 1


# ---------------------------------------------------------------------------
# Post-fix
# ---------------------------------------------------------------------------


def _placed(id: int, shape: Shape, r0: int, c0: int = 0, w: int = 1, h: int = 1) -> PlacedItem:
    return PlacedItem(id, 0.0, 0.0, shape, Footprint(r0, c0, w, h))


class TestLowUPostFix:
    """ensure_shape_at_low_u swaps one existing 1x1 placement."""

    @pytest.fixture
    def ctx(self):
        grid = make_centered_grid(1000, 500, rows=10)
        return PostFixContext(
            u=0.0, grid=grid, bands={Shape.SUN: Band(0.0, 0.2)}, config=PostFixConfig()
        )

    def test_prefers_plain_item_in_band(self, ctx):
        placed = [
            _placed(1, Shape.CLOUDS, 0),
            _placed(2, Shape.CAR, 5),
            _placed(3, Shape.TREES, 0, c0=3),
        ]
        out = ensure_shape_at_low_u(placed, ctx)
        assert [p.shape for p in out] == [Shape.CLOUDS, Shape.CAR, Shape.SUN]
        assert out[2].footprint == placed[2].footprint

    def test_decorative_in_band_beats_plain_outside(self, ctx):
        placed = [_placed(1, Shape.CAR, 8), _placed(2, Shape.CLOUDS, 1)]
        out = ensure_shape_at_low_u(placed, ctx)
        assert [p.shape for p in out] == [Shape.CAR, Shape.SUN]

    def test_plain_outside_band(self, ctx):
        placed = [_placed(1, Shape.CLOUDS, 8), _placed(2, Shape.CAR, 9)]
        out = ensure_shape_at_low_u(placed, ctx)
        assert [p.shape for p in out] == [Shape.CLOUDS, Shape.SUN]

    def test_noop_cases(self, ctx):
        placed = [_placed(1, Shape.CAR, 1)]
        high_u = dataclasses.replace(ctx, u=0.5)
        assert ensure_shape_at_low_u(placed, high_u) is placed

        with_sun = placed + [_placed(2, Shape.SUN, 0, c0=4, w=2, h=2)]
        assert ensure_shape_at_low_u(with_sun, ctx) is with_sun

        big_only = [_placed(3, Shape.VILLA, 1, w=2, h=2)]
        assert ensure_shape_at_low_u(big_only, ctx) is big_only

        disabled = dataclasses.replace(ctx, config=PostFixConfig(enabled=False))
        assert ensure_shape_at_low_u(placed, disabled) is placed

    def test_composer_syncs_pool(self, start_profile):
        def first_small_to_sun(placed, ctx):
            small = [i for i, p in enumerate(placed) if p.footprint.w == p.footprint.h == 1]
            out = list(placed)
            out[small[0]] = dataclasses.replace(placed[small[0]], shape=Shape.SUN)
            return out

        result = compose_field(
            LAPTOP, 0.5, ensure_pool_size(None, 28), start_profile,
            post_fixes=[first_small_to_sun],
        )
        suns = [p for p in result.placed if p.shape == Shape.SUN and p.footprint.w == 1]
        assert suns
        item = next(p for p in result.next_pool if p.id == suns[0].id)
        assert item.shape == Shape.SUN
        assert item.size == Size(1, 1)


# ---------------------------------------------------------------------------
# Rules and profiles
# ---------------------------------------------------------------------------


class TestRules:
    """Rule tables, profile resolution and validation."""

    @pytest.mark.parametrize(
        "width,expected",
        [
            (360, DeviceType.MOBILE),
            (767, DeviceType.MOBILE),
            (768, DeviceType.TABLET),
            (1024, DeviceType.TABLET),
            (1025, DeviceType.LAPTOP),
            (None, DeviceType.LAPTOP),
        ],
    )
    def test_device_type(self, width, expected):
        assert device_type(width) == expected

    @pytest.mark.parametrize("name", sorted(RULESETS))
    @pytest.mark.parametrize("questionnaire", [False, True])
    def test_rulesets_validate(self, name, questionnaire):
        profile = RULESETS[name].profile(SceneMode.START, questionnaire_open=questionnaire)
        validate_profile(profile)

    def test_questionnaire_overrides(self):
        profile = resolve_profile(SceneMode.START, questionnaire_open=True)
        assert profile.mode == SceneMode.QUESTIONNAIRE
        assert profile.padding is CANVAS_PADDING[SceneMode.QUESTIONNAIRE]
        assert profile.pool_sizes is POOL_SIZES[SceneMode.QUESTIONNAIRE]
        # no questionnaire table: base mode's separation and quotas stay
        assert profile.separation is SEPARATION[SceneMode.START]
        assert profile.quota_curves is QUOTA_SPECIFICATION[SceneMode.START]

    def test_city_is_always_overlay(self):
        assert RULESETS["city"].profile(SceneMode.START).mode == SceneMode.OVERLAY
        assert get_ruleset("city").profile(questionnaire_open=True).mode == SceneMode.QUESTIONNAIRE

    def test_questionnaire_is_not_a_base_mode(self):
        with pytest.raises(SceneConfigError):
            resolve_profile(SceneMode.QUESTIONNAIRE)

    def test_unknown_ruleset(self):
        with pytest.raises(KeyError, match="Available"):
            get_ruleset("nope")

    def test_target_pool_size(self):
        assert target_pool_size(resolve_profile(SceneMode.START), 400) == 18
        assert target_pool_size(resolve_profile(SceneMode.OVERLAY)) == 100
        assert target_pool_size(resolve_profile(SceneMode.START, True), 800) == 32

    def test_padding_rows(self):
        assert CANVAS_PADDING[SceneMode.START][DeviceType.LAPTOP].rows == 12
        assert CANVAS_PADDING[SceneMode.START][DeviceType.LAPTOP].use_top_ratio == 0.8

    def test_missing_band_device_fails(self, start_profile):
        bands = {dt: t for dt, t in start_profile.bands.items() if dt != DeviceType.LAPTOP}
        broken = dataclasses.replace(start_profile, bands=bands)
        with pytest.raises(SceneConfigError):
            compose_field(LAPTOP, 0.5, ensure_pool_size(None, 4), broken)

    def test_missing_shape_band_fails(self, start_profile):
        bands = {
            dt: {s: b for s, b in table.items() if s != Shape.SUN}
            for dt, table in start_profile.bands.items()
        }
        with pytest.raises(SceneConfigError):
            validate_profile(dataclasses.replace(start_profile, bands=bands))

    def test_empty_quota_curve_fails(self, start_profile):
        curves = dict(start_profile.quota_curves)
        curves[ConditionKind.B] = ()
        with pytest.raises(SceneConfigError):
            validate_profile(dataclasses.replace(start_profile, quota_curves=curves))

    def test_foreign_shape_in_quota_fails(self, start_profile):
        curves = dict(start_profile.quota_curves)
        curves[ConditionKind.C] = (QuotaAnchor(0.0, {Shape.CAR: UNBOUNDED}),)
        with pytest.raises(SceneConfigError):
            validate_profile(dataclasses.replace(start_profile, quota_curves=curves))

    def test_zero_variant_kind_fails(self, start_profile):
        catalog = dict(start_profile.catalog)
        catalog[ConditionKind.D] = ()
        with pytest.raises(SceneConfigError):
            validate_profile(dataclasses.replace(start_profile, catalog=catalog))

    def test_config_error_is_value_error(self):
        assert issubclass(SceneConfigError, ValueError)


# ---------------------------------------------------------------------------
# Pool sizing and config
# ---------------------------------------------------------------------------


class TestPoolAndConfig:
    def test_ensure_pool_size_fresh(self):
        pool = ensure_pool_size(None, 3)
        assert [p.id for p in pool] == [1, 2, 3]
        assert all(p.kind == ConditionKind.A for p in pool)

    def test_ensure_pool_size_grow_keeps_ids(self):
        pool = [PoolItem(id=4, kind=ConditionKind.C), PoolItem(id=7, kind=ConditionKind.D)]
        grown = ensure_pool_size(pool, 4)
        assert [p.id for p in grown] == [4, 7, 8, 9]
        assert grown[0] is pool[0]

    def test_ensure_pool_size_shrink_and_zero(self):
        pool = ensure_pool_size(None, 5)
        assert [p.id for p in ensure_pool_size(pool, 2)] == [1, 2]
        assert ensure_pool_size(pool, 0) == []

    def test_flat_dict(self):
        flat = ComposeConfig().to_flat_dict()
        assert flat["placement/center_weight"] == 0.08
        assert flat["placement/separation_weight"] == 3.0
        assert flat["post_fix/shape"] == "sun"
        assert flat["post_fix/decorative"] == ["clouds"]
        assert flat["quota/ensure_dominant"] is True
        assert flat["placement/lane_shapes"] == ["house", "villa"]
        assert flat["placement/widen_rows"] == 2

    def test_for_tests_disables_jitter(self, start_profile):
        cfg = ComposeConfig.for_tests()
        assert cfg.placement.jitter_amplitude == 0.0
        result = compose_field(LAPTOP, 0.5, ensure_pool_size(None, 28), start_profile, config=cfg)
        assert len(result.placed) > 0


# ---------------------------------------------------------------------------
# Preview renderer
# ---------------------------------------------------------------------------


class TestRenderField:
    def test_panel_size(self, start_profile):
        result = compose_field(LAPTOP, 0.5, ensure_pool_size(None, 28), start_profile)
        img = render_field_panel(LAPTOP, result, start_profile.background, scale=0.5)
        assert img.size == (640, 400)

    def test_profile_for_mode(self):
        assert profile_for_mode("questionnaire").mode == SceneMode.QUESTIONNAIRE
        assert profile_for_mode("overlay").mode == SceneMode.OVERLAY

    def test_cli_writes_png(self, tmp_path):
        from PIL import Image

        path = render_main(["--u", "0", "0.5", "--out", str(tmp_path)])
        assert path == tmp_path / "field.png"
        with Image.open(path) as img:
            # 2 panels of 480 px; 800 * 480 / 1280 = 300 px + 32 px label
            assert img.size == (960, 332)
