"""Render composed fields as a row of panels for visual validation.

One panel per control value u. The pool is carried from panel to panel,
so neighbouring panels also show how little changes between passes.

Usage:
    python -m scene_field.render_field                              # start mode, u = 0 .. 1
    python -m scene_field.render_field --u 0 0.5 1                  # specific u values
    python -m scene_field.render_field --mode overlay --width 800   # tablet overlay
    python -m scene_field.render_field --out docs/field             # custom output dir
"""

from __future__ import annotations

import argparse
import logging
import math
from collections.abc import Sequence
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from scene_field.catalog import SHAPE_GROUPS, ShapeGroup
from scene_field.composer import (
    Canvas,
    ComposeResult,
    compose_field,
    describe_field,
    ensure_pool_size,
)
from scene_field.grid import (
    cell_rect_to_px,
    forbidden_mask,
    make_cell_forbidden,
    make_centered_grid,
    round_half_up,
)
from scene_field.rules import SceneMode, SceneProfile, resolve_profile, target_pool_size

log = logging.getLogger(__name__)

# Render settings
PANEL_W = 480
LABEL_H = 32
BG_COLOR = (40, 42, 48)
LABEL_BG = (30, 32, 36)
LABEL_FG = (220, 220, 220)
FORBIDDEN_FILL = (200, 205, 212)
GRID_LINE = (210, 222, 232)
USED_ROWS_LINE = (230, 90, 90)

GROUP_COLORS: dict[ShapeGroup, tuple[int, int, int]] = {
    ShapeGroup.SKY: (250, 196, 60),
    ShapeGroup.BUILDING: (196, 96, 80),
    ShapeGroup.VEHICLE: (70, 110, 200),
    ShapeGroup.NATURE: (70, 160, 90),
}


def profile_for_mode(mode: str) -> SceneProfile:
    """start and overlay are base modes; questionnaire opens over start."""
    mode = SceneMode(mode)
    if mode == SceneMode.QUESTIONNAIRE:
        return resolve_profile(SceneMode.START, questionnaire_open=True)
    return resolve_profile(mode)


def _try_load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Try to load a nice font, fall back to default."""
    candidates = [
        "/System/Library/Fonts/SFNSMono.ttf",
        "/System/Library/Fonts/Menlo.ttc",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    ]
    for path in candidates:
        if Path(path).exists():
            try:
                return ImageFont.truetype(path, size)
            except OSError:
                continue
    return ImageFont.load_default()


def render_field_panel(
    canvas: Canvas,
    result: ComposeResult,
    background: tuple[int, int, int],
    scale: float = 1.0,
) -> Image.Image:
    """Draw one composed field: forbidden cells, used-rows line, footprints."""
    w = max(1, round(canvas.w * scale))
    h = max(1, round(canvas.h * scale))
    img = Image.new("RGB", (w, h), background)
    draw = ImageDraw.Draw(img)

    m = result.meta
    grid = make_centered_grid(
        round_half_up(canvas.w), round_half_up(canvas.h), m.spec.rows, m.spec.use_top_ratio
    )
    if grid.degenerate:
        return img

    def rect_px(x: float, y: float, rw: float, rh: float) -> list[float]:
        x0, y0 = x * scale, y * scale
        return [x0, y0, max(x0, (x + rw) * scale - 1), max(y0, (y + rh) * scale - 1)]

    mask = forbidden_mask(grid.rows, grid.cols, make_cell_forbidden(m.spec, grid.rows, grid.cols))
    for r in range(grid.rows):
        for c in range(grid.cols):
            x = grid.origin_x + c * grid.cell
            y = grid.origin_y + r * grid.cell
            fill = FORBIDDEN_FILL if mask[r, c] else None
            draw.rectangle(rect_px(x, y, grid.cell, grid.cell), fill=fill, outline=GRID_LINE)

    used_y = (grid.origin_y + grid.used_rows * grid.cell) * scale
    draw.line([(0, used_y), (w, used_y)], fill=USED_ROWS_LINE, width=2)

    for item in result.placed:
        group = SHAPE_GROUPS[item.shape][1]
        x, y, rw, rh = cell_rect_to_px(grid, item.footprint)
        box = rect_px(x + 2, y + 2, rw - 4, rh - 4)
        draw.rectangle(box, fill=GROUP_COLORS[group], outline=(20, 20, 20))
        draw.text((box[0] + 2, box[1] + 1), item.shape.value[:2], fill=(255, 255, 255))

    return img


def render_field_grid(
    us: Sequence[float],
    canvas: Canvas,
    profile: SceneProfile,
    out_dir: Path,
    salt: int | None = None,
) -> Path:
    """Render one panel per u into field.png. Returns output path."""
    n = len(us)
    cols = min(4, n)
    rows = math.ceil(n / cols)

    scale = PANEL_W / canvas.w
    panel_h = max(1, round(canvas.h * scale))
    cell_total_h = panel_h + LABEL_H

    sheet = Image.new("RGB", (cols * PANEL_W, rows * cell_total_h), BG_COLOR)
    draw = ImageDraw.Draw(sheet)
    font = _try_load_font(14)

    pool = ensure_pool_size(None, target_pool_size(profile, canvas.w))

    for idx, u in enumerate(us):
        result = compose_field(canvas, u, pool, profile, salt=salt)
        pool = result.next_pool

        panel = render_field_panel(canvas, result, profile.background, scale)
        col = idx % cols
        row = idx // cols
        x = col * PANEL_W
        y = row * cell_total_h
        sheet.paste(panel, (x, y))

        # Label: u + placed/dropped counts
        label = f"u={u:.2f}  {len(result.placed)} placed, {result.meta.dropped} dropped"
        label_y = y + panel_h
        draw.rectangle([x, label_y, x + PANEL_W, label_y + LABEL_H], fill=LABEL_BG)
        bbox = font.getbbox(label)
        tw = bbox[2] - bbox[0]
        tx = x + (PANEL_W - tw) // 2
        ty = label_y + (LABEL_H - (bbox[3] - bbox[1])) // 2
        draw.text((tx, ty), label, fill=LABEL_FG, font=font)

        desc = describe_field(result)
        print(f"  [{idx + 1}/{n}] {desc.splitlines()[0]}")
        log.debug("%s", desc)

    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / "field.png"
    sheet.save(out_path)
    return out_path


def main(argv: Sequence[str] | None = None):
    parser = argparse.ArgumentParser(description="Render composed scene fields")
    parser.add_argument("--width", type=float, default=1280, help="Canvas width in px")
    parser.add_argument("--height", type=float, default=800, help="Canvas height in px")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in SceneMode],
        default=SceneMode.START.value,
        help="Scene mode (default: start)",
    )
    parser.add_argument(
        "--u",
        nargs="*",
        type=float,
        default=[0.0, 0.25, 0.5, 0.75, 1.0],
        help="Control values, one panel each",
    )
    parser.add_argument("--salt", type=int, default=None, help="Fixed salt (default: from grid)")
    parser.add_argument("--out", default="docs/field", help="Output directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.width <= 0 or args.height <= 0:
        parser.error("--width and --height must be positive")
    us = args.u or [0.5]

    profile = profile_for_mode(args.mode)
    canvas = Canvas(args.width, args.height)

    print(f"Rendering {len(us)} fields (mode={args.mode}, {args.width:.0f}x{args.height:.0f})...")
    path = render_field_grid(us, canvas, profile, Path(args.out), salt=args.salt)
    print(f"\n-> {path}")
    return path


if __name__ == "__main__":
    main()
