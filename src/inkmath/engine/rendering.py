from __future__ import annotations

import base64
import io
from typing import Sequence

from PIL import Image, ImageDraw

from inkmath.protocol.messages import Stroke

from .board import Bounds


def render_strokes_png_b64(
    *,
    strokes: Sequence[Stroke],
    bounds: Bounds,
    px: int,
    padding: float = 20.0,
) -> str:
    """
    Render strokes as a PNG (base64, no data-url prefix).

    - **strokes**: page-coordinate strokes
    - **bounds**: page region to render; padded and fitted into a square
    - **px**: output image size (px x px)
    """
    side = max(bounds.width, bounds.height, 1.0) + 2 * padding
    x0 = bounds.min_x - padding - (side - 2 * padding - bounds.width) / 2
    y0 = bounds.min_y - padding - (side - 2 * padding - bounds.height) / 2
    scale = (px - 1) / side

    img = Image.new("L", (px, px), 255)  # white bg, dark ink
    draw = ImageDraw.Draw(img)

    def to_px(x: float, y: float) -> tuple[float, float]:
        return ((x - x0) * scale, (y - y0) * scale)

    for stroke in strokes:
        prev = None
        for s in stroke.samples:
            cur = to_px(s.x, s.y)
            w = max(2, int(2 + 4 * s.p))
            if prev is not None:
                draw.line([prev, cur], fill=0, width=w)
            prev = cur

    bio = io.BytesIO()
    img.save(bio, format="PNG", optimize=True)
    return base64.b64encode(bio.getvalue()).decode("ascii")


def render_strokes_data_url(*, strokes: Sequence[Stroke], bounds: Bounds, px: int) -> str:
    return "data:image/png;base64," + render_strokes_png_b64(strokes=strokes, bounds=bounds, px=px)
