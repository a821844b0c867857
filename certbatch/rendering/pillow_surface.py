"""
PNG surface built on Pillow.

The page is rasterized at `scale` pixels per point. Each element is drawn on
its own transparent tile, rotated about its origin point when it carries an
angle, then composited onto the page.
"""

from __future__ import annotations

import io
import math
from functools import lru_cache
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from certbatch.domain.models import Element, ElementKind, OutputFormat, SceneGraph
from certbatch.rendering.abstract import (
    LINE_HEIGHT,
    AbstractRenderSurface,
    box_size,
    decode_data_url,
    font_size,
    is_bold,
    is_italic,
    origin_factors,
    parse_color,
    text_lines,
)

_TRUETYPE_FILES = {
    "sans": ("DejaVuSans.ttf", "DejaVuSans-Bold.ttf", "DejaVuSans-Oblique.ttf", "DejaVuSans-BoldOblique.ttf"),
    "serif": ("DejaVuSerif.ttf", "DejaVuSerif-Bold.ttf", "DejaVuSerif-Italic.ttf", "DejaVuSerif-BoldItalic.ttf"),
    "mono": ("DejaVuSansMono.ttf", "DejaVuSansMono-Bold.ttf", "DejaVuSansMono-Oblique.ttf", "DejaVuSansMono-BoldOblique.ttf"),
}


def _family_group(family: str) -> str:
    lowered = family.lower()
    if any(hint in lowered for hint in ("mono", "courier", "consolas")):
        return "mono"
    if "sans" not in lowered and any(hint in lowered for hint in ("serif", "times", "georgia", "garamond")):
        return "serif"
    return "sans"


@lru_cache(maxsize=64)
def load_font(family: str, size: int, bold: bool = False, italic: bool = False):
    """TrueType font for the family, or Pillow's bundled default at `size`."""
    files = _TRUETYPE_FILES[_family_group(family)]
    candidates = (family, f"{family}.ttf", files[(1 if bold else 0) + (2 if italic else 0)])
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


class PillowSurface(AbstractRenderSurface):
    name = "pillow"
    output_format = OutputFormat.PNG

    def __init__(self, scale: float = 2.0) -> None:
        super().__init__()
        self.scale = scale
        self._page: Optional[Image.Image] = None

    def reset(self) -> None:
        if self._page is not None:
            self._page.close()
        self._page = None

    def _px(self, value: float) -> int:
        return int(round(value * self.scale))

    def _render(self, graph: SceneGraph) -> bytes:
        self.reset()
        size = (max(1, self._px(graph.width)), max(1, self._px(graph.height)))
        background = parse_color(graph.background) or (255, 255, 255, 0)
        self._page = Image.new("RGBA", size, background)

        for el in graph.elements:
            tile = self._draw_tile(el)
            if tile is not None:
                self._composite(el, tile)

        buf = io.BytesIO()
        self._page.save(buf, format="PNG", optimize=True)
        return buf.getvalue()

    def _draw_tile(self, el: Element) -> Optional[Image.Image]:
        width, height = box_size(el)
        stroke_w = self._px(el.style.stroke_width)
        tile_w = max(1, self._px(width))
        tile_h = max(1, self._px(height), stroke_w)
        tile = Image.new("RGBA", (tile_w, tile_h), (0, 0, 0, 0))
        draw = ImageDraw.Draw(tile)
        fill = parse_color(el.style.fill, el.style.opacity)
        stroke = parse_color(el.style.stroke, el.style.opacity) if stroke_w > 0 else None

        if el.kind is ElementKind.TEXT:
            if fill is None or not el.text:
                return None
            size = max(1, self._px(font_size(el)))
            font = load_font(el.style.font_family, size, is_bold(el), is_italic(el))
            align = el.style.text_align
            x, anchor = {"center": (tile_w / 2, "ma"), "right": (tile_w, "ra")}.get(align, (0, "la"))
            y = 0.0
            for line in text_lines(el):
                draw.text((x, y), line, font=font, fill=fill, anchor=anchor)
                y += size * LINE_HEIGHT
        elif el.kind is ElementKind.SHAPE:
            box = (0, 0, tile_w - 1, tile_h - 1)
            shape = el.style.shape.lower()
            if shape in ("circle", "ellipse"):
                draw.ellipse(box, fill=fill, outline=stroke, width=stroke_w)
            elif shape == "triangle":
                points = [(tile_w / 2, 0), (tile_w - 1, tile_h - 1), (0, tile_h - 1)]
                draw.polygon(points, fill=fill, outline=stroke, width=stroke_w)
            else:
                draw.rectangle(box, fill=fill, outline=stroke, width=stroke_w)
        elif el.kind is ElementKind.LINE:
            color = stroke or fill
            if color is None:
                return None
            draw.line([(0, 0), (tile_w - 1, self._px(height))], fill=color, width=max(1, stroke_w))
        else:
            data = decode_data_url(el.src)
            if data is None:
                if el.kind is ElementKind.QR_PLACEHOLDER:
                    draw.rectangle((0, 0, tile_w - 1, tile_h - 1), outline=(153, 153, 153, 255))
                    return tile
                return None
            with Image.open(io.BytesIO(data)) as img:
                tile.paste(img.convert("RGBA").resize((tile_w, tile_h)), (0, 0))
        return tile

    def _composite(self, el: Element, tile: Image.Image) -> None:
        assert self._page is not None
        fx, fy = origin_factors(el)
        ax, ay = el.geometry.left * self.scale, el.geometry.top * self.scale
        w, h = tile.size
        # offset from the anchor point to the tile centre, in page pixels
        dx, dy = w * (0.5 - fx), h * (0.5 - fy)
        angle = el.geometry.angle
        if angle:
            rad = math.radians(angle)
            dx, dy = dx * math.cos(rad) - dy * math.sin(rad), dx * math.sin(rad) + dy * math.cos(rad)
            tile = tile.rotate(-angle, resample=Image.BICUBIC, expand=True)
        cx, cy = ax + dx, ay + dy
        position: Tuple[int, int] = (int(round(cx - tile.width / 2)), int(round(cy - tile.height / 2)))
        self._page.paste(tile, position, tile)


__all__ = ["PillowSurface", "load_font"]
