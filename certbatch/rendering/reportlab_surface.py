"""
PDF surface built on reportlab.

Page size equals the scene-graph size in points. Element coordinates come from
the editor with a top-left origin and y growing downwards; each element is
drawn in a local frame anchored at its origin point, rotated clockwise by its
angle. The verification element also receives a clickable link annotation to
its URL.
"""

from __future__ import annotations

import io
from typing import Optional, Tuple

from reportlab.lib.colors import Color
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

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
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

_BASE14_FAMILIES = {
    "helvetica": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique"),
    "times": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
    "courier": ("Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique"),
}
_SERIF_HINTS = ("times", "serif", "georgia", "garamond", "playfair", "merriweather")
_MONO_HINTS = ("courier", "mono", "consolas")


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def resolve_font_name(family: str, bold: bool = False, italic: bool = False) -> str:
    """
    Map an editor font family to a font reportlab can draw.

    Registered TrueType fonts are matched by normalized name; everything else
    falls back to the closest base-14 family.
    """
    lowered = family.lower()
    if not lowered.startswith(tuple(_BASE14_FAMILIES)):
        registered = {_normalize_font_name(c): c for c in pdfmetrics.getRegisteredFontNames()}
        normalized = _normalize_font_name(family)
        styled = normalized + ("bold" if bold else "") + ("italic" if italic else "")
        for key in (styled, normalized):
            if key in registered:
                return registered[key]

    if any(hint in lowered and "sans" not in lowered for hint in _SERIF_HINTS):
        variants = _BASE14_FAMILIES["times"]
    elif any(hint in lowered for hint in _MONO_HINTS):
        variants = _BASE14_FAMILIES["courier"]
    else:
        variants = _BASE14_FAMILIES["helvetica"]
    return variants[(1 if bold else 0) + (2 if italic else 0)]


def _rl_color(rgba: Tuple[int, int, int, int]) -> Color:
    r, g, b, a = rgba
    return Color(r / 255.0, g / 255.0, b / 255.0, alpha=a / 255.0)


class ReportLabSurface(AbstractRenderSurface):
    name = "reportlab"
    output_format = OutputFormat.PDF

    def __init__(self, title: Optional[str] = None, author: Optional[str] = None) -> None:
        super().__init__()
        self.title = title
        self.author = author
        self._buffer: Optional[io.BytesIO] = None

    def reset(self) -> None:
        if self._buffer is not None:
            self._buffer.close()
        self._buffer = None

    def _render(self, graph: SceneGraph) -> bytes:
        self.reset()
        self._buffer = io.BytesIO()
        page_w, page_h = graph.width, graph.height
        canv = canvas.Canvas(self._buffer, pagesize=(page_w, page_h), pageCompression=1)
        if self.title:
            canv.setTitle(self.title)
        if self.author:
            canv.setAuthor(self.author)

        background = parse_color(graph.background)
        if background is not None:
            canv.setFillColor(_rl_color(background))
            canv.rect(0, 0, page_w, page_h, stroke=0, fill=1)

        for el in graph.elements:
            self._draw_element(canv, el, page_h)

        canv.showPage()
        canv.save()
        return self._buffer.getvalue()

    def _draw_element(self, canv: canvas.Canvas, el: Element, page_h: float) -> None:
        width, height = box_size(el)
        fx, fy = origin_factors(el)
        x0 = -width * fx
        y_top = height * fy

        canv.saveState()
        canv.translate(el.geometry.left, page_h - el.geometry.top)
        if el.geometry.angle:
            canv.rotate(-el.geometry.angle)

        opacity = el.style.opacity
        fill = parse_color(el.style.fill, opacity)
        stroke = parse_color(el.style.stroke, opacity) if el.style.stroke_width > 0 else None
        if fill is not None:
            canv.setFillColor(_rl_color(fill))
        if stroke is not None:
            canv.setStrokeColor(_rl_color(stroke))
            canv.setLineWidth(el.style.stroke_width)

        if el.kind is ElementKind.TEXT:
            self._draw_text(canv, el, x0, y_top, width, fill is not None)
        elif el.kind is ElementKind.SHAPE:
            self._draw_shape(canv, el, x0, y_top, width, height, fill is not None, stroke is not None)
        elif el.kind is ElementKind.LINE:
            if stroke is None and fill is not None:
                canv.setStrokeColor(_rl_color(fill))
            canv.setLineWidth(max(el.style.stroke_width, 1.0))
            canv.line(x0, y_top, x0 + width, y_top - height)
        elif el.kind in (ElementKind.IMAGE, ElementKind.QR_PLACEHOLDER):
            self._draw_image(canv, el, x0, y_top, width, height)

        if el.is_verification_url and el.text and el.text.startswith(("http://", "https://")):
            canv.linkURL(el.text, (x0, y_top - height, x0 + width, y_top), relative=1, thickness=0)
        canv.restoreState()

    def _draw_text(
        self, canv: canvas.Canvas, el: Element, x0: float, y_top: float, width: float, paint: bool
    ) -> None:
        if not paint or not el.text:
            return
        size = font_size(el)
        canv.setFont(resolve_font_name(el.style.font_family, is_bold(el), is_italic(el)), size)
        align = el.style.text_align
        baseline = y_top - size
        for line in text_lines(el):
            if align == "center":
                canv.drawCentredString(x0 + width / 2, baseline, line)
            elif align == "right":
                canv.drawRightString(x0 + width, baseline, line)
            else:
                canv.drawString(x0, baseline, line)
            baseline -= size * LINE_HEIGHT

    def _draw_shape(
        self,
        canv: canvas.Canvas,
        el: Element,
        x0: float,
        y_top: float,
        width: float,
        height: float,
        fill: bool,
        stroke: bool,
    ) -> None:
        shape = el.style.shape.lower()
        y0 = y_top - height
        if shape in ("circle", "ellipse"):
            canv.ellipse(x0, y0, x0 + width, y_top, stroke=int(stroke), fill=int(fill))
        elif shape == "triangle":
            path = canv.beginPath()
            path.moveTo(x0 + width / 2, y_top)
            path.lineTo(x0 + width, y0)
            path.lineTo(x0, y0)
            path.close()
            canv.drawPath(path, stroke=int(stroke), fill=int(fill))
        else:
            canv.rect(x0, y0, width, height, stroke=int(stroke), fill=int(fill))

    def _draw_image(
        self, canv: canvas.Canvas, el: Element, x0: float, y_top: float, width: float, height: float
    ) -> None:
        data = decode_data_url(el.src)
        if data is None:
            if el.kind is ElementKind.QR_PLACEHOLDER:
                # unbound QR slot (preview): draw a neutral frame
                canv.setStrokeColor(Color(0.6, 0.6, 0.6))
                canv.setLineWidth(1)
                canv.rect(x0, y_top - height, width, height, stroke=1, fill=0)
            return
        canv.drawImage(
            ImageReader(io.BytesIO(data)),
            x0,
            y_top - height,
            width=width,
            height=height,
            mask="auto",
        )


__all__ = ["ReportLabSurface", "resolve_font_name"]
