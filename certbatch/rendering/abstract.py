"""
Render surface interface and helpers shared by the concrete surfaces.

A surface is a reusable, stateful drawing resource: the orchestrator calls
`reset()` before each row and `render()` to turn a bound scene graph into
document bytes. Concrete surfaces implement the AbstractRenderSurface helper
so every drawing failure reaches the caller as a RenderError.
"""

from __future__ import annotations

import abc
import base64
import binascii
import re
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from PIL import ImageColor

from certbatch.domain.errors import RenderError
from certbatch.domain.models import Element, OutputFormat, SceneGraph
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

LINE_HEIGHT = 1.16  # editor default line spacing, as a multiple of font size

RGBA = Tuple[int, int, int, int]

_DATA_URL = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)
_NO_PAINT = {"", "none", "transparent"}


@runtime_checkable
class RenderSurface(Protocol):
    """
    Common interface for rendering backends.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    output_format : OutputFormat
        Document type produced by `render`.
    """

    name: str
    output_format: OutputFormat

    def reset(self) -> None:
        """Discard any state left over from the previous render."""
        ...

    def render(self, graph: SceneGraph) -> bytes:
        """
        Draw a bound scene graph and return the encoded document.

        Raises
        ------
        RenderError
            If any element cannot be drawn.
        """
        ...

    def close(self) -> None:
        ...


class AbstractRenderSurface(abc.ABC):
    """
    Optional ABC helper for class-based surfaces.

    Subclasses set `name` and `output_format` and implement `_render`.
    """

    name: str
    output_format: OutputFormat

    def __init__(self) -> None:
        self.renders = 0

    def reset(self) -> None:
        """Surfaces hold no per-row state by default."""

    def render(self, graph: SceneGraph) -> bytes:
        try:
            data = self._render(graph)
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError(f"{self.name} render failed: {exc}") from exc
        self.renders += 1
        return data

    @abc.abstractmethod
    def _render(self, graph: SceneGraph) -> bytes:  # pragma: no cover - interface only
        raise NotImplementedError

    def close(self) -> None:
        self.reset()

    def __enter__(self) -> "AbstractRenderSurface":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def parse_color(value: Optional[str], opacity: float = 1.0) -> Optional[RGBA]:
    """
    Parse a CSS-style color (hex, rgb(), rgba(), hsl(), names) into RGBA.

    Returns None for "no paint" values. Raises RenderError on garbage.
    """
    if value is None or value.strip().lower() in _NO_PAINT:
        return None
    try:
        parsed = ImageColor.getrgb(value.strip())
    except ValueError as exc:
        raise RenderError(f"Unsupported color {value!r}") from exc
    r, g, b = parsed[:3]
    a = parsed[3] if len(parsed) == 4 else 255
    return r, g, b, int(round(a * max(0.0, min(opacity, 1.0))))


def decode_data_url(src: Optional[str]) -> Optional[bytes]:
    """
    Decode an inline `data:` URL. Remote and missing sources return None.
    """
    if not src:
        return None
    match = _DATA_URL.match(src)
    if not match:
        log.warning("[IMAGE SKIPPED] only inline data: URLs are rendered", extra={"src": src[:80]})
        return None
    payload = match.group("data")
    if match.group("b64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise RenderError("Malformed base64 image data") from exc
    return payload.encode("utf-8")


def is_bold(el: Element) -> bool:
    weight = str(el.style.font_weight).lower()
    return weight in ("bold", "bolder") or (weight.isdigit() and int(weight) >= 600)


def is_italic(el: Element) -> bool:
    return str(el.style.font_style).lower() in ("italic", "oblique")


def text_lines(el: Element) -> List[str]:
    return (el.text or "").split("\n")


def font_size(el: Element) -> float:
    return el.style.font_size * el.geometry.scale_y


def box_size(el: Element) -> Tuple[float, float]:
    """Scaled width/height; text boxes without a height get one from their lines."""
    width = el.geometry.scaled_width
    height = el.geometry.scaled_height
    if el.text is not None and height <= 0:
        height = len(text_lines(el)) * font_size(el) * LINE_HEIGHT
    return width, height


def origin_factors(el: Element) -> Tuple[float, float]:
    """Fraction of the box lying left of / above the anchor point."""
    fx = {"left": 0.0, "center": 0.5, "right": 1.0}.get(el.geometry.origin_x, 0.0)
    fy = {"top": 0.0, "center": 0.5, "bottom": 1.0}.get(el.geometry.origin_y, 0.0)
    return fx, fy


__all__ = [
    "AbstractRenderSurface",
    "LINE_HEIGHT",
    "RenderSurface",
    "box_size",
    "decode_data_url",
    "font_size",
    "is_bold",
    "is_italic",
    "origin_factors",
    "parse_color",
    "text_lines",
]
