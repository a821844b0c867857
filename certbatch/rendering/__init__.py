"""
Rendering package for certbatch.

Re-exports the surface interface and the concrete surfaces, plus a small
registry mapping output formats to surface factories.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from certbatch.config import Settings, get_settings
from certbatch.domain.errors import JobValidationError
from certbatch.domain.models import OutputFormat
from certbatch.rendering.abstract import AbstractRenderSurface, RenderSurface
from certbatch.rendering.pillow_surface import PillowSurface
from certbatch.rendering.reportlab_surface import ReportLabSurface


def _surface_factories(settings: Settings) -> Dict[OutputFormat, Callable[[], RenderSurface]]:
    """Registry of available surfaces."""
    return {
        OutputFormat.PDF: lambda: ReportLabSurface(),
        OutputFormat.PNG: lambda: PillowSurface(scale=settings.png_scale),
    }


def available_formats() -> List[str]:
    return sorted(fmt.value for fmt in OutputFormat)


def get_surface(output_format: OutputFormat | str, settings: Optional[Settings] = None) -> RenderSurface:
    try:
        fmt = OutputFormat(output_format)
    except ValueError as exc:
        raise JobValidationError(
            f"Unknown output format '{output_format}'. Available: {', '.join(available_formats())}"
        ) from exc
    return _surface_factories(settings or get_settings())[fmt]()


__all__ = [
    "AbstractRenderSurface",
    "PillowSurface",
    "RenderSurface",
    "ReportLabSurface",
    "available_formats",
    "get_surface",
]
