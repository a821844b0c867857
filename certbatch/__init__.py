"""
certbatch - Certificate template binding and batch generation.

This package turns a designed certificate template (a scene graph of text,
image, shape and QR elements) plus a table of recipients into one rendered
document per row:

- Placeholder binding with a unique verification URL and QR code per document
- PDF and PNG rendering on a reusable surface
- Zip packaging with collision-free file names
- Free-tier generation and daily email quotas
- Optional per-recipient email delivery

Rows are processed one at a time with cooperative cancellation, and a failing
row or recipient never aborts the batch.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from certbatch.binding import bind_row, preview_row
from certbatch.config import Settings, get_settings
from certbatch.domain.models import (
    GenerationJob,
    GenerationRequest,
    GenerationResult,
    OutputFormat,
    SceneGraph,
)
from certbatch.orchestrator import BatchOrchestrator, build_orchestrator
from certbatch.quota.gate import QuotaGate
from certbatch.rendering import RenderSurface, get_surface
from certbatch.utils.logging import configure_logging, get_logger
from certbatch.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "GenerationJob",
    "GenerationRequest",
    "GenerationResult",
    "OutputFormat",
    "SceneGraph",
    # Pipeline
    "BatchOrchestrator",
    "build_orchestrator",
    "bind_row",
    "preview_row",
    "QuotaGate",
    "RenderSurface",
    "get_surface",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
