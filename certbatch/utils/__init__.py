"""
Utilities package for certbatch.

Exports shared helpers for logging, profiling, and caller-enforced timeouts.
Keep this package lightweight and free of domain-specific logic.
"""

from certbatch.utils.logging import configure_logging, get_logger
from certbatch.utils.profiler import ProfileStats, profile_block
from certbatch.utils.timeouts import call_with_timeout

__all__ = [
    "call_with_timeout",
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
