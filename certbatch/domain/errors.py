"""
Error taxonomy for certbatch.

Validation errors block a batch before it starts. Row processing errors and
delivery errors are isolated by the orchestrator and dispatcher and surface
in the final result instead of propagating.
"""
from __future__ import annotations

from typing import Optional

UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
INVALID_EMAIL = "INVALID_EMAIL"
MISSING_FIELDS = "MISSING_FIELDS"
TRANSPORT_FAILED = "TRANSPORT_FAILED"


class CertBatchError(Exception):
    """Base error for certbatch."""


class JobValidationError(CertBatchError):
    """Request or template cannot start a batch."""


class TemplateParseError(JobValidationError):
    """Scene-graph JSON could not be parsed."""


class DataSourceError(JobValidationError):
    """Data file unreadable, unsupported or empty."""


class RowProcessingError(CertBatchError):
    """Failure confined to a single data row."""


class QRCodeError(RowProcessingError):
    """QR image could not be encoded."""


class RenderError(RowProcessingError):
    """Bound scene graph could not be rendered."""


class RenderTimeoutError(RenderError):
    """Rendering exceeded the caller-enforced timeout."""


class QuotaExceededError(CertBatchError):
    """A quota check rejected the request."""

    code: str = ""

    def __init__(self, message: str, *, limit: int, remaining: Optional[int] = None) -> None:
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining


class UpgradeRequiredError(QuotaExceededError):
    code = UPGRADE_REQUIRED


class RateLimitExceededError(QuotaExceededError):
    code = RATE_LIMIT_EXCEEDED


class DeliveryError(CertBatchError):
    """Failure confined to a single recipient."""


class TransportError(DeliveryError):
    """Mail transport rejected or failed to deliver a message."""


class TransportConfigError(TransportError):
    """Mail transport is missing credentials or configuration."""


class TransportTimeoutError(TransportError):
    """Mail transport exceeded the caller-enforced timeout."""


class StoreError(CertBatchError):
    """Counter or certificate store failure."""


__all__ = [
    "CertBatchError",
    "DataSourceError",
    "DeliveryError",
    "INVALID_EMAIL",
    "JobValidationError",
    "MISSING_FIELDS",
    "QRCodeError",
    "QuotaExceededError",
    "RATE_LIMIT_EXCEEDED",
    "RateLimitExceededError",
    "RenderError",
    "RenderTimeoutError",
    "RowProcessingError",
    "StoreError",
    "TRANSPORT_FAILED",
    "TemplateParseError",
    "TransportConfigError",
    "TransportError",
    "TransportTimeoutError",
    "UPGRADE_REQUIRED",
    "UpgradeRequiredError",
]
