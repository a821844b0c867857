"""
Domain package for certbatch.

Exports the scene-graph, job, artifact and contract models plus the error
taxonomy. Keep this package focused on data definitions and validation.
"""

from certbatch.domain.errors import (
    CertBatchError,
    DeliveryError,
    JobValidationError,
    QuotaExceededError,
    RowProcessingError,
)
from certbatch.domain.models import (
    Artifact,
    CertificateRecord,
    DeliveryRecord,
    DeliverySummary,
    Element,
    ElementKind,
    GenerationJob,
    GenerationRequest,
    GenerationResult,
    JobStatus,
    OutputFormat,
    QuotaState,
    RowError,
    SceneGraph,
)

__all__ = [
    "Artifact",
    "CertBatchError",
    "CertificateRecord",
    "DeliveryError",
    "DeliveryRecord",
    "DeliverySummary",
    "Element",
    "ElementKind",
    "GenerationJob",
    "GenerationRequest",
    "GenerationResult",
    "JobStatus",
    "JobValidationError",
    "OutputFormat",
    "QuotaExceededError",
    "QuotaState",
    "RowError",
    "RowProcessingError",
    "SceneGraph",
]
