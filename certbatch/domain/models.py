"""
Domain models for certbatch.

Covers the scene graph handed over by the visual editor (elements, geometry,
style, placeholder bindings), the generation job state machine, rendered
artifacts, quota state, persisted certificate records and the request/result
contracts exchanged with the UI and the email endpoint.

Scene-graph models use camelCase aliases so the editor's JSON round-trips
unchanged; unknown editor properties are kept as extra fields.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from certbatch.domain.errors import JobValidationError, TemplateParseError

DataRow = Dict[str, Any]

DEFAULT_PAGE_WIDTH = 842.0  # A4 landscape, 72 DPI
DEFAULT_PAGE_HEIGHT = 595.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ElementKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    SHAPE = "shape"
    LINE = "line"
    QR_PLACEHOLDER = "qrPlaceholder"


class OutputFormat(str, Enum):
    PDF = "pdf"
    PNG = "png"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @property
    def mime_type(self) -> str:
        return "application/pdf" if self is OutputFormat.PDF else "image/png"


class Geometry(_CamelModel):
    """Position and transform of an element, in canvas units (points)."""

    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0
    angle: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    origin_x: str = "left"
    origin_y: str = "top"

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    @property
    def scaled_width(self) -> float:
        return self.width * self.scale_x

    @property
    def scaled_height(self) -> float:
        return self.height * self.scale_y

    def top_left(self) -> tuple[float, float]:
        """Resolve the origin anchors to the element's top-left corner."""
        x = self.left
        y = self.top
        if self.origin_x == "center":
            x -= self.scaled_width / 2
        elif self.origin_x == "right":
            x -= self.scaled_width
        if self.origin_y == "center":
            y -= self.scaled_height / 2
        elif self.origin_y == "bottom":
            y -= self.scaled_height
        return x, y


class Style(_CamelModel):
    fill: Optional[str] = "#000000"
    stroke: Optional[str] = None
    stroke_width: float = 0.0
    opacity: float = 1.0
    font_family: str = "Helvetica"
    font_size: float = 24.0
    font_weight: str = "normal"
    font_style: str = "normal"
    text_align: str = "left"
    shape: str = "rect"

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Element(_CamelModel):
    """
    One visual element of the template.

    An element with a non-empty `dynamic_key` is a placeholder whose text is
    replaced by the bound data column at generation time.
    """

    id: str
    kind: ElementKind
    geometry: Geometry = Field(default_factory=Geometry)
    style: Style = Field(default_factory=Style)
    text: Optional[str] = None
    src: Optional[str] = None
    dynamic_key: Optional[str] = None
    is_verification_url: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    @property
    def is_placeholder(self) -> bool:
        return bool(self.dynamic_key)


class SceneGraph(_CamelModel):
    """Ordered list of template elements plus page metadata."""

    version: str = "1"
    width: float = DEFAULT_PAGE_WIDTH
    height: float = DEFAULT_PAGE_HEIGHT
    background: str = "#ffffff"
    elements: List[Element] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    @classmethod
    def from_json(cls, payload: str | bytes) -> "SceneGraph":
        try:
            return cls.model_validate_json(payload)
        except ValidationError as exc:
            raise TemplateParseError(f"Invalid scene graph JSON: {exc.error_count()} error(s)") from exc

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def placeholders(self) -> List[Element]:
        return [el for el in self.elements if el.is_placeholder]

    def placeholder_keys(self) -> List[str]:
        keys: List[str] = []
        for el in self.placeholders():
            if el.dynamic_key not in keys:
                keys.append(el.dynamic_key)  # type: ignore[arg-type]
        return keys

    def qr_placeholders(self) -> List[Element]:
        return [el for el in self.elements if el.kind is ElementKind.QR_PLACEHOLDER]

    @property
    def has_qr_placeholder(self) -> bool:
        return any(el.kind is ElementKind.QR_PLACEHOLDER for el in self.elements)

    def verification_element(self) -> Element:
        """
        Return the single verification-URL element.

        Raises JobValidationError when the template carries none or several.
        """
        found = [el for el in self.elements if el.is_verification_url]
        if not found:
            raise JobValidationError("Template is missing its verification URL element")
        if len(found) > 1:
            raise JobValidationError(
                f"Template has {len(found)} verification URL elements; exactly one is required"
            )
        return found[0]


class JobStatus(str, Enum):
    CONFIGURING = "configuring"
    GENERATING = "generating"
    EMAILING = "emailing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class RowError(BaseModel):
    row_index: int
    message: str

    model_config = {"frozen": True}


class GenerationJob(BaseModel):
    """
    State of one batch run.

    Created by `BatchOrchestrator.start_job`, mutated only by the orchestrator
    (callers may only raise the cancellation flag) and dropped by `close_job`.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    total_rows: int
    current_index: int = 0
    status: JobStatus = JobStatus.CONFIGURING
    errors: List[RowError] = Field(default_factory=list)
    generated_artifact_ids: List[str] = Field(default_factory=list)
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=_utc_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def request_cancel(self) -> None:
        self.cancel_requested = True

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.GENERATING, JobStatus.EMAILING)

    def mark_generating(self) -> None:
        self.status = JobStatus.GENERATING
        self.started_at = _utc_now()

    def mark_emailing(self) -> None:
        self.status = JobStatus.EMAILING

    def mark_complete(self) -> None:
        self.status = JobStatus.COMPLETE
        self.finished_at = _utc_now()

    def mark_cancelled(self) -> None:
        self.status = JobStatus.CANCELLED
        self.finished_at = _utc_now()

    def record_error(self, row_index: int, message: str) -> None:
        self.errors.append(RowError(row_index=row_index, message=message))

    def record_artifact(self, certificate_id: str) -> None:
        self.generated_artifact_ids.append(certificate_id)


class Artifact(BaseModel):
    """One rendered document plus the metadata needed to package and deliver it."""

    certificate_id: str
    content: bytes
    row_index: int
    recipient_name: str
    recipient_email: Optional[str] = None
    output_format: OutputFormat = OutputFormat.PDF

    model_config = {"frozen": True}


class QuotaState(BaseModel):
    user_id: str
    is_premium: bool = False
    free_generations_used: int = 0
    daily_emails_sent: int = 0
    day: date = Field(default_factory=lambda: _utc_now().date())


class EmailStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class CertificateRecord(_CamelModel):
    """Persisted metadata looked up by the verification page."""

    id: str
    template_id: str = "local"
    user_id: Optional[str] = None
    recipient_name: str
    recipient_email: str = ""
    title: str
    description: str = ""
    issuer_name: str
    issued_at: datetime = Field(default_factory=_utc_now)
    metadata: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = True
    view_count: int = 0
    email_status: Optional[EmailStatus] = None
    email_error: Optional[str] = None
    email_sent_at: Optional[datetime] = None


class GenerationRequest(_CamelModel):
    """Generation request handed from the UI to the orchestrator."""

    scene_graph_json: str = Field(..., alias="sceneGraphJSON")
    data_rows: List[DataRow]
    name_column: str
    email_column: Optional[str] = None
    send_email: bool = False
    output_format: OutputFormat = OutputFormat.PDF
    user_id: str
    issuer_name: str
    certificate_title: str
    certificate_description: str = ""
    template_id: Optional[str] = None
    archive: bool = True
    headers: Optional[List[str]] = None

    def columns(self) -> List[str]:
        if self.headers:
            return list(self.headers)
        if self.data_rows:
            return list(self.data_rows[0].keys())
        return []


class DeliveryRecord(_CamelModel):
    recipient_name: str
    email: str
    success: bool
    row_index: Optional[int] = None
    certificate_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


class DeliverySummary(_CamelModel):
    sent: List[DeliveryRecord] = Field(default_factory=list)
    failed: List[DeliveryRecord] = Field(default_factory=list)

    def add(self, record: DeliveryRecord) -> None:
        (self.sent if record.success else self.failed).append(record)

    @property
    def sent_count(self) -> int:
        return len(self.sent)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class GenerationResult(_CamelModel):
    """Result handed back to the UI after a batch run."""

    job_id: Optional[str] = None
    status: JobStatus = JobStatus.COMPLETE
    total_rows: int = 0
    generated_artifact_ids: List[str] = Field(default_factory=list)
    errors: List[RowError] = Field(default_factory=list)
    archive_bytes: Optional[bytes] = None
    limit_reached: bool = False
    remaining_quota: Optional[int] = None
    delivery: Optional[DeliverySummary] = None
    stats: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, ser_json_bytes="base64"
    )


class EmailSendRequest(_CamelModel):
    to: str
    recipient_name: str
    certificate_id: str
    certificate_title: str = "Certificate of Completion"
    certificate_description: str = ""
    issuer_name: str = ""
    user_id: str = "anonymous"
    is_premium: Optional[bool] = None
    attachment_base64: Optional[str] = None
    attachment_format: OutputFormat = OutputFormat.PDF


class EmailSendResponse(_CamelModel):
    success: bool
    message_id: Optional[str] = None
    remaining: Optional[int] = None
    error: Optional[str] = None
    code: Optional[str] = None


__all__ = [
    "Artifact",
    "CertificateRecord",
    "DataRow",
    "DeliveryRecord",
    "DeliverySummary",
    "Element",
    "ElementKind",
    "EmailSendRequest",
    "EmailSendResponse",
    "EmailStatus",
    "GenerationJob",
    "GenerationRequest",
    "GenerationResult",
    "Geometry",
    "JobStatus",
    "OutputFormat",
    "QuotaState",
    "RowError",
    "SceneGraph",
    "Style",
]
