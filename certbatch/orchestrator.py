"""
Batch orchestrator: drives one generation job from validated request to
packaged, optionally delivered, certificates.

Usage:
    from certbatch.orchestrator import build_orchestrator

    orchestrator = build_orchestrator()
    result = orchestrator.generate(request, on_progress=print)

Job lifecycle: `start_job()` validates the request and creates the job
(configuring), `run()` moves it through generating and emailing to complete
or cancelled, `close_job()` drops it. Rows are processed strictly one after
another on a single reusable render surface; cancellation is checked before
each row and each recipient, never in the middle of one.
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional

from certbatch.archive import ArchivePackager
from certbatch.binding import bind_row, format_cell
from certbatch.config import Settings, get_settings
from certbatch.delivery.dispatcher import DeliveryDispatcher
from certbatch.delivery.service import EmailService
from certbatch.delivery.transport import MailTransport, get_transport
from certbatch.domain.errors import JobValidationError, RenderTimeoutError, StoreError
from certbatch.domain.models import (
    Artifact,
    CertificateRecord,
    DataRow,
    DeliveryRecord,
    DeliverySummary,
    EmailStatus,
    GenerationJob,
    GenerationRequest,
    GenerationResult,
    JobStatus,
    OutputFormat,
    SceneGraph,
)
from certbatch.domain.ports import CertificateStore, QuotaStore
from certbatch.infrastructure.memory_store import InMemoryCertificateStore, InMemoryQuotaStore
from certbatch.quota.gate import GenerationDecision, QuotaGate
from certbatch.rendering import RenderSurface, get_surface
from certbatch.utils.logging import get_logger
from certbatch.utils.profiler import profile_block
from certbatch.utils.timeouts import call_with_timeout
from certbatch.verification import VerificationIssuer

log = get_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]
SurfaceFactory = Callable[[OutputFormat], RenderSurface]

INVALID_ADDRESS_MESSAGE = "missing or invalid email address"


def _has_address(value: Optional[str]) -> bool:
    return bool(value) and "@" in value  # type: ignore[operator]


class BatchOrchestrator:
    """
    Parameters
    ----------
    surface_factory : callable
        Returns a fresh render surface for an output format.
    issuer : VerificationIssuer
        Allocates certificate ids and QR images.
    quota_gate : QuotaGate
        Generation pre-flight check and usage recording.
    certificate_store : CertificateStore, optional
        Receives one record per produced certificate.
    dispatcher : DeliveryDispatcher, optional
        Required only for requests with `send_email`.
    render_timeout : float, optional
        Seconds allowed per row render.
    """

    def __init__(
        self,
        *,
        surface_factory: SurfaceFactory,
        issuer: VerificationIssuer,
        quota_gate: QuotaGate,
        certificate_store: Optional[CertificateStore] = None,
        dispatcher: Optional[DeliveryDispatcher] = None,
        render_timeout: Optional[float] = None,
    ) -> None:
        self.surface_factory = surface_factory
        self.issuer = issuer
        self.quota_gate = quota_gate
        self.certificate_store = certificate_store
        self.dispatcher = dispatcher
        self.render_timeout = render_timeout
        self._lock = threading.Lock()
        self._job: Optional[GenerationJob] = None
        self._request: Optional[GenerationRequest] = None
        self._graph: Optional[SceneGraph] = None

    @property
    def job(self) -> Optional[GenerationJob]:
        return self._job

    # -- lifecycle -----------------------------------------------------------

    def _validate(self, request: GenerationRequest) -> SceneGraph:
        if not request.data_rows:
            raise JobValidationError("No data rows to generate")
        graph = SceneGraph.from_json(request.scene_graph_json)
        graph.verification_element()
        if not request.issuer_name.strip():
            raise JobValidationError("Issuer name is required")
        if not request.certificate_title.strip():
            raise JobValidationError("Certificate title is required")
        columns = request.columns()
        if request.name_column not in columns:
            raise JobValidationError(
                f"Name column '{request.name_column}' not found. Available: {', '.join(columns)}"
            )
        if request.send_email:
            if self.dispatcher is None:
                raise JobValidationError("Email delivery requested but no dispatcher is configured")
            if not request.email_column:
                raise JobValidationError("An email column is required to send certificates")
            if request.email_column not in columns:
                raise JobValidationError(
                    f"Email column '{request.email_column}' not found. "
                    f"Available: {', '.join(columns)}"
                )
        return graph

    def start_job(self, request: GenerationRequest) -> GenerationJob:
        """
        Validate `request` and create a new job in the configuring state.

        A job that has not started yet is replaced; a running one is not.

        Raises
        ------
        JobValidationError
            On any validation failure, or while another job is running.
        """
        graph = self._validate(request)
        with self._lock:
            if self._job is not None and self._job.is_active:
                raise JobValidationError(f"Job {self._job.id} is still running")
            self._job = GenerationJob(total_rows=len(request.data_rows))
            self._request = request
            self._graph = graph
        log.info(
            "[JOB CREATED]",
            extra={"job_id": self._job.id, "total_rows": self._job.total_rows},
        )
        return self._job

    def cancel(self) -> None:
        """Request cooperative cancellation of the current job."""
        job = self._job
        if job is not None:
            job.request_cancel()
            log.info("[JOB CANCEL REQUESTED]", extra={"job_id": job.id})

    def close_job(self) -> None:
        """Drop the current job; a running job is asked to stop first."""
        with self._lock:
            if self._job is not None and self._job.is_active:
                self._job.request_cancel()
            self._job = None
            self._request = None
            self._graph = None

    # -- execution -----------------------------------------------------------

    def generate(
        self, request: GenerationRequest, on_progress: Optional[ProgressCallback] = None
    ) -> GenerationResult:
        """Convenience wrapper: start, run and close a job."""
        self.start_job(request)
        try:
            return self.run(on_progress=on_progress)
        finally:
            self.close_job()

    def run(self, on_progress: Optional[ProgressCallback] = None) -> GenerationResult:
        job, request, graph = self._job, self._request, self._graph
        if job is None or request is None or graph is None:
            raise JobValidationError("No job configured; call start_job() first")
        if job.status is not JobStatus.CONFIGURING:
            raise JobValidationError(f"Job {job.id} has already run")

        decision = self.quota_gate.reserve_generation(request.user_id, job.total_rows)
        if not decision.allowed:
            job.mark_complete()
            log.warning(
                "[JOB REJECTED] upgrade required",
                extra={"job_id": job.id, "remaining": decision.remaining},
            )
            return GenerationResult(
                job_id=job.id,
                status=job.status,
                total_rows=job.total_rows,
                limit_reached=True,
                remaining_quota=decision.remaining,
            )

        job.mark_generating()
        log.info(
            "[JOB START]",
            extra={
                "job_id": job.id,
                "total_rows": job.total_rows,
                "output_format": request.output_format.value,
            },
        )

        archive_bytes: Optional[bytes] = None
        delivery: Optional[DeliverySummary] = None
        remaining: Optional[int] = None
        packager = ArchivePackager() if request.archive else None
        with profile_block(f"job-{job.id}") as stats:
            try:
                outbox, records = self._generate_rows(job, request, graph, packager, on_progress)
            finally:
                remaining = self._settle_usage(
                    request.user_id, decision, len(job.generated_artifact_ids)
                )
            if packager is not None:
                archive_bytes = packager.finalize()
            self._save_records(job, records)

            if request.send_email and not job.cancel_requested:
                delivery = self._deliver(job, request, outbox, decision.is_premium, on_progress)
            stats.extra["artifacts"] = len(job.generated_artifact_ids)

        if job.cancel_requested:
            job.mark_cancelled()
        else:
            job.mark_complete()

        attempted = len(job.generated_artifact_ids) + len(job.errors)
        log.info(
            f"[JOB {job.status.value.upper()}]",
            extra={
                "job_id": job.id,
                "generated": len(job.generated_artifact_ids),
                "errors": len(job.errors),
                "duration": round(stats.duration_seconds, 2),
            },
        )
        return GenerationResult(
            job_id=job.id,
            status=job.status,
            total_rows=job.total_rows,
            generated_artifact_ids=list(job.generated_artifact_ids),
            errors=list(job.errors),
            archive_bytes=archive_bytes,
            limit_reached=False,
            remaining_quota=remaining,
            delivery=delivery,
            stats=stats.summary(rows=attempted),
        )

    def _generate_rows(
        self,
        job: GenerationJob,
        request: GenerationRequest,
        graph: SceneGraph,
        packager: Optional[ArchivePackager],
        on_progress: Optional[ProgressCallback],
    ) -> tuple[List[Artifact], List[CertificateRecord]]:
        """
        Render every row, streaming each document into `packager`.

        Returns the delivery outbox and the certificate records. Document
        bytes are kept in the outbox only for rows that will be emailed;
        rows without a usable address are kept without content so delivery
        can report them.
        """
        outbox: List[Artifact] = []
        records: List[CertificateRecord] = []
        total = job.total_rows
        with_qr = graph.has_qr_placeholder
        surface = self.surface_factory(request.output_format)
        try:
            for i, row in enumerate(request.data_rows):
                if job.cancel_requested:
                    log.info("[JOB CANCELLED]", extra={"job_id": job.id, "row_index": i})
                    if on_progress:
                        on_progress(i, total, "Cancelled")
                    break

                job.current_index = i
                recipient_name = format_cell(row.get(request.name_column)) or f"Certificate_{i + 1}"
                email = format_cell(row.get(request.email_column)) if request.email_column else ""
                try:
                    verification = self.issuer.issue(with_qr=with_qr)
                    bound = bind_row(graph, row, verification)
                    surface.reset()
                    content = call_with_timeout(
                        surface.render,
                        bound,
                        timeout=self.render_timeout,
                        error_cls=RenderTimeoutError,
                        label=f"render row {i}",
                    )
                except Exception as exc:  # noqa: BLE001 - one row never aborts the batch
                    message = str(exc) or exc.__class__.__name__
                    job.record_error(i, message)
                    log.warning(
                        "[ROW FAILED]",
                        extra={"job_id": job.id, "row_index": i, "error": message},
                    )
                    if isinstance(exc, RenderTimeoutError):
                        # the abandoned render may still hold the old surface
                        surface.close()
                        surface = self.surface_factory(request.output_format)
                else:
                    artifact = Artifact(
                        certificate_id=verification.certificate_id,
                        content=content,
                        row_index=i,
                        recipient_name=recipient_name,
                        recipient_email=email or None,
                        output_format=request.output_format,
                    )
                    if packager is not None:
                        packager.add(artifact)
                    if request.send_email:
                        if not _has_address(email):
                            artifact = artifact.model_copy(update={"content": b""})
                        outbox.append(artifact)
                    job.record_artifact(artifact.certificate_id)
                    records.append(self._record_for(request, artifact, row))
                    log.debug(
                        "[ROW OK]",
                        extra={
                            "job_id": job.id,
                            "row_index": i,
                            "certificate_id": artifact.certificate_id,
                        },
                    )
                if on_progress:
                    on_progress(i + 1, total, f"Processing {i + 1} of {total}...")
        finally:
            surface.close()
        return outbox, records

    def _record_for(
        self, request: GenerationRequest, artifact: Artifact, row: DataRow
    ) -> CertificateRecord:
        return CertificateRecord(
            id=artifact.certificate_id,
            template_id=request.template_id or "local",
            user_id=request.user_id,
            recipient_name=artifact.recipient_name,
            recipient_email=artifact.recipient_email or "",
            title=request.certificate_title,
            description=request.certificate_description,
            issuer_name=request.issuer_name,
            metadata={str(k): format_cell(v) for k, v in row.items()},
        )

    def _settle_usage(
        self, user_id: str, decision: GenerationDecision, produced: int
    ) -> Optional[int]:
        try:
            total = self.quota_gate.settle_generation(user_id, decision, produced)
        except StoreError:
            log.error("[QUOTA] failed to settle generations", extra={"user_id": user_id}, exc_info=True)
            return None
        if decision.is_premium:
            return None
        return max(self.quota_gate.free_generation_limit - total, 0)

    def _save_records(self, job: GenerationJob, records: List[CertificateRecord]) -> None:
        if self.certificate_store is None or not records:
            return
        try:
            saved = self.certificate_store.save_many(records)
            log.info("[RECORDS SAVED]", extra={"job_id": job.id, "count": saved})
        except Exception:  # noqa: BLE001 - persistence failure never fails the batch
            log.warning(
                "[RECORDS SAVE FAILED]", extra={"job_id": job.id, "count": len(records)}, exc_info=True
            )

    def _deliver(
        self,
        job: GenerationJob,
        request: GenerationRequest,
        artifacts: List[Artifact],
        is_premium: bool,
        on_progress: Optional[ProgressCallback],
    ) -> DeliverySummary:
        if self.dispatcher is None:
            raise JobValidationError("Email delivery requested but no dispatcher is configured")
        job.mark_emailing()
        summary = DeliverySummary()
        eligible: List[Artifact] = []
        for artifact in artifacts:
            if _has_address(artifact.recipient_email):
                eligible.append(artifact)
                continue
            summary.add(
                DeliveryRecord(
                    recipient_name=artifact.recipient_name,
                    email=artifact.recipient_email or "",
                    success=False,
                    row_index=artifact.row_index,
                    certificate_id=artifact.certificate_id,
                    error=INVALID_ADDRESS_MESSAGE,
                )
            )
            self._mark_undeliverable(artifact.certificate_id)

        log.info(
            "[DELIVERY START]",
            extra={"job_id": job.id, "eligible": len(eligible), "skipped": summary.failed_count},
        )
        return self.dispatcher.dispatch(
            eligible,
            user_id=request.user_id,
            issuer_name=request.issuer_name,
            certificate_title=request.certificate_title,
            certificate_description=request.certificate_description,
            is_premium=is_premium,
            summary=summary,
            should_stop=lambda: job.cancel_requested,
            on_progress=on_progress,
        )

    def _mark_undeliverable(self, certificate_id: str) -> None:
        if self.certificate_store is None:
            return
        try:
            self.certificate_store.update_delivery_status(
                certificate_id, EmailStatus.FAILED, INVALID_ADDRESS_MESSAGE
            )
        except Exception:  # noqa: BLE001 - status update is a non-critical side effect
            log.warning("[EMAIL STATUS] update failed", extra={"certificate_id": certificate_id}, exc_info=True)


def _store_factories(settings: Settings) -> Dict[str, Callable[[], tuple[QuotaStore, CertificateStore]]]:
    """Registry of storage backends."""

    def _postgres() -> tuple[QuotaStore, CertificateStore]:
        from certbatch.infrastructure.postgres_store import (
            PostgresCertificateStore,
            PostgresQuotaStore,
        )

        return PostgresQuotaStore(settings=settings), PostgresCertificateStore(settings=settings)

    return {
        "memory": lambda: (InMemoryQuotaStore(), InMemoryCertificateStore()),
        "postgres": _postgres,
    }


def available_backends() -> List[str]:
    return sorted(_store_factories(get_settings()).keys())


def build_orchestrator(
    settings: Optional[Settings] = None,
    *,
    quota_store: Optional[QuotaStore] = None,
    certificate_store: Optional[CertificateStore] = None,
    transport: Optional[MailTransport] = None,
) -> BatchOrchestrator:
    """
    Wire an orchestrator from settings; explicit collaborators win over
    the configured backends.
    """
    settings = settings or get_settings()
    if quota_store is None or certificate_store is None:
        factories = _store_factories(settings)
        backend = settings.storage_backend.lower()
        if backend not in factories:
            raise ValueError(
                f"Unknown storage backend '{settings.storage_backend}'. "
                f"Available: {', '.join(factories)}"
            )
        default_quota, default_certs = factories[backend]()
        quota_store = quota_store or default_quota
        certificate_store = certificate_store or default_certs

    gate = QuotaGate.from_settings(quota_store, settings)
    email_service = EmailService(
        transport=transport or get_transport(settings),
        quota_gate=gate,
        base_url=settings.base_url,
        certificate_store=certificate_store,
        timeout=settings.mail_timeout_seconds,
    )
    return BatchOrchestrator(
        surface_factory=lambda fmt: get_surface(fmt, settings),
        issuer=VerificationIssuer(settings.base_url, qr_size=settings.qr_size),
        quota_gate=gate,
        certificate_store=certificate_store,
        dispatcher=DeliveryDispatcher(email_service),
        render_timeout=settings.render_timeout_seconds,
    )


__all__ = [
    "BatchOrchestrator",
    "INVALID_ADDRESS_MESSAGE",
    "available_backends",
    "build_orchestrator",
]
