"""
Email send service: one certificate email per call.

Validates the request, consumes one unit of the sender's daily quota, builds
the message, hands it to the mail transport under a timeout, and records the
outcome on the stored certificate. Every failure is returned as an
`EmailSendResponse` with an error code rather than raised.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Optional

from certbatch.delivery.messages import build_certificate_message
from certbatch.delivery.transport import MailTransport
from certbatch.domain.errors import (
    INVALID_EMAIL,
    MISSING_FIELDS,
    TRANSPORT_FAILED,
    DeliveryError,
    TransportTimeoutError,
)
from certbatch.domain.models import EmailSendRequest, EmailSendResponse, EmailStatus
from certbatch.domain.ports import CertificateStore
from certbatch.quota.gate import QuotaGate
from certbatch.utils.logging import get_logger
from certbatch.utils.timeouts import call_with_timeout
from certbatch.verification import verification_url

log = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_REQUIRED_FIELDS = ("to", "recipient_name", "certificate_id")


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value.strip()) is not None  # type: ignore[union-attr]


class EmailService:
    """
    Parameters
    ----------
    transport : MailTransport
        Outbound mail system.
    quota_gate : QuotaGate
        Source of the per-user daily send cap.
    base_url : str
        Public site root used for verification links.
    certificate_store : CertificateStore, optional
        Receives delivery status updates; failures there are only logged.
    timeout : float, optional
        Caller-enforced deadline for one transport call.
    """

    def __init__(
        self,
        transport: MailTransport,
        quota_gate: QuotaGate,
        base_url: str,
        certificate_store: Optional[CertificateStore] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.transport = transport
        self.quota_gate = quota_gate
        self.base_url = base_url
        self.certificate_store = certificate_store
        self.timeout = timeout

    def check_bulk(self, user_id: str, count: int, is_premium: Optional[bool] = None) -> None:
        """Raise UpgradeRequiredError if a free user queues too many emails at once."""
        self.quota_gate.check_bulk(user_id, count, is_premium)

    def send(
        self, request: EmailSendRequest, attachment: Optional[bytes] = None
    ) -> EmailSendResponse:
        missing = [name for name in _REQUIRED_FIELDS if not str(getattr(request, name) or "").strip()]
        if missing:
            error = f"Missing required fields: {', '.join(missing)}"
            self._record_status(request.certificate_id, EmailStatus.FAILED, error)
            return EmailSendResponse(success=False, error=error, code=MISSING_FIELDS)
        to = request.to.strip()
        if not is_valid_email(to):
            error = "Invalid email address format"
            log.warning("[EMAIL REJECTED] invalid address", extra={"to": to})
            self._record_status(request.certificate_id, EmailStatus.FAILED, error)
            return EmailSendResponse(success=False, error=error, code=INVALID_EMAIL)

        if attachment is None and request.attachment_base64:
            try:
                attachment = base64.b64decode(request.attachment_base64, validate=True)
            except (binascii.Error, ValueError):
                error = "Attachment is not valid base64"
                self._record_status(request.certificate_id, EmailStatus.FAILED, error)
                return EmailSendResponse(success=False, error=error, code=MISSING_FIELDS)

        user_id = request.user_id or "anonymous"
        decision = self.quota_gate.try_consume_send(user_id, request.is_premium)
        if not decision.allowed:
            error = (
                f"Daily email limit ({decision.snapshot.limit}) reached. Please try again tomorrow."
            )
            self._record_status(request.certificate_id, EmailStatus.FAILED, error)
            return EmailSendResponse(
                success=False, error=error, code=decision.code, remaining=0
            )

        message = build_certificate_message(
            to=to,
            recipient_name=request.recipient_name,
            certificate_id=request.certificate_id,
            certificate_title=request.certificate_title,
            certificate_description=request.certificate_description,
            issuer_name=request.issuer_name,
            verify_url=verification_url(self.base_url, request.certificate_id),
            attachment=attachment,
            output_format=request.attachment_format,
        )
        try:
            message_id = call_with_timeout(
                self.transport.send,
                message,
                timeout=self.timeout,
                error_cls=TransportTimeoutError,
                label=f"{self.transport.name} send",
            )
        except DeliveryError as exc:
            log.error(
                "[EMAIL FAILED]",
                extra={
                    "to": to,
                    "certificate_id": request.certificate_id,
                    "error": str(exc),
                },
            )
            self._record_status(request.certificate_id, EmailStatus.FAILED, str(exc))
            return EmailSendResponse(
                success=False,
                error=str(exc),
                code=TRANSPORT_FAILED,
                remaining=decision.remaining,
            )

        self._record_status(request.certificate_id, EmailStatus.SENT)
        log.info(
            "[EMAIL SENT]",
            extra={
                "to": to,
                "certificate_id": request.certificate_id,
                "message_id": message_id,
                "remaining": decision.remaining,
            },
        )
        return EmailSendResponse(success=True, message_id=message_id, remaining=decision.remaining)

    def _record_status(
        self, certificate_id: Optional[str], status: EmailStatus, error: Optional[str] = None
    ) -> None:
        if self.certificate_store is None or not (certificate_id or "").strip():
            return
        try:
            self.certificate_store.update_delivery_status(certificate_id, status, error)
        except Exception:  # noqa: BLE001 - status update is a non-critical side effect
            log.warning(
                "[EMAIL STATUS] update failed",
                extra={"certificate_id": certificate_id, "status": status.value},
                exc_info=True,
            )


__all__ = ["EMAIL_PATTERN", "EmailService", "is_valid_email"]
