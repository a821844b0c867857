"""
Delivery dispatcher: sends a batch's certificates one recipient at a time.

Sends run sequentially so each recipient's daily-quota check sees the
previous one's increment. A failing recipient is recorded and the loop moves
on; the loop stops early only when the job is cancelled.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from certbatch.delivery.service import EmailService
from certbatch.domain.models import (
    Artifact,
    DeliveryRecord,
    DeliverySummary,
    EmailSendRequest,
)
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class DeliveryDispatcher:
    def __init__(self, email_service: EmailService) -> None:
        self.email_service = email_service

    def dispatch(
        self,
        artifacts: Iterable[Artifact],
        *,
        user_id: str,
        issuer_name: str,
        certificate_title: str,
        certificate_description: str = "",
        is_premium: Optional[bool] = None,
        summary: Optional[DeliverySummary] = None,
        should_stop: Callable[[], bool] = lambda: False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DeliverySummary:
        """
        Email each artifact to its recipient.

        Parameters
        ----------
        artifacts : iterable of Artifact
            Eligible artifacts; each must carry a recipient email.
        summary : DeliverySummary, optional
            Existing summary to extend (e.g. with prior address failures).
        should_stop : callable
            Checked before every recipient; True ends the loop.
        on_progress : callable, optional
            Called with (done, total, label) after every attempt.

        Returns
        -------
        DeliverySummary
            Sent and failed records in attempt order.
        """
        summary = summary or DeliverySummary()
        items = list(artifacts)
        total = len(items)

        for position, artifact in enumerate(items):
            if should_stop():
                log.info(
                    "[DELIVERY CANCELLED]",
                    extra={"attempted": position, "total": total},
                )
                break

            email = (artifact.recipient_email or "").strip()
            request = EmailSendRequest(
                to=email,
                recipient_name=artifact.recipient_name,
                certificate_id=artifact.certificate_id,
                certificate_title=certificate_title,
                certificate_description=certificate_description,
                issuer_name=issuer_name,
                user_id=user_id,
                is_premium=is_premium,
                attachment_format=artifact.output_format,
            )
            try:
                response = self.email_service.send(request, attachment=artifact.content)
                record = DeliveryRecord(
                    recipient_name=artifact.recipient_name,
                    email=email,
                    success=response.success,
                    row_index=artifact.row_index,
                    certificate_id=artifact.certificate_id,
                    message_id=response.message_id,
                    error=response.error,
                    code=response.code,
                )
            except Exception as exc:  # noqa: BLE001 - one recipient never aborts the batch
                log.exception(
                    "[DELIVERY FAILED]",
                    extra={"row_index": artifact.row_index, "to": email},
                )
                record = DeliveryRecord(
                    recipient_name=artifact.recipient_name,
                    email=email,
                    success=False,
                    row_index=artifact.row_index,
                    certificate_id=artifact.certificate_id,
                    error=str(exc),
                )
            summary.add(record)
            if on_progress:
                on_progress(position + 1, total, f"Emailing {position + 1} of {total}...")

        log.info(
            "[DELIVERY COMPLETE]",
            extra={"sent": summary.sent_count, "failed": summary.failed_count},
        )
        return summary


__all__ = ["DeliveryDispatcher"]
