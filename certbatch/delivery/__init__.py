"""
Delivery package for certbatch: mail transports, message building, the
single-email send service and the per-batch dispatcher.
"""

from certbatch.delivery.dispatcher import DeliveryDispatcher
from certbatch.delivery.messages import OutboundMessage, build_certificate_message
from certbatch.delivery.service import EmailService, is_valid_email
from certbatch.delivery.transport import (
    BrevoTransport,
    MailTransport,
    SmtpTransport,
    get_transport,
)

__all__ = [
    "BrevoTransport",
    "DeliveryDispatcher",
    "EmailService",
    "MailTransport",
    "OutboundMessage",
    "SmtpTransport",
    "build_certificate_message",
    "get_transport",
    "is_valid_email",
]
