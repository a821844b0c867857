"""
Mail transports.

Transports are explicitly constructed, injectable objects. Construction never
fails; missing credentials raise TransportConfigError on the first `send`, so
a batch that does not deliver email never needs mail configuration.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

import aiosmtplib
import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from certbatch.config import Settings
from certbatch.delivery.messages import OutboundMessage
from certbatch.domain.errors import (
    TransportConfigError,
    TransportError,
    TransportTimeoutError,
)
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


@runtime_checkable
class MailTransport(Protocol):
    """
    Hands one message to an external mail system.

    Methods
    -------
    send(message)
        Deliver the message and return the provider's message id. Raises a
        TransportError subclass on any failure.
    """

    name: str

    def send(self, message: OutboundMessage) -> str:
        ...


class SmtpTransport:
    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        sender_name: str = "Certificates",
        sender_address: Optional[str] = None,
        timeout: float = 20.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender_name = sender_name
        self.sender_address = sender_address or username
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpTransport":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_name=settings.email_sender_name,
            sender_address=settings.email_sender_address,
            timeout=settings.mail_timeout_seconds,
        )

    def _ensure_configured(self) -> None:
        if not (self.username and self.password):
            raise TransportConfigError("SMTP credentials are not configured (SMTP_USER/SMTP_PASSWORD)")
        if not self.sender_address:
            raise TransportConfigError("Sender address is not configured (EMAIL_SENDER_ADDRESS)")

    async def _send(self, message: OutboundMessage) -> str:
        mime = message.to_mime(self.sender_name, self.sender_address or "")
        await aiosmtplib.send(
            mime,
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            start_tls=self.use_tls,
            timeout=self.timeout,
        )
        return str(mime["Message-ID"])

    def send(self, message: OutboundMessage) -> str:
        self._ensure_configured()
        try:
            message_id = asyncio.run(self._send(message))
        except (aiosmtplib.SMTPTimeoutError, asyncio.TimeoutError) as exc:
            raise TransportTimeoutError(f"SMTP timed out after {self.timeout:g}s") from exc
        except aiosmtplib.SMTPException as exc:
            raise TransportError(f"SMTP error: {exc}") from exc
        except OSError as exc:
            raise TransportError(f"SMTP connection failed: {exc}") from exc
        log.debug("[SMTP] sent", extra={"to": message.to, "message_id": message_id})
        return message_id


class BrevoTransport:
    name = "brevo"

    def __init__(
        self,
        api_key: Optional[str],
        sender_name: str = "Certificates",
        sender_address: Optional[str] = None,
        timeout: float = 20.0,
        client: Optional[httpx.Client] = None,
        api_url: str = BREVO_API_URL,
    ) -> None:
        self.api_key = api_key.strip() if api_key else None
        self.sender_name = sender_name
        self.sender_address = sender_address
        self.timeout = timeout
        self.api_url = api_url
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrevoTransport":
        return cls(
            api_key=settings.brevo_api_key,
            sender_name=settings.email_sender_name,
            sender_address=settings.email_sender_address,
            timeout=settings.mail_timeout_seconds,
        )

    def _client_or_new(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True,
    )
    def _post(self, payload: Dict) -> httpx.Response:
        return self._client_or_new().post(
            self.api_url,
            json=payload,
            headers={
                "accept": "application/json",
                "api-key": self.api_key or "",
                "content-type": "application/json",
            },
        )

    def send(self, message: OutboundMessage) -> str:
        if not self.api_key:
            raise TransportConfigError("Brevo API key is not configured (BREVO_API_KEY)")
        if not self.sender_address:
            raise TransportConfigError("Sender address is not configured (EMAIL_SENDER_ADDRESS)")
        payload = message.to_brevo_payload(self.sender_name, self.sender_address)
        try:
            response = self._post(payload)
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"Brevo API timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Brevo API request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportError(f"Brevo API error: {response.status_code} - {response.text}")
        try:
            message_id = response.json().get("messageId")
        except ValueError:
            message_id = None
        return message_id or f"brevo_{int(time.time() * 1000)}"

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def _transport_factories(settings: Settings) -> Dict[str, Callable[[], MailTransport]]:
    """Registry of available mail transports."""
    return {
        "smtp": lambda: SmtpTransport.from_settings(settings),
        "brevo": lambda: BrevoTransport.from_settings(settings),
    }


def get_transport(settings: Settings) -> MailTransport:
    factories = _transport_factories(settings)
    name = settings.mail_transport.lower()
    if name not in factories:
        raise TransportConfigError(
            f"Unknown mail transport '{settings.mail_transport}'. Available: {', '.join(factories)}"
        )
    return factories[name]()


__all__ = [
    "BREVO_API_URL",
    "BrevoTransport",
    "MailTransport",
    "SmtpTransport",
    "get_transport",
]
