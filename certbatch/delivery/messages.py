"""
Outbound certificate email: content model, HTML body and MIME conversion.
"""

from __future__ import annotations

import base64
import html
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Dict, List, Optional

from certbatch.archive import sanitize_filename
from certbatch.domain.models import OutputFormat


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass
class OutboundMessage:
    to: str
    to_name: str
    subject: str
    html: str
    text: str = ""
    attachments: List[Attachment] = field(default_factory=list)

    def to_mime(self, sender_name: str, sender_address: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((sender_name, sender_address))
        msg["To"] = formataddr((self.to_name, self.to))
        msg["Subject"] = self.subject
        msg["Message-ID"] = make_msgid(domain=sender_address.split("@")[-1])
        msg.set_content(self.text or self.subject)
        msg.add_alternative(self.html, subtype="html")
        for item in self.attachments:
            maintype, _, subtype = item.mime_type.partition("/")
            msg.add_attachment(item.content, maintype=maintype, subtype=subtype, filename=item.filename)
        return msg

    def to_brevo_payload(self, sender_name: str, sender_address: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "sender": {"name": sender_name, "email": sender_address},
            "to": [{"email": self.to, "name": self.to_name}],
            "subject": self.subject,
            "htmlContent": self.html,
        }
        if self.text:
            payload["textContent"] = self.text
        if self.attachments:
            payload["attachment"] = [
                {"name": a.filename, "content": base64.b64encode(a.content).decode("ascii")}
                for a in self.attachments
            ]
        return payload


def attachment_filename(recipient_name: str, output_format: OutputFormat) -> str:
    """`certificate_{sanitized_name}.{ext}`"""
    return f"certificate_{sanitize_filename(recipient_name) or 'recipient'}{output_format.extension}"


def render_html(
    *,
    recipient_name: str,
    certificate_title: str,
    issuer_name: str,
    verify_url: str,
    certificate_id: str,
    certificate_description: str = "",
) -> str:
    e = html.escape
    description = (
        f'<p style="margin:0 0 20px;color:#475569;font-size:15px;line-height:1.6;">'
        f"{e(certificate_description)}</p>"
        if certificate_description
        else ""
    )
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Your Certificate is Ready</title></head>
<body style="margin:0;padding:0;font-family:'Segoe UI',Tahoma,Geneva,Verdana,sans-serif;background-color:#f8fafc;">
  <table width="100%" cellpadding="0" cellspacing="0" style="padding:40px 20px;">
    <tr><td align="center">
      <table width="600" cellpadding="0" cellspacing="0" style="background-color:#ffffff;border-radius:16px;">
        <tr><td style="background:#b45309;padding:32px 40px;text-align:center;">
          <h1 style="margin:0;color:#ffffff;font-size:26px;">Congratulations!</h1>
        </td></tr>
        <tr><td style="padding:40px;">
          <p style="margin:0 0 20px;color:#1e293b;font-size:18px;">Dear <strong>{e(recipient_name)}</strong>,</p>
          <p style="margin:0 0 20px;color:#475569;font-size:16px;line-height:1.6;">
            You have been awarded the <strong>{e(certificate_title)}</strong> by <strong>{e(issuer_name)}</strong>.
          </p>
          {description}
          <p style="margin:0 0 30px;color:#475569;font-size:16px;">Your certificate is attached to this email.</p>
          <p style="text-align:center;margin:0 0 30px;">
            <a href="{e(verify_url, quote=True)}" style="display:inline-block;background:#b45309;color:#ffffff;text-decoration:none;padding:14px 32px;border-radius:8px;font-weight:600;">Verify Certificate</a>
          </p>
          <p style="margin:0;color:#64748b;font-size:14px;">Certificate ID: <code>{e(certificate_id)}</code></p>
        </td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>
"""


def build_certificate_message(
    *,
    to: str,
    recipient_name: str,
    certificate_id: str,
    certificate_title: str,
    issuer_name: str,
    verify_url: str,
    certificate_description: str = "",
    attachment: Optional[bytes] = None,
    output_format: OutputFormat = OutputFormat.PDF,
) -> OutboundMessage:
    title = certificate_title or "Certificate of Completion"
    text = (
        f"Dear {recipient_name},\n\n"
        f"You have been awarded the {title} by {issuer_name}.\n"
        f"Verify it at {verify_url}\n\nCertificate ID: {certificate_id}\n"
    )
    attachments = []
    if attachment:
        attachments.append(
            Attachment(
                filename=attachment_filename(recipient_name, output_format),
                content=attachment,
                mime_type=output_format.mime_type,
            )
        )
    return OutboundMessage(
        to=to,
        to_name=recipient_name,
        subject=f"Your certificate: {title}",
        html=render_html(
            recipient_name=recipient_name,
            certificate_title=title,
            issuer_name=issuer_name,
            verify_url=verify_url,
            certificate_id=certificate_id,
            certificate_description=certificate_description,
        ),
        text=text,
        attachments=attachments,
    )


__all__ = [
    "Attachment",
    "OutboundMessage",
    "attachment_filename",
    "build_certificate_message",
    "render_html",
]
