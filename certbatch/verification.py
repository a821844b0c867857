"""
Verification issuer.

Allocates a certificate identifier for each row before rendering and encodes
the matching verification URL as a QR image. The identifier is needed up
front because both the verification element and every QR placeholder of the
bound template embed it.
"""

from __future__ import annotations

import base64
import io
import secrets
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Set

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_M

from certbatch.domain.errors import QRCodeError
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

MAX_ID_ATTEMPTS = 5


def new_certificate_id() -> str:
    """128-bit URL-safe random token."""
    return secrets.token_urlsafe(16)


def verification_url(base_url: str, certificate_id: str) -> str:
    """Build the public verification URL `{base_url}/verify/{certificate_id}`."""
    return f"{base_url.rstrip('/')}/verify/{certificate_id}"


@dataclass(frozen=True)
class Verification:
    certificate_id: str
    url: str
    qr_png: Optional[bytes] = None

    @property
    def qr_data_url(self) -> Optional[str]:
        if not self.qr_png:
            return None
        return "data:image/png;base64," + base64.b64encode(self.qr_png).decode("ascii")


def encode_qr(payload: str, size: int = 200) -> bytes:
    """
    Encode `payload` as a square PNG QR code.

    Parameters
    ----------
    payload : str
        Text carried by the code (the verification URL).
    size : int
        Edge length of the output image in pixels.

    Raises
    ------
    QRCodeError
        If the payload cannot be encoded or the image cannot be written.
    """
    try:
        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=10, border=1)
        qr.add_data(payload)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
        img = img.resize((size, size), Image.NEAREST)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()
    except Exception as exc:
        raise QRCodeError(f"QR encoding failed: {exc}") from exc


class VerificationIssuer:
    """
    Issues one verification per generated row.

    Identifiers already handed out by this issuer are never reissued; a
    colliding draw from `id_factory` is retried a few times before giving up.
    """

    def __init__(
        self,
        base_url: str,
        qr_size: int = 200,
        id_factory: Optional[Callable[[], str]] = None,
        qr_encoder: Optional[Callable[[str, int], bytes]] = None,
    ) -> None:
        self.base_url = base_url
        self.qr_size = qr_size
        self._id_factory = id_factory or new_certificate_id
        self._qr_encoder = qr_encoder or encode_qr
        self._issued: Set[str] = set()
        self._lock = threading.Lock()

    def allocate_id(self) -> str:
        with self._lock:
            for _ in range(MAX_ID_ATTEMPTS):
                candidate = self._id_factory()
                if candidate not in self._issued:
                    self._issued.add(candidate)
                    return candidate
                log.warning("[ID COLLISION] retrying", extra={"certificate_id": candidate})
        raise QRCodeError(f"Could not allocate a unique certificate id after {MAX_ID_ATTEMPTS} attempts")

    def issue(self, with_qr: bool = True) -> Verification:
        """
        Allocate an identifier and, when requested, its QR image.

        Raises
        ------
        QRCodeError
            On id exhaustion or QR encoding failure; callers treat this as a
            failure of the current row only.
        """
        certificate_id = self.allocate_id()
        url = verification_url(self.base_url, certificate_id)
        qr_png = self._qr_encoder(url, self.qr_size) if with_qr else None
        return Verification(certificate_id=certificate_id, url=url, qr_png=qr_png)


__all__ = [
    "Verification",
    "VerificationIssuer",
    "encode_qr",
    "new_certificate_id",
    "verification_url",
]
