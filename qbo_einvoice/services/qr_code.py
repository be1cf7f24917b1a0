"""
QR code generation for signed invoices.

When the FIRS public key and certificate are configured, the QR code holds
the base64 RSA (PKCS#1 v1.5) encryption of
``{"irn": "<irn>.<unix seconds>", "certificate": "<certificate>"}``.
Otherwise it holds a plain JSON payload with the IRN and FIRS reference.
"""

import base64
import io
import json
from datetime import datetime
from typing import Callable, Optional

import qrcode
import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from qrcode.constants import ERROR_CORRECT_M

from qbo_einvoice.models.credentials import utcnow
from qbo_einvoice.models.firs import QRArtifact, SubmissionResult

logger = structlog.get_logger()

QR_BORDER = 2
QR_BOX_SIZE = 10


class QRCodeError(Exception):
    """Raised when a QR payload cannot be encrypted or rendered."""

    pass


def encrypt_irn(irn: str, certificate: str, public_key_b64: str, now: datetime) -> str:
    """
    Encrypt the timestamped IRN and certificate with the FIRS public key.

    Args:
        irn: Invoice reference number
        certificate: FIRS-issued certificate string
        public_key_b64: Base64 of a PEM-encoded RSA public key
        now: Time used for the IRN timestamp suffix

    Returns:
        Base64-encoded ciphertext

    Raises:
        QRCodeError: If the key is unusable or the payload is too large
    """
    payload = json.dumps({"irn": f"{irn}.{int(now.timestamp())}", "certificate": certificate})

    try:
        pem = base64.b64decode(public_key_b64)
        public_key = serialization.load_pem_public_key(pem)
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise QRCodeError("FIRS public key is not an RSA key")
        ciphertext = public_key.encrypt(payload.encode("utf-8"), padding.PKCS1v15())
    except QRCodeError:
        raise
    except ValueError as e:
        raise QRCodeError(f"Failed to encrypt IRN: {e}") from e

    return base64.b64encode(ciphertext).decode("ascii")


def basic_payload(irn: str, invoice_id: str, result: SubmissionResult, now: datetime) -> str:
    """Unencrypted QR payload used when encryption is unavailable."""
    return json.dumps(
        {
            "irn": irn,
            "reference": result.reference,
            "timestamp": now.isoformat(),
            "invoiceId": invoice_id,
        }
    )


def render_png(data: str) -> bytes:
    """Render ``data`` as a black-on-white PNG QR code."""
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def qr_file_name(invoice_id: str, now: datetime) -> str:
    timestamp = now.isoformat().replace(":", "-").replace(".", "-")
    return f"invoice-{invoice_id}-{timestamp}.png"


class QRCodeGenerator:
    """
    Builds QR artifacts for signed invoices.

    Attributes:
        public_key_b64: Base64 PEM RSA public key, empty if not configured
        certificate: FIRS certificate, empty if not configured
    """

    def __init__(
        self,
        public_key_b64: str = "",
        certificate: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.public_key_b64 = public_key_b64
        self.certificate = certificate
        self._clock = clock

    @property
    def encryption_configured(self) -> bool:
        return bool(self.public_key_b64 and self.certificate)

    def generate(self, irn: str, invoice_id: str, result: SubmissionResult) -> QRArtifact:
        """
        Produce the QR image for an invoice, encrypted when possible.

        Raises:
            QRCodeError: If the image cannot be rendered
        """
        now = self._clock()
        encrypted: Optional[str] = None

        if self.encryption_configured:
            try:
                encrypted = encrypt_irn(irn, self.certificate, self.public_key_b64, now)
                logger.info("qr_payload_encrypted", irn=irn)
            except QRCodeError as e:
                logger.warning("qr_encryption_failed_using_basic_payload", irn=irn, error=str(e))
        else:
            logger.warning("qr_encryption_not_configured_using_basic_payload", irn=irn)

        data = encrypted or basic_payload(irn, invoice_id, result, now)

        try:
            image_bytes = render_png(data)
        except (ValueError, OSError) as e:
            raise QRCodeError(f"Failed to render QR code for {irn}: {e}") from e

        return QRArtifact(
            irn=irn,
            encrypted_payload=encrypted,
            image_bytes=image_bytes,
            file_name=qr_file_name(invoice_id, now),
        )
