"""
QR code service for certificate verification.
Builds the QR payload a verifier scans and renders it as a PNG data URL.
"""

import base64
import binascii
import json
from io import BytesIO
from typing import Any, Dict, Optional

import qrcode
from pydantic import BaseModel, Field

from ..utils.logger import get_logger

logger = get_logger("qr_service")


class QRPayload(BaseModel):
    """Content encoded in a certificate QR code."""
    certificateId: str
    verificationUrl: str
    verificationCode: str
    timestamp: int = Field(..., description="Issue time, epoch milliseconds")
    issuer: str


class QRCodeService:
    """Generates and parses certificate QR codes."""

    def __init__(self, app_url: str):
        self.app_url = app_url.rstrip("/")

    def verification_url(self, certificate_id: str) -> str:
        return f"{self.app_url}/certificate/verify/{certificate_id}"

    def build_payload(
        self,
        certificate_id: str,
        verification_code: str,
        issued_at_ms: int,
        issuer: str,
    ) -> str:
        """
        Build the QR payload JSON.

        The same inputs always give the same string.
        """
        payload = QRPayload(
            certificateId=certificate_id,
            verificationUrl=self.verification_url(certificate_id),
            verificationCode=verification_code,
            timestamp=issued_at_ms,
            issuer=issuer,
        )
        return json.dumps(payload.model_dump(), separators=(',', ':'), ensure_ascii=False)

    def render_data_url(self, payload: str, box_size: int = 10, border: int = 4) -> str:
        """
        Render a payload to a ``data:image/png;base64,...`` URL.

        Args:
            payload: Text to encode
            box_size: Pixels per QR module
            border: Quiet zone width in modules

        Returns:
            PNG data URL
        """
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=box_size,
            border=border,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format='PNG')
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()

    @staticmethod
    def png_bytes(data_url: str) -> bytes:
        """Decode the PNG bytes from a data URL."""
        _, _, encoded = data_url.partition(",")
        return base64.b64decode(encoded)

    @staticmethod
    def parse_payload(raw: str) -> Optional[Dict[str, Any]]:
        """
        Parse scanned QR content.

        Accepts the JSON payload itself or its base64 encoding, as used in
        ``?data=`` links.

        Returns:
            Parsed payload, or None if it is not a certificate QR code
        """
        text = raw.strip()
        if not text.startswith("{"):
            try:
                text = base64.b64decode(text, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError, ValueError):
                logger.warning("QR payload is neither JSON nor base64 JSON")
                return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in QR payload: {e}")
            return None

        if not isinstance(data, dict) or not data.get("certificateId"):
            logger.warning("QR payload missing certificateId")
            return None

        return data
