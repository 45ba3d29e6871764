"""
Certificate document rendering.

Draws a landscape PDF with reportlab, embeds the verification QR code and
stores the result in the content store.
"""

import asyncio
import io
from abc import ABC, abstractmethod

from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from ..models.certificate import Certificate
from ..utils.logger import get_logger
from .content_store import ContentStore
from .qr_service import QRCodeService

logger = get_logger("pdf_service")


class ArtifactRenderer(ABC):
    """Produces the downloadable certificate document."""

    @abstractmethod
    async def render(self, certificate: Certificate) -> str:
        """Render and store the document, returning its URL."""


class PDFCertificateRenderer(ArtifactRenderer):
    """Renders certificates as PDF documents."""

    def __init__(self, store: ContentStore, public_base_url: str):
        self.store = store
        self.public_base_url = public_base_url.rstrip("/")

    def document_url(self, address: str) -> str:
        return self.store.gateway_url(address) or f"{self.public_base_url}/api/v1/documents/{address}"

    def build_pdf(self, certificate: Certificate) -> bytes:
        """Draw the certificate. Blocking; call through ``render``."""
        buffer = io.BytesIO()
        page_width, page_height = landscape(A4)
        pdf = canvas.Canvas(buffer, pagesize=(page_width, page_height))
        pdf.setTitle(f"Certificate {certificate.certificate_number}")

        # Border
        pdf.setLineWidth(3)
        pdf.rect(0.4 * inch, 0.4 * inch, page_width - 0.8 * inch, page_height - 0.8 * inch)

        center = page_width / 2
        pdf.setFont("Helvetica-Bold", 34)
        pdf.drawCentredString(center, page_height - 1.5 * inch, "Certificate of Completion")

        pdf.setFont("Helvetica", 14)
        pdf.drawCentredString(center, page_height - 2.2 * inch, "This certifies that")

        pdf.setFont("Helvetica-Bold", 28)
        pdf.drawCentredString(center, page_height - 2.9 * inch, certificate.student_name)

        pdf.setFont("Helvetica", 14)
        pdf.drawCentredString(center, page_height - 3.5 * inch, "has successfully completed")

        pdf.setFont("Helvetica-Bold", 20)
        pdf.drawCentredString(center, page_height - 4.1 * inch, certificate.course_name)

        pdf.setFont("Helvetica", 12)
        details = f"Grade: {certificate.grade}    Score: {certificate.score:g}%    " \
                  f"Completed: {certificate.completion_date:%B %d, %Y}"
        pdf.drawCentredString(center, page_height - 4.7 * inch, details)

        if certificate.achievements:
            pdf.drawCentredString(center, page_height - 5.1 * inch, " | ".join(certificate.achievements))

        pdf.setFont("Helvetica", 10)
        pdf.drawString(0.8 * inch, 1.3 * inch, f"Instructor: {certificate.instructor_name}")
        pdf.drawString(0.8 * inch, 1.05 * inch, f"Issued by: {certificate.issuer}")
        pdf.drawString(0.8 * inch, 0.8 * inch,
                       f"Certificate No. {certificate.certificate_number}  |  ID {certificate.certificate_id}")

        if certificate.qr_code_image:
            qr_size = 1.6 * inch
            qr_image = ImageReader(io.BytesIO(QRCodeService.png_bytes(certificate.qr_code_image)))
            pdf.drawImage(qr_image, page_width - 0.8 * inch - qr_size, 0.7 * inch, qr_size, qr_size)

        pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    async def render(self, certificate: Certificate) -> str:
        pdf_bytes = await asyncio.to_thread(self.build_pdf, certificate)
        address = await self.store.put(
            pdf_bytes,
            "application/pdf",
            tags={"name": f"certificate-{certificate.certificate_id}.pdf", "certificateId": certificate.certificate_id},
        )
        logger.info(f"Rendered certificate {certificate.certificate_id} ({len(pdf_bytes)} bytes) to {address}")
        return self.document_url(address)
