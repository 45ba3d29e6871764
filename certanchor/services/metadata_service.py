"""
Metadata packaging for certificates.

Builds the QR payload and the certificate metadata document, uploads the
document to the content store and returns the addresses that end up on the
certificate record and on the ledger.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.config import Settings
from ..core.exceptions import ContentStoreError, MetadataUploadFailed
from ..utils.logger import get_logger
from ..utils.timeutils import epoch_millis, to_iso_millis
from .content_store import ContentStore
from .identity import CANONICAL_VERSION, content_hash
from .qr_service import QRCodeService

logger = get_logger("metadata_service")

METADATA_VERSION = "1.0"
EXCELLENCE_THRESHOLD = 95


@dataclass
class CertificateFields:
    """Fields that go into a certificate's metadata."""
    certificate_id: str
    certificate_number: str
    verification_code: str
    student_name: str
    course_name: str
    instructor_name: str
    completion_date: datetime
    grade: str
    score: float
    issued_at: datetime
    achievements: List[str] = field(default_factory=list)


@dataclass
class PackagedMetadata:
    qr_payload: str
    qr_code_image: str
    metadata_content_hash: str
    content_hash: str
    metadata: Dict[str, Any]


class MetadataService:
    """Packages and stores certificate metadata."""

    def __init__(
        self,
        store: ContentStore,
        qr_service: QRCodeService,
        settings: Settings,
        network_name: Optional[str] = None,
        contract_address: Optional[str] = None,
    ):
        self.store = store
        self.qr_service = qr_service
        self.settings = settings
        self.network_name = network_name
        self.contract_address = contract_address

    @property
    def issuer(self) -> str:
        return self.settings.organization_name

    def build_document(self, fields: CertificateFields, digest: str) -> Dict[str, Any]:
        """
        Metadata document stored in the content store.

        Args:
            fields: Certificate fields
            digest: Canonical content hash of the certificate

        Returns:
            JSON-serialisable document
        """
        return {
            "version": METADATA_VERSION,
            "issuer": {
                "name": self.issuer,
                "organizationId": self.settings.organization_id,
                "website": self.settings.organization_website,
                "verificationUrl": self.qr_service.verification_url(fields.certificate_id),
            },
            "certificateType": "excellence" if fields.score >= EXCELLENCE_THRESHOLD else "completion",
            "certificate": {
                "id": fields.certificate_id,
                "studentName": fields.student_name,
                "courseName": fields.course_name,
                "instructorName": fields.instructor_name,
                "completionDate": to_iso_millis(fields.completion_date),
                "certificateNumber": fields.certificate_number,
                "grade": fields.grade,
                "score": fields.score,
                "achievements": list(fields.achievements),
            },
            "verification": {
                "blockchain": {
                    "network": self.network_name,
                    "contractAddress": self.contract_address,
                },
            },
            "integrity": {
                "contentHash": digest,
                "algorithm": "sha256",
                "canonicalVersion": CANONICAL_VERSION,
            },
            "score": {
                "achieved": fields.score,
                "total": 100,
                "percentage": fields.score,
            },
        }

    async def package(self, fields: CertificateFields) -> PackagedMetadata:
        """
        Build QR artifacts and upload the metadata document.

        Raises:
            MetadataUploadFailed: If the content store rejects the upload
        """
        digest = content_hash(
            student_name=fields.student_name,
            course_name=fields.course_name,
            completion_date=fields.completion_date,
            certificate_number=fields.certificate_number,
            issuer=self.issuer,
        )

        qr_payload = self.qr_service.build_payload(
            certificate_id=fields.certificate_id,
            verification_code=fields.verification_code,
            issued_at_ms=epoch_millis(fields.issued_at),
            issuer=self.issuer,
        )
        qr_code_image = self.qr_service.render_data_url(qr_payload)

        document = self.build_document(fields, digest)
        body = json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

        try:
            address = await self.store.put(
                body,
                "application/json",
                tags={"name": f"certificate-{fields.certificate_id}", "certificateId": fields.certificate_id},
            )
        except ContentStoreError as e:
            logger.error(f"Metadata upload failed for certificate {fields.certificate_id}: {e}")
            raise MetadataUploadFailed(str(e)) from e

        logger.info(f"Metadata for certificate {fields.certificate_id} stored at {address}")

        return PackagedMetadata(
            qr_payload=qr_payload,
            qr_code_image=qr_code_image,
            metadata_content_hash=address,
            content_hash=digest,
            metadata=document,
        )

    async def fetch_metadata(self, address: str) -> Dict[str, Any]:
        """
        Read a metadata document back from the content store.

        Raises:
            ContentStoreError: If the document cannot be read or parsed
        """
        raw = await self.store.get(address)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ContentStoreError(f"Metadata at {address} is not valid JSON") from e
