"""
Certificate verification.

Resolves a certificate from an id or a scanned QR payload, recomputes its
content hash and grades it against the anchor record and, when reachable,
the ledger itself.
"""

from typing import Optional, Tuple

from pymongo.errors import PyMongoError

from ..blockchain.anchor_client import AnchorClient
from ..core.exceptions import ContentStoreError, NetworkError
from ..models.certificate import BlockchainRecord, Certificate
from ..models.queue import JobStatus
from ..models.verification import (
    CertificateSnapshot,
    ChainStatus,
    VerificationError,
    VerificationErrorCode,
    VerificationMethod,
    VerificationRequest,
    VerificationResult,
)
from ..utils.logger import get_logger
from .certificate_store import CertificateStore
from .identity import certificate_content_hash
from .metadata_service import MetadataService
from .mint_queue import MintQueue
from .qr_service import QRCodeService

logger = get_logger("verification_service")


def _snapshot(certificate: Certificate) -> CertificateSnapshot:
    return CertificateSnapshot(
        student_name=certificate.student_name,
        course_name=certificate.course_name,
        instructor_name=certificate.instructor_name,
        completion_date=certificate.completion_date,
        issuer=certificate.issuer,
        certificate_number=certificate.certificate_number,
        grade=certificate.grade,
        score=certificate.score,
        achievements=certificate.achievements,
    )


class VerificationService:
    """Grades certificates against their anchors."""

    def __init__(
        self,
        store: CertificateStore,
        queue: MintQueue,
        anchor: AnchorClient,
        metadata_service: MetadataService,
    ):
        self.store = store
        self.queue = queue
        self.anchor = anchor
        self.metadata_service = metadata_service

    def _resolve(self, request: VerificationRequest) -> Tuple[VerificationMethod, Optional[str], Optional[VerificationError]]:
        if request.certificate_id:
            return VerificationMethod.ID, request.certificate_id.strip().upper(), None

        if request.qr_payload:
            data = QRCodeService.parse_payload(request.qr_payload)
            if data is None:
                return VerificationMethod.QR, None, VerificationError(
                    code=VerificationErrorCode.INVALID_QR,
                    message="QR payload could not be parsed",
                )
            return VerificationMethod.QR, str(data["certificateId"]).strip().upper(), None

        if request.verification_code:
            return VerificationMethod.CODE, None, VerificationError(
                code=VerificationErrorCode.UNSUPPORTED_METHOD,
                message="Verification by code is not supported yet; use the certificate id or QR code",
            )

        return VerificationMethod.ID, None, VerificationError(
            code=VerificationErrorCode.MISSING_IDENTIFIER,
            message="Provide a certificate id, QR payload or verification code",
        )

    async def _anchor_for(self, certificate: Certificate) -> Tuple[Optional[BlockchainRecord], Optional[str]]:
        """
        Anchor record of a certificate, plus the status of its latest queue job.

        A completed job whose record never reached the certificate still
        counts, and is copied onto the certificate here.
        """
        if certificate.blockchain_record:
            return certificate.blockchain_record, None

        jobs = await self.queue.jobs_for_certificate(certificate.certificate_id)
        if not jobs:
            return None, None

        for job in jobs:
            if job.status == JobStatus.COMPLETED and job.blockchain_record:
                logger.warning(f"Certificate {certificate.certificate_id} missing its anchor record, restoring from job {job.job_id}")
                try:
                    await self.store.attach_blockchain_record(certificate.certificate_id, job.blockchain_record)
                except PyMongoError as e:
                    logger.warning(f"Could not restore anchor record of certificate {certificate.certificate_id}: {e}")
                return job.blockchain_record, job.status.value

        return None, jobs[0].status.value

    async def _anchored_hash(self, certificate: Certificate, record: BlockchainRecord) -> Tuple[Optional[ChainStatus], str]:
        """
        Ask the ledger which hash it anchors for this certificate.

        Returns:
            (forced status, anchored hash). A forced status short-circuits
            the hash comparison (not_found or invalid on chain).

        Raises:
            NetworkError: If the ledger is unreachable
        """
        if not record.on_chain_id:
            return None, record.content_hash

        on_chain = await self.anchor.verify(record.on_chain_id)
        if on_chain is None:
            return ChainStatus.NOT_FOUND, record.content_hash
        if not on_chain.is_valid or on_chain.metadata_hash != certificate.metadata_content_hash:
            return ChainStatus.INVALID, record.content_hash

        try:
            metadata = await self.metadata_service.fetch_metadata(on_chain.metadata_hash)
            anchored = metadata.get("integrity", {}).get("contentHash") or record.content_hash
        except ContentStoreError as e:
            logger.warning(f"Metadata {on_chain.metadata_hash} unreadable, using cached hash: {e}")
            anchored = record.content_hash
        return None, anchored

    async def verify(self, request: VerificationRequest) -> VerificationResult:
        """
        Verify a certificate.

        Args:
            request: Certificate id, QR payload or verification code

        Returns:
            VerificationResult. Misses are typed results, never exceptions.
        """
        method, certificate_id, error = self._resolve(request)
        if error:
            return VerificationResult(
                certificate_id=certificate_id,
                method=method,
                blockchain_status=ChainStatus.NOT_FOUND,
                message=error.message,
                error=error,
            )

        certificate = await self.store.get(certificate_id)
        if certificate is None:
            return VerificationResult(
                certificate_id=certificate_id,
                method=method,
                blockchain_status=ChainStatus.NOT_FOUND,
                message="Certificate not found",
                error=VerificationError(code=VerificationErrorCode.NOT_FOUND, message="Certificate not found"),
            )

        result = await self._grade(certificate, method)
        result.scan_count = await self._record_scan(certificate_id)
        return result

    async def verify_on_chain(self, certificate_id: str) -> VerificationResult:
        return await self.verify(VerificationRequest(certificate_id=certificate_id))

    async def _grade(self, certificate: Certificate, method: VerificationMethod) -> VerificationResult:
        recomputed = certificate_content_hash(certificate)
        result = VerificationResult(
            certificate_id=certificate.certificate_id,
            method=method,
            is_valid=certificate.is_valid,
            recomputed_hash=recomputed,
            certificate=_snapshot(certificate),
        )

        if not certificate.is_valid:
            result.blockchain_status = ChainStatus.INVALID
            result.message = "revoked"
            return result

        record, queue_status = await self._anchor_for(certificate)
        result.queue_status = queue_status

        if record is None:
            result.blockchain_status = ChainStatus.PENDING
            result.matches_blockchain = False
            result.message = "Blockchain anchor pending"
            return result

        result.transaction_id = record.transaction_id
        result.explorer_url = record.explorer_url

        try:
            forced_status, anchored = await self._anchored_hash(certificate, record)
        except NetworkError as e:
            logger.warning(f"Ledger unreachable while verifying {certificate.certificate_id}: {e}")
            matches = record.content_hash == recomputed
            result.original_hash = record.content_hash
            result.matches_blockchain = matches
            result.degraded = True
            if matches:
                result.blockchain_status = ChainStatus.PENDING
                result.message = "Ledger unreachable; cached anchor matches, verification degraded"
            else:
                result.blockchain_status = ChainStatus.INVALID
                result.is_valid = False
                result.message = "Certificate data does not match its anchor"
            return result

        result.original_hash = anchored

        if forced_status == ChainStatus.NOT_FOUND:
            result.blockchain_status = ChainStatus.NOT_FOUND
            result.is_valid = False
            result.message = "Anchor not found on the ledger"
            return result
        if forced_status == ChainStatus.INVALID:
            result.blockchain_status = ChainStatus.INVALID
            result.is_valid = False
            result.message = "Ledger reports the anchor as invalid"
            return result

        if anchored == recomputed:
            result.blockchain_status = ChainStatus.VERIFIED
            result.matches_blockchain = True
            result.message = "Certificate verified on the ledger"
        else:
            logger.warning(f"Hash mismatch for certificate {certificate.certificate_id}")
            result.blockchain_status = ChainStatus.INVALID
            result.matches_blockchain = False
            result.is_valid = False
            result.message = "Certificate data does not match its anchor"
        return result

    async def _record_scan(self, certificate_id: str) -> Optional[int]:
        try:
            scan_count = await self.store.record_scan(certificate_id)
            await self.store.append_event(certificate_id, "certificate_verified", {"scan_count": scan_count})
            return scan_count
        except PyMongoError as e:
            logger.warning(f"Could not record scan for certificate {certificate_id}: {e}")
            return None
