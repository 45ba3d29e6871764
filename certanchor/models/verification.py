"""
Verification models for certificate checks against the ledger.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from ..utils.timeutils import utcnow


class ChainStatus(str, Enum):
    """Trust state of a certificate with respect to the ledger."""
    VERIFIED = "verified"
    PENDING = "pending"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


class VerificationMethod(str, Enum):
    ID = "id"
    QR = "qr"
    CODE = "code"


class VerificationErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    UNSUPPORTED_METHOD = "unsupported_method"
    INVALID_QR = "invalid_qr"
    MISSING_IDENTIFIER = "missing_identifier"


class VerificationRequest(BaseModel):
    """Exactly one identifier should be set; the first present one wins."""

    certificate_id: Optional[str] = Field(None, description="Public certificate id")
    qr_payload: Optional[str] = Field(None, description="Scanned QR payload (JSON, or base64 of it)")
    verification_code: Optional[str] = Field(None, description="16 character verification code")

    @model_validator(mode="after")
    def strip_blanks(self):
        for name in ("certificate_id", "qr_payload", "verification_code"):
            value = getattr(self, name)
            if value is not None and not value.strip():
                setattr(self, name, None)
        return self


class VerificationError(BaseModel):
    code: VerificationErrorCode
    message: str


class CertificateSnapshot(BaseModel):
    """Public view of the certificate shown to verifiers."""
    student_name: str
    course_name: str
    instructor_name: str
    completion_date: datetime
    issuer: str
    certificate_number: str
    grade: str
    score: float
    achievements: List[str] = Field(default_factory=list)


class VerificationResult(BaseModel):
    """Result of verifying one certificate."""

    certificate_id: Optional[str] = None
    is_valid: bool = False
    verified_at: datetime = Field(default_factory=utcnow)
    blockchain_status: ChainStatus = ChainStatus.NOT_FOUND
    matches_blockchain: bool = False
    original_hash: Optional[str] = Field(None, description="Hash anchored on the ledger")
    recomputed_hash: Optional[str] = Field(None, description="Hash recomputed from stored fields")
    certificate: Optional[CertificateSnapshot] = None
    method: VerificationMethod = VerificationMethod.ID
    message: Optional[str] = None
    degraded: bool = Field(False, description="Ledger unreachable; cached comparison used")
    queue_status: Optional[str] = None
    transaction_id: Optional[str] = None
    explorer_url: Optional[str] = None
    scan_count: Optional[int] = None
    error: Optional[VerificationError] = None
