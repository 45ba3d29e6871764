"""
Certificate models: stored records, issuance triggers and API payloads.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class AnchorRecordStatus(str, Enum):
    """Status of an on-chain anchor record."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AnchorState(str, Enum):
    """Anchor state reported for a certificate."""
    VERIFIED = "verified"
    QUEUED = "queued"
    PROCESSING = "processing"
    FAILED = "failed"
    NOT_ANCHORED = "not_anchored"


class BlockchainRecord(BaseModel):
    """Proof that a certificate was minted on the ledger."""

    model_config = ConfigDict(use_enum_values=True)

    content_hash: str = Field(..., description="Canonical content hash anchored at mint time")
    block_number: Optional[int] = Field(None, description="Block containing the mint transaction")
    transaction_id: str = Field(..., description="Mint transaction hash")
    on_chain_id: Optional[str] = Field(None, description="Certificate id assigned by the contract")
    network_id: str = Field(..., description="Ledger network name")
    contract_address: Optional[str] = Field(None, description="Certificate contract address")
    anchored_at: datetime = Field(..., description="When the mint was confirmed")
    explorer_url: Optional[str] = Field(None, description="Block explorer link for the transaction")
    status: AnchorRecordStatus = AnchorRecordStatus.CONFIRMED


class MintPayload(BaseModel):
    """Everything the worker needs to mint without re-reading the certificate."""

    recipient_address: Optional[str] = None
    student_name: str
    course_id: str
    course_name: str
    instructor_name: str
    completion_date: datetime
    certificate_number: str
    grade: str
    score: float
    achievements: List[str] = Field(default_factory=list)
    metadata_content_hash: str
    content_hash: str


class AssessmentPassed(BaseModel):
    """Trigger: the learner passed the final assessment."""
    kind: Literal["assessment_passed"] = "assessment_passed"
    score: float = Field(..., ge=0, le=100)
    time_spent_seconds: Optional[int] = Field(None, ge=0)


class CourseCompleted(BaseModel):
    """Trigger: every lesson of the course was finished."""
    kind: Literal["course_completed"] = "course_completed"


CompletionTrigger = Union[AssessmentPassed, CourseCompleted]


class Certificate(BaseModel):
    """Certificate record as stored in the ``certificates`` collection."""

    id: Optional[str] = Field(None, description="Store-assigned document id")
    certificate_id: str = Field(..., description="Public 12 character certificate id")
    certificate_number: str
    verification_code: str

    user_id: str
    course_id: str
    student_name: str
    course_name: str
    instructor_name: str
    completion_date: datetime
    grade: str
    score: float = Field(..., ge=0, le=100)
    achievements: List[str] = Field(default_factory=list)
    completion_time_hours: Optional[int] = None

    qr_payload: str
    qr_code_image: Optional[str] = None
    document_url: Optional[str] = None
    metadata_content_hash: str
    content_hash: str
    linkedin_share_url: Optional[str] = None
    issuer: str

    blockchain_record: Optional[BlockchainRecord] = None
    queue_job_id: Optional[str] = None

    is_valid: bool = True
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    scan_count: int = 0
    last_scanned_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True)


class IssueCertificateRequest(BaseModel):
    """Request body for issuing a certificate."""
    user_id: str = Field(..., min_length=1)
    course_id: str = Field(..., min_length=1)
    trigger: CompletionTrigger = Field(..., discriminator="kind")


class IssueCertificateResponse(BaseModel):
    certificate_id: str
    created: bool = Field(..., description="False when the learner already held a valid certificate")
    anchor_mode: Optional[str] = Field(None, description="immediate, queued, failed or skipped")
    queue_job_id: Optional[str] = None
    certificate: Certificate


class RevokeRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AnchorStatusResponse(BaseModel):
    """Anchor status for one certificate."""
    certificate_id: str
    has_blockchain: bool
    status: AnchorState
    blockchain: Optional[BlockchainRecord] = None
    queue_job: Optional[Dict[str, Any]] = None


class RetryAnchorResponse(BaseModel):
    certificate_id: str
    action: Literal["already_anchored", "requeued", "queued", "skipped"]
    job_id: Optional[str] = None


class ShareData(BaseModel):
    """Data for sharing a certificate on LinkedIn."""
    title: str
    description: str
    image_url: Optional[str] = None
    verification_url: str
    linkedin_share_url: str


class CertificateStats(BaseModel):
    total: int
    valid: int
    revoked: int
    by_grade: Dict[str, int] = Field(default_factory=dict)
    average_score: float = 0.0
    anchored: int = 0
    queue: Optional[Dict[str, Any]] = None
