"""
Retry queue models for pending on-chain mints.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from .certificate import BlockchainRecord, MintPayload


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueReason(str, Enum):
    """Why a mint ended up in the queue."""
    WALLET_NOT_READY = "wallet_not_ready"
    NOT_AUTHORIZED = "not_authorized"
    MINT_FAILED = "mint_failed"
    MANUAL = "manual"
    IMMEDIATE = "immediate"


class MintJob(BaseModel):
    """A queued mint, as stored in the ``mint_queue`` collection."""

    job_id: str
    certificate_id: str
    user_id: str
    course_id: str
    mint_payload: MintPayload
    priority: int = 0
    status: JobStatus = JobStatus.PENDING
    queue_reason: QueueReason = QueueReason.MINT_FAILED
    attempts: int = Field(0, description="Total attempts, never reset")
    round_attempts: int = Field(0, description="Attempts since the last manual retry")
    retry_count: int = Field(0, description="Number of manual retries")
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    worker_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    blockchain_record: Optional[BlockchainRecord] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    avg_processing_seconds: Optional[float] = None
    success_rate: Optional[float] = None


class RetryJobsRequest(BaseModel):
    job_ids: Optional[List[str]] = Field(None, description="Failed jobs to retry; omit for all")


class PurgeJobsRequest(BaseModel):
    job_ids: List[str] = Field(..., min_length=1)


class ProcessQueueRequest(BaseModel):
    max_jobs: int = Field(10, ge=1, le=100)
