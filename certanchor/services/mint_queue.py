"""
MongoDB-backed retry queue for on-chain mints.

Usage:
    job_id = await queue.enqueue(certificate_id, user_id, course_id, payload, priority=10)
    job = await queue.dequeue_next("worker-1")
    await queue.mark_completed(job.job_id, record)

A job is claimed with a single ``find_one_and_update`` conditioned on
``status == "pending"``, so two workers can never hold the same job.
Claimed jobs carry a lease; a worker that dies mid-mint leaves a job that
``reclaim_stale`` puts back to pending once the lease runs out.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from ..core.exceptions import QueueStoreError
from ..db.mongo import MINT_QUEUE
from ..models.certificate import BlockchainRecord, MintPayload
from ..models.queue import JobStatus, MintJob, QueueReason, QueueStats
from ..utils.logger import get_logger
from ..utils.serialization import document_to_model_data
from ..utils.timeutils import epoch_millis, utcnow

logger = get_logger("mint_queue")

CLAIM_ORDER = [("priority", DESCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)]


@contextmanager
def _store_errors(action: str):
    try:
        yield
    except PyMongoError as e:
        logger.error(f"Mint queue {action} failed: {e}")
        raise QueueStoreError(f"Mint queue {action} failed: {e}") from e


def _to_job(document) -> Optional[MintJob]:
    data = document_to_model_data(document)
    return MintJob(**data) if data else None


class MintQueue:
    """Durable priority queue of pending mints."""

    def __init__(self, db: AsyncIOMotorDatabase, lease_seconds: int = 300):
        self.collection = db[MINT_QUEUE]
        self.lease_seconds = lease_seconds

    def _job_document(
        self,
        certificate_id: str,
        user_id: str,
        course_id: str,
        mint_payload: MintPayload,
        priority: int,
        reason: QueueReason,
        last_error: Optional[str],
        now: datetime,
    ) -> dict:
        return {
            "job_id": f"{certificate_id}_{epoch_millis(now)}_{uuid.uuid4().hex[:6]}",
            "certificate_id": certificate_id,
            "user_id": user_id,
            "course_id": course_id,
            "mint_payload": mint_payload.model_dump(),
            "priority": priority,
            "status": JobStatus.PENDING.value,
            "queue_reason": reason.value,
            "attempts": 0,
            "round_attempts": 0,
            "retry_count": 0,
            "last_error": last_error,
            "next_retry_at": None,
            "worker_id": None,
            "claimed_at": None,
            "lease_expires_at": None,
            "blockchain_record": None,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
        }

    async def enqueue(
        self,
        certificate_id: str,
        user_id: str,
        course_id: str,
        mint_payload: MintPayload,
        priority: int = 0,
        reason: QueueReason = QueueReason.MINT_FAILED,
        last_error: Optional[str] = None,
    ) -> str:
        """Create a pending job and return its id."""
        document = self._job_document(
            certificate_id, user_id, course_id, mint_payload, priority, reason, last_error, utcnow()
        )
        with _store_errors("enqueue"):
            await self.collection.insert_one(document)

        job_id = document["job_id"]
        logger.info(f"Queued mint job {job_id} for certificate {certificate_id} (priority {priority}, reason {reason.value})")
        return job_id

    async def record_completed(
        self,
        certificate_id: str,
        user_id: str,
        course_id: str,
        mint_payload: MintPayload,
        blockchain_record: BlockchainRecord,
    ) -> str:
        """
        Store a mint that already happened outside the queue as a completed job.

        Verification and manual retries read anchors back from completed
        jobs, so the record survives even when the certificate write failed.
        """
        now = utcnow()
        document = self._job_document(
            certificate_id, user_id, course_id, mint_payload, 0, QueueReason.IMMEDIATE, None, now
        )
        document.update({
            "status": JobStatus.COMPLETED.value,
            "attempts": 1,
            "round_attempts": 1,
            "blockchain_record": blockchain_record.model_dump(mode="python"),
            "completed_at": now,
        })
        with _store_errors("record_completed"):
            await self.collection.insert_one(document)

        logger.warning(f"Recorded immediate mint of certificate {certificate_id} as job {document['job_id']}")
        return document["job_id"]

    async def dequeue_next(self, worker_id: str, now: Optional[datetime] = None) -> Optional[MintJob]:
        """
        Atomically claim the highest priority due job.

        Ordering is priority descending, then creation time ascending.

        Returns:
            The claimed job, or None when nothing is due
        """
        now = now or utcnow()
        with _store_errors("dequeue"):
            document = await self.collection.find_one_and_update(
                {
                    "status": JobStatus.PENDING.value,
                    "$or": [{"next_retry_at": None}, {"next_retry_at": {"$lte": now}}],
                },
                {
                    "$set": {
                        "status": JobStatus.PROCESSING.value,
                        "worker_id": worker_id,
                        "claimed_at": now,
                        "lease_expires_at": now + timedelta(seconds=self.lease_seconds),
                        "updated_at": now,
                    },
                    "$inc": {"attempts": 1, "round_attempts": 1},
                },
                sort=CLAIM_ORDER,
                return_document=ReturnDocument.AFTER,
            )

        job = _to_job(document)
        if job:
            logger.info(f"Worker {worker_id} claimed job {job.job_id} (attempt {job.attempts})")
        return job

    async def mark_completed(self, job_id: str, blockchain_record: BlockchainRecord) -> bool:
        """Complete a job this worker is processing. Returns False if it was not processing."""
        now = utcnow()
        with _store_errors("mark_completed"):
            result = await self.collection.update_one(
                {"job_id": job_id, "status": JobStatus.PROCESSING.value},
                {"$set": {
                    "status": JobStatus.COMPLETED.value,
                    "blockchain_record": blockchain_record.model_dump(mode="python"),
                    "completed_at": now,
                    "updated_at": now,
                    "lease_expires_at": None,
                }},
            )
        if result.modified_count:
            logger.info(f"Mint job {job_id} completed, tx {blockchain_record.transaction_id}")
        return result.modified_count == 1

    async def mark_failed(self, job_id: str, error: str) -> bool:
        now = utcnow()
        with _store_errors("mark_failed"):
            result = await self.collection.update_one(
                {"job_id": job_id, "status": {"$in": [JobStatus.PROCESSING.value, JobStatus.PENDING.value]}},
                {"$set": {
                    "status": JobStatus.FAILED.value,
                    "last_error": error[:1000],
                    "updated_at": now,
                    "worker_id": None,
                    "lease_expires_at": None,
                }},
            )
        if result.modified_count:
            logger.error(f"Mint job {job_id} failed: {error}")
        return result.modified_count == 1

    async def reschedule(
        self,
        job_id: str,
        error: str,
        delay_seconds: float,
        priority_delta: int = 0,
    ) -> bool:
        """Return a processing job to pending, due after ``delay_seconds``."""
        now = utcnow()
        update = {
            "$set": {
                "status": JobStatus.PENDING.value,
                "last_error": error[:1000],
                "next_retry_at": now + timedelta(seconds=delay_seconds),
                "worker_id": None,
                "lease_expires_at": None,
                "updated_at": now,
            }
        }
        if priority_delta:
            update["$inc"] = {"priority": priority_delta}

        with _store_errors("reschedule"):
            result = await self.collection.update_one(
                {"job_id": job_id, "status": JobStatus.PROCESSING.value}, update
            )
        if result.modified_count:
            logger.warning(f"Mint job {job_id} rescheduled in {delay_seconds:.0f}s: {error}")
        return result.modified_count == 1

    async def retry_failed(self, job_ids: Optional[List[str]] = None) -> int:
        """
        Move failed jobs back to pending.

        Total attempts are kept; the per-round attempt counter restarts and
        ``retry_count`` goes up by one.

        Args:
            job_ids: Jobs to retry; None retries every failed job

        Returns:
            Number of jobs moved
        """
        query = {"status": JobStatus.FAILED.value}
        if job_ids is not None:
            query["job_id"] = {"$in": list(job_ids)}

        with _store_errors("retry_failed"):
            result = await self.collection.update_many(
                query,
                {
                    "$set": {
                        "status": JobStatus.PENDING.value,
                        "round_attempts": 0,
                        "next_retry_at": None,
                        "updated_at": utcnow(),
                    },
                    "$inc": {"retry_count": 1},
                },
            )
        if result.modified_count:
            logger.info(f"Requeued {result.modified_count} failed mint job(s)")
        return result.modified_count

    async def reclaim_stale(self, now: Optional[datetime] = None) -> int:
        """Put processing jobs whose lease expired back to pending."""
        now = now or utcnow()
        with _store_errors("reclaim_stale"):
            result = await self.collection.update_many(
                {"status": JobStatus.PROCESSING.value, "lease_expires_at": {"$lt": now}},
                {"$set": {
                    "status": JobStatus.PENDING.value,
                    "worker_id": None,
                    "lease_expires_at": None,
                    "next_retry_at": None,
                    "last_error": "worker lease expired",
                    "updated_at": now,
                }},
            )
        if result.modified_count:
            logger.warning(f"Reclaimed {result.modified_count} stale mint job(s)")
        return result.modified_count

    async def get_job(self, job_id: str) -> Optional[MintJob]:
        with _store_errors("get_job"):
            document = await self.collection.find_one({"job_id": job_id})
        return _to_job(document)

    async def jobs_for_certificate(self, certificate_id: str) -> List[MintJob]:
        with _store_errors("jobs_for_certificate"):
            cursor = self.collection.find({"certificate_id": certificate_id}).sort("created_at", DESCENDING)
            documents = await cursor.to_list(length=100)
        return [_to_job(document) for document in documents]

    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[MintJob]:
        query = {"status": status.value} if status else {}
        with _store_errors("list_jobs"):
            cursor = self.collection.find(query).sort(CLAIM_ORDER).limit(limit)
            documents = await cursor.to_list(length=limit)
        return [_to_job(document) for document in documents]

    async def completed_since(self, since: datetime) -> int:
        """Count jobs completed at or after ``since``; used for the hourly mint limit."""
        with _store_errors("completed_since"):
            return await self.collection.count_documents(
                {"status": JobStatus.COMPLETED.value, "completed_at": {"$gte": since}}
            )

    async def stats(self) -> QueueStats:
        """Counts per status plus processing time and success rate."""
        counts = {}
        with _store_errors("stats"):
            for status in JobStatus:
                counts[status.value] = await self.collection.count_documents({"status": status.value})

            cursor = self.collection.find(
                {"status": JobStatus.COMPLETED.value},
                {"claimed_at": 1, "completed_at": 1},
            ).sort("completed_at", DESCENDING).limit(500)
            completed = await cursor.to_list(length=500)

        durations = [
            (document["completed_at"] - document["claimed_at"]).total_seconds()
            for document in completed
            if document.get("claimed_at") and document.get("completed_at")
        ]
        finished = counts["completed"] + counts["failed"]

        return QueueStats(
            pending=counts["pending"],
            processing=counts["processing"],
            completed=counts["completed"],
            failed=counts["failed"],
            total=sum(counts.values()),
            avg_processing_seconds=sum(durations) / len(durations) if durations else None,
            success_rate=counts["completed"] / finished if finished else None,
        )

    async def purge(self, job_ids: List[str]) -> int:
        """Delete jobs by id. Jobs held by a worker are left alone."""
        with _store_errors("purge"):
            result = await self.collection.delete_many(
                {"job_id": {"$in": list(job_ids)}, "status": {"$ne": JobStatus.PROCESSING.value}}
            )
        logger.info(f"Purged {result.deleted_count} mint job(s)")
        return result.deleted_count

    async def cleanup(self, days_to_keep: int = 30) -> int:
        """Delete completed jobs older than ``days_to_keep``. Failed jobs are kept."""
        cutoff = utcnow() - timedelta(days=days_to_keep)
        with _store_errors("cleanup"):
            result = await self.collection.delete_many(
                {"status": JobStatus.COMPLETED.value, "completed_at": {"$lt": cutoff}}
            )
        if result.deleted_count:
            logger.info(f"Cleaned up {result.deleted_count} completed mint job(s) older than {days_to_keep} days")
        return result.deleted_count
