"""
Persistence for certificate records and their audit events.
"""

from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..db.mongo import CERTIFICATE_EVENTS, CERTIFICATES
from ..models.certificate import BlockchainRecord, Certificate
from ..utils.logger import get_logger
from ..utils.serialization import document_to_model_data
from ..utils.timeutils import utcnow

logger = get_logger("certificate_store")


def active_key(user_id: str, course_id: str) -> str:
    """Key held by the single valid certificate of a (user, course) pair."""
    return f"{user_id}:{course_id}"


def _to_certificate(document) -> Optional[Certificate]:
    data = document_to_model_data(document)
    return Certificate(**data) if data else None


class CertificateStore:
    """Reads and writes the ``certificates`` collection."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db[CERTIFICATES]
        self.events = db[CERTIFICATE_EVENTS]

    async def get(self, certificate_id: str) -> Optional[Certificate]:
        document = await self.collection.find_one({"certificate_id": certificate_id})
        return _to_certificate(document)

    async def find_valid(self, user_id: str, course_id: str) -> Optional[Certificate]:
        document = await self.collection.find_one({"active_key": active_key(user_id, course_id)})
        return _to_certificate(document)

    async def insert_or_get(self, certificate: Certificate) -> Tuple[Certificate, bool]:
        """
        Insert a new valid certificate unless the pair already has one.

        Returns:
            (certificate, created). When another request won the race the
            stored certificate is returned with ``created`` False.
        """
        document = certificate.model_dump(exclude={"id"})
        document["active_key"] = active_key(certificate.user_id, certificate.course_id)

        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError:
            existing = await self.find_valid(certificate.user_id, certificate.course_id)
            if existing is None:
                raise
            logger.info(
                f"Certificate for user {certificate.user_id} / course {certificate.course_id} "
                f"already exists: {existing.certificate_id}"
            )
            return existing, False

        return certificate.model_copy(update={"id": str(result.inserted_id)}), True

    async def update_fields(self, certificate_id: str, fields: Dict[str, Any], unset: Optional[List[str]] = None) -> bool:
        update: Dict[str, Any] = {"$set": {**fields, "updated_at": utcnow()}}
        if unset:
            update["$unset"] = {name: "" for name in unset}
        result = await self.collection.update_one({"certificate_id": certificate_id}, update)
        return result.matched_count == 1

    async def attach_blockchain_record(self, certificate_id: str, record: BlockchainRecord) -> bool:
        """Store the anchor record; it replaces any queue job reference."""
        return await self.update_fields(
            certificate_id,
            {"blockchain_record": record.model_dump(mode="python"), "queue_job_id": None},
        )

    async def set_queue_job(self, certificate_id: str, job_id: str) -> bool:
        """
        Point the certificate at its mint job.

        A worker may anchor the job before this runs; an anchored
        certificate never gets a job reference back.
        """
        result = await self.collection.update_one(
            {"certificate_id": certificate_id, "blockchain_record": None},
            {"$set": {"queue_job_id": job_id, "updated_at": utcnow()}},
        )
        return result.matched_count == 1

    async def revoke(self, certificate_id: str, reason: Optional[str]) -> Optional[Certificate]:
        """
        Mark a certificate invalid and free its (user, course) slot.

        Returns:
            The updated certificate, or None if it was not valid
        """
        now = utcnow()
        document = await self.collection.find_one_and_update(
            {"certificate_id": certificate_id, "is_valid": True},
            {"$set": {
                "is_valid": False,
                "revoked_at": now,
                "revocation_reason": reason,
                "active_key": f"revoked:{certificate_id}",
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER,
        )
        return _to_certificate(document)

    async def record_scan(self, certificate_id: str) -> Optional[int]:
        document = await self.collection.find_one_and_update(
            {"certificate_id": certificate_id},
            {"$inc": {"scan_count": 1}, "$set": {"last_scanned_at": utcnow()}},
            projection={"scan_count": 1},
            return_document=ReturnDocument.AFTER,
        )
        return document["scan_count"] if document else None

    async def list_for_user(self, user_id: str, limit: int = 100) -> List[Certificate]:
        cursor = self.collection.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit)
        documents = await cursor.to_list(length=limit)
        return [_to_certificate(document) for document in documents]

    async def stats(self) -> Dict[str, Any]:
        total = await self.collection.count_documents({})
        valid = await self.collection.count_documents({"is_valid": True})
        anchored = await self.collection.count_documents({"blockchain_record": {"$ne": None}})

        by_grade: Dict[str, int] = {}
        score_total = 0.0
        pipeline = [
            {"$match": {"is_valid": True}},
            {"$group": {"_id": "$grade", "count": {"$sum": 1}, "score_sum": {"$sum": "$score"}}},
        ]
        async for row in self.collection.aggregate(pipeline):
            by_grade[row["_id"]] = row["count"]
            score_total += row["score_sum"]

        return {
            "total": total,
            "valid": valid,
            "revoked": total - valid,
            "by_grade": by_grade,
            "average_score": round(score_total / valid, 2) if valid else 0.0,
            "anchored": anchored,
        }

    async def append_event(self, certificate_id: str, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        await self.events.insert_one({
            "certificate_id": certificate_id,
            "type": event_type,
            "data": data or {},
            "created_at": utcnow(),
        })

    async def events_for(self, certificate_id: str) -> List[Dict[str, Any]]:
        cursor = self.events.find({"certificate_id": certificate_id}, {"_id": 0}).sort("created_at", 1)
        return await cursor.to_list(length=200)
