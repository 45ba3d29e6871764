"""
External collaborators: subject data providers and notification senders.

The MongoDB implementations read the platform's ``users``, ``courses`` and
``enrollments`` collections and write to ``notifications`` and
``mail_outbox``, where the platform's delivery jobs pick messages up.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..utils.logger import get_logger
from ..utils.timeutils import utcnow

logger = get_logger("providers")


@dataclass
class StudentInfo:
    user_id: str
    display_name: str
    email: Optional[str] = None
    wallet_address: Optional[str] = None


@dataclass
class CourseInfo:
    course_id: str
    title: str
    instructor_name: str


@dataclass
class EnrollmentInfo:
    user_id: str
    course_id: str
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SubjectProvider(ABC):
    """Read-only lookups of student, course and enrollment data."""

    @abstractmethod
    async def get_student(self, user_id: str) -> Optional[StudentInfo]:
        ...

    @abstractmethod
    async def get_course(self, course_id: str) -> Optional[CourseInfo]:
        ...

    @abstractmethod
    async def get_enrollment(self, user_id: str, course_id: str) -> Optional[EnrollmentInfo]:
        ...

    async def increment_certificates_earned(self, user_id: str) -> None:
        """Bump the learner's certificate counter, where the platform keeps one."""


class NotificationSender(ABC):
    @abstractmethod
    async def send(self, user_id: str, data: Dict[str, Any]) -> None:
        ...


class EmailSender(ABC):
    @abstractmethod
    async def send(self, user_id: str, data: Dict[str, Any]) -> None:
        ...


def _id_query(value: str) -> Dict[str, Any]:
    if ObjectId.is_valid(value):
        return {"_id": {"$in": [ObjectId(value), value]}}
    return {"_id": value}


class MongoSubjectProvider(SubjectProvider):
    """Reads subject data from the platform's MongoDB collections."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_student(self, user_id: str) -> Optional[StudentInfo]:
        user = await self.db.users.find_one(_id_query(user_id))
        if not user:
            return None

        display_name = (
            user.get("display_name")
            or user.get("full_name")
            or user.get("name")
            or (user.get("email") or "").split("@")[0]
            or "Student"
        )
        return StudentInfo(
            user_id=user_id,
            display_name=display_name,
            email=user.get("email"),
            wallet_address=user.get("wallet_address"),
        )

    async def get_course(self, course_id: str) -> Optional[CourseInfo]:
        course = await self.db.courses.find_one(_id_query(course_id))
        if not course:
            return None
        return CourseInfo(
            course_id=course_id,
            title=course.get("title") or course.get("name") or course_id,
            instructor_name=course.get("instructor_name") or course.get("instructor") or "Instructor",
        )

    async def get_enrollment(self, user_id: str, course_id: str) -> Optional[EnrollmentInfo]:
        enrollment = await self.db.enrollments.find_one({"user_id": user_id, "course_id": course_id})
        if not enrollment:
            return None
        return EnrollmentInfo(
            user_id=user_id,
            course_id=course_id,
            enrolled_at=enrollment.get("enrolled_at"),
            completed_at=enrollment.get("completed_at"),
        )

    async def increment_certificates_earned(self, user_id: str) -> None:
        await self.db.users.update_one(
            _id_query(user_id),
            {"$inc": {"stats.certificates_earned": 1}, "$set": {"updated_at": utcnow()}},
        )


class MongoNotificationSender(NotificationSender):
    """Writes in-app notifications to the ``notifications`` collection."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.notifications

    async def send(self, user_id: str, data: Dict[str, Any]) -> None:
        await self.collection.insert_one({
            "user_id": user_id,
            "type": data.get("type", "certificate"),
            "title": data.get("title"),
            "message": data.get("message"),
            "data": data,
            "read": False,
            "created_at": utcnow(),
        })


class MongoEmailSender(EmailSender):
    """Queues emails in ``mail_outbox`` for the platform's mailer."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.mail_outbox

    async def send(self, user_id: str, data: Dict[str, Any]) -> None:
        await self.collection.insert_one({
            "user_id": user_id,
            "template": data.get("template", "certificate_issued"),
            "data": data,
            "status": "queued",
            "created_at": utcnow(),
        })
