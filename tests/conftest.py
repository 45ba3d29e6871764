"""
Shared fixtures: an in-memory Motor database, settings, a scriptable ledger
and fake platform collaborators.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from mongomock_motor import AsyncMongoMockClient

from certanchor.blockchain.anchor_client import SIMULATED_WALLET, SimulatedAnchorClient, WalletState
from certanchor.core.config import Settings
from certanchor.core.exceptions import NetworkError
from certanchor.db.mongo import ensure_indexes
from certanchor.models.certificate import Certificate, MintPayload
from certanchor.services.container import build_services
from certanchor.services.pdf_service import ArtifactRenderer
from certanchor.services.providers import (
    CourseInfo,
    EmailSender,
    EnrollmentInfo,
    NotificationSender,
    StudentInfo,
    SubjectProvider,
)


class ScriptedAnchorClient(SimulatedAnchorClient):
    """Simulated ledger whose wallet, permissions and failures tests control."""

    def __init__(self, db, connected: bool = True, authorized: bool = True):
        super().__init__(db)
        self.connected = connected
        self.authorized = authorized
        self.unreachable = False
        self.mint_errors: List[Exception] = []
        self.permission_errors: List[Exception] = []
        self.mint_calls = 0

    async def mint(self, *args, **kwargs):
        self.mint_calls += 1
        await asyncio.sleep(0)
        if self.mint_errors:
            raise self.mint_errors.pop(0)
        return await super().mint(*args, **kwargs)

    async def verify(self, on_chain_id):
        if self.unreachable:
            raise NetworkError("ledger unreachable")
        return await super().verify(on_chain_id)

    async def can_mint(self, address=None):
        if self.permission_errors:
            raise self.permission_errors.pop(0)
        return self.authorized

    async def wallet_state(self):
        if not self.connected:
            return WalletState(connected=False, currency=self.network.currency)
        return WalletState(connected=True, address=SIMULATED_WALLET, currency=self.network.currency)


class FakeSubjects(SubjectProvider):
    def __init__(self):
        self.students: Dict[str, StudentInfo] = {}
        self.courses: Dict[str, CourseInfo] = {}
        self.enrollments: Dict[tuple, EnrollmentInfo] = {}
        self.certificates_earned: Dict[str, int] = {}

    def add_student(self, user_id: str, name: str, wallet: Optional[str] = None):
        self.students[user_id] = StudentInfo(user_id=user_id, display_name=name, email=f"{user_id}@example.com",
                                             wallet_address=wallet)

    def add_course(self, course_id: str, title: str, instructor: str = "Dr. Ada Lovelace"):
        self.courses[course_id] = CourseInfo(course_id=course_id, title=title, instructor_name=instructor)

    def enroll(self, user_id: str, course_id: str, enrolled_at: datetime, completed_at: Optional[datetime] = None):
        self.enrollments[(user_id, course_id)] = EnrollmentInfo(
            user_id=user_id, course_id=course_id, enrolled_at=enrolled_at, completed_at=completed_at
        )

    async def get_student(self, user_id):
        return self.students.get(user_id)

    async def get_course(self, course_id):
        return self.courses.get(course_id)

    async def get_enrollment(self, user_id, course_id):
        return self.enrollments.get((user_id, course_id))

    async def increment_certificates_earned(self, user_id):
        self.certificates_earned[user_id] = self.certificates_earned.get(user_id, 0) + 1


class RecordingSender(NotificationSender, EmailSender):
    def __init__(self, fail: bool = False):
        self.sent: List[tuple] = []
        self.fail = fail

    async def send(self, user_id: str, data: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("delivery down")
        self.sent.append((user_id, data))


class FakeRenderer(ArtifactRenderer):
    def __init__(self):
        self.rendered: List[str] = []

    async def render(self, certificate: Certificate) -> str:
        self.rendered.append(certificate.certificate_id)
        return f"https://docs.test/{certificate.certificate_id}.pdf"


def make_payload(**overrides) -> MintPayload:
    data = dict(
        student_name="Grace Hopper",
        course_id="c1",
        course_name="Compilers",
        instructor_name="Dr. Ada Lovelace",
        completion_date=datetime(2024, 3, 1, 12, 0, 0),
        certificate_number="CERT-202403-ABCDEF12",
        grade="A+",
        score=96,
        achievements=["Excellence Award"],
        metadata_content_hash="sha256-" + "0" * 64,
        content_hash="f" * 64,
    )
    data.update(overrides)
    return MintPayload(**data)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        certificate_secret="test-secret",
        app_url="https://certs.test",
        admin_api_key="admin-key",
        organization_name="CertAnchor Academy",
        queue_rate_limit_per_hour=0,
        mint_timeout_seconds=5,
    )


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["certanchor_test"]
    await ensure_indexes(database)
    return database


@pytest.fixture
def anchor(db):
    return ScriptedAnchorClient(db)


@pytest.fixture
def subjects():
    fake = FakeSubjects()
    fake.add_student("u1", "Grace Hopper")
    fake.add_student("u2", "Alan Turing", wallet="0x" + "ab" * 20)
    fake.add_course("c1", "Compilers")
    fake.add_course("c2", "Computability")
    now = datetime(2024, 3, 1, 12, 0, 0)
    fake.enroll("u1", "c1", enrolled_at=now - timedelta(hours=10))
    fake.enroll("u2", "c2", enrolled_at=now - timedelta(days=3), completed_at=now)
    return fake


@pytest.fixture
def notifier():
    return RecordingSender()


@pytest.fixture
def emailer():
    return RecordingSender()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def services(settings, db, anchor, subjects, notifier, emailer, renderer):
    return build_services(
        settings,
        db,
        anchor=anchor,
        renderer=renderer,
        subjects=subjects,
        notifier=notifier,
        emailer=emailer,
        worker_id="test-worker",
    )
