import asyncio

import pytest
from pymongo.errors import AutoReconnect

from certanchor.core.exceptions import CertificateNotFound, NetworkError, NotEligible
from certanchor.db.mongo import CERTIFICATES
from certanchor.models.certificate import AnchorState, AssessmentPassed, CourseCompleted
from certanchor.models.queue import JobStatus
from certanchor.models.verification import ChainStatus, VerificationRequest
from certanchor.services import certificate_service
from certanchor.services.certificate_service import achievements_for, grade_for
from certanchor.services.identity import certificate_content_hash
from certanchor.services.mint_orchestrator import MintMode

from .conftest import RecordingSender


@pytest.mark.parametrize("score,grade", [
    (100, "A+"), (95, "A+"), (94.9, "A"), (90, "A"), (85, "B+"), (80, "B"),
    (75, "C+"), (70, "C"), (65, "D"), (64, "F"),
])
def test_grade_bands(score, grade):
    assert grade_for(score) == grade


def test_achievements():
    assert achievements_for(100, 600) == ["Perfect Score", "Excellence Award", "High Achiever", "Speed Learner"]
    assert achievements_for(96, None) == ["Excellence Award", "High Achiever"]
    assert achievements_for(91, 3600) == ["High Achiever"]
    assert achievements_for(82, 1799) == ["Speed Learner"]


async def test_issue_creates_certificate(services, renderer, subjects):
    result = await services.certificates.issue("u1", "c1", AssessmentPassed(score=92, time_spent_seconds=1200))

    assert result.created
    assert result.mint.mode == MintMode.IMMEDIATE

    certificate = await services.certificates.get_certificate(result.certificate_id)
    assert certificate.student_name == "Grace Hopper"
    assert certificate.course_name == "Compilers"
    assert certificate.instructor_name == "Dr. Ada Lovelace"
    assert certificate.grade == "A"
    assert certificate.achievements == ["High Achiever", "Speed Learner"]
    assert certificate.is_valid
    assert certificate.issuer == "CertAnchor Academy"
    assert certificate.content_hash == certificate_content_hash(certificate)
    assert certificate.blockchain_record.content_hash == certificate.content_hash
    assert certificate.document_url == f"https://docs.test/{result.certificate_id}.pdf"
    assert certificate.linkedin_share_url.startswith("https://www.linkedin.com/sharing/share-offsite/?url=")
    assert certificate.completion_time_hours is not None
    assert renderer.rendered == [result.certificate_id]
    assert subjects.certificates_earned == {"u1": 1}


async def test_issue_sends_notifications(services, notifier, emailer):
    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))

    assert notifier.sent[0][0] == "u1"
    assert notifier.sent[0][1]["certificate_id"] == certificate_id
    assert emailer.sent[0][1]["template"] == "certificate_issued"

    events = [event["type"] for event in await services.store.events_for(certificate_id)]
    assert events == ["certificate_generated"]


async def test_notification_failures_do_not_fail_issuance(services):
    services.certificates.notifier = RecordingSender(fail=True)
    services.certificates.emailer = RecordingSender(fail=True)

    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))

    assert (await services.store.get(certificate_id)).is_valid


async def test_render_failure_does_not_fail_issuance(services):
    class BrokenRenderer:
        async def render(self, certificate):
            raise RuntimeError("font missing")

    services.certificates.renderer = BrokenRenderer()
    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))

    certificate = await services.store.get(certificate_id)
    assert certificate.document_url is None
    assert certificate.blockchain_record is not None


async def test_second_issue_returns_existing_certificate(services, anchor):
    first = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))
    second = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=99))

    assert first == second
    assert await services.db[CERTIFICATES].count_documents({}) == 1
    assert anchor.mint_calls == 1


async def test_concurrent_issues_produce_one_certificate(services):
    results = await asyncio.gather(*(
        services.certificates.issue("u1", "c1", AssessmentPassed(score=90)) for _ in range(5)
    ))

    assert len({result.certificate_id for result in results}) == 1
    assert sum(result.created for result in results) == 1
    assert await services.db[CERTIFICATES].count_documents({"user_id": "u1", "course_id": "c1"}) == 1


async def test_low_score_is_not_eligible(services, settings):
    with pytest.raises(NotEligible):
        await services.certificates.issue("u1", "c1", AssessmentPassed(score=settings.passing_score - 1))
    assert await services.db[CERTIFICATES].count_documents({}) == 0


@pytest.mark.parametrize("user_id,course_id", [("ghost", "c1"), ("u1", "no-such-course")])
async def test_unknown_subjects_are_not_eligible(services, user_id, course_id):
    with pytest.raises(NotEligible):
        await services.certificates.issue(user_id, course_id, AssessmentPassed(score=90))


async def test_course_completion_requires_completed_enrollment(services):
    with pytest.raises(NotEligible):
        await services.certificates.issue("u1", "c1", CourseCompleted())


async def test_course_completion_certificate(services):
    result = await services.certificates.issue("u2", "c2", CourseCompleted())

    certificate = await services.certificates.get_certificate(result.certificate_id)
    assert certificate.grade == "Completed"
    assert certificate.score == 100
    assert certificate.achievements == ["Course Completed", "All Lessons Finished"]
    assert certificate.completion_time_hours == 72
    assert certificate.completion_date.year == 2024


async def test_student_wallet_receives_the_mint(services, anchor):
    result = await services.certificates.issue("u2", "c2", CourseCompleted())
    certificate = await services.certificates.get_certificate(result.certificate_id)

    on_chain = await anchor.verify(certificate.blockchain_record.on_chain_id)
    assert on_chain.owner == "0x" + "ab" * 20


async def test_revoke_frees_the_slot(services):
    first = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))

    revoked = await services.certificates.revoke(first, "issued in error")
    assert not revoked.is_valid
    assert revoked.revocation_reason == "issued in error"
    assert revoked.revoked_at is not None

    second = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))
    assert second != first
    assert (await services.store.get(first)).is_valid is False


async def test_revoke_is_one_way(services):
    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))
    await services.certificates.revoke(certificate_id, "first")

    again = await services.certificates.revoke(certificate_id, "second")

    assert not again.is_valid
    assert again.revocation_reason == "first"


async def test_revoke_unknown_certificate(services):
    with pytest.raises(CertificateNotFound):
        await services.certificates.revoke("ZZZZZZZZZZZZ", None)


async def test_blockchain_status(services, anchor):
    anchored = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))
    status = await services.certificates.blockchain_status(anchored)
    assert status.status == AnchorState.VERIFIED
    assert status.has_blockchain

    anchor.connected = False
    queued = await services.certificates.issue_for_completion("u1", "c2", AssessmentPassed(score=90))
    status = await services.certificates.blockchain_status(queued)
    assert status.status == AnchorState.QUEUED
    assert not status.has_blockchain
    assert status.queue_job["status"] == "pending"


async def test_blockchain_status_when_skipped(services, settings):
    services.certificates.orchestrator.settings = settings.model_copy(update={"blockchain_enabled": False})
    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))

    status = await services.certificates.blockchain_status(certificate_id)
    assert status.status == AnchorState.NOT_ANCHORED


async def test_retry_anchor(services, anchor, settings):
    anchored = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))
    assert (await services.certificates.retry_anchor(anchored)).action == "already_anchored"

    anchor.connected = False
    queued = await services.certificates.issue_for_completion("u1", "c2", AssessmentPassed(score=90))
    response = await services.certificates.retry_anchor(queued)
    assert response.action == "queued"

    await services.queue.dequeue_next("test-worker")
    await services.queue.mark_failed(response.job_id, "gave up")
    response = await services.certificates.retry_anchor(queued)
    assert response.action == "requeued"
    assert (await services.queue.get_job(response.job_id)).status == JobStatus.PENDING


async def test_retry_anchor_creates_manual_job(services, settings):
    services.certificates.orchestrator.settings = settings.model_copy(update={"blockchain_enabled": False})
    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))

    response = await services.certificates.retry_anchor(certificate_id)

    assert response.action == "queued"
    job = await services.queue.get_job(response.job_id)
    assert job.priority == settings.priority_manual
    assert job.queue_reason.value == "manual"
    assert (await services.store.get(certificate_id)).queue_job_id == response.job_id


async def test_share_data(services):
    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=92))

    share = await services.certificates.share_data(certificate_id)

    assert share.title == "I earned a Certificate in Compilers!"
    assert "(92%)" in share.description
    assert share.verification_url == f"https://certs.test/certificate/verify/{certificate_id}"


async def test_stats(services):
    first = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=96))
    await services.certificates.issue_for_completion("u1", "c2", AssessmentPassed(score=84))
    await services.certificates.revoke(first, None)

    stats = await services.certificates.stats()

    assert (stats.total, stats.valid, stats.revoked) == (2, 1, 1)
    assert stats.by_grade == {"B": 1}
    assert stats.average_score == 84
    assert stats.anchored == 2
    assert stats.queue["total"] == 0


async def test_user_certificates(services):
    await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=96))
    await services.certificates.issue_for_completion("u1", "c2", AssessmentPassed(score=84))

    certificates = await services.certificates.get_user_certificates("u1")
    assert {certificate.course_id for certificate in certificates} == {"c1", "c2"}


async def test_end_to_end_queued_then_verified(services, anchor, settings):
    """
    A score of 96 on a ledger that cannot be reached right now: the
    certificate is issued, its mint is queued ahead of normal jobs, and it
    verifies once a worker drains the queue.
    """
    anchor.mint_errors.append(NetworkError("rpc connection reset"))

    result = await services.certificates.issue("u1", "c1", AssessmentPassed(score=96))

    certificate = await services.certificates.get_certificate(result.certificate_id)
    assert certificate.grade == "A+"
    assert "Excellence Award" in certificate.achievements
    assert result.mint.mode == MintMode.QUEUED
    assert result.mint.priority > settings.priority_normal
    assert certificate.blockchain_record is None
    assert certificate.queue_job_id == result.mint.job_id

    pending = await services.verification.verify(VerificationRequest(certificate_id=result.certificate_id))
    assert pending.blockchain_status == ChainStatus.PENDING

    assert await services.worker.drain(10) == 1

    certificate = await services.certificates.get_certificate(result.certificate_id)
    assert certificate.blockchain_record is not None

    verified = await services.verification.verify(VerificationRequest(certificate_id=result.certificate_id))
    assert verified.blockchain_status == ChainStatus.VERIFIED
    assert verified.matches_blockchain
    assert verified.is_valid


def fail_record_writes(monkeypatch, store, times=None):
    """Make anchor record writes raise AutoReconnect, ``times`` times or forever."""
    original = store.update_fields
    failures = {"count": 0}

    async def flaky(certificate_id, fields, unset=None):
        if "blockchain_record" in fields and (times is None or failures["count"] < times):
            failures["count"] += 1
            raise AutoReconnect("primary stepped down")
        return await original(certificate_id, fields, unset)

    monkeypatch.setattr(store, "update_fields", flaky)
    monkeypatch.setattr(certificate_service, "RECORD_WRITE_DELAY_SECONDS", 0)
    return original


async def test_anchor_record_write_is_retried(services, anchor, monkeypatch):
    fail_record_writes(monkeypatch, services.store, times=1)

    result = await services.certificates.issue("u1", "c1", AssessmentPassed(score=90))

    certificate = await services.store.get(result.certificate_id)
    assert certificate.blockchain_record is not None
    assert certificate.document_url is not None
    assert (await services.certificates.retry_anchor(result.certificate_id)).action == "already_anchored"
    assert await services.worker.drain(10) == 0
    assert anchor.mint_calls == 1


async def test_unwritable_anchor_record_is_kept_as_completed_job(services, anchor, monkeypatch):
    original = fail_record_writes(monkeypatch, services.store)

    result = await services.certificates.issue("u1", "c1", AssessmentPassed(score=90))

    assert result.mint.mode == MintMode.IMMEDIATE
    assert (await services.store.get(result.certificate_id)).blockchain_record is None
    jobs = await services.queue.jobs_for_certificate(result.certificate_id)
    assert [job.status for job in jobs] == [JobStatus.COMPLETED]

    monkeypatch.setattr(services.store, "update_fields", original)
    response = await services.certificates.retry_anchor(result.certificate_id)

    assert response.action == "already_anchored"
    assert anchor.mint_calls == 1
    certificate = await services.store.get(result.certificate_id)
    assert certificate.blockchain_record.transaction_id == jobs[0].blockchain_record.transaction_id


async def test_worker_anchoring_during_render_clears_job_reference(services, anchor):
    class DrainingRenderer:
        async def render(self, certificate):
            await services.worker.drain(10)
            return f"https://docs.test/{certificate.certificate_id}.pdf"

    services.certificates.renderer = DrainingRenderer()
    anchor.mint_errors.append(NetworkError("rpc connection reset"))

    result = await services.certificates.issue("u1", "c1", AssessmentPassed(score=96))

    certificate = await services.store.get(result.certificate_id)
    assert certificate.blockchain_record is not None
    assert certificate.queue_job_id is None
    assert certificate.document_url == f"https://docs.test/{result.certificate_id}.pdf"


async def test_job_reference_is_not_set_on_anchored_certificate(services):
    certificate_id = await services.certificates.issue_for_completion("u1", "c1", AssessmentPassed(score=90))

    assert await services.store.set_queue_job(certificate_id, "late-job") is False
    assert (await services.store.get(certificate_id)).queue_job_id is None
