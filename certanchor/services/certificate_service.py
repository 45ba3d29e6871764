"""
Certificate lifecycle: issuance, revocation, anchor status and statistics.

Issuance pipeline:
    eligibility -> identity -> metadata upload -> claim the (user, course)
    slot -> mint or queue -> persist anchor -> render document -> notify

Anchoring and rendering never fail an issuance; a certificate whose
anchor is pending is still a valid certificate.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import quote

from pymongo.errors import PyMongoError

from ..core.config import Settings
from ..core.exceptions import CertificateNotFound, NotEligible, QueueStoreError
from ..models.certificate import (
    AnchorState,
    AnchorStatusResponse,
    AssessmentPassed,
    Certificate,
    CertificateStats,
    CompletionTrigger,
    CourseCompleted,
    MintPayload,
    RetryAnchorResponse,
    ShareData,
)
from ..models.queue import JobStatus, QueueReason
from ..utils.logger import get_logger
from ..utils.timeutils import truncate_to_millis, utcnow
from .certificate_store import CertificateStore
from .identity import new_certificate_id, new_certificate_number, verification_code
from .metadata_service import CertificateFields, MetadataService
from .mint_orchestrator import MintOrchestrator, MintOutcome
from .mint_queue import MintQueue
from .pdf_service import ArtifactRenderer
from .providers import EmailSender, NotificationSender, SubjectProvider

logger = get_logger("certificate_service")

RECORD_WRITE_ATTEMPTS = 3
RECORD_WRITE_DELAY_SECONDS = 0.2

LINKEDIN_SHARE_URL = "https://www.linkedin.com/sharing/share-offsite/?url="

GRADE_BANDS = [
    (95, "A+"),
    (90, "A"),
    (85, "B+"),
    (80, "B"),
    (75, "C+"),
    (70, "C"),
    (65, "D"),
]

COURSE_COMPLETION_GRADE = "Completed"
COURSE_COMPLETION_ACHIEVEMENTS = ["Course Completed", "All Lessons Finished"]


def grade_for(score: float) -> str:
    for threshold, grade in GRADE_BANDS:
        if score >= threshold:
            return grade
    return "F"


def achievements_for(score: float, time_spent_seconds: Optional[int], speed_threshold: int = 1800) -> List[str]:
    achievements = []
    if score == 100:
        achievements.append("Perfect Score")
    if score >= 95:
        achievements.append("Excellence Award")
    if score >= 90:
        achievements.append("High Achiever")
    if time_spent_seconds is not None and time_spent_seconds < speed_threshold:
        achievements.append("Speed Learner")
    return achievements


@dataclass
class IssuanceResult:
    certificate_id: str
    created: bool
    mint: Optional[MintOutcome] = None


class CertificateService:
    """Coordinates certificate issuance and lifecycle operations."""

    def __init__(
        self,
        settings: Settings,
        store: CertificateStore,
        metadata_service: MetadataService,
        orchestrator: MintOrchestrator,
        queue: MintQueue,
        renderer: ArtifactRenderer,
        subjects: SubjectProvider,
        notifier: NotificationSender,
        emailer: EmailSender,
    ):
        self.settings = settings
        self.store = store
        self.metadata_service = metadata_service
        self.orchestrator = orchestrator
        self.queue = queue
        self.renderer = renderer
        self.subjects = subjects
        self.notifier = notifier
        self.emailer = emailer

    def share_url(self, certificate_id: str) -> str:
        return f"{self.settings.app_url.rstrip('/')}/certificate/share/{certificate_id}"

    def linkedin_url(self, certificate_id: str) -> str:
        return LINKEDIN_SHARE_URL + quote(self.share_url(certificate_id), safe="")

    async def issue_for_completion(self, user_id: str, course_id: str, trigger: CompletionTrigger) -> str:
        """
        Issue a certificate for a completed course or passed assessment.

        Args:
            user_id: Learner id
            course_id: Course id
            trigger: AssessmentPassed or CourseCompleted

        Returns:
            The certificate id; the existing one if the pair already has a
            valid certificate

        Raises:
            NotEligible: If the completion does not qualify
            MetadataUploadFailed: If metadata cannot be stored
        """
        result = await self.issue(user_id, course_id, trigger)
        return result.certificate_id

    async def issue(self, user_id: str, course_id: str, trigger: CompletionTrigger) -> IssuanceResult:
        """Same as ``issue_for_completion`` but also reports what happened to the mint."""
        existing = await self.store.find_valid(user_id, course_id)
        if existing:
            logger.info(f"User {user_id} already holds certificate {existing.certificate_id} for course {course_id}")
            return IssuanceResult(certificate_id=existing.certificate_id, created=False)

        student = await self.subjects.get_student(user_id)
        if student is None:
            raise NotEligible(f"Unknown user {user_id}")
        course = await self.subjects.get_course(course_id)
        if course is None:
            raise NotEligible(f"Unknown course {course_id}")
        enrollment = await self.subjects.get_enrollment(user_id, course_id)

        now = utcnow()

        if isinstance(trigger, AssessmentPassed):
            if trigger.score < self.settings.passing_score:
                raise NotEligible(
                    f"Score {trigger.score} is below the passing score {self.settings.passing_score}"
                )
            score = trigger.score
            grade = grade_for(score)
            achievements = achievements_for(score, trigger.time_spent_seconds, self.settings.speed_learner_seconds)
            completion_date = now
        elif isinstance(trigger, CourseCompleted):
            if enrollment is None or enrollment.completed_at is None:
                raise NotEligible(f"Course {course_id} is not completed by user {user_id}")
            score = 100
            grade = COURSE_COMPLETION_GRADE
            achievements = list(COURSE_COMPLETION_ACHIEVEMENTS)
            completion_date = truncate_to_millis(enrollment.completed_at)
        else:
            raise NotEligible(f"Unsupported completion trigger: {trigger!r}")

        completion_time_hours = None
        if enrollment and enrollment.enrolled_at:
            finished_at = truncate_to_millis(enrollment.completed_at) if enrollment.completed_at else completion_date
            elapsed = finished_at - truncate_to_millis(enrollment.enrolled_at)
            completion_time_hours = max(int(elapsed.total_seconds() // 3600), 0)

        certificate_id = new_certificate_id(now)
        certificate_number = new_certificate_number(now)
        code = verification_code(certificate_id, self.settings.certificate_secret)

        packaged = await self.metadata_service.package(CertificateFields(
            certificate_id=certificate_id,
            certificate_number=certificate_number,
            verification_code=code,
            student_name=student.display_name,
            course_name=course.title,
            instructor_name=course.instructor_name,
            completion_date=completion_date,
            grade=grade,
            score=score,
            achievements=achievements,
            issued_at=now,
        ))

        certificate = Certificate(
            certificate_id=certificate_id,
            certificate_number=certificate_number,
            verification_code=code,
            user_id=user_id,
            course_id=course_id,
            student_name=student.display_name,
            course_name=course.title,
            instructor_name=course.instructor_name,
            completion_date=completion_date,
            grade=grade,
            score=score,
            achievements=achievements,
            completion_time_hours=completion_time_hours,
            qr_payload=packaged.qr_payload,
            qr_code_image=packaged.qr_code_image,
            metadata_content_hash=packaged.metadata_content_hash,
            content_hash=packaged.content_hash,
            linkedin_share_url=self.linkedin_url(certificate_id),
            issuer=self.metadata_service.issuer,
            created_at=now,
            updated_at=now,
        )

        certificate, created = await self.store.insert_or_get(certificate)
        if not created:
            return IssuanceResult(certificate_id=certificate.certificate_id, created=False)

        payload = MintPayload(
            recipient_address=student.wallet_address,
            student_name=certificate.student_name,
            course_id=course_id,
            course_name=certificate.course_name,
            instructor_name=certificate.instructor_name,
            completion_date=completion_date,
            certificate_number=certificate_number,
            grade=grade,
            score=score,
            achievements=achievements,
            metadata_content_hash=packaged.metadata_content_hash,
            content_hash=packaged.content_hash,
        )
        outcome = await self.orchestrator.attempt_or_queue(certificate_id, user_id, course_id, payload, score)
        await self._record_outcome(certificate, payload, outcome)

        try:
            document_url = await self.renderer.render(certificate)
            await self.store.update_fields(certificate_id, {"document_url": document_url})
            certificate.document_url = document_url
        except Exception as e:
            logger.error(f"Rendering certificate {certificate_id} failed: {e}")

        logger.info(
            f"Issued certificate {certificate_id} to user {user_id} for course {course_id} "
            f"(grade {grade}, anchor {outcome.mode.value})"
        )

        await self._after_issue(certificate, outcome)
        return IssuanceResult(certificate_id=certificate_id, created=True, mint=outcome)

    async def _record_outcome(self, certificate: Certificate, payload: MintPayload, outcome: MintOutcome) -> None:
        """
        Store the anchor record or the queue job id as soon as the mint returns.

        An immediate mint already exists on the ledger, so its record is
        written with retries and, as a last resort, kept as a completed
        queue job. A certificate that loses its record would be minted again.
        """
        certificate_id = certificate.certificate_id

        if outcome.job_id:
            try:
                if await self.store.set_queue_job(certificate_id, outcome.job_id):
                    certificate.queue_job_id = outcome.job_id
            except PyMongoError as e:
                logger.error(f"Could not link certificate {certificate_id} to job {outcome.job_id}: {e}")
            return

        record = outcome.blockchain_record
        if record is None:
            return

        for attempt in range(1, RECORD_WRITE_ATTEMPTS + 1):
            try:
                await self.store.attach_blockchain_record(certificate_id, record)
                certificate.blockchain_record = record
                return
            except PyMongoError as e:
                logger.warning(
                    f"Storing anchor record of certificate {certificate_id} failed "
                    f"(attempt {attempt}/{RECORD_WRITE_ATTEMPTS}): {e}"
                )
                if attempt < RECORD_WRITE_ATTEMPTS:
                    await asyncio.sleep(RECORD_WRITE_DELAY_SECONDS * attempt)

        certificate.blockchain_record = record
        try:
            await self.queue.record_completed(
                certificate_id, certificate.user_id, certificate.course_id, payload, record
            )
        except QueueStoreError as e:
            logger.error(
                f"Anchor record of certificate {certificate_id} (tx {record.transaction_id}) "
                f"could not be stored anywhere: {e}"
            )

    async def _after_issue(self, certificate: Certificate, outcome: MintOutcome) -> None:
        """Best-effort side effects; failures are logged only."""
        try:
            await self.subjects.increment_certificates_earned(certificate.user_id)
        except Exception as e:
            logger.error(f"Failed to update stats for user {certificate.user_id}: {e}")

        try:
            await self.notifier.send(certificate.user_id, {
                "type": "certificate",
                "title": "Congratulations! You earned a certificate",
                "message": f'You have successfully completed "{certificate.course_name}".',
                "certificate_id": certificate.certificate_id,
                "course_id": certificate.course_id,
            })
        except Exception as e:
            logger.error(f"Failed to send certificate notification: {e}")

        try:
            await self.emailer.send(certificate.user_id, {
                "template": "certificate_issued",
                "certificate_id": certificate.certificate_id,
                "course_name": certificate.course_name,
                "document_url": certificate.document_url,
                "linkedin_share_url": certificate.linkedin_share_url,
            })
        except Exception as e:
            logger.error(f"Failed to send certificate email: {e}")

        try:
            await self.store.append_event(certificate.certificate_id, "certificate_generated", {
                "user_id": certificate.user_id,
                "course_id": certificate.course_id,
                "grade": certificate.grade,
                "score": certificate.score,
                "anchor_mode": outcome.mode.value,
                "queue_job_id": outcome.job_id,
            })
        except Exception as e:
            logger.error(f"Failed to log certificate event: {e}")

    async def get_certificate(self, certificate_id: str) -> Certificate:
        certificate = await self.store.get(certificate_id)
        if certificate is None:
            raise CertificateNotFound(certificate_id)
        return certificate

    async def get_user_certificates(self, user_id: str) -> List[Certificate]:
        return await self.store.list_for_user(user_id)

    async def revoke(self, certificate_id: str, reason: Optional[str] = None) -> Certificate:
        """
        Revoke a certificate. One-way; the on-chain anchor is left untouched.

        Raises:
            CertificateNotFound: If the certificate does not exist
        """
        revoked = await self.store.revoke(certificate_id, reason)
        if revoked is None:
            # Unknown, or already revoked
            certificate = await self.get_certificate(certificate_id)
            return certificate

        await self.store.append_event(certificate_id, "certificate_revoked", {"reason": reason})
        logger.info(f"Certificate {certificate_id} revoked: {reason or 'no reason given'}")
        return revoked

    async def blockchain_status(self, certificate_id: str) -> AnchorStatusResponse:
        certificate = await self.get_certificate(certificate_id)

        if certificate.blockchain_record:
            return AnchorStatusResponse(
                certificate_id=certificate_id,
                has_blockchain=True,
                status=AnchorState.VERIFIED,
                blockchain=certificate.blockchain_record,
            )

        jobs = await self.queue.jobs_for_certificate(certificate_id)
        if not jobs:
            return AnchorStatusResponse(
                certificate_id=certificate_id, has_blockchain=False, status=AnchorState.NOT_ANCHORED
            )

        job = jobs[0]
        state = {
            JobStatus.PENDING: AnchorState.QUEUED,
            JobStatus.PROCESSING: AnchorState.PROCESSING,
            JobStatus.FAILED: AnchorState.FAILED,
            JobStatus.COMPLETED: AnchorState.VERIFIED,
        }[job.status]

        return AnchorStatusResponse(
            certificate_id=certificate_id,
            has_blockchain=job.status == JobStatus.COMPLETED,
            status=state,
            blockchain=job.blockchain_record,
            queue_job={
                "job_id": job.job_id,
                "status": job.status.value,
                "priority": job.priority,
                "attempts": job.attempts,
                "retry_count": job.retry_count,
                "last_error": job.last_error,
                "next_retry_at": job.next_retry_at,
                "created_at": job.created_at,
            },
        )

    async def retry_anchor(self, certificate_id: str) -> RetryAnchorResponse:
        """
        Manually push a certificate towards the ledger.

        Confirmed anchors are never minted again. A failed job is retried;
        a certificate with no job gets a new manual one.
        """
        certificate = await self.get_certificate(certificate_id)

        if certificate.blockchain_record:
            return RetryAnchorResponse(certificate_id=certificate_id, action="already_anchored")

        if not self.settings.blockchain_enabled:
            return RetryAnchorResponse(certificate_id=certificate_id, action="skipped")

        jobs = await self.queue.jobs_for_certificate(certificate_id)
        for job in jobs:
            if job.status == JobStatus.COMPLETED and job.blockchain_record:
                await self.store.attach_blockchain_record(certificate_id, job.blockchain_record)
                return RetryAnchorResponse(certificate_id=certificate_id, action="already_anchored", job_id=job.job_id)
            if job.status in (JobStatus.PENDING, JobStatus.PROCESSING):
                return RetryAnchorResponse(certificate_id=certificate_id, action="queued", job_id=job.job_id)

        failed = [job for job in jobs if job.status == JobStatus.FAILED]
        if failed:
            await self.queue.retry_failed([failed[0].job_id])
            return RetryAnchorResponse(certificate_id=certificate_id, action="requeued", job_id=failed[0].job_id)

        payload = MintPayload(
            student_name=certificate.student_name,
            course_id=certificate.course_id,
            course_name=certificate.course_name,
            instructor_name=certificate.instructor_name,
            completion_date=certificate.completion_date,
            certificate_number=certificate.certificate_number,
            grade=certificate.grade,
            score=certificate.score,
            achievements=certificate.achievements,
            metadata_content_hash=certificate.metadata_content_hash,
            content_hash=certificate.content_hash,
        )
        student = await self.subjects.get_student(certificate.user_id)
        if student:
            payload.recipient_address = student.wallet_address

        job_id = await self.queue.enqueue(
            certificate_id,
            certificate.user_id,
            certificate.course_id,
            payload,
            priority=self.orchestrator.priority_for(QueueReason.MANUAL, certificate.score),
            reason=QueueReason.MANUAL,
        )
        await self.store.set_queue_job(certificate_id, job_id)
        return RetryAnchorResponse(certificate_id=certificate_id, action="queued", job_id=job_id)

    async def share_data(self, certificate_id: str) -> ShareData:
        certificate = await self.get_certificate(certificate_id)
        return ShareData(
            title=f"I earned a Certificate in {certificate.course_name}!",
            description=(
                f'I successfully completed "{certificate.course_name}" with a grade of '
                f"{certificate.grade} ({certificate.score:g}%) at {certificate.issuer}."
            ),
            image_url=certificate.document_url,
            verification_url=self.metadata_service.qr_service.verification_url(certificate_id),
            linkedin_share_url=certificate.linkedin_share_url or self.linkedin_url(certificate_id),
        )

    async def stats(self) -> CertificateStats:
        data = await self.store.stats()
        queue_stats = await self.queue.stats()
        return CertificateStats(**data, queue=queue_stats.model_dump())
