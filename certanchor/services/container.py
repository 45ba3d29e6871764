"""
Service wiring.

Builds every component with explicit dependencies so the API, the worker
process and the tests share one construction path.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..blockchain.anchor_client import AnchorClient, build_anchor_client
from ..core.config import Settings
from ..utils.logger import get_logger
from .certificate_service import CertificateService
from .certificate_store import CertificateStore
from .content_store import ContentStore, build_content_store
from .metadata_service import MetadataService
from .mint_orchestrator import MintOrchestrator
from .mint_queue import MintQueue
from .pdf_service import ArtifactRenderer, PDFCertificateRenderer
from .providers import (
    EmailSender,
    MongoEmailSender,
    MongoNotificationSender,
    MongoSubjectProvider,
    NotificationSender,
    SubjectProvider,
)
from .qr_service import QRCodeService
from .verification_service import VerificationService

if TYPE_CHECKING:
    from ..worker import MintQueueWorker

logger = get_logger("container")


@dataclass
class ServiceContainer:
    settings: Settings
    db: AsyncIOMotorDatabase
    anchor: AnchorClient
    content_store: ContentStore
    store: CertificateStore
    queue: MintQueue
    metadata: MetadataService
    orchestrator: MintOrchestrator
    certificates: CertificateService
    verification: VerificationService
    worker: "MintQueueWorker"


def build_services(
    settings: Settings,
    db: AsyncIOMotorDatabase,
    anchor: Optional[AnchorClient] = None,
    content_store: Optional[ContentStore] = None,
    renderer: Optional[ArtifactRenderer] = None,
    subjects: Optional[SubjectProvider] = None,
    notifier: Optional[NotificationSender] = None,
    emailer: Optional[EmailSender] = None,
    worker_id: Optional[str] = None,
) -> ServiceContainer:
    """
    Construct the service graph.

    Any collaborator can be supplied to replace the default built from
    settings; tests pass fakes for the ledger and the subject provider.
    """
    from ..worker import MintQueueWorker

    anchor = anchor or build_anchor_client(settings, db)
    content_store = content_store or build_content_store(settings, db)

    store = CertificateStore(db)
    queue = MintQueue(db, lease_seconds=settings.queue_lease_seconds)
    qr_service = QRCodeService(settings.app_url)
    metadata = MetadataService(
        content_store,
        qr_service,
        settings,
        network_name=anchor.network_name,
        contract_address=anchor.contract_address,
    )
    orchestrator = MintOrchestrator(anchor, queue, settings)

    certificates = CertificateService(
        settings=settings,
        store=store,
        metadata_service=metadata,
        orchestrator=orchestrator,
        queue=queue,
        renderer=renderer or PDFCertificateRenderer(content_store, settings.app_url),
        subjects=subjects or MongoSubjectProvider(db),
        notifier=notifier or MongoNotificationSender(db),
        emailer=emailer or MongoEmailSender(db),
    )
    verification = VerificationService(store, queue, anchor, metadata)
    worker = MintQueueWorker(queue, anchor, orchestrator, store, settings, worker_id=worker_id)

    logger.info(
        f"Services ready (ledger: {anchor.network_name}, "
        f"{'simulated' if anchor.is_simulated else 'live'})"
    )

    return ServiceContainer(
        settings=settings,
        db=db,
        anchor=anchor,
        content_store=content_store,
        store=store,
        queue=queue,
        metadata=metadata,
        orchestrator=orchestrator,
        certificates=certificates,
        verification=verification,
        worker=worker,
    )
