"""
Mint queue worker: claims queued mints and pushes them to the ledger.

Can run as:
  1. Background task inside the API process (RUN_EMBEDDED_WORKER=true)
  2. Standalone worker process: python -m certanchor.worker

Several workers may run against the same database; the queue's atomic
claim keeps each job with one worker.
"""

import asyncio
import socket
import uuid
from datetime import timedelta
from typing import Optional

from .blockchain.anchor_client import AnchorClient
from .core.config import Settings
from .core.exceptions import AnchorError, MintFailed, NotAuthorized
from .models.queue import MintJob
from .services.certificate_store import CertificateStore
from .services.mint_orchestrator import MintOrchestrator, build_blockchain_record, mint_payload
from .services.mint_queue import MintQueue
from .utils.logger import get_logger, setup_logger
from .utils.timeutils import utcnow

logger = get_logger("worker")


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:6]}"


class MintQueueWorker:
    """Processes mint jobs one at a time."""

    def __init__(
        self,
        queue: MintQueue,
        anchor: AnchorClient,
        orchestrator: MintOrchestrator,
        store: CertificateStore,
        settings: Settings,
        worker_id: Optional[str] = None,
    ):
        self.queue = queue
        self.anchor = anchor
        self.orchestrator = orchestrator
        self.store = store
        self.settings = settings
        self.worker_id = worker_id or default_worker_id()
        self._last_cleanup = None

    def backoff_seconds(self, round_attempts: int) -> float:
        """Exponential backoff: retry_delay * 2^(attempt - 1)."""
        return self.settings.queue_retry_delay_seconds * (2 ** max(round_attempts - 1, 0))

    async def rate_limited(self) -> bool:
        limit = self.settings.queue_rate_limit_per_hour
        if not limit:
            return False
        minted = await self.queue.completed_since(utcnow() - timedelta(hours=1))
        if minted >= limit:
            logger.warning(f"Hourly mint limit reached ({minted}/{limit}), pausing")
            return True
        return False

    async def _retry_later(self, job: MintJob, error: str, priority_delta: int = 0) -> None:
        if job.round_attempts >= self.settings.queue_max_attempts:
            await self.queue.mark_failed(job.job_id, f"{error} (gave up after {job.round_attempts} attempts)")
            return
        await self.queue.reschedule(job.job_id, error, self.backoff_seconds(job.round_attempts), priority_delta)

    async def _process(self, job: MintJob) -> None:
        certificate = await self.store.get(job.certificate_id)
        if certificate is None:
            await self.queue.mark_failed(job.job_id, "certificate no longer exists")
            return

        # Already anchored by another path; finishing the job must not mint twice
        if certificate.blockchain_record:
            await self.queue.mark_completed(job.job_id, certificate.blockchain_record)
            return

        wallet = await self.anchor.wallet_state()
        if not wallet.connected:
            await self._retry_later(job, "wallet not connected")
            return

        try:
            can_mint = await self.anchor.can_mint()
        except AnchorError as e:
            await self._retry_later(job, f"{e.__class__.__name__}: {e}")
            return

        if not can_mint:
            await self._retry_later(job, "wallet cannot mint", -self.settings.priority_not_authorized_penalty)
            return

        recipient = self.orchestrator.recipient_for(job.mint_payload, wallet.address)
        if not recipient:
            await self._retry_later(job, "no recipient address")
            return

        try:
            receipt = await mint_payload(self.anchor, job.mint_payload, recipient)
        except NotAuthorized as e:
            await self._retry_later(job, str(e), -self.settings.priority_not_authorized_penalty)
            return
        except MintFailed as e:
            if e.permanent:
                await self.queue.mark_failed(job.job_id, str(e))
            else:
                await self._retry_later(job, str(e))
            return
        except AnchorError as e:
            await self._retry_later(job, f"{e.__class__.__name__}: {e}")
            return

        record = build_blockchain_record(receipt, job.mint_payload, self.anchor)
        if not await self.queue.mark_completed(job.job_id, record):
            logger.error(f"Job {job.job_id} was minted (tx {receipt.transaction_id}) but is no longer held by {self.worker_id}")

        await self.store.attach_blockchain_record(job.certificate_id, record)
        await self.store.append_event(job.certificate_id, "certificate_anchored", {
            "job_id": job.job_id,
            "transaction_id": record.transaction_id,
            "block_number": record.block_number,
        })

    async def process_next(self) -> Optional[MintJob]:
        """
        Claim and process one job.

        Returns:
            The job that was claimed, or None if nothing was due
        """
        await self.queue.reclaim_stale()

        if await self.rate_limited():
            return None

        job = await self.queue.dequeue_next(self.worker_id)
        if job is None:
            return None

        try:
            await self._process(job)
        except Exception as e:
            logger.error(f"Unexpected error processing job {job.job_id}: {e}", exc_info=True)
            await self._retry_later(job, f"unexpected error: {e}")

        return job

    async def drain(self, max_jobs: int = 10) -> int:
        """Process due jobs until none are left or ``max_jobs`` were handled."""
        processed = 0
        while processed < max_jobs:
            job = await self.process_next()
            if job is None:
                break
            processed += 1
        return processed

    async def run_cleanup_if_due(self) -> None:
        interval = timedelta(hours=self.settings.queue_cleanup_interval_hours)
        now = utcnow()
        if self._last_cleanup and now - self._last_cleanup < interval:
            return
        self._last_cleanup = now
        await self.queue.cleanup(self.settings.queue_cleanup_days)

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Poll the queue until ``stop_event`` is set.

        Uses adaptive polling: starts at the poll interval, backs off to the
        max idle interval while the queue is empty, resets when a job is found.
        """
        poll_interval = self.settings.queue_poll_interval
        max_idle_interval = self.settings.queue_max_idle_interval
        current_interval = poll_interval
        stop_event = stop_event or asyncio.Event()

        logger.info(f"Mint worker {self.worker_id} started (poll {poll_interval}s)")

        while not stop_event.is_set():
            try:
                await self.run_cleanup_if_due()
                job = await self.process_next()
                if job:
                    current_interval = poll_interval
                else:
                    current_interval = min(current_interval * 1.5, max_idle_interval)
            except Exception as e:
                logger.error(f"Mint worker poll error: {e}")
                current_interval = max_idle_interval

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=current_interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Mint worker {self.worker_id} stopped")


async def main() -> None:
    """Run the worker as a standalone process."""
    from .core.config import get_settings
    from .db.mongo import connect_to_mongo, ensure_indexes
    from .services.container import build_services

    settings = get_settings()
    setup_logger(level=settings.log_level)
    settings.validate_startup()

    handle = await connect_to_mongo(settings)
    try:
        await ensure_indexes(handle.db)
        services = build_services(settings, handle.db)
        await services.worker.run_forever()
    finally:
        handle.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
