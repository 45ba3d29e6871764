"""
Mint orchestration: mint now if the wallet is ready, otherwise queue.

``attempt_or_queue`` never raises for ledger outcomes. The caller always
gets a ``MintOutcome`` describing what happened.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..blockchain.anchor_client import AnchorClient, MintReceipt
from ..core.config import Settings
from ..core.exceptions import AnchorError, MintFailed, NetworkError, NotAuthorized
from ..models.certificate import AnchorRecordStatus, BlockchainRecord, MintPayload
from ..models.queue import QueueReason
from ..utils.logger import get_logger
from ..utils.timeutils import epoch_seconds, utcnow
from .mint_queue import MintQueue

logger = get_logger("mint_orchestrator")


class MintMode(str, Enum):
    IMMEDIATE = "immediate"
    QUEUED = "queued"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class MintOutcome:
    mode: MintMode
    blockchain_record: Optional[BlockchainRecord] = None
    job_id: Optional[str] = None
    reason: Optional[QueueReason] = None
    priority: Optional[int] = None
    error: Optional[str] = None


def build_blockchain_record(receipt: MintReceipt, payload: MintPayload, anchor: AnchorClient) -> BlockchainRecord:
    """Turn a mint receipt into the record stored on the certificate."""
    return BlockchainRecord(
        content_hash=payload.content_hash,
        block_number=receipt.block_number,
        transaction_id=receipt.transaction_id,
        on_chain_id=receipt.on_chain_id,
        network_id=anchor.network_name,
        contract_address=anchor.contract_address,
        anchored_at=utcnow(),
        explorer_url=anchor.explorer_url(receipt.transaction_id),
        status=AnchorRecordStatus.CONFIRMED,
    )


async def mint_payload(anchor: AnchorClient, payload: MintPayload, recipient: str) -> MintReceipt:
    return await anchor.mint(
        recipient_address=recipient,
        course_id=payload.course_id,
        course_name=payload.course_name,
        completion_epoch=epoch_seconds(payload.completion_date),
        metadata_content_hash=payload.metadata_content_hash,
    )


class MintOrchestrator:
    """Chooses between an immediate mint and a queued one."""

    def __init__(self, anchor: AnchorClient, queue: MintQueue, settings: Settings):
        self.anchor = anchor
        self.queue = queue
        self.settings = settings

    def priority_for(self, reason: QueueReason, score: float) -> int:
        """
        Queue priority for a job.

        Base priority depends on why the job is queued; high scores get a
        boost so standout learners are anchored first.
        """
        base = {
            QueueReason.WALLET_NOT_READY: self.settings.priority_wallet_not_ready,
            QueueReason.NOT_AUTHORIZED: self.settings.priority_not_authorized,
            QueueReason.MANUAL: self.settings.priority_manual,
        }.get(reason, self.settings.priority_normal)

        if score >= self.settings.priority_high_score_threshold:
            base += self.settings.priority_high_score_boost
        return base

    def recipient_for(self, payload: MintPayload, wallet_address: Optional[str]) -> Optional[str]:
        """Student wallet if known, else the configured default, else the issuer wallet holds it."""
        return payload.recipient_address or self.settings.default_recipient_address or wallet_address

    async def _queue(
        self,
        certificate_id: str,
        user_id: str,
        course_id: str,
        payload: MintPayload,
        score: float,
        reason: QueueReason,
        error: Optional[str] = None,
    ) -> MintOutcome:
        priority = self.priority_for(reason, score)
        job_id = await self.queue.enqueue(
            certificate_id, user_id, course_id, payload,
            priority=priority, reason=reason, last_error=error,
        )
        return MintOutcome(mode=MintMode.QUEUED, job_id=job_id, reason=reason, priority=priority, error=error)

    async def attempt_or_queue(
        self,
        certificate_id: str,
        user_id: str,
        course_id: str,
        payload: MintPayload,
        score: float,
    ) -> MintOutcome:
        """
        Anchor a certificate now, or leave a job for the worker.

        Args:
            certificate_id: Certificate being anchored
            user_id: Owner of the certificate
            course_id: Course the certificate is for
            payload: Mint parameters
            score: Score used for priority

        Returns:
            MintOutcome with mode immediate, queued, skipped or failed
        """
        if not self.settings.blockchain_enabled:
            return MintOutcome(mode=MintMode.SKIPPED)

        try:
            wallet = await self.anchor.wallet_state()
        except AnchorError as e:
            return await self._queue(
                certificate_id, user_id, course_id, payload, score,
                QueueReason.WALLET_NOT_READY, str(e),
            )

        if not wallet.connected:
            return await self._queue(
                certificate_id, user_id, course_id, payload, score,
                QueueReason.WALLET_NOT_READY, "wallet not connected",
            )

        try:
            can_mint = await self.anchor.can_mint()
        except AnchorError as e:
            logger.warning(f"Mint permission check for certificate {certificate_id} failed ({e.__class__.__name__}), queueing")
            return await self._queue(
                certificate_id, user_id, course_id, payload, score, QueueReason.MINT_FAILED, str(e)
            )

        if not can_mint:
            return await self._queue(
                certificate_id, user_id, course_id, payload, score,
                QueueReason.NOT_AUTHORIZED, "wallet cannot mint",
            )

        recipient = self.recipient_for(payload, wallet.address)
        if not recipient:
            return await self._queue(
                certificate_id, user_id, course_id, payload, score,
                QueueReason.WALLET_NOT_READY, "no recipient address",
            )

        try:
            receipt = await asyncio.wait_for(
                mint_payload(self.anchor, payload, recipient),
                timeout=self.settings.mint_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = NetworkError(f"mint did not finish within {self.settings.mint_timeout_seconds}s")
            logger.warning(f"Immediate mint for certificate {certificate_id} timed out, queueing")
            return await self._queue(
                certificate_id, user_id, course_id, payload, score, QueueReason.MINT_FAILED, str(error)
            )
        except NotAuthorized as e:
            return await self._queue(
                certificate_id, user_id, course_id, payload, score, QueueReason.NOT_AUTHORIZED, str(e)
            )
        except MintFailed as e:
            if e.permanent:
                logger.error(f"Mint for certificate {certificate_id} failed permanently: {e}")
                return MintOutcome(mode=MintMode.FAILED, error=str(e))
            return await self._queue(
                certificate_id, user_id, course_id, payload, score, QueueReason.MINT_FAILED, str(e)
            )
        except AnchorError as e:
            logger.warning(f"Immediate mint for certificate {certificate_id} failed ({e.__class__.__name__}), queueing")
            return await self._queue(
                certificate_id, user_id, course_id, payload, score, QueueReason.MINT_FAILED, str(e)
            )

        logger.info(f"Certificate {certificate_id} minted immediately, tx {receipt.transaction_id}")
        return MintOutcome(
            mode=MintMode.IMMEDIATE,
            blockchain_record=build_blockchain_record(receipt, payload, self.anchor),
        )
