import pytest

from certanchor.core.exceptions import InsufficientFunds, MintFailed, NetworkError, NotAuthorized
from certanchor.models.queue import QueueReason
from certanchor.services.mint_orchestrator import MintMode, MintOrchestrator
from certanchor.services.mint_queue import MintQueue

from .conftest import make_payload


@pytest.fixture
def queue(db):
    return MintQueue(db)


@pytest.fixture
def orchestrator(anchor, queue, settings):
    return MintOrchestrator(anchor, queue, settings)


async def attempt(orchestrator, payload=None, score=85):
    return await orchestrator.attempt_or_queue("CERT00000001", "u1", "c1", payload or make_payload(score=score), score)


async def test_immediate_mint(orchestrator, anchor):
    outcome = await attempt(orchestrator)

    assert outcome.mode == MintMode.IMMEDIATE
    assert outcome.job_id is None
    record = outcome.blockchain_record
    assert record.on_chain_id == "1"
    assert record.content_hash == "f" * 64
    assert record.network_id == anchor.network_name
    assert record.explorer_url.endswith(record.transaction_id)


async def test_network_error_queues_with_payload_intact(orchestrator, anchor, queue):
    anchor.mint_errors.append(NetworkError("rpc unreachable"))
    payload = make_payload(score=85, recipient_address="0x" + "cd" * 20)

    outcome = await attempt(orchestrator, payload)

    assert outcome.mode == MintMode.QUEUED
    assert outcome.reason == QueueReason.MINT_FAILED
    assert outcome.priority == 0
    job = await queue.get_job(outcome.job_id)
    assert job.mint_payload == payload
    assert job.last_error == "rpc unreachable"


async def test_high_score_gets_priority_boost(orchestrator, anchor):
    anchor.mint_errors.append(InsufficientFunds(0.01, 0.1))
    outcome = await attempt(orchestrator, score=96)
    assert outcome.mode == MintMode.QUEUED
    assert outcome.priority == 10


async def test_disconnected_wallet_queues_at_low_priority(orchestrator, anchor):
    anchor.connected = False

    outcome = await attempt(orchestrator)

    assert outcome.mode == MintMode.QUEUED
    assert outcome.reason == QueueReason.WALLET_NOT_READY
    assert outcome.priority == -5
    assert anchor.mint_calls == 0


async def test_missing_minter_role_queues(orchestrator, anchor):
    anchor.authorized = False
    outcome = await attempt(orchestrator)
    assert outcome.reason == QueueReason.NOT_AUTHORIZED
    assert anchor.mint_calls == 0


async def test_role_revoked_during_mint_queues(orchestrator, anchor):
    anchor.mint_errors.append(NotAuthorized("missing role"))
    outcome = await attempt(orchestrator)
    assert outcome.mode == MintMode.QUEUED
    assert outcome.reason == QueueReason.NOT_AUTHORIZED


async def test_permanent_failure_is_not_queued(orchestrator, anchor, queue):
    anchor.mint_errors.append(MintFailed("execution reverted", permanent=True))

    outcome = await attempt(orchestrator)

    assert outcome.mode == MintMode.FAILED
    assert outcome.job_id is None
    assert (await queue.stats()).total == 0


async def test_transient_failure_is_queued(orchestrator, anchor):
    anchor.mint_errors.append(MintFailed("nonce too low"))
    outcome = await attempt(orchestrator)
    assert outcome.mode == MintMode.QUEUED


async def test_disabled_ledger_skips(anchor, queue, settings):
    orchestrator = MintOrchestrator(anchor, queue, settings.model_copy(update={"blockchain_enabled": False}))
    outcome = await attempt(orchestrator)
    assert outcome.mode == MintMode.SKIPPED
    assert anchor.mint_calls == 0


@pytest.mark.parametrize("reason,score,expected", [
    (QueueReason.MINT_FAILED, 80, 0),
    (QueueReason.MINT_FAILED, 95, 10),
    (QueueReason.WALLET_NOT_READY, 80, -5),
    (QueueReason.WALLET_NOT_READY, 99, 5),
    (QueueReason.NOT_AUTHORIZED, 80, 0),
    (QueueReason.MANUAL, 80, 5),
    (QueueReason.MANUAL, 100, 15),
])
def test_priority_policy(orchestrator, reason, score, expected):
    assert orchestrator.priority_for(reason, score) == expected


def test_recipient_fallbacks(orchestrator, settings):
    assert orchestrator.recipient_for(make_payload(recipient_address="0xstudent"), "0xissuer") == "0xstudent"
    assert orchestrator.recipient_for(make_payload(), "0xissuer") == "0xissuer"

    with_default = MintOrchestrator(
        orchestrator.anchor, orchestrator.queue,
        settings.model_copy(update={"default_recipient_address": "0xdefault"}),
    )
    assert with_default.recipient_for(make_payload(), "0xissuer") == "0xdefault"
