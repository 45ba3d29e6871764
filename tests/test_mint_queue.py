import asyncio
from datetime import timedelta

import pytest

from certanchor.db.mongo import MINT_QUEUE
from certanchor.models.certificate import BlockchainRecord
from certanchor.models.queue import JobStatus, QueueReason
from certanchor.services.mint_queue import MintQueue
from certanchor.utils.timeutils import utcnow

from .conftest import make_payload


def record(tx="0x" + "1" * 64):
    return BlockchainRecord(
        content_hash="f" * 64,
        block_number=15_000_001,
        transaction_id=tx,
        on_chain_id="1",
        network_id="polygon",
        anchored_at=utcnow(),
    )


@pytest.fixture
def queue(db):
    return MintQueue(db, lease_seconds=300)


async def enqueue(queue, certificate_id, priority=0, **kwargs):
    return await queue.enqueue(certificate_id, "u1", "c1", make_payload(), priority=priority, **kwargs)


async def test_enqueue_keeps_payload(queue):
    payload = make_payload(recipient_address="0x" + "cd" * 20)
    job_id = await queue.enqueue("CERT00000001", "u1", "c1", payload, priority=3, reason=QueueReason.WALLET_NOT_READY)

    job = await queue.get_job(job_id)
    assert job_id.startswith("CERT00000001_")
    assert job.status == JobStatus.PENDING
    assert job.mint_payload == payload
    assert job.priority == 3
    assert job.queue_reason == QueueReason.WALLET_NOT_READY
    assert job.attempts == 0


async def test_dequeue_orders_by_priority_then_age(queue):
    low = await enqueue(queue, "LOW000000001", priority=-5)
    first_normal = await enqueue(queue, "NORMAL000001")
    high = await enqueue(queue, "HIGH00000001", priority=10)
    second_normal = await enqueue(queue, "NORMAL000002")

    claimed = []
    for _ in range(4):
        claimed.append((await queue.dequeue_next("w1")).job_id)

    assert claimed == [high, first_normal, second_normal, low]
    assert await queue.dequeue_next("w1") is None


async def test_claim_marks_job_processing(queue):
    job_id = await enqueue(queue, "CERT00000001")
    job = await queue.dequeue_next("w1")

    assert job.job_id == job_id
    assert job.status == JobStatus.PROCESSING
    assert job.worker_id == "w1"
    assert job.attempts == 1
    assert job.round_attempts == 1
    assert job.lease_expires_at > job.claimed_at


async def test_concurrent_workers_never_share_a_job(queue):
    job_ids = {await enqueue(queue, f"CERT0000000{i}") for i in range(5)}

    claims = await asyncio.gather(*(queue.dequeue_next(f"w{i}") for i in range(12)))
    claimed = [job.job_id for job in claims if job is not None]

    assert len(claimed) == 5
    assert set(claimed) == job_ids


async def test_queue_survives_restart(db, queue):
    job_id = await enqueue(queue, "CERT00000001")

    restarted = MintQueue(db)
    job = await restarted.dequeue_next("w2")
    assert job.job_id == job_id


async def test_rescheduled_job_waits_for_retry_time(queue):
    job_id = await enqueue(queue, "CERT00000001")
    await queue.dequeue_next("w1")

    assert await queue.reschedule(job_id, "rpc down", delay_seconds=60, priority_delta=-5)

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.priority == -5
    assert job.last_error == "rpc down"
    assert await queue.dequeue_next("w1") is None

    later = await queue.dequeue_next("w1", now=utcnow() + timedelta(seconds=61))
    assert later.job_id == job_id
    assert later.attempts == 2


async def test_complete_and_fail(queue):
    done = await enqueue(queue, "CERT00000001")
    broken = await enqueue(queue, "CERT00000002")

    await queue.dequeue_next("w1")
    await queue.dequeue_next("w1")

    assert await queue.mark_completed(done, record())
    assert await queue.mark_failed(broken, "contract reverted")
    # completed jobs cannot be completed twice
    assert not await queue.mark_completed(done, record())

    completed = await queue.get_job(done)
    assert completed.status == JobStatus.COMPLETED
    assert completed.blockchain_record.transaction_id == "0x" + "1" * 64
    assert completed.completed_at is not None
    assert (await queue.get_job(broken)).status == JobStatus.FAILED


async def test_retry_failed_resets_round(queue):
    job_id = await enqueue(queue, "CERT00000001")
    await queue.dequeue_next("w1")
    await queue.mark_failed(job_id, "gave up")

    assert await queue.retry_failed() == 1

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.round_attempts == 0
    assert job.attempts == 1
    assert job.retry_count == 1


async def test_retry_failed_by_id(queue):
    first = await enqueue(queue, "CERT00000001")
    second = await enqueue(queue, "CERT00000002")
    for job_id in (first, second):
        await queue.dequeue_next("w1")
        await queue.mark_failed(job_id, "gave up")

    assert await queue.retry_failed([second]) == 1
    assert (await queue.get_job(first)).status == JobStatus.FAILED
    assert (await queue.get_job(second)).status == JobStatus.PENDING


async def test_reclaim_stale_lease(queue):
    job_id = await enqueue(queue, "CERT00000001")
    await queue.dequeue_next("w1")

    assert await queue.reclaim_stale() == 0
    assert await queue.reclaim_stale(now=utcnow() + timedelta(seconds=301)) == 1

    job = await queue.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.worker_id is None
    assert (await queue.dequeue_next("w2")).job_id == job_id


async def test_stats(queue):
    done = await enqueue(queue, "CERT00000001")
    broken = await enqueue(queue, "CERT00000002")
    await enqueue(queue, "CERT00000003")

    await queue.dequeue_next("w1")
    await queue.dequeue_next("w1")
    await queue.mark_completed(done, record())
    await queue.mark_failed(broken, "reverted")

    stats = await queue.stats()
    assert (stats.pending, stats.processing, stats.completed, stats.failed, stats.total) == (1, 0, 1, 1, 3)
    assert stats.success_rate == 0.5


async def test_purge_skips_jobs_in_flight(queue):
    in_flight = await enqueue(queue, "CERT00000001", priority=1)
    waiting = await enqueue(queue, "CERT00000002")
    await queue.dequeue_next("w1")

    assert await queue.purge([in_flight, waiting]) == 1
    assert await queue.get_job(in_flight) is not None
    assert await queue.get_job(waiting) is None


async def test_cleanup_removes_old_completed_jobs_only(db, queue):
    old_done = await enqueue(queue, "CERT00000001")
    old_failed = await enqueue(queue, "CERT00000002")
    for _ in range(2):
        await queue.dequeue_next("w1")
    await queue.mark_completed(old_done, record())
    await queue.mark_failed(old_failed, "reverted")

    long_ago = utcnow() - timedelta(days=45)
    await db[MINT_QUEUE].update_many({}, {"$set": {"completed_at": long_ago, "updated_at": long_ago}})

    assert await queue.cleanup(30) == 1
    assert await queue.get_job(old_done) is None
    assert await queue.get_job(old_failed) is not None


async def test_completed_since_counts_recent_mints(queue):
    job_id = await enqueue(queue, "CERT00000001")
    await queue.dequeue_next("w1")
    await queue.mark_completed(job_id, record())

    assert await queue.completed_since(utcnow() - timedelta(hours=1)) == 1
    assert await queue.completed_since(utcnow() + timedelta(minutes=1)) == 0
