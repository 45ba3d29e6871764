"""
Mint queue and wallet management API endpoints (admin only).
"""

from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query, status

from ...core.dependencies import AdminDep, ServicesDep
from ...core.exceptions import AnchorError
from ...models.queue import (
    JobStatus,
    MintJob,
    ProcessQueueRequest,
    PurgeJobsRequest,
    QueueStats,
    RetryJobsRequest,
)
from ...services.container import ServiceContainer
from ...utils.logger import get_logger

logger = get_logger("mint_queue_api")

router = APIRouter(
    prefix="/api/v1/blockchain",
    tags=["blockchain"],
    dependencies=[AdminDep],
    responses={
        401: {"description": "Invalid admin key"},
        500: {"description": "Internal Server Error"}
    }
)


@router.get(
    "/mint-queue/stats",
    response_model=QueueStats,
    summary="Mint queue statistics"
)
async def queue_stats(services: ServiceContainer = ServicesDep):
    try:
        return await services.queue.stats()
    except Exception as e:
        logger.error(f"Error getting queue stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get queue statistics"
        )


@router.get(
    "/mint-queue/jobs",
    response_model=List[MintJob],
    summary="List mint jobs",
    description="Jobs ordered by priority then age, optionally filtered by status"
)
async def list_jobs(
    job_status: Optional[JobStatus] = Query(None, alias="status", description="Filter by job status"),
    limit: int = Query(50, ge=1, le=500),
    services: ServiceContainer = ServicesDep
):
    try:
        return await services.queue.list_jobs(job_status, limit)
    except Exception as e:
        logger.error(f"Error listing mint jobs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list mint jobs"
        )


@router.get(
    "/mint-queue/jobs/{job_id}",
    response_model=MintJob,
    summary="Get mint job"
)
async def get_job(job_id: str, services: ServiceContainer = ServicesDep):
    job = await services.queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Mint job {job_id} not found")
    return job


@router.post(
    "/mint-queue/retry",
    summary="Retry failed jobs",
    description="Move failed jobs back to pending with a fresh attempt budget"
)
async def retry_failed_jobs(request: RetryJobsRequest, services: ServiceContainer = ServicesDep):
    try:
        count = await services.queue.retry_failed(request.job_ids)
        logger.info(f"Requeued {count} failed mint jobs")
        return {"requeued": count}
    except Exception as e:
        logger.error(f"Error retrying mint jobs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retry mint jobs"
        )


@router.post(
    "/mint-queue/process",
    summary="Process queue now",
    description="Process up to max_jobs due jobs in this request"
)
async def process_queue(request: ProcessQueueRequest, services: ServiceContainer = ServicesDep):
    try:
        processed = await services.worker.drain(request.max_jobs)
        stats = await services.queue.stats()
        return {"processed": processed, "stats": stats}
    except Exception as e:
        logger.error(f"Error processing mint queue: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process mint queue"
        )


@router.post(
    "/mint-queue/reclaim",
    summary="Reclaim stale jobs",
    description="Return jobs whose worker lease expired to pending"
)
async def reclaim_stale_jobs(services: ServiceContainer = ServicesDep):
    try:
        return {"reclaimed": await services.queue.reclaim_stale()}
    except Exception as e:
        logger.error(f"Error reclaiming stale jobs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reclaim stale jobs"
        )


@router.post(
    "/mint-queue/cleanup",
    summary="Clean up completed jobs",
    description="Delete completed jobs older than the given number of days"
)
async def cleanup_jobs(
    days: int = Query(30, ge=1, le=3650),
    services: ServiceContainer = ServicesDep
):
    try:
        return {"deleted": await services.queue.cleanup(days)}
    except Exception as e:
        logger.error(f"Error cleaning up mint jobs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clean up mint jobs"
        )


@router.post(
    "/mint-queue/purge",
    summary="Purge jobs",
    description="Delete specific jobs; jobs being processed are left alone"
)
async def purge_jobs(request: PurgeJobsRequest, services: ServiceContainer = ServicesDep):
    try:
        deleted = await services.queue.purge(request.job_ids)
        logger.warning(f"Purged {deleted} mint jobs")
        return {"deleted": deleted}
    except Exception as e:
        logger.error(f"Error purging mint jobs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to purge mint jobs"
        )


@router.get(
    "/wallet",
    summary="Issuer wallet status",
    description="Connection, balance and minting permission of the issuer wallet"
)
async def wallet_status(services: ServiceContainer = ServicesDep):
    anchor = services.anchor
    try:
        wallet = await anchor.wallet_state()
        can_mint = await anchor.can_mint() if wallet.connected else False
        total_issued = await anchor.total_issued() if wallet.connected else None
    except AnchorError as e:
        logger.warning(f"Ledger unavailable while reading wallet status: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Ledger unavailable: {e}"
        )

    return {
        "network": anchor.network_name,
        "mode": "simulated" if anchor.is_simulated else "live",
        "contract_address": anchor.contract_address,
        "connected": wallet.connected,
        "address": wallet.address,
        "balance": wallet.balance,
        "currency": wallet.currency,
        "can_mint": can_mint,
        "minimum_balance": services.settings.min_wallet_balance,
        "total_issued": total_issued,
    }
