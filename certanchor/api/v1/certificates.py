"""
Certificate management API endpoints.
Issuance, lookup, revocation and anchor management for platform back offices.
Every route except sharing requires the admin key.
"""

from typing import List
from fastapi import APIRouter, HTTPException, status

from ...core.dependencies import AdminDep, ServicesDep
from ...core.exceptions import (
    CertificateNotFound,
    ConfigurationError,
    MetadataUploadFailed,
    NotEligible,
)
from ...models.certificate import (
    AnchorStatusResponse,
    Certificate,
    CertificateStats,
    IssueCertificateRequest,
    IssueCertificateResponse,
    RetryAnchorResponse,
    RevokeRequest,
    ShareData,
)
from ...services.container import ServiceContainer
from ...utils.logger import get_logger

logger = get_logger("certificates_api")

router = APIRouter(
    prefix="/api/v1",
    tags=["certificates"],
    responses={
        401: {"description": "Invalid admin key"},
        404: {"description": "Certificate not found"},
        500: {"description": "Internal Server Error"}
    }
)


def _not_found(e: CertificateNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post(
    "/certificates/issue",
    response_model=IssueCertificateResponse,
    dependencies=[AdminDep],
    summary="Issue certificate",
    description="Issue a certificate for a passed assessment or a completed course"
)
async def issue_certificate(
    request: IssueCertificateRequest,
    services: ServiceContainer = ServicesDep
):
    """
    Issue a certificate. Idempotent per (user, course): a learner who
    already holds a valid certificate gets the existing one back.
    """
    try:
        result = await services.certificates.issue(request.user_id, request.course_id, request.trigger)
        certificate = await services.certificates.get_certificate(result.certificate_id)

        return IssueCertificateResponse(
            certificate_id=result.certificate_id,
            created=result.created,
            anchor_mode=result.mint.mode.value if result.mint else None,
            queue_job_id=result.mint.job_id if result.mint else certificate.queue_job_id,
            certificate=certificate,
        )

    except NotEligible as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except MetadataUploadFailed as e:
        logger.error(f"Metadata upload failed while issuing for user {request.user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Certificate metadata could not be stored, try again later"
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error while issuing certificate: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error issuing certificate: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to issue certificate"
        )


@router.get(
    "/certificates/stats",
    response_model=CertificateStats,
    dependencies=[AdminDep],
    summary="Certificate statistics",
    description="Totals, grade distribution and mint queue statistics"
)
async def certificate_stats(services: ServiceContainer = ServicesDep):
    try:
        return await services.certificates.stats()
    except Exception as e:
        logger.error(f"Error getting certificate stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get certificate statistics"
        )


@router.get(
    "/certificates/{certificate_id}",
    response_model=Certificate,
    dependencies=[AdminDep],
    summary="Get certificate"
)
async def get_certificate(certificate_id: str, services: ServiceContainer = ServicesDep):
    try:
        return await services.certificates.get_certificate(certificate_id.upper())
    except CertificateNotFound as e:
        raise _not_found(e)


@router.get(
    "/certificates/{certificate_id}/blockchain-status",
    response_model=AnchorStatusResponse,
    dependencies=[AdminDep],
    summary="Get anchor status",
    description="Anchor record of a certificate, or the state of its mint job"
)
async def get_blockchain_status(certificate_id: str, services: ServiceContainer = ServicesDep):
    try:
        return await services.certificates.blockchain_status(certificate_id.upper())
    except CertificateNotFound as e:
        raise _not_found(e)
    except Exception as e:
        logger.error(f"Error getting blockchain status for {certificate_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get blockchain status"
        )


@router.post(
    "/certificates/{certificate_id}/revoke",
    response_model=Certificate,
    dependencies=[AdminDep],
    summary="Revoke certificate",
    description="Revoke a certificate; revocation is permanent"
)
async def revoke_certificate(
    certificate_id: str,
    request: RevokeRequest,
    services: ServiceContainer = ServicesDep
):
    try:
        return await services.certificates.revoke(certificate_id.upper(), request.reason)
    except CertificateNotFound as e:
        raise _not_found(e)
    except Exception as e:
        logger.error(f"Error revoking certificate {certificate_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to revoke certificate"
        )


@router.post(
    "/certificates/{certificate_id}/retry-anchor",
    response_model=RetryAnchorResponse,
    dependencies=[AdminDep],
    summary="Retry anchoring",
    description="Requeue a failed mint, or queue a manual mint for a certificate without one"
)
async def retry_anchor(certificate_id: str, services: ServiceContainer = ServicesDep):
    try:
        return await services.certificates.retry_anchor(certificate_id.upper())
    except CertificateNotFound as e:
        raise _not_found(e)
    except Exception as e:
        logger.error(f"Error retrying anchor for {certificate_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retry anchoring"
        )


@router.get(
    "/certificates/{certificate_id}/share",
    response_model=ShareData,
    summary="Share data",
    description="Title, description and links for sharing a certificate on LinkedIn"
)
async def share_certificate(certificate_id: str, services: ServiceContainer = ServicesDep):
    try:
        return await services.certificates.share_data(certificate_id.upper())
    except CertificateNotFound as e:
        raise _not_found(e)


@router.get(
    "/users/{user_id}/certificates",
    response_model=List[Certificate],
    dependencies=[AdminDep],
    summary="List user certificates"
)
async def get_user_certificates(user_id: str, services: ServiceContainer = ServicesDep):
    try:
        return await services.certificates.get_user_certificates(user_id)
    except Exception as e:
        logger.error(f"Error listing certificates of user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list certificates"
        )
