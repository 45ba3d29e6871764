"""
Public certificate verification API endpoints.
Anyone holding a certificate id or a scanned QR code can verify it.
"""

from fastapi import APIRouter, HTTPException, Query, status

from ...core.dependencies import ServicesDep
from ...models.verification import VerificationRequest, VerificationResult
from ...services.container import ServiceContainer
from ...utils.logger import get_logger

logger = get_logger("verification_api")

router = APIRouter(
    prefix="/api/v1/verify",
    tags=["verification"],
    responses={
        500: {"description": "Internal Server Error"}
    }
)


async def _verify(services: ServiceContainer, request: VerificationRequest) -> VerificationResult:
    try:
        result = await services.verification.verify(request)
        logger.info(
            f"Verification of {result.certificate_id or 'unknown certificate'} via {result.method.value}: "
            f"{result.blockchain_status.value}"
        )
        return result
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error verifying certificate: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify certificate"
        )


@router.get(
    "/qr",
    response_model=VerificationResult,
    summary="Verify certificate via QR code",
    description="Verify a certificate from scanned QR code data (JSON or base64 encoded JSON)"
)
async def verify_qr(
    data: str = Query(..., min_length=1, description="QR code payload"),
    services: ServiceContainer = ServicesDep
):
    """
    Verify a certificate from its QR payload.

    An unreadable payload yields a result with an ``invalid_qr`` error
    rather than an HTTP error.
    """
    return await _verify(services, VerificationRequest(qr_payload=data))


@router.post(
    "",
    response_model=VerificationResult,
    summary="Verify certificate",
    description="Verify a certificate by id, QR payload or verification code"
)
async def verify_certificate(
    request: VerificationRequest,
    services: ServiceContainer = ServicesDep
):
    return await _verify(services, request)


@router.get(
    "/{certificate_id}",
    response_model=VerificationResult,
    summary="Verify certificate by id",
    description="Verify a certificate by its public 12 character id"
)
async def verify_certificate_by_id(
    certificate_id: str,
    services: ServiceContainer = ServicesDep
):
    return await _verify(services, VerificationRequest(certificate_id=certificate_id))
