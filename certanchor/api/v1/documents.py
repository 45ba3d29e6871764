"""
Document download endpoint for rendered certificates kept in the MongoDB
content store. Pinata-hosted documents are served by the IPFS gateway.
"""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from ...core.dependencies import ServicesDep
from ...core.exceptions import ContentStoreError
from ...services.container import ServiceContainer
from ...utils.logger import get_logger

logger = get_logger("documents_api")

router = APIRouter(
    prefix="/api/v1/documents",
    tags=["documents"],
    responses={
        404: {"description": "Document not found"}
    }
)


@router.get(
    "/{address}",
    summary="Download document",
    description="Download a stored certificate document by its content address"
)
async def get_document(address: str, services: ServiceContainer = ServicesDep):
    try:
        data = await services.content_store.get(address)
    except ContentStoreError as e:
        logger.warning(f"Document {address} not available: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    media_type = "application/pdf" if data.startswith(b"%PDF") else "application/octet-stream"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"}
    )
