"""
Content-addressed storage for certificate metadata documents.

Two backends: IPFS pinning through Pinata, and a MongoDB collection for
development and deployments without a pinning account.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..core.config import Settings
from ..core.exceptions import ContentStoreError
from ..db.mongo import CONTENT_BLOBS
from ..utils.logger import get_logger
from ..utils.timeutils import utcnow

logger = get_logger("content_store")


class ContentStore(ABC):
    """Interface for the content store collaborator."""

    @abstractmethod
    async def put(self, data: bytes, content_type: str, tags: Optional[Dict[str, str]] = None) -> str:
        """Store bytes and return their content address."""

    @abstractmethod
    async def get(self, address: str) -> bytes:
        """Read bytes back by address."""

    def gateway_url(self, address: str) -> Optional[str]:
        return None


class MongoContentStore(ContentStore):
    """Stores blobs in MongoDB under ``sha256-<hex>`` addresses."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db[CONTENT_BLOBS]

    @staticmethod
    def address_for(data: bytes) -> str:
        return "sha256-" + hashlib.sha256(data).hexdigest()

    async def put(self, data: bytes, content_type: str, tags: Optional[Dict[str, str]] = None) -> str:
        address = self.address_for(data)
        try:
            await self.collection.update_one(
                {"address": address},
                {"$setOnInsert": {
                    "address": address,
                    "data": data,
                    "content_type": content_type,
                    "tags": tags or {},
                    "created_at": utcnow(),
                }},
                upsert=True,
            )
        except PyMongoError as e:
            raise ContentStoreError(f"Failed to store blob: {e}") from e
        return address

    async def get(self, address: str) -> bytes:
        try:
            document = await self.collection.find_one({"address": address})
        except PyMongoError as e:
            raise ContentStoreError(f"Failed to read blob {address}: {e}") from e
        if document is None:
            raise ContentStoreError(f"Blob {address} not found")
        return bytes(document["data"])


class PinataContentStore(ContentStore):
    """IPFS pinning through the Pinata HTTP API."""

    def __init__(
        self,
        api_key: str,
        secret_api_key: str,
        api_url: str = "https://api.pinata.cloud",
        gateway: str = "https://gateway.pinata.cloud/ipfs",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.secret_api_key = secret_api_key
        self.api_url = api_url.rstrip("/")
        self.gateway = gateway.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "pinata_api_key": self.api_key,
            "pinata_secret_api_key": self.secret_api_key,
        }

    async def put(self, data: bytes, content_type: str, tags: Optional[Dict[str, str]] = None) -> str:
        tags = tags or {}
        pinata_metadata = {"name": tags.get("name", "certificate-metadata"), "keyvalues": tags}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.api_url}/pinning/pinFileToIPFS",
                    files={"file": (pinata_metadata["name"], data, content_type)},
                    data={"pinataMetadata": json.dumps(pinata_metadata)},
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            raise ContentStoreError(f"Pinata upload failed: {e}") from e

        if response.status_code != 200:
            raise ContentStoreError(f"Pinata upload failed: {response.status_code} {response.text[:200]}")

        try:
            address = response.json().get("IpfsHash")
        except (ValueError, AttributeError) as e:
            raise ContentStoreError(f"Pinata returned a non-JSON response: {response.text[:200]}") from e
        if not address:
            raise ContentStoreError("Pinata response did not include an IpfsHash")

        logger.info(f"Pinned {len(data)} bytes to IPFS: {address}")
        return address

    async def get(self, address: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.gateway_url(address))
        except httpx.HTTPError as e:
            raise ContentStoreError(f"IPFS gateway read failed: {e}") from e

        if response.status_code != 200:
            raise ContentStoreError(f"IPFS gateway returned {response.status_code} for {address}")
        return response.content

    def gateway_url(self, address: str) -> str:
        return f"{self.gateway}/{address}"


def build_content_store(settings: Settings, db: AsyncIOMotorDatabase) -> ContentStore:
    """Pinata when credentials are configured, MongoDB otherwise."""
    if settings.pinata_api_key and settings.pinata_secret_api_key:
        logger.info("Using Pinata IPFS content store")
        return PinataContentStore(
            api_key=settings.pinata_api_key,
            secret_api_key=settings.pinata_secret_api_key,
            api_url=settings.pinata_api_url,
            gateway=settings.ipfs_gateway,
            timeout=settings.content_store_timeout_seconds,
        )
    logger.info("Pinata credentials not set, using MongoDB content store")
    return MongoContentStore(db)
