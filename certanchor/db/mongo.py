"""
MongoDB connection and database utilities.
Provides an explicit async connection handle using the Motor driver.
"""

from dataclasses import dataclass
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from ..core.config import Settings
from ..utils.logger import get_logger

logger = get_logger("database")

CERTIFICATES = "certificates"
MINT_QUEUE = "mint_queue"
CONTENT_BLOBS = "content_blobs"
CERTIFICATE_EVENTS = "certificate_events"


@dataclass
class MongoHandle:
    """Open client plus the selected database."""

    client: AsyncIOMotorClient
    db: AsyncIOMotorDatabase

    async def ping(self) -> bool:
        await self.client.admin.command('ping')
        return True

    def close(self) -> None:
        self.client.close()
        logger.info("MongoDB connection closed")


async def connect_to_mongo(settings: Settings) -> MongoHandle:
    """
    Create database connection to MongoDB.
    Should be called once during application or worker startup.

    Args:
        settings: Application settings with the connection string and database name

    Returns:
        MongoHandle owning the client
    """
    try:
        client = AsyncIOMotorClient(settings.mongodb_url)
        handle = MongoHandle(client=client, db=client[settings.database_name])

        await handle.ping()
        logger.info(f"Successfully connected to MongoDB, using database: {settings.database_name}")
        return handle

    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        raise


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """
    Create the indexes the services rely on.

    ``active_key`` carries "user:course" while a certificate is valid, so the
    unique index allows at most one valid certificate per pair.
    """
    await db[CERTIFICATES].create_index("certificate_id", unique=True)
    await db[CERTIFICATES].create_index("active_key", unique=True)
    await db[CERTIFICATES].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    await db[MINT_QUEUE].create_index("job_id", unique=True)
    await db[MINT_QUEUE].create_index(
        [("status", ASCENDING), ("priority", DESCENDING), ("created_at", ASCENDING)]
    )
    await db[MINT_QUEUE].create_index("certificate_id")

    await db[CONTENT_BLOBS].create_index("address", unique=True)
    await db[CERTIFICATE_EVENTS].create_index([("certificate_id", ASCENDING), ("created_at", ASCENDING)])

    logger.info("MongoDB indexes ensured")
