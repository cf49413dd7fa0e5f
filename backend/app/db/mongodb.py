"""Motor connection for the project store."""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.config import settings

logger = logging.getLogger(__name__)

client: AsyncIOMotorClient | None = None
db: AsyncIOMotorDatabase | None = None


async def init_mongodb():
    global client, db
    client = AsyncIOMotorClient(settings.mongodb_uri)
    db = client[settings.mongodb_db]
    logger.info("Using MongoDB database %r for projects", settings.mongodb_db)


async def close_mongodb():
    global client, db
    if client:
        client.close()
    client, db = None, None


def get_mongodb() -> AsyncIOMotorDatabase:
    if db is None:
        raise RuntimeError("Project store is not initialized")
    return db
