# lab_inventory/db/database.py
import logging

import motor.motor_asyncio
from beanie import init_beanie

from lab_inventory.core.config import MONGODB_URL, DATABASE_NAME
from lab_inventory.db.documents import BorrowDocument, ItemDocument, UserDocument

logger = logging.getLogger(__name__)

_client = None


def get_client() -> motor.motor_asyncio.AsyncIOMotorClient:
    global _client
    if _client is None:
        # tz_aware: tanggal dari Mongo kembali sebagai datetime UTC yang aware
        _client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)
    return _client


async def init_db():
    """Inisialisasi koneksi database dan Beanie."""
    logger.info("Connecting to MongoDB...")
    database = get_client()[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")
    await init_beanie(
        database=database,
        document_models=[ItemDocument, UserDocument, BorrowDocument],
    )
    logger.info("Beanie initialization complete for all models.")


async def ping_db() -> bool:
    await get_client().admin.command("ping")
    return True


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB connection closed.")
