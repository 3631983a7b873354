"""Document store connection and lifecycle."""
import logging
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database

from stockchat.config import Settings

logger = logging.getLogger(__name__)

# Global client (one connection pool per process)
_client: Optional[MongoClient] = None


def init_db(settings: Settings) -> Database:
    """Create the client and return the inventory database handle."""
    global _client

    timeout_ms = settings.query_timeout_seconds * 1000
    _client = MongoClient(
        settings.mongodb_url,
        appname="stockchat",
        tz_aware=True,
        maxPoolSize=10,
        serverSelectionTimeoutMS=timeout_ms,
        socketTimeoutMS=timeout_ms,
    )
    database = _client[settings.mongodb_db]
    logger.info(f"Connected to MongoDB database '{settings.mongodb_db}'")
    return database


def close_db() -> None:
    """Close the client and its connection pool."""
    global _client
    if _client is not None:
        _client.close()
        _client = None
