from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection

from smart_library.core.settings import LibrarySettings, get_library_settings

logger = logging.getLogger(__name__)

READING_SESSIONS = "reading_sessions"


@lru_cache
def get_mongo_client() -> MongoClient:
    settings = get_library_settings()
    return MongoClient(
        settings.mongo_url,
        serverSelectionTimeoutMS=settings.mongo_timeout_ms,
        tz_aware=True,
    )


def get_reading_sessions_collection(
    settings: LibrarySettings = Depends(get_library_settings),
) -> Collection:
    """Return the reading session collection for request-scoped analytics."""
    return get_mongo_client()[settings.mongo_db_name][READING_SESSIONS]


def ensure_reading_session_indexes(collection: Collection) -> None:
    """Create the indexes used by the analytics pipelines."""
    collection.create_index([("user_id", ASCENDING), ("session_start", DESCENDING)])
    collection.create_index([("book_id", ASCENDING), ("session_start", DESCENDING)])
    collection.create_index([("device_type", ASCENDING)])
    collection.create_index([("session_start", DESCENDING)])
    logger.info("Ensured indexes on %s", collection.full_name)
