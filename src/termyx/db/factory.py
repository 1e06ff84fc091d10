from __future__ import annotations

import logging

from .base import BaseDBManager
from .memory import InMemoryDBManager
from ..config import Settings

logger = logging.getLogger(__name__)


def create_db_manager(settings: Settings) -> BaseDBManager:
    if settings.MONGO_URI:
        from .mongo import MongoDBManager

        logger.info("Using MongoDB backend (db=%s)", settings.MONGO_DB)
        return MongoDBManager.from_client_uri(settings.MONGO_URI, settings.MONGO_DB)
    logger.warning("TERMYX_MONGO_URI not set; using the in-memory backend")
    return InMemoryDBManager()
