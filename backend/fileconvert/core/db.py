# FILE: backend/fileconvert/core/db.py
# HISTORY STORE CONNECTION
# 1. DATABASE_URI set   -> MongoDB-backed history (multi-instance safe).
# 2. DATABASE_URI empty -> in-memory history (single process).

import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

import pymongo
from pymongo.database import Database
from pymongo.errors import ConnectionFailure
from pymongo.mongo_client import MongoClient

from .config import Settings
from ..services.history_service import ConversionHistoryStore, InMemoryHistoryStore, MongoHistoryStore

logger = logging.getLogger(__name__)


def connect_to_mongo(uri: str) -> Tuple[MongoClient, Database]:
    logger.info("--- [DB] Attempting to connect to MongoDB... ---")
    try:
        client: MongoClient = pymongo.MongoClient(uri, serverSelectionTimeoutMS=5000, tz_aware=True)
        client.admin.command('ping')
        db_name = urlparse(uri).path.lstrip('/')
        if not db_name:
            raise ValueError("Database name not found in DATABASE_URI.")
        db: Database = client[db_name]
        logger.info(f"--- [DB] Successfully connected to MongoDB: '{db_name}' ---")
        return client, db
    except (ConnectionFailure, ValueError) as e:
        logger.critical(f"--- [DB] Could not connect to MongoDB: {e} ---")
        raise


def build_history_store(settings: Settings) -> Tuple[ConversionHistoryStore, Optional[MongoClient]]:
    if not settings.DATABASE_URI:
        logger.info("--- [DB] DATABASE_URI not set. Using in-memory conversion history. ---")
        return InMemoryHistoryStore(), None

    client, db = connect_to_mongo(settings.DATABASE_URI)
    store = MongoHistoryStore(db)
    store.ensure_indexes()
    return store, client
