"""
MongoDB connection handle and small document helpers.

Configuration comes from the environment:
- DATABASE_URL / DATABASE_NAME: where to connect
- DATABASE_TIMEOUT_MS: server selection timeout (default 5000)
- DATABASE_RETRIES: attempts on a dropped connection (default 3)
- DATABASE_RETRY_BACKOFF: first backoff in seconds, doubled per retry (default 0.2)
"""

import logging
import os
import threading
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure

from errors import StoreConnectionError

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Database:
    """Open a client and return the named database handle."""
    url = url or os.getenv("DATABASE_URL")
    name = name or os.getenv("DATABASE_NAME")
    if not url or not name:
        raise StoreConnectionError("Database not configured")
    timeout = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))
    client = MongoClient(url, serverSelectionTimeoutMS=timeout)
    logger.info("Connected MongoDB client for database %s", name)
    return client[name]


def get_db() -> Database:
    """Shared handle for the app, created on first use."""
    global _client, _db
    with _lock:
        if _db is None:
            _db = connect()
            _client = _db.client
        return _db


def close_db():
    global _client, _db
    with _lock:
        if _client is not None:
            _client.close()
        _client = None
        _db = None


def retry_on_disconnect(func):
    """Retry a store call with exponential backoff while the server is unreachable."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(os.getenv("DATABASE_RETRIES", "3")))
        delay = float(os.getenv("DATABASE_RETRY_BACKOFF", "0.2"))
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except ConnectionFailure as e:
                if attempt == attempts:
                    raise StoreConnectionError(f"Database unreachable: {e}") from e
                logger.warning("%s failed (%s), retry %d/%d in %.2fs", func.__name__, e, attempt, attempts - 1, delay)
                time.sleep(delay)
                delay *= 2

    return wrapper


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert one document stamped with createdAt/updatedAt and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="json", exclude_none=True)
    else:
        data_dict = dict(data)
    stamp = now_utc()
    data_dict["createdAt"] = stamp
    data_dict["updatedAt"] = stamp
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List] = None,
    limit: Optional[int] = None,
    skip: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
