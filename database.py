"""
Remote store handle.

The tracker runs against MongoDB when both DATABASE_URL and DATABASE_NAME are
set. The client is created lazily (pymongo does not connect until the first
operation), so building it is a static capability check: a missing
configuration just means the session runs in local-only mode.
"""
import os
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database

from app_logger import get_logger

log = get_logger("database")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")


def connect(url: Optional[str], name: Optional[str]) -> Optional[Database]:
    if not url or not name:
        return None
    client = MongoClient(url)
    return client[name]


db = connect(DATABASE_URL, DATABASE_NAME)


def is_cloud_active() -> bool:
    return db is not None


if db is not None:
    log.info("Remote store configured (database=%s): live cloud mode", DATABASE_NAME)
else:
    log.info("No remote store configured: local storage mode")
