import functools
import logging
import os

from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.errors import PyMongoError

from errors import UpstreamError

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "LifeSync")

# Collection names
DOCTORS = "doctors"
HOSPITALS = "hospitals"
USERS = "users"
APPOINTMENTS = "appointments"
NOTIFICATIONS = "notifications"

PROVIDER_COLLECTIONS = {"doctor": DOCTORS, "hospital": HOSPITALS}

logger = logging.getLogger(__name__)

_client = None


def get_database():
    """Return the application database, creating the client on first use."""
    global _client
    if _client is None:
        _client = AsyncMongoClient(MONGO_URI, connect=False)
    return _client[MONGO_DB_NAME]


async def close_client():
    global _client
    if _client is not None:
        await _client.close()
        _client = None


async def ensure_indexes(db):
    appointments = db[APPOINTMENTS]
    await appointments.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    await appointments.create_index([("docId", ASCENDING), ("createdAt", DESCENDING)])
    await appointments.create_index([("hospitalId", ASCENDING), ("createdAt", DESCENDING)])
    await appointments.create_index(
        [("status", ASCENDING), ("cancelled", ASCENDING), ("isCompleted", ASCENDING)]
    )
    await appointments.create_index([("slotReleased", ASCENDING)], sparse=True)
    await db[NOTIFICATIONS].create_index([("createdAt", DESCENDING)])


def translate_store_errors(operation: str):
    """Re-raise driver failures inside ``operation`` as :class:`UpstreamError`."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except PyMongoError as e:
                logger.error(f"Data store error while trying to {operation}: {str(e)}")
                raise UpstreamError(f"Data store unavailable while trying to {operation}") from e

        return wrapper

    return decorator
