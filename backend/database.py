from motor.motor_asyncio import AsyncIOMotorClient

from config.env import MONGODB_URI
from utils.store import MongoStore

_client = None
_store = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        if not MONGODB_URI:
            raise RuntimeError("MONGODB_URI not set")
        _client = AsyncIOMotorClient(MONGODB_URI, tz_aware=False)
    return _client


def get_db():
    return get_client().get_default_database()


def get_store() -> MongoStore:
    global _store
    if _store is None:
        _store = MongoStore(get_client(), get_db())
    return _store
