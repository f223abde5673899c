"""
MongoDB access for the car rental API.

The connection is configured from DATABASE_URL / DATABASE_NAME. When either is
missing ``db`` stays None and request handlers answer 503.
"""

import logging
from datetime import datetime, date, timezone
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import Config
from errors import ServiceUnavailable

logger = logging.getLogger(__name__)

USERS = "users"
CARS = "cars"
BOOKINGS = "bookings"
BOOKING_DAYS = "booking_days"

_client: Optional[MongoClient] = None
db = None

if Config.DATABASE_URL and Config.DATABASE_NAME:
    _client = MongoClient(Config.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = _client[Config.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")


def get_db():
    """FastAPI dependency returning the database handle."""
    if db is None:
        raise ServiceUnavailable()
    return db


def ensure_indexes(database) -> None:
    database[USERS].create_index([("email", ASCENDING)], unique=True)
    database[USERS].create_index([("role", ASCENDING)])
    database[CARS].create_index([("owner", ASCENDING)])
    database[CARS].create_index([("location", ASCENDING), ("is_available", ASCENDING)])
    database[CARS].create_index([("category", ASCENDING), ("is_available", ASCENDING)])
    database[BOOKINGS].create_index([("car", ASCENDING), ("status", ASCENDING)])
    database[BOOKINGS].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    database[BOOKINGS].create_index([("owner", ASCENDING), ("created_at", DESCENDING)])
    # One document per (car, calendar day): the storage-level exclusion constraint
    database[BOOKING_DAYS].create_index([("car", ASCENDING), ("day", ASCENDING)], unique=True)
    database[BOOKING_DAYS].create_index([("booking", ASCENDING)])


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database, collection_name: str, data, _id: Optional[ObjectId] = None) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    if _id is not None:
        data_dict["_id"] = _id
    data_dict["created_at"] = now_utc()
    data_dict["updated_at"] = now_utc()
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def to_datetime(day: date) -> datetime:
    """BSON has no date type; calendar days are stored as midnight datetimes."""
    return datetime(day.year, day.month, day.day)


def to_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])

