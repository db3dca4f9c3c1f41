import logging
from datetime import datetime, timezone

from bson import ObjectId
from pymongo import MongoClient, ASCENDING, DESCENDING

from config import MONGO_URI, MONGO_DB_NAME

logger = logging.getLogger(__name__)

client = MongoClient(MONGO_URI)

# Collections: identities, users, appointments, conversations, messages,
# records, record_files, revoked_tokens
db = client[MONGO_DB_NAME]


def get_db():
    """FastAPI dependency returning the MediConnect database."""
    return db


def ensure_indexes(database):
    database.identities.create_index("email", unique=True)
    database.users.create_index("role")
    database.appointments.create_index([("doctorId", ASCENDING), ("status", ASCENDING), ("startsAt", ASCENDING)])
    database.appointments.create_index([("patientId", ASCENDING), ("startsAt", DESCENDING)])
    # Only pending and confirmed appointments carry a slotKey
    database.appointments.create_index("slotKey", unique=True, sparse=True)
    database.conversations.create_index([("patientId", ASCENDING), ("doctorId", ASCENDING)], unique=True)
    database.messages.create_index([("conversationId", ASCENDING), ("createdAt", ASCENDING)])
    database.records.create_index([("patientId", ASCENDING), ("uploadDate", DESCENDING)])
    logger.info("MongoDB indexes ensured on %s", database.name)


def utcnow():
    # Mongo keeps millisecond precision and hands back naive UTC datetimes
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def serialize(document):
    """Turn a stored document into a JSON-ready dict with an ``id`` key."""
    if document is None:
        return None
    result = {}
    for key, value in document.items():
        if key == "_id":
            key = "id"
        if isinstance(value, ObjectId):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.replace(tzinfo=timezone.utc).isoformat()
        result[key] = value
    return result
