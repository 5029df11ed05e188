import logging
import threading
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from . import config

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_lock = threading.Lock()


def get_client() -> MongoClient:
    global _client
    with _lock:
        if _client is None:
            _client = MongoClient(config.MONGO_URI, tz_aware=True, serverSelectionTimeoutMS=5000)
            logger.info("MongoDB client created for database %s", config.DB_NAME)
        return _client


def get_db() -> Database:
    return get_client()[config.DB_NAME]


def close_client() -> None:
    global _client
    with _lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("MongoDB client closed")


def create_indexes(db: Database) -> None:
    db.users.create_index("email", unique=True)
    db.fcm_tokens.create_index("user_id")
    db.fcm_tokens.create_index("token")

    db.conversations.create_index("participants")
    db.conversations.create_index([("last_message_at", DESCENDING)])
    db.messages.create_index([("conversation_id", ASCENDING), ("_id", ASCENDING)])
    # at most one pending invitation per pair
    db.chat_invitations.create_index(
        [("from_user_id", ASCENDING), ("to_user_id", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "pending"},
        name="pending_invitation_unique",
    )
    db.chat_invitations.create_index([("to_user_id", ASCENDING), ("status", ASCENDING)])

    db.chat_groups.create_index("is_active")
    db.chat_group_members.create_index([("group_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    db.chat_group_members.create_index("user_id")
    db.chat_group_invitations.create_index(
        [("group_id", ASCENDING), ("invited_user", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "pending"},
        name="pending_group_invitation_unique",
    )
    db.chat_group_invitations.create_index([("invited_user", ASCENDING), ("status", ASCENDING)])
    db.chat_group_messages.create_index([("group_id", ASCENDING), ("_id", DESCENDING)])
    db.chat_group_read_receipts.create_index([("group_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    logger.info("MongoDB indexes verified")
