import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId

from . import constants
from .errors import InvalidInputError

# Group system messages are stored with this sender and are never joined
# against the users collection.
SYSTEM_SENDER = "system"

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ConversationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    active = "active"


DELIVERABLE_CONVERSATION_STATUSES = (ConversationStatus.accepted.value, ConversationStatus.active.value)


class InvitationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    cancelled = "cancelled"


class InvitationAction(str, Enum):
    accept = "accept"
    reject = "reject"


class MessageKind(str, Enum):
    text = "text"
    image = "image"
    file = "file"


class NotificationKind(str, Enum):
    chat_invitation = "chat_invitation"
    chat_message = "chat_message"


class GroupRole(str, Enum):
    admin = "admin"
    member = "member"


class GroupMessageKind(str, Enum):
    message = "message"
    system = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def normalize_email(value: Any) -> str:
    """Lowercase and trim an email used as a chat user key."""
    if not isinstance(value, str):
        raise InvalidInputError(constants.ERR_INVALID_EMAIL)
    email = value.strip().lower()
    if not EMAIL_RE.match(email):
        raise InvalidInputError(constants.ERR_INVALID_EMAIL)
    return email


def parse_object_id(value: Any, message: str = constants.ERR_INVALID_DATA) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise InvalidInputError(message)


def parse_action(value: Any) -> InvitationAction:
    try:
        return InvitationAction(value)
    except ValueError:
        raise InvalidInputError(constants.ERR_INVALID_ACTION)


def is_admin_user(user: Optional[Dict[str, Any]]) -> bool:
    if not user:
        return False
    return user.get("admin") in (1, True, "1")


def full_name(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return ""
    return f"{user.get('firstname', '')} {user.get('lastname', '')}".strip()


def user_brief(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {
        "email": user.get("email"),
        "firstname": user.get("firstname", ""),
        "lastname": user.get("lastname", ""),
        "is_admin": is_admin_user(user),
    }


def project_direct_message(message: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(message["_id"]),
        "conversation_id": str(message["conversation_id"]),
        "sender_id": message["sender_id"],
        "content": message["content"],
        "type": message.get("type", MessageKind.text.value),
        "is_read": bool(message.get("is_read", False)),
        "read_by": [
            {"user_id": entry["user_id"], "read_at": iso(entry.get("read_at"))}
            for entry in message.get("read_by", [])
        ],
        "created_at": iso(message.get("created_at")),
    }


def group_sender_ids(messages: Iterable[Dict[str, Any]]) -> set:
    return {m["sender_id"] for m in messages if m.get("sender_id") != SYSTEM_SENDER}


def project_group_message(
    message: Dict[str, Any], senders: Optional[Dict[str, Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """Wire form of a group message.

    `senders` maps emails to user documents; the system sender is never
    looked up there.
    """
    sender_id = message["sender_id"]
    sender = None
    if sender_id != SYSTEM_SENDER and senders:
        sender = user_brief(senders.get(sender_id))
    return {
        "id": str(message["_id"]),
        "group_id": str(message["group_id"]),
        "sender_id": sender_id,
        "sender": sender,
        "content": message["content"],
        "message_type": message.get("message_type", GroupMessageKind.message.value),
        "created_at": iso(message.get("created_at")),
    }


DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def page_limit(limit: Any) -> int:
    """Validate a page size: below 1 is rejected, above MAX_PAGE_SIZE is capped."""
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise InvalidInputError(constants.ERR_INVALID_LIMIT)
    if limit < 1:
        raise InvalidInputError(constants.ERR_INVALID_LIMIT)
    return min(limit, MAX_PAGE_SIZE)
