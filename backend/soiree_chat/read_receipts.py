import logging
from typing import Any, Dict

from bson import ObjectId

from .models import iso, utcnow
from .notifications import NotificationFanout
from .realtime.frames import GroupMessagesReadFrame
from .realtime.rooms import GROUP
from .repositories.groups import GroupMessageRepository, ReadReceiptRepository

logger = logging.getLogger(__name__)


class ReadReceiptEngine:
    """Per-user last-read pointers for group chats."""

    def __init__(self, receipts: ReadReceiptRepository, messages: GroupMessageRepository, fanout: NotificationFanout):
        self.receipts = receipts
        self.messages = messages
        self.fanout = fanout

    def mark_as_read(self, group_id: ObjectId, user_id: str) -> Dict[str, Any]:
        latest = self.messages.latest(group_id)
        now = utcnow()
        last_id = latest["_id"] if latest else None
        self.receipts.upsert(group_id, user_id, now, last_id)
        self.fanout.to_room(
            GROUP,
            str(group_id),
            GroupMessagesReadFrame(group_id=str(group_id), user_id=user_id, read_at=now),
            exclude=user_id,
        )
        logger.debug("%s read group %s up to %s", user_id, group_id, last_id)
        return {
            "group_id": str(group_id),
            "user_id": user_id,
            "last_read_message_id": str(last_id) if last_id else None,
            "last_read_at": iso(now),
        }

    def unread_count(self, group_id: ObjectId, user_id: str) -> int:
        receipt = self.receipts.find(group_id, user_id)
        if not receipt or not receipt.get("last_read_message_id"):
            return self.messages.count_after(group_id)
        return self.messages.count_after(group_id, receipt["last_read_message_id"])
