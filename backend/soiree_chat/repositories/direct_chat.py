from typing import Any, Dict, List, Optional

import pymongo
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from .. import config, constants
from ..errors import ConflictError
from ..models import DELIVERABLE_CONVERSATION_STATUSES, ConversationStatus, InvitationStatus, utcnow
from .base import Repository


class InvitationRepository(Repository):
    collection_name = "chat_invitations"

    def find_pending(self, from_user: str, to_user: str) -> Optional[Dict[str, Any]]:
        return self.find_one(
            {"from_user_id": from_user, "to_user_id": to_user, "status": InvitationStatus.pending.value}
        )

    def create(self, from_user: str, to_user: str, message: str) -> Dict[str, Any]:
        doc = {
            "from_user_id": from_user,
            "to_user_id": to_user,
            "message": message,
            "status": InvitationStatus.pending.value,
            "created_at": utcnow(),
        }
        try:
            return self.insert(doc)
        except DuplicateKeyError:
            # lost the race against a concurrent invitation for the same pair
            raise ConflictError(constants.ERR_INVITATION_EXISTS)

    def received_pending(self, user: str) -> List[Dict[str, Any]]:
        return self.find_many(
            {"to_user_id": user, "status": InvitationStatus.pending.value},
            sort=[("created_at", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)],
        )

    def sent_pending(self, user: str) -> List[Dict[str, Any]]:
        return self.find_many(
            {"from_user_id": user, "status": InvitationStatus.pending.value},
            sort=[("created_at", pymongo.DESCENDING)],
        )

    def transition(self, invitation_id: ObjectId, status: str) -> bool:
        """Move a pending invitation to `status`; False if it was no longer pending."""
        result = self.update_one(
            {"_id": invitation_id, "status": InvitationStatus.pending.value},
            {"$set": {"status": status, "responded_at": utcnow()}},
        )
        return result.matched_count == 1

    def revert_to_pending(self, invitation_id: ObjectId) -> None:
        self.update_one(
            {"_id": invitation_id},
            {"$set": {"status": InvitationStatus.pending.value}, "$unset": {"responded_at": ""}},
        )


class ConversationRepository(Repository):
    collection_name = "conversations"

    def create(self, participants: List[str], created_by: str) -> Dict[str, Any]:
        now = utcnow()
        return self.insert(
            {
                "participants": list(participants),
                "status": ConversationStatus.accepted.value,
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
                "last_message_at": None,
            }
        )

    def by_id(self, conversation_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.find_one({"_id": conversation_id})

    def for_user(self, user: str) -> List[Dict[str, Any]]:
        conversations = self.find_many(
            {"participants": user, "status": {"$in": list(DELIVERABLE_CONVERSATION_STATUSES)}}
        )
        # conversations without messages sort after the active ones
        conversations.sort(key=lambda c: (c.get("last_message_at") or c.get("created_at")), reverse=True)
        return conversations

    def touch(self, conversation_id: ObjectId, at) -> None:
        self.update_one({"_id": conversation_id}, {"$set": {"last_message_at": at, "updated_at": at}})


class MessageRepository(Repository):
    collection_name = "messages"

    def create(self, conversation_id: ObjectId, sender: str, content: str, kind: str) -> Dict[str, Any]:
        return self.insert(
            {
                "conversation_id": conversation_id,
                "sender_id": sender,
                "content": content,
                "type": kind,
                "is_read": False,
                "read_by": [],
                "created_at": utcnow(),
            }
        )

    def by_id(self, message_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.find_one({"_id": message_id})

    def page(self, conversation_id: ObjectId, limit: int, before: Optional[ObjectId] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        if before is not None:
            query["_id"] = {"$lt": before}
        newest_first = self.find_many(query, sort=[("_id", pymongo.DESCENDING)], limit=limit)
        return list(reversed(newest_first))

    def last(self, conversation_id: ObjectId) -> Optional[Dict[str, Any]]:
        docs = self.find_many({"conversation_id": conversation_id}, sort=[("_id", pymongo.DESCENDING)], limit=1)
        return docs[0] if docs else None

    def _unread_query(self, conversation_id: ObjectId, user: str) -> Dict[str, Any]:
        return {
            "conversation_id": conversation_id,
            "sender_id": {"$ne": user},
            "read_by.user_id": {"$ne": user},
        }

    def unread_count(self, conversation_id: ObjectId, user: str) -> int:
        return self.count(self._unread_query(conversation_id, user))

    def unread(self, conversation_id: ObjectId, user: str) -> List[Dict[str, Any]]:
        return self.find_many(self._unread_query(conversation_id, user), projection={"sender_id": 1})

    def mark_read(self, message_id: ObjectId, user: str, at) -> bool:
        """Record `user` in read_by once. Returns False when already recorded."""
        result = self.update_one(
            {"_id": message_id, "read_by.user_id": {"$ne": user}},
            {"$push": {"read_by": {"user_id": user, "read_at": at}}, "$set": {"is_read": True}},
        )
        return result.modified_count == 1

    def mark_conversation_read(self, conversation_id: ObjectId, user: str, at) -> int:
        with pymongo.timeout(config.STORE_LIST_TIMEOUT):
            result = self.collection.update_many(
                self._unread_query(conversation_id, user),
                {"$push": {"read_by": {"user_id": user, "read_at": at}}, "$set": {"is_read": True}},
            )
        return result.modified_count
