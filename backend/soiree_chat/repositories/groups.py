from typing import Any, Dict, List, Optional

import pymongo
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from .. import constants
from ..errors import ConflictError
from ..models import GroupMessageKind, GroupRole, InvitationStatus, utcnow
from .base import Repository


class GroupRepository(Repository):
    collection_name = "chat_groups"

    def create(self, name: str, created_by: str) -> Dict[str, Any]:
        now = utcnow()
        return self.insert(
            {"name": name, "created_by": created_by, "created_at": now, "updated_at": now, "is_active": True}
        )

    def by_id(self, group_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.find_one({"_id": group_id})

    def active_by_id(self, group_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.find_one({"_id": group_id, "is_active": True})

    def active_by_ids(self, group_ids: List[ObjectId]) -> List[Dict[str, Any]]:
        if not group_ids:
            return []
        return self.find_many(
            {"_id": {"$in": group_ids}, "is_active": True}, sort=[("updated_at", pymongo.DESCENDING)]
        )

    def deactivate(self, group_id: ObjectId) -> None:
        self.update_one({"_id": group_id}, {"$set": {"is_active": False, "updated_at": utcnow()}})

    def touch(self, group_id: ObjectId) -> None:
        self.update_one({"_id": group_id}, {"$set": {"updated_at": utcnow()}})


class GroupMemberRepository(Repository):
    collection_name = "chat_group_members"

    def add(self, group_id: ObjectId, user: str, role: GroupRole) -> Dict[str, Any]:
        return self.insert({"group_id": group_id, "user_id": user, "role": role.value, "joined_at": utcnow()})

    def find(self, group_id: ObjectId, user: str) -> Optional[Dict[str, Any]]:
        return self.find_one({"group_id": group_id, "user_id": user})

    def members(self, group_id: ObjectId) -> List[Dict[str, Any]]:
        # ObjectId order breaks ties between members inserted in the same millisecond
        return self.find_many({"group_id": group_id}, sort=[("joined_at", pymongo.ASCENDING), ("_id", pymongo.ASCENDING)])

    def member_ids(self, group_id: ObjectId) -> List[str]:
        return [m["user_id"] for m in self.members(group_id)]

    def group_ids_for(self, user: str) -> List[ObjectId]:
        return [m["group_id"] for m in self.find_many({"user_id": user}, projection={"group_id": 1})]

    def count_admins(self, group_id: ObjectId) -> int:
        return self.count({"group_id": group_id, "role": GroupRole.admin.value})

    def count_members(self, group_id: ObjectId) -> int:
        return self.count({"group_id": group_id})

    def remove(self, group_id: ObjectId, user: str) -> bool:
        return self.delete_one({"group_id": group_id, "user_id": user}) == 1

    def set_role(self, group_id: ObjectId, user: str, role: GroupRole) -> None:
        self.update_one({"group_id": group_id, "user_id": user}, {"$set": {"role": role.value}})


class GroupInvitationRepository(Repository):
    collection_name = "chat_group_invitations"

    def create(self, group_id: ObjectId, invited_by: str, invited_user: str, message: Optional[str] = None) -> Dict[str, Any]:
        doc = {
            "group_id": group_id,
            "invited_by": invited_by,
            "invited_user": invited_user,
            "message": message,
            "status": InvitationStatus.pending.value,
            "invited_at": utcnow(),
        }
        try:
            return self.insert(doc)
        except DuplicateKeyError:
            raise ConflictError(constants.ERR_GROUP_INVITATION_EXISTS)

    def by_id(self, invitation_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.find_one({"_id": invitation_id})

    def find_pending(self, group_id: ObjectId, user: str) -> Optional[Dict[str, Any]]:
        return self.find_one({"group_id": group_id, "invited_user": user, "status": InvitationStatus.pending.value})

    def pending_for_user(self, user: str) -> List[Dict[str, Any]]:
        return self.find_many(
            {"invited_user": user, "status": InvitationStatus.pending.value},
            sort=[("invited_at", pymongo.DESCENDING)],
        )

    def pending_for_group(self, group_id: ObjectId) -> List[Dict[str, Any]]:
        return self.find_many(
            {"group_id": group_id, "status": InvitationStatus.pending.value},
            sort=[("invited_at", pymongo.DESCENDING)],
        )

    def transition(self, invitation_id: ObjectId, status: InvitationStatus) -> bool:
        result = self.update_one(
            {"_id": invitation_id, "status": InvitationStatus.pending.value},
            {"$set": {"status": status.value, "responded_at": utcnow()}},
        )
        return result.matched_count == 1

    def revert_to_pending(self, invitation_id: ObjectId) -> None:
        self.update_one(
            {"_id": invitation_id},
            {"$set": {"status": InvitationStatus.pending.value}, "$unset": {"responded_at": ""}},
        )


class GroupMessageRepository(Repository):
    collection_name = "chat_group_messages"

    def create(self, group_id: ObjectId, sender: str, content: str, kind: GroupMessageKind) -> Dict[str, Any]:
        return self.insert(
            {
                "group_id": group_id,
                "sender_id": sender,
                "content": content,
                "message_type": kind.value,
                "created_at": utcnow(),
            }
        )

    def page(self, group_id: ObjectId, limit: int, before: Optional[ObjectId] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"group_id": group_id}
        if before is not None:
            query["_id"] = {"$lt": before}
        newest_first = self.find_many(query, sort=[("_id", pymongo.DESCENDING)], limit=limit)
        return list(reversed(newest_first))

    def latest(self, group_id: ObjectId) -> Optional[Dict[str, Any]]:
        docs = self.find_many({"group_id": group_id}, sort=[("_id", pymongo.DESCENDING)], limit=1)
        return docs[0] if docs else None

    def count_after(self, group_id: ObjectId, after: Optional[ObjectId] = None) -> int:
        query: Dict[str, Any] = {"group_id": group_id}
        if after is not None:
            query["_id"] = {"$gt": after}
        return self.count(query)


class ReadReceiptRepository(Repository):
    collection_name = "chat_group_read_receipts"

    def find(self, group_id: ObjectId, user: str) -> Optional[Dict[str, Any]]:
        return self.find_one({"group_id": group_id, "user_id": user})

    def upsert(self, group_id: ObjectId, user: str, at, last_message_id: Optional[ObjectId] = None) -> None:
        fields: Dict[str, Any] = {"last_read_at": at}
        if last_message_id is not None:
            fields["last_read_message_id"] = last_message_id
        self.update_one({"group_id": group_id, "user_id": user}, {"$set": fields}, upsert=True)
