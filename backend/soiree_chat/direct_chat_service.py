import logging
from typing import Any, Dict, List, Optional

from . import constants
from .errors import ConflictError, ForbiddenError, InternalError, InvalidInputError, NotFoundError
from .models import (
    ConversationStatus,
    InvitationAction,
    InvitationStatus,
    DEFAULT_PAGE_SIZE,
    MessageKind,
    NotificationKind,
    full_name,
    is_admin_user,
    iso,
    normalize_email,
    page_limit,
    parse_action,
    parse_object_id,
    project_direct_message,
    user_brief,
    utcnow,
)
from .notifications import NotificationFanout, truncate_body
from .realtime.frames import (
    InvitationAcceptedFrame,
    InvitationRejectedFrame,
    MessagesReadFrame,
    NewInvitationFrame,
    NewMessageFrame,
)
from .realtime.presence import PresenceTracker
from .repositories import Repositories

logger = logging.getLogger(__name__)


def push_title(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return ""
    return f"{user.get('firstname', '')} {str(user.get('lastname', '')).upper()}".strip()


class DirectChatService:
    """One-to-one chat between admins: invitations, conversations and messages."""

    def __init__(self, repos: Repositories, fanout: NotificationFanout, presence: Optional[PresenceTracker] = None):
        self.repos = repos
        self.fanout = fanout
        self.presence = presence

    def _require_admin(self, user_id: str) -> Dict[str, Any]:
        user = self.repos.users.find_by_email(user_id)
        if not is_admin_user(user):
            raise ForbiddenError(constants.ERR_ADMIN_ONLY)
        return user

    def _conversation_for(self, conversation_id, user_id: str) -> Dict[str, Any]:
        oid = parse_object_id(conversation_id, constants.ERR_INVALID_CONV_ID)
        conversation = self.repos.conversations.by_id(oid)
        if conversation is None:
            raise NotFoundError(constants.ERR_CONV_NOT_FOUND)
        if user_id not in conversation["participants"]:
            raise ForbiddenError(constants.ERR_CONV_ACCESS_DENIED)
        return conversation

    def _invitation_view(self, invitation: Dict[str, Any], from_user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "id": str(invitation["_id"]),
            "from_user_id": invitation["from_user_id"],
            "to_user_id": invitation["to_user_id"],
            "message": invitation.get("message", ""),
            "status": invitation["status"],
            "created_at": iso(invitation.get("created_at")),
            "from_user": user_brief(from_user),
        }

    # invitations

    def send_invitation(self, from_user: str, to_user: str, message: str) -> Dict[str, Any]:
        sender = self._require_admin(from_user)
        to_user = normalize_email(to_user)
        if to_user == from_user:
            raise InvalidInputError(constants.ERR_SELF_INVITE)
        message = (message or "").strip()
        if not message:
            raise InvalidInputError(constants.ERR_EMPTY_CONTENT)
        recipient = self.repos.users.find_by_email(to_user)
        if recipient is None:
            raise NotFoundError(constants.ERR_USER_NOT_FOUND)
        if not is_admin_user(recipient):
            raise InvalidInputError(constants.ERR_RECIPIENT_NOT_ADMIN)
        if self.repos.invitations.find_pending(from_user, to_user):
            raise ConflictError(constants.ERR_INVITATION_EXISTS)

        invitation = self.repos.invitations.create(from_user, to_user, message)
        view = self._invitation_view(invitation, sender)
        logger.info("chat invitation %s: %s -> %s", view["id"], from_user, to_user)

        self.fanout.push(
            [to_user],
            push_title(sender),
            constants.PUSH_CHAT_INVITATION_BODY,
            {
                "type": "chat_invitation",
                "invitationId": view["id"],
                "fromUserId": from_user,
                "fromUserName": full_name(sender),
            },
        )
        self.fanout.to_user(to_user, NewInvitationFrame(invitation=view))
        return view

    def list_received_invitations(self, user_id: str) -> List[Dict[str, Any]]:
        self._require_admin(user_id)
        invitations = self.repos.invitations.received_pending(user_id)
        senders = self.repos.users.find_by_emails(i["from_user_id"] for i in invitations)
        return [self._invitation_view(i, senders.get(i["from_user_id"])) for i in invitations]

    def respond_to_invitation(self, invitation_id, by: str, action) -> Dict[str, Any]:
        responder = self._require_admin(by)
        choice = parse_action(action)
        oid = parse_object_id(invitation_id, constants.ERR_INVALID_INVITATION_ID)
        invitation = self.repos.invitations.find_one({"_id": oid})
        if invitation is None:
            raise NotFoundError(constants.ERR_INVITATION_NOT_FOUND)
        if invitation["to_user_id"] != by:
            raise ForbiddenError(constants.ERR_INVITATION_NOT_YOURS)
        if invitation["status"] != InvitationStatus.pending.value:
            raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)

        inviter = invitation["from_user_id"]
        if choice is InvitationAction.reject:
            if not self.repos.invitations.transition(oid, InvitationStatus.rejected.value):
                raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)
            logger.info("chat invitation %s rejected by %s", oid, by)
            self.fanout.to_user(inviter, InvitationRejectedFrame(invitation_id=str(oid), user_id=by))
            return {"invitation_id": str(oid), "status": InvitationStatus.rejected.value, "conversation": None}

        if not self.repos.invitations.transition(oid, InvitationStatus.accepted.value):
            raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)
        try:
            conversation = self.repos.conversations.create([inviter, by], created_by=inviter)
        except Exception as exc:
            logger.exception("conversation creation failed, invitation %s back to pending", oid)
            self.repos.invitations.revert_to_pending(oid)
            raise InternalError() from exc
        logger.info("chat invitation %s accepted, conversation %s", oid, conversation["_id"])

        conversation_id = str(conversation["_id"])
        self.fanout.to_user(
            inviter,
            InvitationAcceptedFrame(
                invitation_id=str(oid), conversation_id=conversation_id, user_id=by, user=user_brief(responder)
            ),
        )
        self.fanout.push(
            [inviter],
            push_title(responder),
            constants.PUSH_INVITATION_ACCEPTED_BODY,
            {
                "type": "chat_invitation_accepted",
                "invitationId": str(oid),
                "acceptedBy": by,
                "acceptedByName": full_name(responder),
            },
        )
        return {
            "invitation_id": str(oid),
            "status": InvitationStatus.accepted.value,
            "conversation": {
                "id": conversation_id,
                "participants": conversation["participants"],
                "status": conversation["status"],
                "created_at": iso(conversation["created_at"]),
                "last_message_at": None,
            },
        }

    # messages

    def send_message(self, conversation_id, sender_id: str, content: str, kind: str = MessageKind.text.value) -> Dict[str, Any]:
        sender = self._require_admin(sender_id)
        conversation = self._conversation_for(conversation_id, sender_id)
        content = (content or "").strip()
        if not content:
            raise InvalidInputError(constants.ERR_EMPTY_CONTENT)
        try:
            kind = MessageKind(kind or MessageKind.text.value).value
        except ValueError:
            raise InvalidInputError(constants.ERR_INVALID_MESSAGE_TYPE)

        message = self.repos.messages.create(conversation["_id"], sender_id, content, kind)
        self.repos.conversations.touch(conversation["_id"], message["created_at"])
        view = project_direct_message(message)

        cid = str(conversation["_id"])
        self.fanout.to_users(conversation["participants"], NewMessageFrame(conversation_id=cid, message=view))
        others = [p for p in conversation["participants"] if p != sender_id]
        self.fanout.push(
            others,
            full_name(sender),
            truncate_body(content),
            {"type": "chat_message", "conversationId": cid, "messageId": view["id"], "senderId": sender_id},
        )
        return view

    def list_messages(self, conversation_id, user_id: str, limit: int = DEFAULT_PAGE_SIZE, before=None) -> List[Dict[str, Any]]:
        self._require_admin(user_id)
        conversation = self._conversation_for(conversation_id, user_id)
        limit = page_limit(limit)
        cursor = parse_object_id(before, constants.ERR_INVALID_CURSOR) if before else None
        return [project_direct_message(m) for m in self.repos.messages.page(conversation["_id"], limit, cursor)]

    def mark_message_read(self, message_id, by: str) -> Dict[str, Any]:
        self._require_admin(by)
        oid = parse_object_id(message_id, constants.ERR_INVALID_MESSAGE_ID)
        message = self.repos.messages.by_id(oid)
        if message is None:
            raise NotFoundError(constants.ERR_MESSAGE_NOT_FOUND)
        self._conversation_for(message["conversation_id"], by)
        if self.repos.messages.mark_read(oid, by, utcnow()):
            logger.debug("message %s read by %s", oid, by)
        return project_direct_message(self.repos.messages.by_id(oid))

    def mark_conversation_read(self, conversation_id, user_id: str) -> int:
        self._require_admin(user_id)
        conversation = self._conversation_for(conversation_id, user_id)
        unread = self.repos.messages.unread(conversation["_id"], user_id)
        if not unread:
            return 0
        now = utcnow()
        count = self.repos.messages.mark_conversation_read(conversation["_id"], user_id, now)
        senders: Dict[str, List[str]] = {}
        for message in unread:
            senders.setdefault(message["sender_id"], []).append(str(message["_id"]))
        cid = str(conversation["_id"])
        for sender, ids in senders.items():
            self.fanout.to_user(
                sender, MessagesReadFrame(conversation_id=cid, user_id=user_id, message_ids=ids, read_at=now)
            )
        return count

    def send_notification(
        self, by: str, to_user: str, kind: str, title: str, body: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Push a caller-authored chat notification to every device of `to_user`.

        Only string values of `data` are forwarded; `type` is always set to `kind`.
        """
        self._require_admin(by)
        if not isinstance(to_user, str) or not to_user.strip():
            raise InvalidInputError(constants.ERR_RECIPIENT_REQUIRED)
        if not isinstance(kind, str) or not kind.strip():
            raise InvalidInputError(constants.ERR_NOTIFICATION_TYPE_REQUIRED)
        title = (title or "").strip()
        if not title:
            raise InvalidInputError(constants.ERR_TITLE_REQUIRED)
        body = (body or "").strip()
        if not body:
            raise InvalidInputError(constants.ERR_BODY_REQUIRED)
        try:
            kind = NotificationKind(kind.strip()).value
        except ValueError:
            raise InvalidInputError(constants.ERR_INVALID_NOTIFICATION_TYPE)
        to_user = normalize_email(to_user)
        if self.repos.users.find_by_email(to_user) is None:
            raise NotFoundError(constants.ERR_USER_NOT_FOUND)

        payload = {key: value for key, value in (data or {}).items() if isinstance(value, str)}
        payload["type"] = kind
        sent, failed = self.fanout.push([to_user], title, body, payload)
        logger.info("chat notification %s: %s -> %s", kind, by, to_user)
        return {"to_user_id": to_user, "type": kind, "sent": sent, "failed": failed}

    # listings

    def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        self._require_admin(user_id)
        conversations = self.repos.conversations.for_user(user_id)
        pending = self.repos.invitations.sent_pending(user_id)

        others = {p for c in conversations for p in c["participants"] if p != user_id}
        others.update(i["to_user_id"] for i in pending)
        profiles = self.repos.users.find_by_emails(others)

        results = []
        for invitation in pending:
            other = profiles.get(invitation["to_user_id"])
            results.append(
                {
                    "id": f"pending-{invitation['_id']}",
                    "invitation_id": str(invitation["_id"]),
                    "participant": self._participant(invitation["to_user_id"], other),
                    "status": ConversationStatus.pending.value,
                    "last_message": None,
                    "last_message_at": None,
                    "unread_count": 0,
                    "created_at": iso(invitation.get("created_at")),
                }
            )
        for conversation in conversations:
            other_id = next((p for p in conversation["participants"] if p != user_id), user_id)
            last = self.repos.messages.last(conversation["_id"])
            results.append(
                {
                    "id": str(conversation["_id"]),
                    "participant": self._participant(other_id, profiles.get(other_id)),
                    "status": conversation["status"],
                    "last_message": project_direct_message(last) if last else None,
                    "last_message_at": iso(conversation.get("last_message_at")),
                    "unread_count": self.repos.messages.unread_count(conversation["_id"], user_id),
                    "created_at": iso(conversation.get("created_at")),
                }
            )
        return results

    def _participant(self, user_id: str, profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        brief = user_brief(profile) or {"email": user_id, "firstname": "", "lastname": "", "is_admin": False}
        online = bool(self.presence and self.presence.is_online(user_id))
        last_seen = self.presence.last_seen(user_id) if self.presence else None
        if last_seen is None and profile:
            last_seen = profile.get("last_seen")
        brief["is_online"] = online
        brief["last_seen"] = None if online else iso(last_seen)
        return brief

    def search_admins(self, user_id: str, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        self._require_admin(user_id)
        query = (query or "").strip()
        if len(query) < 2:
            raise InvalidInputError(constants.ERR_QUERY_TOO_SHORT)
        limit = max(1, min(int(limit), 50))
        users = self.repos.users.search(query, limit, exclude=user_id, admins_only=True)
        return [user_brief(u) for u in users]

