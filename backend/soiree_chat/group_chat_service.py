import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId

from . import constants
from .errors import ConflictError, ForbiddenError, InternalError, InvalidInputError, NotFoundError
from .models import (
    DEFAULT_PAGE_SIZE,
    SYSTEM_SENDER,
    GroupMessageKind,
    GroupRole,
    InvitationAction,
    InvitationStatus,
    full_name,
    group_sender_ids,
    iso,
    normalize_email,
    page_limit,
    parse_action,
    parse_object_id,
    project_group_message,
    user_brief,
)
from .notifications import NotificationFanout, truncate_body
from .read_receipts import ReadReceiptEngine
from .realtime.frames import (
    AdminRightsChangedFrame,
    GroupCreatedFrame,
    GroupInvitationAcceptedFrame,
    GroupInvitationFrame,
    GroupInvitationRejectedFrame,
    GroupMemberJoinedFrame,
    GroupMemberLeftFrame,
    NewGroupMessageFrame,
)
from .realtime.presence import PresenceTracker
from .repositories import Repositories

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50


class GroupChatService:
    """Group chats: creation, invitations, membership, messages and reads.

    State changes are persisted first; live frames and pushes go out through
    the fanout afterwards and never fail the caller.
    """

    def __init__(
        self,
        repos: Repositories,
        fanout: NotificationFanout,
        receipts: ReadReceiptEngine,
        presence: Optional[PresenceTracker] = None,
    ):
        self.repos = repos
        self.fanout = fanout
        self.receipts = receipts
        self.presence = presence

    # guards

    def _active_group(self, group_id) -> Dict[str, Any]:
        oid = parse_object_id(group_id, constants.ERR_INVALID_GROUP_ID)
        group = self.repos.groups.active_by_id(oid)
        if group is None:
            raise NotFoundError(constants.ERR_GROUP_NOT_FOUND)
        return group

    def _require_member(self, group_id, user_id: str) -> Dict[str, Any]:
        group = self._active_group(group_id)
        if self.repos.members.find(group["_id"], user_id) is None:
            raise ForbiddenError(constants.ERR_NOT_GROUP_MEMBER)
        return group

    def _require_group_admin(self, group_id, user_id: str) -> Dict[str, Any]:
        group = self._active_group(group_id)
        member = self.repos.members.find(group["_id"], user_id)
        if member is None or member["role"] != GroupRole.admin.value:
            raise ForbiddenError(constants.ERR_NOT_GROUP_ADMIN)
        return group

    def _is_online(self, user_id: str) -> bool:
        return bool(self.presence and self.presence.is_online(user_id))

    # views

    def _group_view(self, group: Dict[str, Any], creator: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "id": str(group["_id"]),
            "name": group["name"],
            "created_by": group["created_by"],
            "creator": user_brief(creator),
            "created_at": iso(group.get("created_at")),
            "updated_at": iso(group.get("updated_at")),
            "is_active": bool(group.get("is_active", True)),
        }

    def _invitation_view(
        self,
        invitation: Dict[str, Any],
        group: Optional[Dict[str, Any]] = None,
        inviter: Optional[Dict[str, Any]] = None,
        invitee: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        view = {
            "id": str(invitation["_id"]),
            "group_id": str(invitation["group_id"]),
            "group_name": group["name"] if group else None,
            "invited_by": invitation["invited_by"],
            "inviter": user_brief(inviter),
            "invited_user": invitation["invited_user"],
            "message": invitation.get("message"),
            "status": invitation["status"],
            "invited_at": iso(invitation.get("invited_at")),
        }
        if invitee is not None:
            view["invitee"] = user_brief(invitee)
        return view

    def _project_messages(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        senders = self.repos.users.find_by_emails(group_sender_ids(messages))
        return [project_group_message(m, senders) for m in messages]

    # invitations

    def _issue_invitation(
        self,
        group: Dict[str, Any],
        inviter: Dict[str, Any],
        invitee: Dict[str, Any],
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        invitation = self.repos.group_invitations.create(group["_id"], inviter["email"], invitee["email"], message)
        view = self._invitation_view(invitation, group, inviter)
        logger.info("group invitation %s: %s -> %s (%s)", view["id"], inviter["email"], invitee["email"], group["name"])
        self.fanout.to_user(invitee["email"], GroupInvitationFrame(invitation=view))
        self.fanout.push(
            [invitee["email"]],
            constants.PUSH_GROUP_INVITATION_TITLE,
            constants.PUSH_GROUP_INVITATION_BODY.format(inviter=full_name(inviter), group=group["name"]),
            {"type": "group_invitation", "group_id": str(group["_id"]), "group_name": group["name"]},
        )
        return view

    def create_group(self, creator_id: str, name: str, member_ids: Iterable[str] = ()) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError(constants.ERR_GROUP_NAME_REQUIRED)
        creator = self.repos.users.find_by_email(creator_id)
        if creator is None:
            raise NotFoundError(constants.ERR_USER_NOT_FOUND)

        invitees: List[str] = []
        for raw in member_ids or ():
            try:
                email = normalize_email(raw)
            except InvalidInputError:
                logger.info("create_group: skipping invalid member id %r", raw)
                continue
            if email != creator_id and email not in invitees:
                invitees.append(email)

        group = self.repos.groups.create(name, creator_id)
        self.repos.members.add(group["_id"], creator_id, GroupRole.admin)
        logger.info("group %s created by %s", group["_id"], creator_id)

        known = self.repos.users.find_by_emails(invitees)
        invitations = []
        for email in invitees:
            user = known.get(email)
            if user is None:
                logger.info("create_group: unknown user %s not invited", email)
                continue
            if self.repos.group_invitations.find_pending(group["_id"], email):
                continue
            invitations.append(self._issue_invitation(group, creator, user))

        view = self._group_view(group, creator)
        view["member_count"] = 1
        view["invitations"] = invitations
        self.fanout.to_user(creator_id, GroupCreatedFrame(group=view))
        return view

    def invite(self, group_id, by: str, user_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        group = self._require_group_admin(group_id, by)
        user_id = normalize_email(user_id)
        invitee = self.repos.users.find_by_email(user_id)
        if invitee is None:
            raise NotFoundError(constants.ERR_USER_NOT_FOUND)
        if self.repos.members.find(group["_id"], user_id) is not None:
            raise ConflictError(constants.ERR_ALREADY_MEMBER)
        if self.repos.group_invitations.find_pending(group["_id"], user_id):
            raise ConflictError(constants.ERR_GROUP_INVITATION_EXISTS)
        inviter = self.repos.users.find_by_email(by) or {"email": by}
        message = message.strip() if isinstance(message, str) and message.strip() else None
        return self._issue_invitation(group, inviter, invitee, message)

    def _pending_invitation(self, invitation_id, by: str) -> Dict[str, Any]:
        oid = parse_object_id(invitation_id, constants.ERR_INVALID_INVITATION_ID)
        invitation = self.repos.group_invitations.by_id(oid)
        if invitation is None:
            raise NotFoundError(constants.ERR_INVITATION_NOT_FOUND)
        if invitation["invited_user"] != by:
            raise ForbiddenError(constants.ERR_INVITATION_NOT_YOURS)
        if invitation["status"] != InvitationStatus.pending.value:
            raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)
        return invitation

    def respond_to_invitation(self, invitation_id, by: str, action) -> Dict[str, Any]:
        choice = parse_action(action)
        invitation = self._pending_invitation(invitation_id, by)
        oid = invitation["_id"]
        group_id = invitation["group_id"]
        inviter = invitation["invited_by"]

        if choice is InvitationAction.reject:
            if not self.repos.group_invitations.transition(oid, InvitationStatus.rejected):
                raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)
            logger.info("group invitation %s rejected by %s", oid, by)
            self.fanout.to_user(
                inviter, GroupInvitationRejectedFrame(invitation_id=str(oid), group_id=str(group_id), user_id=by)
            )
            return {"invitation_id": str(oid), "status": InvitationStatus.rejected.value, "group_id": str(group_id)}

        group = self.repos.groups.active_by_id(group_id)
        if group is None:
            raise NotFoundError(constants.ERR_GROUP_NOT_FOUND)
        if not self.repos.group_invitations.transition(oid, InvitationStatus.accepted):
            raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)
        try:
            self.repos.members.add(group_id, by, GroupRole.member)
        except Exception as exc:
            logger.exception("adding member failed, group invitation %s back to pending", oid)
            self.repos.group_invitations.revert_to_pending(oid)
            raise InternalError() from exc

        user = self.repos.users.find_by_email(by)
        content = constants.SYSTEM_MEMBER_JOINED.format(
            firstname=(user or {}).get("firstname", ""), lastname=(user or {}).get("lastname", "")
        ).strip()
        system_message = project_group_message(
            self.repos.group_messages.create(group_id, SYSTEM_SENDER, content, GroupMessageKind.system)
        )
        self.repos.groups.touch(group_id)
        logger.info("%s joined group %s", by, group_id)

        brief = user_brief(user)
        self.fanout.to_users(
            self.repos.members.member_ids(group_id),
            GroupMemberJoinedFrame(group_id=str(group_id), user_id=by, user=brief, message=system_message),
        )
        self.fanout.to_user(
            inviter,
            GroupInvitationAcceptedFrame(invitation_id=str(oid), group_id=str(group_id), user_id=by, user=brief),
        )
        return {
            "invitation_id": str(oid),
            "status": InvitationStatus.accepted.value,
            "group_id": str(group_id),
            "group": self._group_view(group),
            "message": system_message,
        }

    def cancel_invitation(self, invitation_id, by: str) -> Dict[str, Any]:
        oid = parse_object_id(invitation_id, constants.ERR_INVALID_INVITATION_ID)
        invitation = self.repos.group_invitations.by_id(oid)
        if invitation is None:
            raise NotFoundError(constants.ERR_INVITATION_NOT_FOUND)
        self._require_group_admin(invitation["group_id"], by)
        if invitation["status"] != InvitationStatus.pending.value:
            raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)
        if not self.repos.group_invitations.transition(oid, InvitationStatus.cancelled):
            raise ConflictError(constants.ERR_INVITATION_ALREADY_HANDLED)
        logger.info("group invitation %s cancelled by %s", oid, by)
        return {"invitation_id": str(oid), "status": InvitationStatus.cancelled.value}

    def list_pending_invitations(self, user_id: str) -> List[Dict[str, Any]]:
        invitations = self.repos.group_invitations.pending_for_user(user_id)
        groups = {
            g["_id"]: g for g in self.repos.groups.active_by_ids(list({i["group_id"] for i in invitations}))
        }
        inviters = self.repos.users.find_by_emails(i["invited_by"] for i in invitations)
        return [
            self._invitation_view(i, groups[i["group_id"]], inviters.get(i["invited_by"]))
            for i in invitations
            if i["group_id"] in groups
        ]

    def list_group_invitations(self, group_id, by: str) -> List[Dict[str, Any]]:
        group = self._require_member(group_id, by)
        invitations = self.repos.group_invitations.pending_for_group(group["_id"])
        users = self.repos.users.find_by_emails(
            [i["invited_by"] for i in invitations] + [i["invited_user"] for i in invitations]
        )
        return [
            self._invitation_view(i, group, users.get(i["invited_by"]), users.get(i["invited_user"]) or {})
            for i in invitations
        ]

    # messages

    def send_message(self, group_id, sender_id: str, content: str) -> Dict[str, Any]:
        group = self._require_member(group_id, sender_id)
        content = (content or "").strip()
        if not content:
            raise InvalidInputError(constants.ERR_EMPTY_CONTENT)

        message = self.repos.group_messages.create(group["_id"], sender_id, content, GroupMessageKind.message)
        self.repos.groups.touch(group["_id"])
        sender = self.repos.users.find_by_email(sender_id)
        view = project_group_message(message, {sender_id: sender} if sender else None)

        members = self.repos.members.member_ids(group["_id"])
        self.fanout.to_users(members, NewGroupMessageFrame(group_id=str(group["_id"]), message=view), exclude=sender_id)
        offline = [m for m in members if m != sender_id and not self._is_online(m)]
        if offline:
            firstname = (sender or {}).get("firstname") or sender_id
            self.fanout.push(
                offline,
                constants.PUSH_GROUP_MESSAGE_TITLE.format(group=group["name"]),
                truncate_body(constants.PUSH_GROUP_MESSAGE_BODY.format(firstname=firstname, content=content)),
                {
                    "type": "group_message",
                    "group_id": str(group["_id"]),
                    "message_id": view["id"],
                    "sender_name": full_name(sender) or sender_id,
                },
            )
        return view

    def list_messages(self, group_id, by: str, limit: int = DEFAULT_PAGE_SIZE, before=None) -> List[Dict[str, Any]]:
        group = self._require_member(group_id, by)
        limit = page_limit(limit)
        cursor: Optional[ObjectId] = parse_object_id(before, constants.ERR_INVALID_CURSOR) if before else None
        return self._project_messages(self.repos.group_messages.page(group["_id"], limit, cursor))

    def mark_as_read(self, group_id, by: str) -> Dict[str, Any]:
        group = self._require_member(group_id, by)
        return self.receipts.mark_as_read(group["_id"], by)

    def unread_count(self, group_id, user_id: str) -> int:
        group = self._require_member(group_id, user_id)
        return self.receipts.unread_count(group["_id"], user_id)

    # membership

    def leave_group(self, group_id, by: str) -> Dict[str, Any]:
        group = self._require_member(group_id, by)
        gid = group["_id"]
        leaving = self.repos.members.find(gid, by)
        self.repos.members.remove(gid, by)
        logger.info("%s left group %s", by, gid)

        remaining = self.repos.members.members(gid)
        if not remaining:
            self.repos.groups.deactivate(gid)
            logger.info("group %s deactivated, no members left", gid)
            return {"group_id": str(gid), "is_active": False, "promoted": None}

        promoted = None
        if leaving["role"] == GroupRole.admin.value and not any(
            m["role"] == GroupRole.admin.value for m in remaining
        ):
            promoted = remaining[0]["user_id"]
            self.repos.members.set_role(gid, promoted, GroupRole.admin)
            logger.info("group %s: %s promoted to admin", gid, promoted)
            self.fanout.to_user(
                promoted, AdminRightsChangedFrame(group_id=str(gid), user_id=promoted, role=GroupRole.admin.value)
            )

        user = self.repos.users.find_by_email(by)
        name = full_name(user) or constants.SYSTEM_UNKNOWN_MEMBER
        system_message = project_group_message(
            self.repos.group_messages.create(
                gid, SYSTEM_SENDER, constants.SYSTEM_MEMBER_LEFT.format(name=name), GroupMessageKind.system
            )
        )
        self.repos.groups.touch(gid)
        self.fanout.to_users(
            [m["user_id"] for m in remaining],
            GroupMemberLeftFrame(group_id=str(gid), user_id=by, message=system_message),
        )
        return {"group_id": str(gid), "is_active": True, "promoted": promoted}

    def list_groups(self, user_id: str) -> List[Dict[str, Any]]:
        groups = self.repos.groups.active_by_ids(self.repos.members.group_ids_for(user_id))
        creators = self.repos.users.find_by_emails(g["created_by"] for g in groups)
        results = []
        for group in groups:
            view = self._group_view(group, creators.get(group["created_by"]))
            view["member_count"] = self.repos.members.count_members(group["_id"])
            view["unread_count"] = self.receipts.unread_count(group["_id"], user_id)
            latest = self.repos.group_messages.latest(group["_id"])
            view["last_message"] = self._project_messages([latest])[0] if latest else None
            results.append(view)
        return results

    def list_members(self, group_id, by: str) -> List[Dict[str, Any]]:
        group = self._require_member(group_id, by)
        members = self.repos.members.members(group["_id"])
        users = self.repos.users.find_by_emails(m["user_id"] for m in members)
        results = []
        for member in members:
            brief = user_brief(users.get(member["user_id"])) or {"email": member["user_id"]}
            brief.update(
                {
                    "user_id": member["user_id"],
                    "role": member["role"],
                    "joined_at": iso(member.get("joined_at")),
                    "is_online": self._is_online(member["user_id"]),
                }
            )
            results.append(brief)
        return results

    def search_users(self, query: str, by: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[Dict[str, Any]]:
        query = (query or "").strip()
        if len(query) < MIN_SEARCH_LENGTH:
            raise InvalidInputError(constants.ERR_QUERY_TOO_SHORT)
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise InvalidInputError(constants.ERR_INVALID_LIMIT)
        limit = max(1, min(limit, MAX_SEARCH_LIMIT))
        return [user_brief(u) for u in self.repos.users.search(query, limit, exclude=by)]
