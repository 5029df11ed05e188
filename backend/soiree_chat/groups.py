from typing import Optional

from fastapi import APIRouter, Depends, Query

from . import constants
from .auth import Principal, auth_required
from .dependencies import get_group_chat
from .group_chat_service import GroupChatService
from .models import DEFAULT_PAGE_SIZE
from .schemas import GroupCreateIn, GroupInviteIn, GroupMessageIn, RespondIn, success

router = APIRouter(prefix="/chat", tags=["groups"])


@router.post("/groups")
def create_group(
    data: GroupCreateIn, me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    return success(constants.MSG_GROUP_CREATED, groups.create_group(me.user_id, data.name, data.member_ids))


@router.get("/groups")
def list_groups(me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)):
    return success(constants.MSG_GROUPS_FETCHED, groups.list_groups(me.user_id))


@router.post("/groups/{group_id}/invite")
def invite_to_group(
    group_id: str,
    data: GroupInviteIn,
    me: Principal = Depends(auth_required),
    groups: GroupChatService = Depends(get_group_chat),
):
    invitation = groups.invite(group_id, me.user_id, data.user_id, data.message)
    return success(constants.MSG_INVITATION_SENT, invitation)


@router.get("/groups/{group_id}/members")
def list_members(
    group_id: str, me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    return success(constants.MSG_MEMBERS_FETCHED, groups.list_members(group_id, me.user_id))


@router.post("/groups/{group_id}/leave")
def leave_group(
    group_id: str, me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    return success(constants.MSG_GROUP_LEFT, groups.leave_group(group_id, me.user_id))


@router.get("/groups/{group_id}/pending-invitations")
@router.get("/groups/{group_id}/invitations/pending")
def list_group_invitations(
    group_id: str, me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    return success(constants.MSG_INVITATIONS_FETCHED, groups.list_group_invitations(group_id, me.user_id))


@router.post("/groups/{group_id}/messages")
def send_group_message(
    group_id: str,
    data: GroupMessageIn,
    me: Principal = Depends(auth_required),
    groups: GroupChatService = Depends(get_group_chat),
):
    return success(constants.MSG_MESSAGE_SENT, groups.send_message(group_id, me.user_id, data.content))


@router.get("/groups/{group_id}/messages")
def list_group_messages(
    group_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE),
    before: Optional[str] = None,
    me: Principal = Depends(auth_required),
    groups: GroupChatService = Depends(get_group_chat),
):
    data = groups.list_messages(group_id, me.user_id, limit=limit, before=before)
    return success(constants.MSG_MESSAGES_FETCHED, data)


@router.post("/groups/{group_id}/mark-read")
def mark_group_read(
    group_id: str, me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    return success(constants.MSG_MARKED_READ, groups.mark_as_read(group_id, me.user_id))


@router.get("/groups/{group_id}/unread-count")
def group_unread_count(
    group_id: str, me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    count = groups.unread_count(group_id, me.user_id)
    return success(constants.MSG_UNREAD_COUNT, {"group_id": group_id, "unread_count": count})


@router.get("/group-invitations/pending")
def list_pending_invitations(
    me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    return success(constants.MSG_INVITATIONS_FETCHED, groups.list_pending_invitations(me.user_id))


@router.put("/group-invitations/{invitation_id}/respond")
def respond_to_group_invitation(
    invitation_id: str,
    data: RespondIn,
    me: Principal = Depends(auth_required),
    groups: GroupChatService = Depends(get_group_chat),
):
    result = groups.respond_to_invitation(invitation_id, me.user_id, data.action)
    message = constants.MSG_INVITATION_ACCEPTED if result["status"] == "accepted" else constants.MSG_INVITATION_REJECTED
    return success(message, result)


@router.delete("/group-invitations/{invitation_id}/cancel")
def cancel_group_invitation(
    invitation_id: str, me: Principal = Depends(auth_required), groups: GroupChatService = Depends(get_group_chat)
):
    return success(constants.MSG_INVITATION_CANCELLED, groups.cancel_invitation(invitation_id, me.user_id))


@router.get("/users/search")
def search_users(
    q: str = "",
    limit: int = 10,
    me: Principal = Depends(auth_required),
    groups: GroupChatService = Depends(get_group_chat),
):
    return success(constants.MSG_USERS_FOUND, groups.search_users(q, me.user_id, limit))
