from typing import Optional

from fastapi import APIRouter, Depends, Query

from . import constants
from .auth import Principal, auth_required
from .dependencies import get_direct_chat
from .direct_chat_service import DirectChatService
from .models import DEFAULT_PAGE_SIZE
from .schemas import DirectMessageIn, InvitationIn, NotificationIn, RespondIn, success

router = APIRouter(prefix="/chat", tags=["chat"])


@router.get("/conversations")
def list_conversations(
    me: Principal = Depends(auth_required), chat: DirectChatService = Depends(get_direct_chat)
):
    return success(constants.MSG_CONVERSATIONS_FETCHED, chat.list_conversations(me.user_id))


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE),
    before: Optional[str] = None,
    me: Principal = Depends(auth_required),
    chat: DirectChatService = Depends(get_direct_chat),
):
    data = chat.list_messages(conversation_id, me.user_id, limit=limit, before=before)
    return success(constants.MSG_MESSAGES_FETCHED, data)


@router.post("/conversations/{conversation_id}/messages")
def send_message(
    conversation_id: str,
    data: DirectMessageIn,
    me: Principal = Depends(auth_required),
    chat: DirectChatService = Depends(get_direct_chat),
):
    message = chat.send_message(conversation_id, me.user_id, data.content, data.type or "text")
    return success(constants.MSG_MESSAGE_SENT, message)


@router.post("/conversations/{conversation_id}/mark-read")
def mark_conversation_read(
    conversation_id: str, me: Principal = Depends(auth_required), chat: DirectChatService = Depends(get_direct_chat)
):
    count = chat.mark_conversation_read(conversation_id, me.user_id)
    return success(constants.MSG_MARKED_READ, {"count": count})


@router.post("/messages/{message_id}/read")
def mark_message_read(
    message_id: str, me: Principal = Depends(auth_required), chat: DirectChatService = Depends(get_direct_chat)
):
    return success(constants.MSG_MESSAGE_READ, chat.mark_message_read(message_id, me.user_id))


@router.get("/admins/search")
def search_admins(
    q: str = "",
    limit: int = 10,
    me: Principal = Depends(auth_required),
    chat: DirectChatService = Depends(get_direct_chat),
):
    return success(constants.MSG_USERS_FOUND, chat.search_admins(me.user_id, q, limit))


@router.post("/invitations")
def send_invitation(
    data: InvitationIn, me: Principal = Depends(auth_required), chat: DirectChatService = Depends(get_direct_chat)
):
    invitation = chat.send_invitation(me.user_id, data.to_user_id, data.message)
    return success(constants.MSG_INVITATION_SENT, {"invitation": invitation})


@router.get("/invitations")
def list_invitations(me: Principal = Depends(auth_required), chat: DirectChatService = Depends(get_direct_chat)):
    return success(constants.MSG_INVITATIONS_FETCHED, chat.list_received_invitations(me.user_id))


@router.put("/invitations/{invitation_id}/respond")
def respond_to_invitation(
    invitation_id: str,
    data: RespondIn,
    me: Principal = Depends(auth_required),
    chat: DirectChatService = Depends(get_direct_chat),
):
    result = chat.respond_to_invitation(invitation_id, me.user_id, data.action)
    message = constants.MSG_INVITATION_ACCEPTED if result["status"] == "accepted" else constants.MSG_INVITATION_REJECTED
    return success(message, result)


@router.post("/notifications/send")
def send_notification(
    data: NotificationIn, me: Principal = Depends(auth_required), chat: DirectChatService = Depends(get_direct_chat)
):
    result = chat.send_notification(me.user_id, data.to_user_id, data.type, data.title, data.body, data.data)
    return success(constants.MSG_NOTIFICATION_SENT, result)
