"""JSON frames exchanged over the chat websocket.

Every frame is an object with a `type` string. Client frames decode into one
model per known type; anything else becomes `UnknownFrame`. Server frames are
built from the models below so every kind carries its full set of fields.
"""
import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, ValidationError


class FrameError(ValueError):
    pass


class ClientFrame(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AuthenticateFrame(ClientFrame):
    type: Literal["authenticate"] = "authenticate"
    token: str


class JoinConversationFrame(ClientFrame):
    type: Literal["join_conversation"] = "join_conversation"
    conversation_id: str


class LeaveConversationFrame(ClientFrame):
    type: Literal["leave_conversation"] = "leave_conversation"
    conversation_id: str


class JoinGroupFrame(ClientFrame):
    type: Literal["join_group"] = "join_group"
    group_id: str


class LeaveGroupFrame(ClientFrame):
    type: Literal["leave_group"] = "leave_group"
    group_id: str


class TypingFrame(ClientFrame):
    type: Literal["typing"] = "typing"
    conversation_id: Optional[str] = None
    group_id: Optional[str] = None
    is_typing: bool = True


class GroupTypingFrame(ClientFrame):
    type: Literal["group_typing"] = "group_typing"
    group_id: str
    is_typing: bool = True


class UserPresenceFrame(ClientFrame):
    type: Literal["user_presence"] = "user_presence"
    is_online: bool = True


class PongFrame(ClientFrame):
    type: Literal["pong"] = "pong"


class UnknownFrame(ClientFrame):
    type: str
    raw: Dict[str, Any] = {}


CLIENT_FRAMES: Dict[str, Type[ClientFrame]] = {
    "authenticate": AuthenticateFrame,
    "join_conversation": JoinConversationFrame,
    "leave_conversation": LeaveConversationFrame,
    "join_group": JoinGroupFrame,
    "leave_group": LeaveGroupFrame,
    "typing": TypingFrame,
    "group_typing": GroupTypingFrame,
    "user_presence": UserPresenceFrame,
    "pong": PongFrame,
}


def parse_client_frame(text: Union[str, bytes]) -> ClientFrame:
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise FrameError(f"invalid json: {exc}")
    if not isinstance(data, dict):
        raise FrameError("frame must be a json object")
    frame_type = data.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise FrameError("frame has no type")
    model = CLIENT_FRAMES.get(frame_type)
    if model is None:
        return UnknownFrame(type=frame_type, raw=data)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise FrameError(f"invalid {frame_type} frame: {exc.errors()}")


class ServerFrame(BaseModel):
    def encode(self) -> str:
        return json.dumps(self.model_dump(mode="json"))


# session

class AuthenticatedFrame(ServerFrame):
    type: Literal["authenticated"] = "authenticated"
    success: bool = True
    user_id: str


class ErrorFrame(ServerFrame):
    type: Literal["error"] = "error"
    message: str


class PingFrame(ServerFrame):
    type: Literal["ping"] = "ping"


# direct chat

class NewMessageFrame(ServerFrame):
    type: Literal["new_message"] = "new_message"
    conversation_id: str
    message: Dict[str, Any]


class MessagesReadFrame(ServerFrame):
    type: Literal["messages_read"] = "messages_read"
    conversation_id: str
    user_id: str
    message_ids: List[str] = []
    read_at: datetime


class NewInvitationFrame(ServerFrame):
    type: Literal["new_invitation"] = "new_invitation"
    invitation: Dict[str, Any]


class InvitationAcceptedFrame(ServerFrame):
    type: Literal["invitation_accepted"] = "invitation_accepted"
    invitation_id: str
    conversation_id: str
    user_id: str
    user: Optional[Dict[str, Any]] = None


class InvitationRejectedFrame(ServerFrame):
    type: Literal["invitation_rejected"] = "invitation_rejected"
    invitation_id: str
    user_id: str


# groups

class GroupCreatedFrame(ServerFrame):
    type: Literal["group_created"] = "group_created"
    group: Dict[str, Any]


class GroupInvitationFrame(ServerFrame):
    type: Literal["group_invitation"] = "group_invitation"
    invitation: Dict[str, Any]


class GroupInvitationAcceptedFrame(ServerFrame):
    type: Literal["group_invitation_accepted"] = "group_invitation_accepted"
    invitation_id: str
    group_id: str
    user_id: str
    user: Optional[Dict[str, Any]] = None


class GroupInvitationRejectedFrame(ServerFrame):
    type: Literal["group_invitation_rejected"] = "group_invitation_rejected"
    invitation_id: str
    group_id: str
    user_id: str


class GroupMemberJoinedFrame(ServerFrame):
    type: Literal["group_member_joined"] = "group_member_joined"
    group_id: str
    user_id: str
    user: Optional[Dict[str, Any]] = None
    message: Dict[str, Any]


class GroupMemberLeftFrame(ServerFrame):
    type: Literal["group_member_left"] = "group_member_left"
    group_id: str
    user_id: str
    message: Dict[str, Any]


class NewGroupMessageFrame(ServerFrame):
    type: Literal["new_group_message"] = "new_group_message"
    group_id: str
    message: Dict[str, Any]


class GroupMessagesReadFrame(ServerFrame):
    type: Literal["group_messages_read"] = "group_messages_read"
    group_id: str
    user_id: str
    read_at: datetime


class AdminRightsChangedFrame(ServerFrame):
    type: Literal["admin_rights_changed"] = "admin_rights_changed"
    group_id: str
    user_id: str
    role: str


# typing and presence

class UserTypingFrame(ServerFrame):
    type: Literal["user_typing"] = "user_typing"
    conversation_id: str
    user_id: str
    is_typing: bool


class GroupUserTypingFrame(ServerFrame):
    type: Literal["group_user_typing"] = "group_user_typing"
    group_id: str
    user_id: str
    is_typing: bool


class PresenceUpdateFrame(ServerFrame):
    type: Literal["presence_update"] = "presence_update"
    user_id: str
    is_online: bool
    last_seen: Optional[datetime] = None


Payload = Union[ServerFrame, Dict[str, Any], str]


def encode_payload(payload: Payload) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, ServerFrame):
        return payload.encode()
    return json.dumps(payload, default=str)
