from pydantic import BaseModel
from typing import Any, Dict, List, Optional


class InvitationIn(BaseModel):
    to_user_id: str
    message: str


class RespondIn(BaseModel):
    action: str


class DirectMessageIn(BaseModel):
    content: str
    type: Optional[str] = "text"


class NotificationIn(BaseModel):
    to_user_id: str
    type: str
    title: str
    body: str
    data: Dict[str, Any] = {}


class GroupCreateIn(BaseModel):
    name: str
    member_ids: List[str] = []


class GroupInviteIn(BaseModel):
    user_id: str
    message: Optional[str] = None


class GroupMessageIn(BaseModel):
    content: str


class ChatResponse(BaseModel):
    success: bool = True
    message: str = ""
    data: Any = None


def success(message: str, data: Any = None) -> dict:
    return ChatResponse(message=message, data=data).model_dump()
