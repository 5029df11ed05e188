import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from pymongo.database import Database

from . import config
from .direct_chat_service import DirectChatService
from .errors import InvalidInputError
from .group_chat_service import GroupChatService
from .models import parse_object_id
from .notifications import NotificationFanout, PushSink
from .read_receipts import ReadReceiptEngine
from .realtime.hub import ConnectionHub
from .realtime.presence import PresenceTracker
from .realtime.rooms import CONVERSATION, GROUP
from .repositories import Repositories

logger = logging.getLogger(__name__)


@dataclass
class Services:
    repos: Repositories
    hub: ConnectionHub
    presence: PresenceTracker
    fanout: NotificationFanout
    receipts: ReadReceiptEngine
    direct: DirectChatService
    groups: GroupChatService

    def authorize_room(self, namespace: str, room_id: str, user_id: str) -> bool:
        """Only participants may join a conversation room, only members a group room."""
        try:
            oid = parse_object_id(room_id)
        except InvalidInputError:
            return False
        if namespace == CONVERSATION:
            conversation = self.repos.conversations.by_id(oid)
            return bool(conversation and user_id in conversation["participants"])
        if namespace == GROUP:
            return self.repos.members.find(oid, user_id) is not None
        return False


def build_services(
    db: Database,
    push_sink: Optional[PushSink] = None,
    hub: Optional[ConnectionHub] = None,
    presence: Optional[PresenceTracker] = None,
) -> Services:
    repos = Repositories.from_db(db)
    hub = hub or ConnectionHub()
    if presence is None:
        presence = PresenceTracker(
            hub,
            idle_timeout=config.PRESENCE_IDLE_TIMEOUT,
            sweep_interval=config.PRESENCE_SWEEP_INTERVAL,
            on_change=lambda user_id, is_online, at: repos.users.update_last_seen(user_id, at),
        )
    hub.subscribe(presence)
    fanout = NotificationFanout(hub, repos.tokens, push_sink)
    receipts = ReadReceiptEngine(repos.receipts, repos.group_messages, fanout)
    return Services(
        repos=repos,
        hub=hub,
        presence=presence,
        fanout=fanout,
        receipts=receipts,
        direct=DirectChatService(repos, fanout, presence),
        groups=GroupChatService(repos, fanout, receipts, presence),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_direct_chat(request: Request) -> DirectChatService:
    return get_services(request).direct


def get_group_chat(request: Request) -> GroupChatService:
    return get_services(request).groups
