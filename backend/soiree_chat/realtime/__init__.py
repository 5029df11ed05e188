from .hub import ConnectionHub
from .presence import PresenceTracker
from .rooms import CONVERSATION, GROUP, RoomRegistry
from .session import Session, SocketSession, router

__all__ = [
    "CONVERSATION",
    "GROUP",
    "ConnectionHub",
    "PresenceTracker",
    "RoomRegistry",
    "Session",
    "SocketSession",
    "router",
]
