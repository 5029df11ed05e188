import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Set

from .frames import Payload, encode_payload
from .rooms import RoomKey, RoomRegistry

logger = logging.getLogger(__name__)


class HubSession(Protocol):
    user_id: str
    rooms: Set[RoomKey]

    def enqueue(self, text: str) -> bool: ...

    def close(self, reason: str = "closed") -> None: ...


class HubListener(Protocol):
    def user_connected(self, user_id: str) -> None: ...

    def user_disconnected(self, user_id: str) -> None: ...


class ConnectionHub:
    """Process-wide registry of live sessions, one per user.

    `lock` guards both `connections` and the room registry. Delivery works on
    snapshots taken under the lock and never holds it while enqueueing.
    """

    def __init__(self, rooms: Optional[RoomRegistry] = None):
        self.connections: Dict[str, HubSession] = {}
        self.rooms = rooms or RoomRegistry()
        self.lock = threading.Lock()
        self._listeners: List[HubListener] = []

    def subscribe(self, listener: HubListener) -> None:
        self._listeners.append(listener)

    def register(self, session: HubSession) -> None:
        with self.lock:
            previous = self.connections.get(session.user_id)
            if previous is session:
                return
            self.connections[session.user_id] = session
            if previous is not None:
                self.rooms.leave_all(previous.user_id, previous.rooms)
                previous.rooms.clear()
        if previous is not None:
            logger.info("WS session replaced: %s", session.user_id)
            previous.close("replaced")
        logger.info("WS connect: %s (%d online)", session.user_id, len(self.connections))
        for listener in self._listeners:
            listener.user_connected(session.user_id)

    def unregister(self, session: HubSession, reason: str = "closed") -> None:
        with self.lock:
            self.rooms.leave_all(session.user_id, session.rooms)
            session.rooms.clear()
            current = self.connections.get(session.user_id) is session
            if current:
                del self.connections[session.user_id]
        session.close(reason)
        if not current:
            return
        logger.info("WS disconnect: %s (%s)", session.user_id, reason)
        for listener in self._listeners:
            listener.user_disconnected(session.user_id)

    def get(self, user_id: str) -> Optional[HubSession]:
        with self.lock:
            return self.connections.get(user_id)

    def is_connected(self, user_id: str) -> bool:
        with self.lock:
            return user_id in self.connections

    def connected_users(self) -> List[str]:
        with self.lock:
            return list(self.connections)

    def join_room(self, session: HubSession, namespace: str, room_id: str) -> bool:
        with self.lock:
            if self.connections.get(session.user_id) is not session:
                return False
            self.rooms.join(namespace, room_id, session.user_id)
            session.rooms.add((namespace, room_id))
        logger.debug("%s joined %s:%s", session.user_id, namespace, room_id)
        return True

    def leave_room(self, session: HubSession, namespace: str, room_id: str) -> None:
        with self.lock:
            if (namespace, room_id) not in session.rooms:
                return
            session.rooms.discard((namespace, room_id))
            self.rooms.leave(namespace, room_id, session.user_id)
        logger.debug("%s left %s:%s", session.user_id, namespace, room_id)

    def room_members(self, namespace: str, room_id: str) -> Set[str]:
        with self.lock:
            return self.rooms.members(namespace, room_id)

    def send_to_user(self, user_id: str, payload: Payload) -> bool:
        """Queue `payload` for `user_id`; a full or closed buffer evicts the session."""
        with self.lock:
            session = self.connections.get(user_id)
        if session is None:
            return False
        if session.enqueue(encode_payload(payload)):
            return True
        logger.warning("WS slow consumer evicted: %s", user_id)
        self.unregister(session, reason="slow_consumer")
        return False

    def send_to_users(self, user_ids, payload: Payload, exclude: Optional[str] = None) -> int:
        text = encode_payload(payload)
        delivered = 0
        for user_id in dict.fromkeys(user_ids):
            if user_id == exclude:
                continue
            if self.send_to_user(user_id, text):
                delivered += 1
        return delivered

    def send_to_room(self, namespace: str, room_id: str, payload: Payload, exclude: Optional[str] = None) -> int:
        return self.send_to_users(sorted(self.room_members(namespace, room_id)), payload, exclude=exclude)

    def broadcast(self, payload: Payload, predicate: Optional[Callable[[str], bool]] = None) -> int:
        users = self.connected_users()
        if predicate is not None:
            users = [u for u in users if predicate(u)]
        return self.send_to_users(users, payload)

    def close_all(self, reason: str = "shutdown") -> None:
        with self.lock:
            sessions = list(self.connections.values())
        for session in sessions:
            self.unregister(session, reason=reason)
