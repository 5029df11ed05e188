from typing import Dict, Iterable, Set, Tuple

CONVERSATION = "conversation"
GROUP = "group"
NAMESPACES = (CONVERSATION, GROUP)

RoomKey = Tuple[str, str]


class RoomRegistry:
    """Live room memberships per namespace.

    Not synchronized on its own; the hub calls it under its lock.
    """

    def __init__(self):
        self._rooms: Dict[str, Dict[str, Set[str]]] = {ns: {} for ns in NAMESPACES}

    def _namespace(self, namespace: str) -> Dict[str, Set[str]]:
        try:
            return self._rooms[namespace]
        except KeyError:
            raise ValueError(f"unknown room namespace: {namespace}")

    def join(self, namespace: str, room_id: str, user_id: str) -> None:
        self._namespace(namespace).setdefault(room_id, set()).add(user_id)

    def leave(self, namespace: str, room_id: str, user_id: str) -> None:
        rooms = self._namespace(namespace)
        members = rooms.get(room_id)
        if members is None:
            return
        members.discard(user_id)
        if not members:
            del rooms[room_id]

    def leave_all(self, user_id: str, rooms: Iterable[RoomKey]) -> None:
        for namespace, room_id in list(rooms):
            self.leave(namespace, room_id, user_id)

    def members(self, namespace: str, room_id: str) -> Set[str]:
        return set(self._namespace(namespace).get(room_id, ()))

    def room_count(self, namespace: str) -> int:
        return len(self._namespace(namespace))

    def snapshot(self) -> Dict[str, Dict[str, Set[str]]]:
        return {ns: {room: set(users) for room, users in rooms.items()} for ns, rooms in self._rooms.items()}
