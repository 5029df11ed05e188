import json
from typing import Dict, List

import mongomock
import pytest

from soiree_chat.db import create_indexes
from soiree_chat.dependencies import build_services
from soiree_chat.realtime.hub import ConnectionHub
from soiree_chat.realtime.session import Session

USERS = [
    {"email": "a@x.com", "firstname": "Alice", "lastname": "Martin", "admin": 1},
    {"email": "b@x.com", "firstname": "Bruno", "lastname": "Petit", "admin": 1},
    {"email": "f@x.com", "firstname": "Fanny", "lastname": "Roux", "admin": 1},
    {"email": "c@x.com", "firstname": "Chloé", "lastname": "Durand", "admin": 0},
    {"email": "d@x.com", "firstname": "Denis", "lastname": "Moreau", "admin": 0},
    {"email": "e@x.com", "firstname": "Emma", "lastname": "Bernard", "admin": 0},
]


class RecordingPushSink:
    def __init__(self, failed_tokens=(), error=None):
        self.calls: List[Dict] = []
        self.failed_tokens = set(failed_tokens)
        self.error = error

    def send_to_all(self, tokens, title, body, data):
        self.calls.append({"tokens": list(tokens), "title": title, "body": body, "data": dict(data)})
        if self.error is not None:
            raise self.error
        failed = [t for t in tokens if t in self.failed_tokens]
        return len(tokens) - len(failed), len(failed), failed

    def of_type(self, kind):
        return [c for c in self.calls if c["data"].get("type") == kind]


class FakePresence:
    """Presence stand-in that needs no event loop."""

    def __init__(self):
        self.online = set()

    def user_connected(self, user_id):
        self.online.add(user_id)

    def user_disconnected(self, user_id):
        self.online.discard(user_id)

    def heartbeat(self, user_id):
        self.online.add(user_id)

    def set_offline(self, user_id):
        self.online.discard(user_id)

    def is_online(self, user_id):
        return user_id in self.online

    def last_seen(self, user_id):
        return None


def frames(session: Session, kind: str = None) -> List[Dict]:
    """Drain a session buffer and decode it, optionally keeping one frame type."""
    decoded = [json.loads(text) for text in session.drain()]
    if kind is None:
        return decoded
    return [f for f in decoded if f["type"] == kind]


@pytest.fixture
def db():
    database = mongomock.MongoClient()["soiree_test"]
    create_indexes(database)
    database.users.insert_many([dict(u) for u in USERS])
    database.fcm_tokens.insert_many(
        [{"user_id": u["email"], "token": f"tok-{u['email'][0]}"} for u in USERS]
    )
    return database


@pytest.fixture
def sink():
    return RecordingPushSink()


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def presence():
    return FakePresence()


@pytest.fixture
def services(db, sink, hub, presence):
    return build_services(db, sink, hub=hub, presence=presence)


@pytest.fixture
def connect(hub):
    def _connect(user_id: str, buffer_size: int = 256) -> Session:
        session = Session(None, user_id, buffer_size=buffer_size)
        hub.register(session)
        return session

    return _connect
