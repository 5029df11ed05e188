import asyncio

from conftest import frames

from soiree_chat.realtime.hub import ConnectionHub
from soiree_chat.realtime.presence import PresenceTracker
from soiree_chat.realtime.session import Session


def make_tracker(idle_timeout=0.05, on_change=None):
    hub = ConnectionHub()
    observer = Session(None, "observer@x.com")
    hub.register(observer)
    tracker = PresenceTracker(hub, idle_timeout=idle_timeout, sweep_interval=3600, on_change=on_change)
    return hub, observer, tracker


def presence_frames(session):
    return frames(session, "presence_update")


def test_heartbeat_broadcasts_online_once():
    async def scenario():
        _, observer, tracker = make_tracker(idle_timeout=10)
        tracker.heartbeat("u@x.com")
        tracker.heartbeat("u@x.com")
        updates = presence_frames(observer)
        tracker.shutdown()
        return updates

    updates = asyncio.run(scenario())
    assert updates[0] == {"type": "presence_update", "user_id": "u@x.com", "is_online": True, "last_seen": None}
    assert len([u for u in updates if u["is_online"]]) == 1


def test_idle_timeout_broadcasts_single_offline():
    async def scenario():
        _, observer, tracker = make_tracker(idle_timeout=0.05)
        tracker.heartbeat("u@x.com")
        presence_frames(observer)
        await asyncio.sleep(0.2)
        first = presence_frames(observer)
        await asyncio.sleep(0.1)
        later = presence_frames(observer)
        return first, later, tracker.is_online("u@x.com"), tracker.entries["u@x.com"].timer

    first, later, online, timer = asyncio.run(scenario())
    assert len(first) == 1
    assert first[0]["is_online"] is False
    assert first[0]["last_seen"] is not None
    assert later == []
    assert online is False
    assert timer is None


def test_heartbeat_rearms_timer():
    async def scenario():
        _, observer, tracker = make_tracker(idle_timeout=0.3)
        tracker.heartbeat("u@x.com")
        await asyncio.sleep(0.2)
        tracker.heartbeat("u@x.com")
        await asyncio.sleep(0.2)
        still_online = tracker.is_online("u@x.com")
        await asyncio.sleep(0.3)
        return still_online, tracker.is_online("u@x.com"), presence_frames(observer)

    still_online, online_after, updates = asyncio.run(scenario())
    assert still_online is True
    assert online_after is False
    assert [u["is_online"] for u in updates] == [True, False]


def test_set_offline_is_immediate_and_deduplicated():
    async def scenario():
        _, observer, tracker = make_tracker(idle_timeout=10)
        tracker.heartbeat("u@x.com")
        tracker.set_offline("u@x.com")
        tracker.set_offline("u@x.com")
        tracker.set_offline("never@x.com")
        return presence_frames(observer), tracker.last_seen("u@x.com")

    updates, last_seen = asyncio.run(scenario())
    assert [u["is_online"] for u in updates] == [True, False]
    assert last_seen is not None


def test_hub_registration_drives_presence():
    async def scenario():
        hub, observer, tracker = make_tracker(idle_timeout=10)
        hub.subscribe(tracker)
        user = Session(None, "u@x.com")
        hub.register(user)
        online = tracker.is_online("u@x.com")
        hub.unregister(user)
        return online, tracker.is_online("u@x.com"), presence_frames(observer)

    online, online_after, updates = asyncio.run(scenario())
    assert online is True
    assert online_after is False
    assert [(u["user_id"], u["is_online"]) for u in updates] == [("u@x.com", True), ("u@x.com", False)]


def test_sweep_drops_stopped_entries():
    async def scenario():
        _, _, tracker = make_tracker(idle_timeout=10)
        tracker.heartbeat("gone@x.com")
        tracker.heartbeat("here@x.com")
        tracker.set_offline("gone@x.com")
        removed = tracker.sweep()
        users = sorted(tracker.entries)
        tracker.shutdown()
        return removed, users

    removed, users = asyncio.run(scenario())
    assert removed == 1
    assert users == ["here@x.com"]


def test_shutdown_marks_everyone_offline():
    async def scenario():
        _, observer, tracker = make_tracker(idle_timeout=10)
        tracker.start()
        tracker.heartbeat("a@x.com")
        tracker.heartbeat("b@x.com")
        presence_frames(observer)
        tracker.shutdown()
        return presence_frames(observer), tracker.online_users()

    updates, online = asyncio.run(scenario())
    assert sorted(u["user_id"] for u in updates) == ["a@x.com", "b@x.com"]
    assert all(u["is_online"] is False for u in updates)
    assert online == []


def test_callback_failure_does_not_break_tracking():
    calls = []

    def on_change(user_id, is_online, at):
        calls.append((user_id, is_online))
        raise RuntimeError("store down")

    async def scenario():
        _, _, tracker = make_tracker(idle_timeout=10, on_change=on_change)
        tracker.heartbeat("u@x.com")
        tracker.set_offline("u@x.com")
        return tracker.is_online("u@x.com")

    assert asyncio.run(scenario()) is False
    assert calls == [("u@x.com", True), ("u@x.com", False)]
