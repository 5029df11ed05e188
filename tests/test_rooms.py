import pytest

from soiree_chat.realtime.rooms import CONVERSATION, GROUP, RoomRegistry


def test_join_then_leave_restores_registry():
    rooms = RoomRegistry()
    rooms.join(GROUP, "g1", "a@x.com")
    before = rooms.snapshot()

    rooms.join(CONVERSATION, "c1", "b@x.com")
    rooms.leave(CONVERSATION, "c1", "b@x.com")

    assert rooms.snapshot() == before
    assert rooms.room_count(CONVERSATION) == 0


def test_empty_rooms_are_collected():
    rooms = RoomRegistry()
    rooms.join(GROUP, "g1", "a@x.com")
    rooms.join(GROUP, "g1", "b@x.com")
    rooms.leave(GROUP, "g1", "a@x.com")
    assert rooms.members(GROUP, "g1") == {"b@x.com"}
    rooms.leave(GROUP, "g1", "b@x.com")
    assert rooms.room_count(GROUP) == 0


def test_namespaces_are_disjoint():
    rooms = RoomRegistry()
    rooms.join(GROUP, "same-id", "a@x.com")
    assert rooms.members(CONVERSATION, "same-id") == set()
    assert rooms.members(GROUP, "same-id") == {"a@x.com"}


def test_members_returns_a_copy():
    rooms = RoomRegistry()
    rooms.join(GROUP, "g1", "a@x.com")
    members = rooms.members(GROUP, "g1")
    members.add("intruder@x.com")
    assert rooms.members(GROUP, "g1") == {"a@x.com"}


def test_leave_all_and_unknown_room():
    rooms = RoomRegistry()
    rooms.join(GROUP, "g1", "a@x.com")
    rooms.join(CONVERSATION, "c1", "a@x.com")
    rooms.leave(GROUP, "missing", "a@x.com")
    rooms.leave_all("a@x.com", [(GROUP, "g1"), (CONVERSATION, "c1")])
    assert rooms.snapshot() == {CONVERSATION: {}, GROUP: {}}


def test_unknown_namespace_rejected():
    with pytest.raises(ValueError):
        RoomRegistry().join("event", "x", "a@x.com")
