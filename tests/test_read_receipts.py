import pytest

from conftest import frames

from soiree_chat.realtime.rooms import GROUP


@pytest.fixture
def group_id(services, db):
    groups = services.groups
    group = groups.create_group("c@x.com", "Bureau", ["d@x.com"])
    invitation = db.chat_group_invitations.find_one({"invited_user": "d@x.com"})
    groups.respond_to_invitation(invitation["_id"], "d@x.com", "accept")
    # start from an empty history
    db.chat_group_messages.delete_many({})
    return group["id"]


def test_unread_count_advances_with_pointer(services, group_id):
    groups = services.groups
    for text in ("un", "deux", "trois"):
        groups.send_message(group_id, "c@x.com", text)

    assert groups.unread_count(group_id, "d@x.com") == 3
    receipt = groups.mark_as_read(group_id, "d@x.com")
    assert receipt["last_read_message_id"] is not None
    assert groups.unread_count(group_id, "d@x.com") == 0

    groups.send_message(group_id, "c@x.com", "quatre")
    groups.send_message(group_id, "c@x.com", "cinq")
    assert groups.unread_count(group_id, "d@x.com") == 2

    groups.mark_as_read(group_id, "d@x.com")
    assert groups.unread_count(group_id, "d@x.com") == 0


def test_mark_as_read_on_empty_group_keeps_counting_everything(services, group_id, db):
    groups = services.groups
    receipt = groups.mark_as_read(group_id, "d@x.com")

    assert receipt["last_read_message_id"] is None
    assert db.chat_group_read_receipts.count_documents({"user_id": "d@x.com"}) == 1
    groups.send_message(group_id, "c@x.com", "premier")
    assert groups.unread_count(group_id, "d@x.com") == 1


def test_mark_as_read_notifies_room_except_reader(services, group_id, connect, hub):
    creator = connect("c@x.com")
    reader = connect("d@x.com")
    hub.join_room(creator, GROUP, group_id)
    hub.join_room(reader, GROUP, group_id)
    services.groups.send_message(group_id, "c@x.com", "lu ?")
    frames(creator)
    frames(reader)

    services.groups.mark_as_read(group_id, "d@x.com")

    [read] = frames(creator, "group_messages_read")
    assert read == {
        "type": "group_messages_read",
        "group_id": group_id,
        "user_id": "d@x.com",
        "read_at": read["read_at"],
    }
    assert frames(reader) == []


def test_receipt_is_one_document_per_member(services, group_id, db):
    services.groups.mark_as_read(group_id, "d@x.com")
    services.groups.mark_as_read(group_id, "d@x.com")
    assert db.chat_group_read_receipts.count_documents({}) == 1
