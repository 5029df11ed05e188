import pytest
from pymongo.errors import PyMongoError

from conftest import frames

from soiree_chat import constants
from soiree_chat.errors import ConflictError, ForbiddenError, InternalError, InvalidInputError, NotFoundError


@pytest.fixture
def groups(services):
    return services.groups


def pending_for(db, user):
    return db.chat_group_invitations.find_one({"invited_user": user, "status": "pending"})


def build_group(groups, db, creator, invitees, name="Bureau"):
    group = groups.create_group(creator, name, invitees)
    for user in invitees:
        groups.respond_to_invitation(pending_for(db, user)["_id"], user, "accept")
    return group["id"]


def members_of(groups, group_id, by):
    return [(m["user_id"], m["role"]) for m in groups.list_members(group_id, by)]


def test_create_group_invites_each_member(groups, connect, sink, db):
    creator = connect("c@x.com")
    denis = connect("d@x.com")
    emma = connect("e@x.com")

    group = groups.create_group("c@x.com", "  Bureau ", ["d@x.com", "E@x.com", "d@x.com", "c@x.com", "nope", "ghost@x.com"])

    assert group["name"] == "Bureau"
    assert group["is_active"] is True
    assert group["member_count"] == 1
    assert sorted(i["invited_user"] for i in group["invitations"]) == ["d@x.com", "e@x.com"]
    assert members_of(groups, group["id"], "c@x.com") == [("c@x.com", "admin")]

    assert len(frames(denis, "group_invitation")) == 1
    assert len(frames(emma, "group_invitation")) == 1
    assert frames(creator, "group_created")[0]["group"]["id"] == group["id"]
    pushes = sink.of_type("group_invitation")
    assert sorted(p["tokens"][0] for p in pushes) == ["tok-d", "tok-e"]
    assert pushes[0]["title"] == constants.PUSH_GROUP_INVITATION_TITLE
    assert pushes[0]["body"] == 'Chloé Durand vous invite à rejoindre "Bureau"'


def test_create_group_requires_a_name(groups):
    with pytest.raises(InvalidInputError):
        groups.create_group("c@x.com", "   ", [])


def test_accept_adds_member_and_system_message(groups, connect, db):
    group = groups.create_group("c@x.com", "Bureau", ["d@x.com", "e@x.com"])
    creator = connect("c@x.com")
    denis = connect("d@x.com")

    result = groups.respond_to_invitation(str(pending_for(db, "d@x.com")["_id"]), "d@x.com", "accept")

    assert result["status"] == "accepted"
    assert members_of(groups, group["id"], "c@x.com") == [("c@x.com", "admin"), ("d@x.com", "member")]
    system = result["message"]
    assert system["message_type"] == "system"
    assert system["sender_id"] == "system"
    assert system["sender"] is None
    assert system["content"] == "Denis Moreau a rejoint le groupe"

    [creator_joined] = frames(creator, "group_member_joined")
    [denis_joined] = frames(denis, "group_member_joined")
    assert creator_joined["message"]["id"] == system["id"]
    assert denis_joined["user"]["email"] == "d@x.com"


def test_accept_notifies_inviter(groups, connect, db):
    groups.create_group("c@x.com", "Bureau", ["d@x.com"])
    creator = connect("c@x.com")

    groups.respond_to_invitation(pending_for(db, "d@x.com")["_id"], "d@x.com", "accept")

    kinds = [f["type"] for f in frames(creator)]
    assert kinds == ["group_member_joined", "group_invitation_accepted"]


def test_reject_and_double_response(groups, connect, db):
    groups.create_group("c@x.com", "Bureau", ["d@x.com"])
    creator = connect("c@x.com")
    invitation_id = pending_for(db, "d@x.com")["_id"]

    with pytest.raises(ForbiddenError):
        groups.respond_to_invitation(invitation_id, "e@x.com", "accept")
    result = groups.respond_to_invitation(invitation_id, "d@x.com", "reject")
    assert result["status"] == "rejected"
    assert frames(creator, "group_invitation_rejected")[0]["user_id"] == "d@x.com"
    with pytest.raises(ConflictError):
        groups.respond_to_invitation(invitation_id, "d@x.com", "accept")


def test_invite_guards(groups, db):
    group_id = build_group(groups, db, "c@x.com", ["d@x.com"])

    with pytest.raises(ForbiddenError):
        groups.invite(group_id, "d@x.com", "e@x.com")
    with pytest.raises(ConflictError):
        groups.invite(group_id, "c@x.com", "d@x.com")
    with pytest.raises(NotFoundError):
        groups.invite(group_id, "c@x.com", "ghost@x.com")

    invitation = groups.invite(group_id, "c@x.com", "e@x.com", "  viens  ")
    assert invitation["message"] == "viens"
    with pytest.raises(ConflictError):
        groups.invite(group_id, "c@x.com", "e@x.com")


def test_concurrent_group_invitations_leave_a_single_pending_one(groups, db, monkeypatch):
    group_id = build_group(groups, db, "c@x.com", ["d@x.com"])
    monkeypatch.setattr(groups.repos.group_invitations, "find_pending", lambda *args: None)

    groups.invite(group_id, "c@x.com", "e@x.com")
    with pytest.raises(ConflictError) as exc:
        groups.invite(group_id, "c@x.com", "e@x.com", "encore")

    assert exc.value.message == constants.ERR_GROUP_INVITATION_EXISTS
    assert db.chat_group_invitations.count_documents({"invited_user": "e@x.com", "status": "pending"}) == 1


def test_failed_member_insert_reverts_group_invitation(groups, db, monkeypatch):
    groups.create_group("c@x.com", "Bureau", ["d@x.com"])
    invitation = pending_for(db, "d@x.com")

    def broken(*args, **kwargs):
        raise PyMongoError("write failed")

    monkeypatch.setattr(groups.repos.members, "add", broken)
    with pytest.raises(InternalError):
        groups.respond_to_invitation(invitation["_id"], "d@x.com", "accept")

    stored = db.chat_group_invitations.find_one({"_id": invitation["_id"]})
    assert stored["status"] == "pending"
    assert db.chat_group_members.count_documents({"user_id": "d@x.com"}) == 0


def test_cancel_invitation(groups, db):
    group_id = build_group(groups, db, "c@x.com", ["d@x.com"])
    invitation = groups.invite(group_id, "c@x.com", "e@x.com")

    with pytest.raises(ForbiddenError):
        groups.cancel_invitation(invitation["id"], "d@x.com")
    assert groups.cancel_invitation(invitation["id"], "c@x.com")["status"] == "cancelled"
    assert groups.list_pending_invitations("e@x.com") == []
    with pytest.raises(ConflictError):
        groups.respond_to_invitation(invitation["id"], "e@x.com", "accept")


def test_pending_invitation_listings(groups, db):
    group = groups.create_group("c@x.com", "Bureau", ["d@x.com", "e@x.com"])

    [mine] = groups.list_pending_invitations("d@x.com")
    assert mine["group_name"] == "Bureau"
    assert mine["inviter"]["email"] == "c@x.com"
    listed = groups.list_group_invitations(group["id"], "c@x.com")
    assert sorted(i["invitee"]["email"] for i in listed) == ["d@x.com", "e@x.com"]
    with pytest.raises(ForbiddenError):
        groups.list_group_invitations(group["id"], "d@x.com")


def test_send_message_pushes_only_offline_members(groups, connect, sink, presence, db):
    group_id = build_group(groups, db, "c@x.com", ["d@x.com", "e@x.com"])
    sender = connect("c@x.com")
    denis = connect("d@x.com")
    sink.calls.clear()

    message = groups.send_message(group_id, "c@x.com", "Réunion à 10h")

    assert message["sender"]["firstname"] == "Chloé"
    assert frames(sender, "new_group_message") == []
    assert frames(denis, "new_group_message")[0]["message"]["id"] == message["id"]
    [push] = sink.of_type("group_message")
    assert push["tokens"] == ["tok-e"]
    assert push["title"] == "👥 Bureau"
    assert push["body"] == "Chloé: Réunion à 10h"
    assert push["data"]["sender_name"] == "Chloé Durand"


def test_send_message_requires_membership(groups, db):
    group_id = build_group(groups, db, "c@x.com", [])
    with pytest.raises(ForbiddenError):
        groups.send_message(group_id, "d@x.com", "hello")
    with pytest.raises(InvalidInputError):
        groups.send_message(group_id, "c@x.com", "  ")
    with pytest.raises(NotFoundError):
        groups.send_message("0123456789abcdef01234567", "c@x.com", "hello")


def test_message_pages_are_stable_under_new_writes(groups, db):
    group_id = build_group(groups, db, "c@x.com", ["d@x.com"])
    sent = [groups.send_message(group_id, "c@x.com", f"m{i}")["id"] for i in range(6)]

    latest = groups.list_messages(group_id, "d@x.com", limit=3)
    assert [m["id"] for m in latest] == sent[3:]
    groups.send_message(group_id, "d@x.com", "late")
    older = groups.list_messages(group_id, "d@x.com", limit=3, before=latest[0]["id"])
    assert [m["id"] for m in older] == sent[0:3]


def test_message_page_limits(groups, db):
    group_id = build_group(groups, db, "c@x.com", [])
    with pytest.raises(InvalidInputError):
        groups.list_messages(group_id, "c@x.com", limit=0)
    with pytest.raises(InvalidInputError):
        groups.list_messages(group_id, "c@x.com", before="pas-un-id")
    assert groups.list_messages(group_id, "c@x.com", limit=500) == []


def test_last_admin_leaving_promotes_earliest_member(groups, connect, db):
    group_id = build_group(groups, db, "a@x.com", ["b@x.com", "c@x.com"])
    bruno = connect("b@x.com")
    chloe = connect("c@x.com")

    result = groups.leave_group(group_id, "a@x.com")

    assert result == {"group_id": group_id, "is_active": True, "promoted": "b@x.com"}
    assert members_of(groups, group_id, "b@x.com") == [("b@x.com", "admin"), ("c@x.com", "member")]
    assert frames(bruno, "admin_rights_changed")[0]["role"] == "admin"
    [left] = frames(chloe, "group_member_left")
    assert left["user_id"] == "a@x.com"
    assert left["message"]["content"] == "Alice Martin a quitté le groupe"


def test_member_leaving_keeps_admin(groups, db):
    group_id = build_group(groups, db, "a@x.com", ["b@x.com"])
    assert groups.leave_group(group_id, "b@x.com")["promoted"] is None
    assert members_of(groups, group_id, "a@x.com") == [("a@x.com", "admin")]


def test_last_member_leaving_deactivates_group(groups, db):
    group_id = build_group(groups, db, "c@x.com", [])

    assert groups.leave_group(group_id, "c@x.com")["is_active"] is False
    assert groups.list_groups("c@x.com") == []
    with pytest.raises(NotFoundError):
        groups.send_message(group_id, "c@x.com", "echo")


def test_list_groups_reports_counts(groups, db):
    group_id = build_group(groups, db, "c@x.com", ["d@x.com"])
    groups.send_message(group_id, "c@x.com", "salut")

    [group] = groups.list_groups("d@x.com")
    assert group["id"] == group_id
    assert group["member_count"] == 2
    # the join system message and the greeting
    assert group["unread_count"] == 2
    assert group["last_message"]["content"] == "salut"


def test_search_users(groups):
    found = groups.search_users("MAR", "c@x.com")
    assert [u["email"] for u in found] == ["a@x.com"]
    assert len(groups.search_users("x.com", "c@x.com", limit=2)) == 2
    with pytest.raises(InvalidInputError):
        groups.search_users("a", "c@x.com")
