from sqlalchemy import select
from clerva.models import GroupInvite, Notification
from clerva.utils.db import get_session


def auth_header(t):
    return {"Authorization": f"Bearer {t}"}


def _create(client, headers, **data):
    body = {"name": "Calculus crew", "subject": "Math", **data}
    return client.post("/api/groups/create", json=body, headers=headers)


def _member(make_user, token_for, name=None):
    uid = make_user(name=name)
    return uid, auth_header(token_for(uid))


def test_create_defaults_and_validation(client, user_headers):
    r = _create(client, user_headers)
    assert r.status_code == 201, r.data
    group = r.get_json()["group"]
    assert group["maxMembers"] == 10
    assert group["privacy"] == "PUBLIC"
    assert group["memberCount"] == 1
    assert group["userRole"] == "OWNER"

    assert _create(client, user_headers, name="").status_code == 400
    assert _create(client, user_headers, subject=None).status_code == 400
    assert _create(client, user_headers, name="x" * 101).status_code == 400
    for bad in (1, 51, "10", 2.5, True):
        assert _create(client, user_headers, maxMembers=bad).status_code == 400, bad
    assert _create(client, user_headers, maxMembers=2).status_code == 201
    assert _create(client, user_headers, privacy="SECRET").status_code == 400


def test_my_groups_and_discover(client, user_headers, make_user, token_for):
    bob, bob_headers = _member(make_user, token_for, "Bob")
    mine = _create(client, user_headers, name="Algebra").get_json()["group"]["id"]
    public = _create(client, bob_headers, name="Physics lab", subject="Physics").get_json()["group"]["id"]
    _create(client, bob_headers, name="Secret club", privacy="PRIVATE")

    groups = client.get("/api/groups", headers=user_headers).get_json()["groups"]
    assert [g["id"] for g in groups] == [mine]

    body = client.get("/api/groups/discover", headers=user_headers).get_json()
    assert [g["id"] for g in body["groups"]] == [public]
    assert body["pagination"]["total"] == 1
    assert client.get("/api/groups/discover?q=chem", headers=user_headers).get_json()["groups"] == []
    assert len(client.get("/api/groups/discover?subject=phys", headers=user_headers).get_json()["groups"]) == 1


def test_join_leave_rules(client, user_headers, make_user, token_for):
    gid = _create(client, user_headers, maxMembers=2).get_json()["group"]["id"]
    bob, bob_headers = _member(make_user, token_for, "Bob")
    carl, carl_headers = _member(make_user, token_for, "Carl")

    assert client.post("/api/groups/join", json={"groupId": "nope"}, headers=bob_headers).status_code == 404
    assert client.post("/api/groups/join", json={"groupId": gid}, headers=bob_headers).status_code == 200
    r = client.post("/api/groups/join", json={"groupId": gid}, headers=bob_headers)
    assert r.status_code == 400
    r = client.post("/api/groups/join", json={"groupId": gid}, headers=carl_headers)
    assert r.status_code == 400
    assert r.get_json()["error"] == "Group is full"

    assert client.post("/api/groups/leave", json={"groupId": gid}, headers=carl_headers).status_code == 400
    assert client.post("/api/groups/leave", json={"groupId": gid}, headers=user_headers).status_code == 400
    assert client.post("/api/groups/leave", json={"groupId": gid}, headers=bob_headers).status_code == 200
    assert client.post("/api/groups/join", json={"groupId": gid}, headers=carl_headers).status_code == 200


def test_private_group_visibility_and_invites(client, user, user_headers, make_user, token_for):
    gid = _create(client, user_headers, privacy="PRIVATE").get_json()["group"]["id"]
    bob, bob_headers = _member(make_user, token_for, "Bob")

    assert client.get(f"/api/groups/{gid}", headers=bob_headers).status_code == 404
    assert client.post("/api/groups/join", json={"groupId": gid}, headers=bob_headers).status_code == 403

    r = client.post(f"/api/groups/{gid}/invite", json={"userIds": [bob, "ghost", user]}, headers=user_headers)
    assert r.status_code == 200
    assert r.get_json()["invited"] == [bob]
    assert set(r.get_json()["skipped"]) == {"ghost", user}
    r = client.post(f"/api/groups/{gid}/invite", json={"userIds": [bob]}, headers=user_headers)
    assert r.get_json()["skipped"] == [bob]

    with get_session() as s:
        n = s.scalar(select(Notification).where(Notification.user_id == bob))
        assert n.type == "GROUP_INVITE"
        assert n.action_url == f"/groups/{gid}"

    detail = client.get(f"/api/groups/{gid}", headers=bob_headers).get_json()["group"]
    assert detail["isMember"] is False

    invites = client.get("/api/groups/invites", headers=bob_headers).get_json()["invites"]
    assert len(invites) == 1 and invites[0]["group"]["id"] == gid
    assert invites[0]["inviter"]["name"] == "Alice"

    assert client.post("/api/groups/join", json={"groupId": gid}, headers=bob_headers).status_code == 200
    with get_session() as s:
        assert s.scalar(select(GroupInvite.status)) == "ACCEPTED"

    detail = client.get(f"/api/groups/{gid}", headers=bob_headers).get_json()["group"]
    assert detail["isMember"] is True
    assert detail["isOwner"] is False
    assert detail["userRole"] == "MEMBER"
    assert detail["memberCount"] == 2
    assert detail["owner"]["name"] == "Alice"
    assert {m["onlineStatus"] for m in detail["members"]} == {"OFFLINE"}


def test_invite_permissions(client, user_headers, make_user, token_for):
    pub = _create(client, user_headers).get_json()["group"]["id"]
    priv = _create(client, user_headers, privacy="INVITE_ONLY", inviteUserIds=[]).get_json()["group"]["id"]
    bob, bob_headers = _member(make_user, token_for, "Bob")
    carl = make_user(name="Carl")

    assert client.post(f"/api/groups/{pub}/invite", json={"userIds": [carl]}, headers=bob_headers).status_code == 403
    client.post("/api/groups/join", json={"groupId": pub}, headers=bob_headers)
    r = client.post(f"/api/groups/{pub}/invite", json={"userIds": [carl]}, headers=bob_headers)
    assert r.get_json()["invited"] == [carl]

    client.post(f"/api/groups/{priv}/invite", json={"userIds": [bob]}, headers=user_headers)
    client.post("/api/groups/join", json={"groupId": priv}, headers=bob_headers)
    r = client.post(f"/api/groups/{priv}/invite", json={"userIds": [carl]}, headers=bob_headers)
    assert r.status_code == 403
    assert client.post(f"/api/groups/{priv}/invite", json={"userIds": []}, headers=user_headers).status_code == 400


def test_respond_to_invite(client, user_headers, make_user, token_for):
    bob, bob_headers = _member(make_user, token_for, "Bob")
    carl, carl_headers = _member(make_user, token_for, "Carl")
    gid = _create(client, user_headers, privacy="PRIVATE", inviteUserIds=[bob, carl]).get_json()["group"]["id"]
    invites = {i["inviter"]["name"] for i in client.get("/api/groups/invites", headers=bob_headers).get_json()["invites"]}
    assert invites == {"Alice"}

    bob_invite = client.get("/api/groups/invites", headers=bob_headers).get_json()["invites"][0]["id"]
    carl_invite = client.get("/api/groups/invites", headers=carl_headers).get_json()["invites"][0]["id"]

    assert client.post(f"/api/groups/invites/{bob_invite}/respond", json={"action": "accept"},
                       headers=carl_headers).status_code == 404
    assert client.post(f"/api/groups/invites/{bob_invite}/respond", json={"action": "maybe"},
                       headers=bob_headers).status_code == 400
    r = client.post(f"/api/groups/invites/{bob_invite}/respond", json={"action": "accept"}, headers=bob_headers)
    assert r.get_json()["status"] == "ACCEPTED"
    r = client.post(f"/api/groups/invites/{carl_invite}/respond", json={"action": "decline"}, headers=carl_headers)
    assert r.get_json()["status"] == "DECLINED"
    assert client.post(f"/api/groups/invites/{carl_invite}/respond", json={"action": "accept"},
                       headers=carl_headers).status_code == 400

    members = client.get(f"/api/groups/{gid}/members", headers=bob_headers).get_json()["members"]
    assert {m["name"] for m in members} == {"Alice", "Bob"}
    assert client.get(f"/api/groups/{gid}/members", headers=carl_headers).status_code == 403


def test_accept_fails_when_full(client, user_headers, make_user, token_for):
    bob, bob_headers = _member(make_user, token_for, "Bob")
    carl, carl_headers = _member(make_user, token_for, "Carl")
    gid = _create(client, user_headers, maxMembers=2, inviteUserIds=[bob, carl]).get_json()["group"]["id"]
    client.post("/api/groups/join", json={"groupId": gid}, headers=bob_headers)
    invite = client.get("/api/groups/invites", headers=carl_headers).get_json()["invites"][0]["id"]
    r = client.post(f"/api/groups/invites/{invite}/respond", json={"action": "accept"}, headers=carl_headers)
    assert r.status_code == 400


def test_update_and_delete(client, user_headers, make_user, token_for):
    gid = _create(client, user_headers).get_json()["group"]["id"]
    bob, bob_headers = _member(make_user, token_for, "Bob")
    carl, carl_headers = _member(make_user, token_for, "Carl")
    for h in (bob_headers, carl_headers):
        client.post("/api/groups/join", json={"groupId": gid}, headers=h)

    assert client.patch(f"/api/groups/{gid}", json={"name": "New"}, headers=bob_headers).status_code == 403
    client.patch(f"/api/groups/{gid}/members/{bob}", json={"role": "ADMIN"}, headers=user_headers)
    r = client.patch(f"/api/groups/{gid}", json={"name": "New", "description": "desc"}, headers=bob_headers)
    assert r.status_code == 200
    assert r.get_json()["group"]["name"] == "New"
    assert r.get_json()["group"]["memberCount"] == 3

    r = client.patch(f"/api/groups/{gid}", json={"maxMembers": 2}, headers=user_headers)
    assert r.status_code == 400
    assert client.patch(f"/api/groups/{gid}", json={"maxMembers": 60}, headers=user_headers).status_code == 400
    assert client.patch(f"/api/groups/{gid}", json={"maxMembers": 3}, headers=user_headers).status_code == 200

    assert client.delete(f"/api/groups/{gid}", headers=bob_headers).status_code == 403
    assert client.delete(f"/api/groups/{gid}", headers=user_headers).status_code == 200
    assert client.get(f"/api/groups/{gid}", headers=user_headers).status_code == 404
    assert client.get("/api/groups", headers=user_headers).get_json()["groups"] == []


def test_delete_cancels_pending_invites(client, user_headers, make_user):
    bob = make_user(name="Bob")
    gid = _create(client, user_headers, inviteUserIds=[bob]).get_json()["group"]["id"]
    client.delete(f"/api/groups/{gid}", headers=user_headers)
    with get_session() as s:
        assert s.scalar(select(GroupInvite.status)) == "CANCELLED"


def test_remove_member_and_roles(client, user, user_headers, make_user, token_for):
    gid = _create(client, user_headers).get_json()["group"]["id"]
    bob, bob_headers = _member(make_user, token_for, "Bob")
    carl, carl_headers = _member(make_user, token_for, "Carl")
    dave, dave_headers = _member(make_user, token_for, "Dave")
    for h in (bob_headers, carl_headers, dave_headers):
        client.post("/api/groups/join", json={"groupId": gid}, headers=h)

    assert client.patch(f"/api/groups/{gid}/members/{carl}", json={"role": "OWNER"},
                        headers=user_headers).status_code == 400
    assert client.patch(f"/api/groups/{gid}/members/{carl}", json={"role": "ADMIN"},
                        headers=bob_headers).status_code == 403
    for uid in (bob, carl):
        r = client.patch(f"/api/groups/{gid}/members/{uid}", json={"role": "ADMIN"}, headers=user_headers)
        assert r.get_json()["role"] == "ADMIN"

    assert client.delete(f"/api/groups/{gid}/members/{user}", headers=bob_headers).status_code == 400
    assert client.delete(f"/api/groups/{gid}/members/{carl}", headers=bob_headers).status_code == 403
    assert client.delete(f"/api/groups/{gid}/members/{bob}", headers=dave_headers).status_code == 403
    assert client.delete(f"/api/groups/{gid}/members/{dave}", headers=bob_headers).status_code == 200
    assert client.delete(f"/api/groups/{gid}/members/{dave}", headers=bob_headers).status_code == 404
    assert client.delete(f"/api/groups/{gid}/members/{carl}", headers=user_headers).status_code == 200


def test_non_string_choices_are_rejected(client, user_headers, make_user, token_for):
    for field, bad in (("privacy", ["PUBLIC"]), ("privacy", {"v": "PUBLIC"}), ("skillLevel", ["BEGINNER"])):
        r = _create(client, user_headers, **{field: bad})
        assert r.status_code == 400, (field, bad)
    gid = _create(client, user_headers).get_json()["group"]["id"]
    assert client.patch(f"/api/groups/{gid}", json={"privacy": ["PRIVATE"]},
                        headers=user_headers).status_code == 400
    assert client.post("/api/groups/join", json={"groupId": [gid]}, headers=user_headers).status_code == 400

    bob, bob_headers = _member(make_user, token_for, "Bob")
    client.post("/api/groups/join", json={"groupId": gid}, headers=bob_headers)
    r = client.patch(f"/api/groups/{gid}/members/{bob}", json={"role": ["ADMIN"]}, headers=user_headers)
    assert r.status_code == 400
