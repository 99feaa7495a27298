from sqlalchemy import select
from clerva.models import AdminAuditLog, FlaggedContent, Post, User, UserBan, UserWarning
from clerva.utils.db import get_session


def _flag(sender_id, status="PENDING", score=None, content_type="MESSAGE", content_id=None):
    with get_session() as s:
        row = FlaggedContent(content_type=content_type, content_id=content_id, content="bad words",
                             sender_id=sender_id, sender_name="Cached", sender_email="cached@example.com",
                             flag_reason="toxicity", ai_score=score, status=status)
        s.add(row)
        s.commit()
        return row.id


def test_list_ordering_and_sender_fallback(client, admin_headers, user):
    approved = _flag(user, status="APPROVED", score=0.99)
    low = _flag(user, score=0.2)
    high = _flag("deleted-user", score=0.9)

    body = client.get("/api/admin/flagged-content", headers=admin_headers).get_json()
    assert [i["id"] for i in body["flaggedContent"]] == [high, low, approved]
    assert body["flaggedContent"][0]["sender"]["name"] == "Cached"
    assert body["flaggedContent"][1]["sender"]["name"] == "Alice"
    assert body["statistics"]["byStatus"] == {"PENDING": 2, "APPROVED": 1}


def test_remove_soft_deletes_post(client, admin_headers, user):
    with get_session() as s:
        post = Post(user_id=user, content="spam")
        s.add(post)
        s.commit()
        pid = post.id
    fid = _flag(user, content_type="POST", content_id=pid)
    r = client.post("/api/admin/flagged-content", json={"action": "remove", "flaggedContentId": fid},
                    headers=admin_headers)
    assert r.status_code == 200
    with get_session() as s:
        assert s.get(Post, pid).is_deleted is True
        row = s.get(FlaggedContent, fid)
        assert row.status == "REMOVED" and row.action_taken == "deleted"


def test_warn_and_ban(client, admin_headers, user):
    fid = _flag(user)
    r = client.post("/api/admin/flagged-content", json={"action": "warn", "flaggedContentId": fid},
                    headers=admin_headers)
    assert r.get_json()["action"] == "user_warned"

    fid2 = _flag(user)
    r = client.post("/api/admin/flagged-content", json={"action": "ban", "flaggedContentId": fid2,
                                                        "banReason": "abuse"}, headers=admin_headers)
    assert r.get_json()["action"] == "user_banned"

    with get_session() as s:
        assert s.scalar(select(UserWarning).where(UserWarning.user_id == user)) is not None
        ban = s.scalar(select(UserBan).where(UserBan.user_id == user))
        assert ban.type == "PERMANENT" and ban.reason == "abuse"
        assert s.get(User, user).deactivated_at is not None
        assert s.get(FlaggedContent, fid2).action_taken == "banned"
        actions = set(s.scalars(select(AdminAuditLog.action)))
    assert {"user_warned", "user_banned"} <= actions


def test_errors_and_delete(client, admin_headers, user):
    fid = _flag(user)
    assert client.post("/api/admin/flagged-content", json={"action": "burn", "flaggedContentId": fid},
                       headers=admin_headers).status_code == 400
    assert client.post("/api/admin/flagged-content", json={"action": "approve", "flaggedContentId": "x"},
                       headers=admin_headers).status_code == 404
    r = client.post("/api/admin/flagged-content", json={"action": "approve", "flaggedContentId": fid},
                    headers=admin_headers)
    assert r.status_code == 200

    r = client.delete("/api/admin/flagged-content", json={"flaggedContentId": fid}, headers=admin_headers)
    assert r.status_code == 200
    with get_session() as s:
        assert s.get(FlaggedContent, fid) is None
        assert s.scalar(select(AdminAuditLog).where(AdminAuditLog.action == "flagged_content_deleted")) is not None


def test_non_string_fields_are_rejected(client, admin_headers, user):
    fid = _flag(user)
    for body in ({"action": ["approve"], "flaggedContentId": fid},
                 {"action": "approve", "flaggedContentId": [fid]},
                 {"action": "approve", "flaggedContentId": fid, "notes": {"n": 1}},
                 {"action": "ban", "flaggedContentId": fid, "banReason": ["abuse"]}):
        r = client.post("/api/admin/flagged-content", json=body, headers=admin_headers)
        assert r.status_code == 400, body
    with get_session() as s:
        assert s.get(FlaggedContent, fid).status == "PENDING"
        assert s.scalar(select(UserBan)) is None
