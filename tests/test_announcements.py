from datetime import datetime, timezone
from clerva.models import AdminAuditLog, Notification
from clerva.utils.db import get_session
from sqlalchemy import func, select


def auth_header(t):
    return {"Authorization": f"Bearer {t}"}


def _create(client, headers, **data):
    body = {"action": "create", "title": "Exam week", "content": "Library opens 24h", **data}
    return client.post("/api/admin/announcements", json=body, headers=headers)


def test_requires_admin(client, user_headers):
    r = client.get("/api/admin/announcements")
    assert r.status_code == 401
    r = client.get("/api/admin/announcements", headers=user_headers)
    assert r.status_code == 403
    assert r.get_json() == {"ok": False, "error": "Not authorized"}


def test_create_fans_out_notifications_and_audits(client, admin_headers, user, admin, make_user):
    make_user(name="Gone", deactivated_at=datetime.now(timezone.utc))
    r = _create(client, admin_headers, content="x" * 250)
    assert r.status_code == 201, r.data
    body = r.get_json()
    assert body["ok"] is True
    assert body["notificationsSent"] == 2
    ann = body["announcement"]
    assert ann["status"] == "ACTIVE"
    assert ann["priority"] == "NORMAL"

    with get_session() as s:
        n = s.scalar(select(Notification).where(Notification.user_id == user))
        assert n.type == "ANNOUNCEMENT"
        assert n.title.endswith("Exam week")
        assert n.message == "x" * 200 + "..."
        log = s.scalar(select(AdminAuditLog).where(AdminAuditLog.action == "announcement_created"))
        assert log is not None and log.admin_id == admin and log.target_id == ann["id"]


def test_create_targets_listed_users_only(client, admin_headers, user):
    r = _create(client, admin_headers, targetUserIds=[user])
    assert r.get_json()["notificationsSent"] == 1


def test_create_validation(client, admin_headers):
    r = _create(client, admin_headers, title="  ")
    assert r.status_code == 400
    assert r.get_json()["error"] == "Title and content are required"
    r = client.post("/api/admin/announcements", json={"action": "shout"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.get_json()["error"] == "Invalid action"


def test_update_publish_archive_delete(client, admin_headers):
    ann_id = _create(client, admin_headers).get_json()["announcement"]["id"]

    r = client.post("/api/admin/announcements", json={"action": "update", "id": ann_id, "priority": "HIGH"},
                    headers=admin_headers)
    assert r.status_code == 200
    assert r.get_json()["announcement"]["priority"] == "HIGH"
    assert r.get_json()["announcement"]["title"] == "Exam week"

    r = client.post("/api/admin/announcements", json={"action": "archive", "id": ann_id}, headers=admin_headers)
    assert r.get_json()["announcement"]["status"] == "ARCHIVED"
    r = client.post("/api/admin/announcements", json={"action": "publish", "id": ann_id}, headers=admin_headers)
    assert r.get_json()["announcement"]["status"] == "ACTIVE"

    r = client.get("/api/admin/announcements?status=ACTIVE", headers=admin_headers)
    body = r.get_json()
    assert body["pagination"]["total"] == 1
    assert body["announcements"][0]["dismissalCount"] == 0
    assert body["announcements"][0]["createdBy"]["name"] == "Admin"

    r = client.post("/api/admin/announcements", json={"action": "delete", "id": ann_id}, headers=admin_headers)
    assert r.status_code == 200
    r = client.post("/api/admin/announcements", json={"action": "publish", "id": ann_id}, headers=admin_headers)
    assert r.status_code == 404

    with get_session() as s:
        actions = set(s.scalars(select(AdminAuditLog.action)))
    assert {"announcement_updated", "announcement_archived", "announcement_published",
            "announcement_deleted"} <= actions


def test_user_feed_and_dismiss(client, admin_headers, user_headers):
    low = _create(client, admin_headers, title="Low one").get_json()["announcement"]["id"]
    urgent = _create(client, admin_headers, title="Urgent one", priority="URGENT").get_json()["announcement"]["id"]
    _create(client, admin_headers, title="Premium only", targetRole="PREMIUM")

    r = client.get("/api/announcements", headers=user_headers)
    ids = [a["id"] for a in r.get_json()["announcements"]]
    assert ids == [urgent, low]

    r = client.post(f"/api/announcements/{urgent}/dismiss", headers=user_headers)
    assert r.status_code == 200
    r = client.post(f"/api/announcements/{urgent}/dismiss", headers=user_headers)
    assert r.status_code == 200
    ids = [a["id"] for a in client.get("/api/announcements", headers=user_headers).get_json()["announcements"]]
    assert ids == [low]

    r = client.post("/api/announcements/missing/dismiss", headers=user_headers)
    assert r.status_code == 404
    with get_session() as s:
        assert s.scalar(select(func.count(Notification.id))) > 0


def test_create_rejects_bad_types_and_long_titles(client, admin_headers):
    for extra in ({"priority": ["HIGH"]}, {"priority": {"p": 1}}, {"targetRole": ["PREMIUM"]},
                  {"targetRole": "GOD"}, {"title": "t" * 201}):
        r = _create(client, admin_headers, **extra)
        assert r.status_code == 400, extra
    assert _create(client, admin_headers, title="t" * 200).status_code == 201

    ann_id = _create(client, admin_headers).get_json()["announcement"]["id"]
    for body in ({"priority": ["LOW"]}, {"title": "t" * 201}, {"title": 5}, {"content": ["x"]}):
        r = client.post("/api/admin/announcements", json={"action": "update", "id": ann_id, **body},
                        headers=admin_headers)
        assert r.status_code == 400, body
    r = client.post("/api/admin/announcements", json={"action": "publish", "id": [ann_id]}, headers=admin_headers)
    assert r.status_code == 400


def test_chunked_batches():
    from clerva.services.announcement_service import chunked
    for n, sizes in ((499, [499]), (500, [500]), (501, [500, 1]), (0, [])):
        assert [len(c) for c in chunked(list(range(n)), 500)] == sizes


def test_notifications_split_into_configured_batches(client, admin_headers, make_user, monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    from clerva.services import announcement_service
    from clerva.utils.config_handler import update_settings
    update_settings({"notification_batch_size": 2})
    for _ in range(4):
        make_user()
    batches = []
    real = announcement_service.chunked

    def spy(rows, size):
        for chunk in real(rows, size):
            batches.append(len(chunk))
            yield chunk
    monkeypatch.setattr(announcement_service, "chunked", spy)

    r = _create(client, admin_headers)
    assert r.get_json()["notificationsSent"] == 5
    assert batches == [2, 2, 1]
    with get_session() as s:
        assert s.scalar(select(func.count(Notification.id))) == 5


def test_notification_failure_keeps_announcement(client, admin_headers, user, monkeypatch):
    from clerva.services.announcement_service import AnnouncementService

    def boom(session, a):
        raise RuntimeError("notification store down")
    monkeypatch.setattr(AnnouncementService, "_target_user_ids", boom)

    r = _create(client, admin_headers)
    assert r.status_code == 201
    assert r.get_json()["notificationsSent"] == 0
    ann_id = r.get_json()["announcement"]["id"]
    with get_session() as s:
        from clerva.models import Announcement
        assert s.get(Announcement, ann_id) is not None
        assert s.scalar(select(func.count(Notification.id))) == 0
