from datetime import timedelta
from sqlalchemy import select
from clerva.models import AdminAuditLog, utcnow
from clerva.services.audit_service import PURGE_CONFIRMATION
from clerva.utils.admin_audit import log_admin_action
from clerva.utils.db import get_session


def _seed(admin_id, actions, age_days=0):
    ids = []
    with get_session() as s:
        for action in actions:
            row = log_admin_action(s, admin_id, action, "user", "u1", {"n": 1}, ip_address="1.2.3.4")
            row.created_at = utcnow() - timedelta(days=age_days)
            s.flush()
            ids.append(row.id)
        s.commit()
    return ids


def test_list_logs_with_filters(client, admin, admin_headers):
    _seed(admin, ["user_warned", "user_banned", "user_warned"])
    r = client.get("/api/admin/audit", headers=admin_headers)
    assert r.status_code == 200
    body = r.get_json()
    assert body["pagination"] == {"total": 3, "pages": 1, "currentPage": 1, "limit": 50}
    assert body["filters"]["admins"] == [{"id": admin, "name": "Admin"}]
    assert set(body["filters"]["actions"]) == {"user_warned", "user_banned"}

    r = client.get("/api/admin/audit?action=user_warned&limit=1&page=2", headers=admin_headers)
    body = r.get_json()
    assert body["pagination"]["total"] == 2
    assert body["pagination"]["pages"] == 2
    assert len(body["logs"]) == 1


def test_limit_is_clamped(client, admin_headers):
    r = client.get("/api/admin/audit?limit=1000&page=0", headers=admin_headers)
    assert r.get_json()["pagination"]["limit"] == 100
    assert r.get_json()["pagination"]["currentPage"] == 1


def test_delete_requires_targets_before_role(client, admin_headers):
    r = client.delete("/api/admin/audit", json={}, headers=admin_headers)
    assert r.status_code == 400
    assert r.get_json()["error"] == "No logs specified for deletion"


def test_delete_requires_super_admin(client, admin, admin_headers):
    ids = _seed(admin, ["x"])
    r = client.delete("/api/admin/audit", json={"ids": ids}, headers=admin_headers)
    assert r.status_code == 403


def test_delete_selected_keeps_marker(client, super_admin, super_headers):
    ids = _seed(super_admin, ["a", "b", "c"])
    r = client.delete("/api/admin/audit", json={"ids": ids[:2]}, headers=super_headers)
    assert r.status_code == 200
    assert r.get_json()["deletedCount"] == 2
    with get_session() as s:
        remaining = set(s.scalars(select(AdminAuditLog.action)))
    assert remaining == {"c", "AUDIT_LOGS_DELETED"}


def test_delete_all_needs_confirmation(client, super_headers):
    r = client.delete("/api/admin/audit", json={"deleteAll": True}, headers=super_headers)
    assert r.status_code == 400
    r = client.delete("/api/admin/audit", json={"deleteAll": True, "confirmDelete": "yes"}, headers=super_headers)
    assert r.status_code == 400


def test_delete_all_with_retention(client, super_admin, super_headers):
    _seed(super_admin, ["old1", "old2"], age_days=40)
    _seed(super_admin, ["fresh"])
    r = client.delete(
        "/api/admin/audit",
        json={"deleteAll": True, "confirmDelete": PURGE_CONFIRMATION, "retentionDays": 30},
        headers=super_headers,
    )
    assert r.status_code == 200
    assert r.get_json()["deletedCount"] == 2
    with get_session() as s:
        remaining = set(s.scalars(select(AdminAuditLog.action)))
    assert remaining == {"fresh", "AUDIT_LOGS_PURGED"}


def test_failed_audit_insert_keeps_caller_changes(app, admin):
    from clerva.models import Feedback
    with get_session() as s:
        s.add(Feedback(user_id=admin, rating=5, message="kept"))
        row = log_admin_action(s, admin, "feedback_reviewed", "feedback", "f1", {"bad": object()})
        assert row is None
        s.commit()
    with get_session() as s:
        assert s.scalar(select(Feedback.message)) == "kept"
        assert s.scalar(select(AdminAuditLog.id)) is None


def test_long_request_metadata_is_truncated(client, admin_headers, user_headers):
    fid = client.post("/api/feedback", json={"rating": 4, "message": "hi"}, headers=user_headers).get_json()["feedback"]["id"]
    headers = {**admin_headers, "X-Forwarded-For": "9" * 200 + ", 10.0.0.1", "User-Agent": "A" * 2000}
    r = client.post("/api/admin/feedback", json={"action": "review", "feedbackId": fid}, headers=headers)
    assert r.status_code == 200
    with get_session() as s:
        log = s.scalars(select(AdminAuditLog)).one()
    assert log.ip_address == "9" * 64
    assert log.user_agent == "A" * 512


def test_request_meta_sources(app):
    from clerva.utils.admin_audit import request_meta
    with app.test_request_context(headers={"X-Forwarded-For": "1.1.1.1, 2.2.2.2", "X-Real-IP": "3.3.3.3"}):
        assert request_meta() == {"ip_address": "1.1.1.1", "user_agent": "unknown"}
    with app.test_request_context(headers={"X-Real-IP": "3.3.3.3", "User-Agent": "curl/8"}):
        assert request_meta() == {"ip_address": "3.3.3.3", "user_agent": "curl/8"}
    with app.test_request_context(environ_base={"REMOTE_ADDR": "::ffff:4.4.4.4"}):
        assert request_meta()["ip_address"] == "4.4.4.4"
    assert request_meta() == {"ip_address": "unknown", "user_agent": "unknown"}


def test_filter_names_fall_back_for_deleted_admins(client, admin, admin_headers):
    with get_session() as s:
        s.add(AdminAuditLog(admin_id="gone-1", admin_name="Former Admin", action="x",
                            target_type="user", target_id="u1", details={}))
        s.add(AdminAuditLog(admin_id="gone-2", action="y", target_type="user", target_id="u1", details={}))
        s.commit()
    r = client.get("/api/admin/audit", headers=admin_headers)
    names = {a["id"]: a["name"] for a in r.get_json()["filters"]["admins"]}
    assert names["gone-1"] == "Former Admin"
    assert names["gone-2"] == "Unknown Admin"
