from datetime import timedelta
import pytest
from flask_jwt_extended import create_access_token
from clerva.utils.ratelimit import ADMIN_PRESETS, reset_buckets


def auth_header(t):
    return {"Authorization": f"Bearer {t}"}


def test_healthz(client):
    r = client.get("/api/healthz")
    assert r.status_code == 200
    body = r.get_json()
    assert body["ok"] is True
    assert body["db"]["driver"].startswith("sqlite")
    assert body["version"]


def test_unknown_route_and_method(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.get_json() == {"ok": False, "error": "Not found"}
    r = client.put("/api/healthz")
    assert r.status_code == 405


def test_invalid_and_expired_tokens(app, client, user):
    r = client.get("/api/groups", headers=auth_header("not-a-jwt"))
    assert r.status_code == 401
    assert r.get_json()["error"]["code"] == "JWT_INVALID"

    with app.app_context():
        expired = create_access_token(identity=user, expires_delta=timedelta(seconds=-10))
    r = client.get("/api/groups", headers=auth_header(expired))
    assert r.status_code == 401
    assert r.get_json()["error"]["code"] == "JWT_EXPIRED"


def test_unknown_user_and_deactivated(client, make_user, token_for):
    from datetime import datetime, timezone
    r = client.get("/api/groups", headers=auth_header(token_for("ghost")))
    assert r.status_code == 401
    gone = make_user(deactivated_at=datetime.now(timezone.utc))
    r = client.get("/api/groups", headers=auth_header(token_for(gone)))
    assert r.status_code == 403
    assert r.get_json()["error"] == "Account deactivated"

    admin = make_user(is_admin=True, deactivated_at=datetime.now(timezone.utc))
    r = client.get("/api/admin/feedback", headers=auth_header(token_for(admin)))
    assert r.status_code == 403


@pytest.fixture()
def ratelimited(app):
    app.config["RATELIMIT_ENABLED"] = True
    reset_buckets()
    yield
    app.config["RATELIMIT_ENABLED"] = False
    reset_buckets()


def test_admin_rate_limit_returns_429(client, admin_headers, ratelimited):
    calls, _ = ADMIN_PRESETS["dashboard"]
    codes = [client.get("/api/admin/analytics?period=7d", headers=admin_headers).status_code
             for _ in range(calls + 5)]
    assert codes[0] == 200
    assert 429 in codes
    r = client.get("/api/admin/analytics?period=7d", headers=admin_headers)
    assert r.status_code == 429
    assert r.get_json()["retry_after"] >= 1
    assert "Retry-After" in r.headers


def test_rate_limit_is_per_ip(client, admin_headers, ratelimited):
    calls, _ = ADMIN_PRESETS["dashboard"]
    for _ in range(calls + 2):
        client.get("/api/admin/analytics", headers={**admin_headers, "X-Forwarded-For": "10.0.0.1"})
    r = client.get("/api/admin/analytics", headers={**admin_headers, "X-Forwarded-For": "10.0.0.2, 10.0.0.1"})
    assert r.status_code == 200


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.counts = {}

    def incr(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, seconds):
        return True

    def ttl(self, key):
        return 42


def _counting_handle(calls):
    from clerva.utils.errors import NotFound

    def handle(session, admin_id, data):
        calls.append(data)
        raise NotFound("Feedback not found")
    return handle


@pytest.mark.parametrize("fail", [False, True])
def test_handler_error_runs_handler_once(client, admin_headers, ratelimited, monkeypatch, fail):
    from clerva.services.feedback_service import FeedbackService
    fake = FakeRedis(fail=fail)
    monkeypatch.setattr("clerva.utils.ratelimit.get_redis", lambda: fake)
    calls = []
    monkeypatch.setattr(FeedbackService, "handle", _counting_handle(calls))

    r = client.post("/api/admin/feedback", json={"action": "review", "feedbackId": "missing"},
                    headers=admin_headers)
    assert r.status_code == 404
    assert len(calls) == 1


def test_redis_window_limits_and_reports_ttl(client, admin_headers, ratelimited, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr("clerva.utils.ratelimit.get_redis", lambda: fake)
    calls, _ = ADMIN_PRESETS["dashboard"]
    codes = [client.get("/api/admin/analytics", headers=admin_headers).status_code for _ in range(calls + 1)]
    assert codes[:calls] == [200] * calls
    assert codes[-1] == 429
    r = client.get("/api/admin/analytics", headers=admin_headers)
    assert r.get_json()["retry_after"] == 42


def test_redis_failure_uses_local_bucket(client, admin_headers, ratelimited, monkeypatch):
    monkeypatch.setattr("clerva.utils.ratelimit.get_redis", lambda: FakeRedis(fail=True))
    calls, _ = ADMIN_PRESETS["dashboard"]
    codes = [client.get("/api/admin/analytics", headers=admin_headers).status_code for _ in range(calls + 5)]
    assert codes[0] == 200
    assert 429 in codes
