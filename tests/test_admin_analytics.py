from datetime import datetime, timedelta, timezone
from sqlalchemy import select
from clerva.models import FlaggedContent, Group, Message, Post, Report
from clerva.utils.db import get_session


def _seed(user_id, other_id):
    with get_session() as s:
        s.add(Message(sender_id=user_id, recipient_id=other_id, content="hi"))
        s.add(Post(user_id=other_id, content="post"))
        s.add(Group(name="Calc", subject="Math", owner_id=user_id))
        s.add(Report(reporter_id=user_id, content_type="user", content_id=other_id, type="SPAM"))
        s.add(FlaggedContent(content_type="MESSAGE", content="x", sender_id=other_id))
        s.commit()


def test_overview(client, admin_headers, user, make_user):
    other = make_user(role="PREMIUM")
    make_user(deactivated_at=datetime.now(timezone.utc))
    _seed(user, other)

    r = client.get("/api/admin/analytics?view=overview&period=7d", headers=admin_headers)
    assert r.status_code == 200, r.data
    summary = r.get_json()["data"]["summary"]
    assert summary["totalUsers"] == 4
    assert summary["newUsersThisPeriod"] == 4
    assert summary["activeUsersThisPeriod"] == 2
    assert summary["premiumUsers"] == 1
    assert summary["deactivatedUsers"] == 1
    assert summary["totalGroups"] == 1
    assert summary["totalMessages"] == 1
    assert summary["totalPosts"] == 1
    assert summary["pendingReports"] == 1
    assert summary["pendingFlaggedContent"] == 1


def test_charts_zero_filled(client, admin_headers, user, make_user):
    _seed(user, make_user())
    r = client.get("/api/admin/analytics?view=charts&period=30d", headers=admin_headers)
    series = r.get_json()["data"]["series"]
    assert len(series) == 30
    today = datetime.now(timezone.utc).date()
    assert series[-1]["date"] == today.isoformat()
    assert series[0]["date"] == (today - timedelta(days=29)).isoformat()
    assert series[-1]["signups"] == 3
    assert series[-1]["messages"] == 1
    assert series[-1]["groups"] == 1
    assert all(day["posts"] == 0 for day in series[:-1])


def test_invalid_params(client, admin_headers):
    assert client.get("/api/admin/analytics?period=1y", headers=admin_headers).status_code == 400
    assert client.get("/api/admin/analytics?view=pie&period=7d", headers=admin_headers).status_code == 400


def test_default_period_is_seven_days(client, admin_headers):
    r = client.get("/api/admin/analytics", headers=admin_headers)
    assert r.get_json()["period"] == "7d"
    assert r.get_json()["data"]["periodDays"] == 7
    r = client.get("/api/admin/analytics?view=charts", headers=admin_headers)
    assert len(r.get_json()["data"]["series"]) == 7


def test_growth_percent():
    from clerva.services.analytics_service import growth_percent
    assert growth_percent(15, 10) == 50
    assert growth_percent(5, 10) == -50
    assert growth_percent(3, 0) == 100
    assert growth_percent(0, 0) == 0


def test_charts_breakdowns_and_extra_series(client, admin_headers, user, make_user):
    from clerva.models import GroupMember, Match
    other = make_user(role="PREMIUM", last_login_at=datetime.now(timezone.utc))
    with get_session() as s:
        g = Group(name="Organic Chemistry Crew", subject="Chem", owner_id=user)
        small = Group(name="Calc", subject="Math", owner_id=other)
        s.add_all([g, small])
        s.flush()
        s.add_all([GroupMember(group_id=g.id, user_id=user, role="OWNER"),
                   GroupMember(group_id=g.id, user_id=other),
                   GroupMember(group_id=small.id, user_id=other, role="OWNER")])
        s.add(Match(sender_id=user, receiver_id=other, status="ACCEPTED"))
        s.add(Match(sender_id=other, receiver_id=user, status="PENDING"))
        s.add(Message(sender_id=user, recipient_id=other, content="hi"))
        s.commit()

    data = client.get("/api/admin/analytics?view=charts", headers=admin_headers).get_json()["data"]
    today = data["series"][-1]
    assert today["matches"] == 1
    assert today["activeUsers"] == 1
    assert data["breakdowns"]["usersByRole"] == [{"role": "FREE", "count": 2}, {"role": "PREMIUM", "count": 1}]
    top = data["breakdowns"]["topGroups"]
    assert [t["members"] for t in top] == [2, 1]
    assert top[0]["name"] == "Organic Chemist..."
    assert data["growth"]["newUsersThisMonth"] == 3
    assert data["growth"]["userGrowthPercent"] == 100
    assert data["growth"]["activeToday"] == 1
    hourly = data["activity"]["hourly"]
    assert len(hourly) == 24
    assert sum(h["value"] for h in hourly) == 1
    assert hourly[datetime.now(timezone.utc).hour]["value"] == 1


def _activity(user_id, severity="LOW", reviewed=False, kind="RAPID_MESSAGING"):
    from clerva.models import SuspiciousActivityLog
    with get_session() as s:
        a = SuspiciousActivityLog(user_id=user_id, type=kind, severity=severity, description="burst",
                                  detected_by="rules", is_reviewed=reviewed)
        s.add(a)
        s.commit()
        return a.id


def test_suspicious_view_orders_by_severity(client, admin_headers, user):
    _activity(user, "LOW")
    crit = _activity(user, "CRITICAL", kind="BULK_ACTIONS")
    _activity(user, "MEDIUM", reviewed=True)
    _activity("deleted-user", "HIGH")

    data = client.get("/api/admin/analytics?view=suspicious", headers=admin_headers).get_json()["data"]
    assert [a["severity"] for a in data["activities"]] == ["CRITICAL", "HIGH", "MEDIUM", "LOW"]
    assert data["activities"][0]["id"] == crit
    assert data["activities"][0]["user"]["name"] == "Alice"
    assert data["activities"][1]["user"] is None
    assert data["total"] == 4
    assert {"type": "BULK_ACTIONS", "count": 1} in data["statsByType"]
    assert {"severity": "LOW", "count": 1} in data["statsBySeverity"]

    data = client.get("/api/admin/analytics?view=suspicious&unreviewed=true&severity=MEDIUM",
                      headers=admin_headers).get_json()["data"]
    assert data["total"] == 0
    assert client.get("/api/admin/analytics?view=suspicious&severity=EXTREME",
                      headers=admin_headers).status_code == 400


def test_review_suspicious_activity(client, admin, admin_headers, user):
    from clerva.models import AdminAuditLog, SuspiciousActivityLog
    aid = _activity(user, "HIGH")
    r = client.patch("/api/admin/analytics", json={"activityId": aid, "actionTaken": "warned"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.get_json()["activity"]["isReviewed"] is True
    assert r.get_json()["activity"]["reviewedById"] == admin

    other = _activity(user)
    assert client.post("/api/admin/analytics", json={"activityId": other}, headers=admin_headers).status_code == 200
    assert client.patch("/api/admin/analytics", json={"activityId": "nope"}, headers=admin_headers).status_code == 404
    assert client.patch("/api/admin/analytics", json={}, headers=admin_headers).status_code == 400
    assert client.patch("/api/admin/analytics", json={"activityId": aid, "actionTaken": ["x"]},
                        headers=admin_headers).status_code == 400

    with get_session() as s:
        assert s.get(SuspiciousActivityLog, aid).action_taken == "warned"
        log = s.scalar(select(AdminAuditLog).where(AdminAuditLog.target_id == aid))
    assert log.action == "REVIEW_SUSPICIOUS_ACTIVITY"
    assert log.target_type == "suspicious_activity"
    assert log.details == {"actionTaken": "warned"}


def test_user_view(client, admin_headers, user, make_user):
    other = make_user()
    _seed(user, other)
    _activity(user, "MEDIUM")
    data = client.get(f"/api/admin/analytics?view=user&userId={user}", headers=admin_headers).get_json()["data"]
    assert data["user"]["id"] == user
    assert data["totals"] == {"messages": 1, "posts": 0, "aiRequests": 0}
    assert len(data["dailyActivity"]) == 7
    assert data["dailyActivity"][-1]["messages"] == 1
    assert len(data["suspiciousActivity"]) == 1

    assert client.get("/api/admin/analytics?view=user", headers=admin_headers).status_code == 400
    assert client.get("/api/admin/analytics?view=user&userId=ghost", headers=admin_headers).status_code == 404
