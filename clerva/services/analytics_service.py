"""
後台統計
overview 摘要、charts 每日序列與分布、單一使用者活動、可疑行為清單
overview 與 charts 依 (view, period) 快取
"""
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
import logging
import os
from typing import Any, Dict, List, Optional
from sqlalchemy import case, func, select, union
from sqlalchemy.orm import Session
from clerva.models import (
    AIUsageLog, FlaggedContent, FlagStatus, Group, GroupMember, Match, MatchStatus, Message, Post,
    Report, ReportStatus, SuspiciousActivityLog, SuspiciousSeverity, User, UserRole, as_utc, iso, utcnow,
)
from clerva.utils.cache import get_or_set_cached
from clerva.utils.errors import APIError, NotFound
from clerva.utils.validation import require_id

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_PERIOD = "7d"
VIEWS = ("overview", "charts", "user", "suspicious")
CACHED_VIEWS = ("overview", "charts")
DEFAULT_CACHE_TTL = 120
SUSPICIOUS_LIMIT = 100
TOP_GROUPS = 5
GROUP_LABEL_CHARS = 15
SEVERITIES = [s.value for s in SuspiciousSeverity]


def cache_ttl() -> int:
    try:
        return int(os.getenv("ANALYTICS_CACHE_TTL", str(DEFAULT_CACHE_TTL)))
    except ValueError:
        return DEFAULT_CACHE_TTL


def growth_percent(this_month: int, last_month: int) -> int:
    """月增率；上月為 0 時，本月有新增記 100，否則 0"""
    if last_month > 0:
        return round((this_month - last_month) / last_month * 100)
    return 100 if this_month > 0 else 0


def _month_start(d: date) -> datetime:
    return datetime(d.year, d.month, 1, tzinfo=timezone.utc)


def _previous_month_start(d: date) -> datetime:
    if d.month == 1:
        return datetime(d.year - 1, 12, 1, tzinfo=timezone.utc)
    return datetime(d.year, d.month - 1, 1, tzinfo=timezone.utc)


class AnalyticsService:

    @classmethod
    def period_days(cls, period: str) -> int:
        if period not in PERIOD_DAYS:
            raise APIError("Invalid period parameter. Allowed values: 7d, 30d, 90d")
        return PERIOD_DAYS[period]

    @classmethod
    def get(cls, session: Session, view: str, period: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        days = cls.period_days(period)
        if view not in VIEWS:
            raise APIError("Invalid view parameter. Allowed values: overview, charts, user, suspicious")
        params = params or {}
        if view == "user":
            return cls.user_activity(session, params.get("userId"), days)
        if view == "suspicious":
            return cls.suspicious(session, days, unreviewed=params.get("unreviewed") == "true",
                                  severity=params.get("severity") or None)
        key = f"admin:analytics:{view}:{period}"
        if view == "overview":
            return get_or_set_cached(key, cache_ttl(), lambda: cls.overview(session, days))
        return get_or_set_cached(key, cache_ttl(), lambda: cls.charts(session, days))

    @classmethod
    def overview(cls, session: Session, days: int) -> Dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(days=days)

        def count(stmt) -> int:
            return int(session.scalar(stmt) or 0)

        active_ids = union(
            select(Message.sender_id.label("uid")).where(Message.created_at >= since),
            select(Post.user_id.label("uid")).where(Post.created_at >= since),
            select(AIUsageLog.user_id.label("uid")).where(
                AIUsageLog.created_at >= since, AIUsageLog.user_id.is_not(None)
            ),
        ).subquery()

        summary = {
            "totalUsers": count(select(func.count(User.id))),
            "newUsersThisPeriod": count(select(func.count(User.id)).where(User.created_at >= since)),
            "activeUsersThisPeriod": count(select(func.count()).select_from(active_ids)),
            "premiumUsers": count(select(func.count(User.id)).where(User.role == UserRole.PREMIUM.value)),
            "deactivatedUsers": count(select(func.count(User.id)).where(User.deactivated_at.is_not(None))),
            "totalGroups": count(select(func.count(Group.id)).where(Group.is_deleted.is_(False))),
            "totalMessages": count(select(func.count(Message.id))),
            "totalPosts": count(select(func.count(Post.id)).where(Post.is_deleted.is_(False))),
            "totalConnections": count(select(func.count(Match.id)).where(
                Match.status == MatchStatus.ACCEPTED.value, Match.updated_at >= since)),
            "pendingReports": count(select(func.count(Report.id)).where(
                Report.status == ReportStatus.PENDING.value)),
            "pendingFlaggedContent": count(select(func.count(FlaggedContent.id)).where(
                FlaggedContent.status == FlagStatus.PENDING.value)),
        }
        return {"summary": summary, "periodDays": days}

    @classmethod
    def _daily_counts(cls, session: Session, column, since: datetime, *where) -> Dict[str, int]:
        day = func.date(column)
        rows = session.execute(
            select(day, func.count()).where(column >= since, *where).group_by(day)
        ).all()
        return {str(d)[:10]: int(c) for d, c in rows if d is not None}

    @classmethod
    def charts(cls, session: Session, days: int) -> Dict[str, Any]:
        """每天一筆，沒有資料的日子補 0；另附月增率、分布與近 24 小時訊息量"""
        now = utcnow()
        today = now.date()
        first: date = today - timedelta(days=days - 1)
        since = datetime.combine(first, time.min, tzinfo=timezone.utc)

        signups = cls._daily_counts(session, User.created_at, since)
        messages = cls._daily_counts(session, Message.created_at, since)
        posts = cls._daily_counts(session, Post.created_at, since)
        groups = cls._daily_counts(session, Group.created_at, since)
        matches = cls._daily_counts(session, Match.created_at, since, Match.status == MatchStatus.ACCEPTED.value)
        active = cls._daily_counts(session, User.last_login_at, since, User.last_login_at.is_not(None))

        series: List[Dict[str, Any]] = []
        for i in range(days):
            d = (first + timedelta(days=i)).isoformat()
            series.append({
                "date": d,
                "signups": signups.get(d, 0),
                "messages": messages.get(d, 0),
                "posts": posts.get(d, 0),
                "groups": groups.get(d, 0),
                "matches": matches.get(d, 0),
                "activeUsers": active.get(d, 0),
            })
        return {
            "series": series,
            "growth": cls._growth(session, now),
            "breakdowns": {
                "usersByRole": cls._users_by_role(session),
                "topGroups": cls._top_groups(session),
            },
            "activity": {"hourly": cls._hourly_messages(session, now)},
            "periodDays": days,
        }

    @classmethod
    def _growth(cls, session: Session, now: datetime) -> Dict[str, int]:
        this_start = _month_start(now.date())
        last_start = _previous_month_start(now.date())
        today_start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)

        def count(*where) -> int:
            return int(session.scalar(select(func.count(User.id)).where(*where)) or 0)

        this_month = count(User.created_at >= this_start)
        last_month = count(User.created_at >= last_start, User.created_at < this_start)
        return {
            "newUsersThisMonth": this_month,
            "newUsersLastMonth": last_month,
            "newUsersThisWeek": count(User.created_at >= now - timedelta(days=7)),
            "activeToday": count(User.last_login_at >= today_start),
            "userGrowthPercent": growth_percent(this_month, last_month),
        }

    @classmethod
    def _users_by_role(cls, session: Session) -> List[Dict[str, Any]]:
        counts = dict(session.execute(select(User.role, func.count(User.id)).group_by(User.role)).all())
        return [{"role": r.value, "count": int(counts.get(r.value, 0))} for r in UserRole]

    @classmethod
    def _top_groups(cls, session: Session) -> List[Dict[str, Any]]:
        members = func.count(GroupMember.id)
        rows = session.execute(
            select(Group.id, Group.name, members.label("members"))
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(Group.is_deleted.is_(False))
            .group_by(Group.id, Group.name)
            .order_by(members.desc(), Group.name)
            .limit(TOP_GROUPS)
        ).all()
        return [{
            "id": r.id,
            "name": r.name if len(r.name) <= GROUP_LABEL_CHARS else r.name[:GROUP_LABEL_CHARS] + "...",
            "members": int(r.members),
        } for r in rows]

    @classmethod
    def _hourly_messages(cls, session: Session, now: datetime) -> List[Dict[str, Any]]:
        # 小時擷取語法各資料庫不同，24 小時內的筆數直接在 Python 分組
        hours = Counter(
            as_utc(ts).hour for ts in session.scalars(
                select(Message.created_at).where(Message.created_at >= now - timedelta(hours=24))
            )
        )
        return [{"hour": h, "label": f"{h:02d}:00", "value": hours.get(h, 0)} for h in range(24)]

    @classmethod
    def user_activity(cls, session: Session, user_id: Any, days: int) -> Dict[str, Any]:
        """單一使用者在期間內的活動"""
        user = session.get(User, require_id(user_id, "userId is required for the user view"))
        if user is None:
            raise NotFound("User not found")
        today = utcnow().date()
        first = today - timedelta(days=days - 1)
        since = datetime.combine(first, time.min, tzinfo=timezone.utc)

        messages = cls._daily_counts(session, Message.created_at, since, Message.sender_id == user.id)
        posts = cls._daily_counts(session, Post.created_at, since, Post.user_id == user.id)
        ai_calls = cls._daily_counts(session, AIUsageLog.created_at, since, AIUsageLog.user_id == user.id)
        daily = []
        for i in range(days):
            d = (first + timedelta(days=i)).isoformat()
            daily.append({"date": d, "messages": messages.get(d, 0), "posts": posts.get(d, 0),
                          "aiRequests": ai_calls.get(d, 0)})

        activities = session.scalars(
            select(SuspiciousActivityLog)
            .where(SuspiciousActivityLog.user_id == user.id, SuspiciousActivityLog.created_at >= since)
            .order_by(SuspiciousActivityLog.created_at.desc())
        ).all()
        return {
            "user": {
                **user.summary(),
                "createdAt": iso(user.created_at),
                "lastLoginAt": iso(user.last_login_at),
            },
            "totals": {
                "messages": sum(messages.values()),
                "posts": sum(posts.values()),
                "aiRequests": sum(ai_calls.values()),
            },
            "dailyActivity": daily,
            "suspiciousActivity": [cls.serialize_activity(a) for a in activities],
            "periodDays": days,
        }

    @classmethod
    def serialize_activity(cls, a: SuspiciousActivityLog) -> Dict[str, Any]:
        return {
            "id": a.id,
            "userId": a.user_id,
            "type": a.type,
            "severity": a.severity,
            "description": a.description,
            "metadata": a.details,
            "detectedBy": a.detected_by,
            "confidence": a.confidence,
            "relatedType": a.related_type,
            "relatedId": a.related_id,
            "isReviewed": a.is_reviewed,
            "reviewedById": a.reviewed_by_id,
            "reviewedAt": iso(a.reviewed_at),
            "actionTaken": a.action_taken,
            "createdAt": iso(a.created_at),
        }

    @classmethod
    def suspicious(cls, session: Session, days: int, unreviewed: bool = False,
                   severity: Optional[str] = None) -> Dict[str, Any]:
        """期間內的可疑行為，嚴重度高者在前"""
        since = utcnow() - timedelta(days=days)
        if severity is not None and severity not in SEVERITIES:
            raise APIError("Invalid severity")
        rank = case({s: i for i, s in enumerate(SEVERITIES)}, value=SuspiciousActivityLog.severity, else_=-1)
        q = select(SuspiciousActivityLog).where(SuspiciousActivityLog.created_at >= since)
        if unreviewed:
            q = q.where(SuspiciousActivityLog.is_reviewed.is_(False))
        if severity:
            q = q.where(SuspiciousActivityLog.severity == severity)
        rows = session.scalars(
            q.order_by(rank.desc(), SuspiciousActivityLog.created_at.desc()).limit(SUSPICIOUS_LIMIT)
        ).all()

        user_ids = {a.user_id for a in rows}
        users = {u.id: u for u in session.scalars(select(User).where(User.id.in_(user_ids)))} if user_ids else {}

        def grouped(column) -> List[tuple]:
            return session.execute(
                select(column, func.count(SuspiciousActivityLog.id))
                .where(SuspiciousActivityLog.created_at >= since)
                .group_by(column)
            ).all()

        return {
            "activities": [
                {**cls.serialize_activity(a), "user": users[a.user_id].summary() if a.user_id in users else None}
                for a in rows
            ],
            "statsByType": [{"type": t, "count": int(c)} for t, c in grouped(SuspiciousActivityLog.type)],
            "statsBySeverity": [{"severity": s, "count": int(c)} for s, c in grouped(SuspiciousActivityLog.severity)],
            "total": len(rows),
        }

    @classmethod
    def review_suspicious(cls, session: Session, admin_id: str, data: Dict[str, Any]) -> SuspiciousActivityLog:
        """標記已審閱；actionTaken 為選填字串"""
        activity = session.get(SuspiciousActivityLog, require_id(data.get("activityId"), "activityId is required"))
        if activity is None:
            raise NotFound("Suspicious activity not found")
        action_taken = data.get("actionTaken")
        if action_taken is not None and not isinstance(action_taken, str):
            raise APIError("actionTaken must be a string")
        activity.is_reviewed = True
        activity.reviewed_by_id = admin_id
        activity.reviewed_at = utcnow()
        activity.action_taken = action_taken
        session.flush()
        return activity
