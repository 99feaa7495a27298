"""
檢舉服務
使用者送出檢舉、後台審核與調查資料彙整
"""
from datetime import timedelta
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session
from clerva.models import (
    Group, GroupMember, Match, MatchStatus, Message, Post, PostComment, Profile,
    Report, ReportStatus, ReportType, User, UserBan, UserWarning, iso, utcnow,
)
from clerva.services.moderation_service import ModerationService
from clerva.services.report_analysis import analyze_report
from clerva.utils.config_handler import get_setting
from clerva.utils.errors import APIError, NotFound
from clerva.utils.validation import require_choice, require_id

logger = logging.getLogger(__name__)

CONTENT_TYPES = ("user", "post", "message", "group", "comment")
REPORT_TYPES = {t.value for t in ReportType}
ADMIN_ACTIONS = {
    "review": ReportStatus.REVIEWING.value,
    "resolve": ReportStatus.RESOLVED.value,
    "dismiss": ReportStatus.DISMISSED.value,
}

URL_RE = re.compile(r"(https?://[^\s]+)|(www\.[^\s]+)", re.IGNORECASE)
SUSPICIOUS_PATTERNS = [
    re.compile(r"\b(send|transfer|wire|payment|paypal|venmo|cashapp|zelle|bitcoin|crypto|btc|eth)\b", re.I),
    re.compile(r"\b(bank\s*account|card\s*number|ssn|social\s*security)\b", re.I),
    re.compile(r"\b(lottery|winner|prize|inheritance|million\s*dollars)\b", re.I),
    re.compile(r"\b(kill|die|death|threat|hurt|harm)\b", re.I),
    re.compile(r"\b(click\s*here|free\s*money|limited\s*time)\b", re.I),
    re.compile(r"bit\.ly|tinyurl|goo\.gl", re.I),
]


def _summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    return user.summary() if user else None


def _is_suspicious(text: str) -> bool:
    return any(p.search(text or "") for p in SUSPICIOUS_PATTERNS)


class ReportService:

    @classmethod
    def parse_types(cls, data: Dict[str, Any]) -> List[str]:
        """type 可為逗號分隔字串，或 types 陣列"""
        types = data.get("types")
        if isinstance(types, list) and types:
            raw = types
        elif isinstance(data.get("type"), str):
            raw = data["type"].split(",")
        else:
            raw = []
        if not raw:
            raise APIError("Invalid report type")
        return [require_choice(t.strip() if isinstance(t, str) else t, REPORT_TYPES, "Invalid report type")
                for t in raw]

    @classmethod
    def _resolve_reported_user(cls, session: Session, content_type: str, content_id: str) -> Tuple[bool, Optional[str]]:
        """回傳 (內容是否存在, 被檢舉者 id)"""
        if content_type == "user":
            return session.get(User, content_id) is not None, content_id
        if content_type == "post":
            post = session.get(Post, content_id)
            return post is not None, post.user_id if post else None
        if content_type == "message":
            msg = session.get(Message, content_id)
            return msg is not None, msg.sender_id if msg else None
        if content_type == "group":
            group = session.get(Group, content_id)
            return group is not None, group.owner_id if group else None
        if content_type == "comment":
            comment = session.get(PostComment, content_id)
            return comment is not None, comment.user_id if comment else None
        return False, None

    @classmethod
    def create_report(cls, session: Session, reporter_id: str, data: Dict[str, Any]) -> Report:
        """
        建立檢舉

        Args:
            session: 資料庫會話
            reporter_id: 檢舉者
            data: contentType, contentId, type | types, description

        Returns:
            Report
        """
        content_type = data.get("contentType")
        content_id = data.get("contentId")
        if not content_type or not content_id or not (data.get("type") or data.get("types")):
            raise APIError("Missing required fields: contentType, contentId, type")
        require_choice(content_type, CONTENT_TYPES, "Invalid content type")
        if isinstance(content_id, (dict, list, bool)):
            raise APIError("Invalid contentId")
        content_id = str(content_id)
        types = cls.parse_types(data)

        description = data.get("description")
        clean: Optional[str] = None
        if description:
            if not isinstance(description, str):
                raise APIError("Description must be a string")
            max_len = int(get_setting("report_description_max") or 2000)
            trimmed = description.strip()
            if len(trimmed) > max_len:
                raise APIError(f"Description too long (max {max_len} characters)")
            clean = trimmed or None

        if content_type == "user" and content_id == reporter_id:
            raise APIError("You cannot report yourself")

        existing = session.scalar(select(Report.id).where(
            Report.reporter_id == reporter_id,
            Report.content_type == content_type,
            Report.content_id == content_id,
            Report.status == ReportStatus.PENDING.value,
        ))
        if existing:
            raise APIError("You have already reported this content")

        found, reported_user_id = cls._resolve_reported_user(session, content_type, content_id)
        if not found:
            raise NotFound("Content not found")

        if len(types) > 1:
            if clean:
                clean = f"{clean}\n\n[Additional report reasons: {', '.join(types[1:])}]"
            else:
                clean = f"[Report reasons: {', '.join(types)}]"

        report = Report(
            reporter_id=reporter_id,
            reported_user_id=reported_user_id,
            content_type=content_type,
            content_id=content_id,
            type=types[0],
            description=clean,
        )
        session.add(report)
        session.flush()
        logger.info("report %s created by %s on %s/%s", report.id, reporter_id, content_type, content_id)
        return report

    @classmethod
    def list_own(cls, session: Session, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        rows = session.scalars(
            select(Report).where(Report.reporter_id == user_id)
            .order_by(Report.created_at.desc()).limit(limit)
        ).all()
        return [{
            "id": r.id,
            "contentType": r.content_type,
            "type": r.type,
            "status": r.status,
            "createdAt": iso(r.created_at),
        } for r in rows]

    @classmethod
    def serialize(cls, r: Report, with_users: bool = True) -> Dict[str, Any]:
        data = {
            "id": r.id,
            "reporterId": r.reporter_id,
            "reportedUserId": r.reported_user_id,
            "contentType": r.content_type,
            "contentId": r.content_id,
            "type": r.type,
            "description": r.description,
            "status": r.status,
            "handledById": r.handled_by_id,
            "handledAt": iso(r.handled_at),
            "resolution": r.resolution,
            "actionTaken": r.action_taken,
            "createdAt": iso(r.created_at),
            "updatedAt": iso(r.updated_at),
        }
        if with_users:
            data["reporter"] = _summary(r.reporter)
            data["reportedUser"] = _summary(r.reported_user)
            data["handledBy"] = _summary(r.handled_by)
        return data

    @classmethod
    def list_reports(
        cls, session: Session, page: int, limit: int,
        status: Optional[str] = None, report_type: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int, Dict[str, Any]]:
        conds = []
        if status:
            conds.append(Report.status == status)
        if report_type:
            conds.append(Report.type == report_type)
        total = session.scalar(select(func.count(Report.id)).where(*conds)) or 0
        rows = session.scalars(
            select(Report).where(*conds)
            .order_by(Report.created_at.desc()).offset((page - 1) * limit).limit(limit)
        ).all()
        by_status = {s: c for s, c in session.execute(
            select(Report.status, func.count(Report.id)).group_by(Report.status)
        ).all()}
        return [cls.serialize(r) for r in rows], total, {"byStatus": by_status}

    @classmethod
    def handle_report(cls, session: Session, admin_id: str, data: Dict[str, Any]) -> Report:
        """review / resolve / dismiss；resolve 可同時停權被檢舉者"""
        action = data.get("action")
        report_id = data.get("reportId")
        if not action or not report_id:
            raise APIError("Action and reportId are required")
        require_choice(action, ADMIN_ACTIONS, "Invalid action")
        report = session.get(Report, require_id(report_id, "Action and reportId are required"))
        if report is None:
            raise NotFound("Report not found")

        report.status = ADMIN_ACTIONS[action]
        report.handled_by_id = admin_id
        report.handled_at = utcnow()
        resolution = data.get("resolution")
        if resolution is not None:
            if not isinstance(resolution, str):
                raise APIError("Resolution must be a string")
            report.resolution = resolution

        if action == "resolve" and data.get("banUser"):
            if not report.reported_user_id:
                raise APIError("Report has no reported user to ban")
            ban_reason = data.get("banReason")
            if ban_reason is not None and not isinstance(ban_reason, str):
                raise APIError("banReason must be a string")
            reason = ban_reason or report.resolution or f"Report {report.id}: {report.type}"
            ModerationService.ban_user(
                session, report.reported_user_id, admin_id, reason,
                duration_days=data.get("banDuration"), report_id=report.id,
            )
            report.action_taken = "banned"
        session.flush()
        return report

    # ---- 調查 ----

    @classmethod
    def _conversation(cls, session: Session, a: str, b: str) -> Dict[str, Any]:
        recent = session.scalars(
            select(Message).where(
                or_(
                    and_(Message.sender_id == a, Message.recipient_id == b),
                    and_(Message.sender_id == b, Message.recipient_id == a),
                ),
                Message.deleted_at.is_(None),
            ).order_by(Message.created_at.desc()).limit(100)
        ).all()
        messages = list(reversed(recent))
        return {
            "messages": [{
                "id": m.id,
                "senderId": m.sender_id,
                "recipientId": m.recipient_id,
                "content": m.content,
                "type": m.type,
                "createdAt": iso(m.created_at),
                "sender": {"id": m.sender.id, "name": m.sender.name, "avatarUrl": m.sender.avatar_url} if m.sender else None,
            } for m in messages],
            "stats": {
                "totalMessages": len(messages),
                "messagesByReporter": sum(1 for m in messages if m.sender_id == a),
                "messagesByReportedUser": sum(1 for m in messages if m.sender_id == b),
                "linksShared": sum(1 for m in messages if URL_RE.search(m.content or "")),
                "flaggedMessageIds": [m.id for m in messages if _is_suspicious(m.content)],
            },
        }

    @classmethod
    def _recent_activity(cls, session: Session, user_id: str) -> Dict[str, int]:
        since = utcnow() - timedelta(days=7)
        return {
            "messagesLast7Days": session.scalar(select(func.count(Message.id)).where(
                Message.sender_id == user_id, Message.created_at >= since)) or 0,
            "groupMemberships": session.scalar(select(func.count(GroupMember.id)).where(
                GroupMember.user_id == user_id)) or 0,
            "partnerConnections": session.scalar(select(func.count(Match.id)).where(
                or_(Match.sender_id == user_id, Match.receiver_id == user_id),
                Match.status == MatchStatus.ACCEPTED.value)) or 0,
        }

    @classmethod
    def _related_content(cls, session: Session, content_type: str, content_id: str) -> Optional[Dict[str, Any]]:
        if content_type == "message":
            m = session.get(Message, content_id)
            if m is None:
                return None
            return {
                "id": m.id, "content": m.content, "senderId": m.sender_id,
                "recipientId": m.recipient_id, "groupId": m.group_id,
                "createdAt": iso(m.created_at), "user": _summary(m.sender),
                "featureSource": "GROUP_CHAT" if m.group_id else "CHAT",
                "featureLabel": "Group Message" if m.group_id else "Direct Message",
            }
        if content_type == "post":
            p = session.get(Post, content_id)
            if p is None:
                return None
            return {
                "id": p.id, "content": p.content, "isDeleted": p.is_deleted,
                "createdAt": iso(p.created_at), "user": _summary(p.author),
                "featureSource": "COMMUNITY", "featureLabel": "Community Post",
            }
        if content_type == "comment":
            c = session.get(PostComment, content_id)
            if c is None:
                return None
            return {
                "id": c.id, "content": c.content, "postId": c.post_id,
                "createdAt": iso(c.created_at), "user": _summary(session.get(User, c.user_id)),
                "featureSource": "COMMUNITY", "featureLabel": "Post Comment",
            }
        if content_type == "group":
            g = session.get(Group, content_id)
            if g is None:
                return None
            return {
                "id": g.id, "name": g.name, "description": g.description, "subject": g.subject,
                "createdAt": iso(g.created_at), "user": _summary(g.owner),
                "featureSource": "GROUP", "featureLabel": "Study Group",
            }
        if content_type == "user":
            u = session.get(User, content_id)
            if u is None:
                return None
            profile = session.scalar(select(Profile).where(Profile.user_id == u.id))
            return {
                **u.summary(),
                "createdAt": iso(u.created_at),
                "bio": profile.bio if profile else None,
                "subjects": profile.subjects if profile else [],
                "interests": profile.interests if profile else [],
                "featureSource": "PROFILE", "featureLabel": "User Profile",
            }
        return None

    @classmethod
    def investigate(cls, session: Session, report_id: str) -> Dict[str, Any]:
        """彙整調查所需資料：對話、雙方紀錄、停權/警告與被檢舉內容"""
        report = session.get(Report, report_id)
        if report is None:
            raise NotFound("Report not found")
        reporter_id = report.reporter_id
        reported_id = report.reported_user_id

        reports_made = session.scalars(
            select(Report).where(Report.reporter_id == reporter_id)
            .order_by(Report.created_at.desc()).limit(20)
        ).all()

        history: Dict[str, Any] = {
            "reportsAgainst": None,
            "currentBan": None,
            "warnings": [],
            "recentActivity": None,
        }
        conversation = None
        if reported_id:
            conversation = cls._conversation(session, reporter_id, reported_id)
            history["reportsAgainst"] = [
                cls.serialize(r) for r in session.scalars(
                    select(Report).where(Report.reported_user_id == reported_id)
                    .order_by(Report.created_at.desc()).limit(20)
                )
            ]
            history["currentBan"] = ModerationService.serialize_ban(
                session.scalar(select(UserBan).where(UserBan.user_id == reported_id))
            )
            history["warnings"] = [
                ModerationService.serialize_warning(w) for w in session.scalars(
                    select(UserWarning).where(UserWarning.user_id == reported_id)
                    .order_by(UserWarning.created_at.desc()).limit(10)
                )
            ]
            history["recentActivity"] = cls._recent_activity(session, reported_id)

        data = cls.serialize(report)
        if report.reported_user is not None:
            data["reportedUser"].update({
                "createdAt": iso(report.reported_user.created_at),
                "deactivatedAt": iso(report.reported_user.deactivated_at),
                "deactivationReason": report.reported_user.deactivation_reason,
            })
        return {
            "report": data,
            "investigation": {
                "conversation": conversation,
                "reportedUserHistory": history,
                "reporterHistory": {
                    "reportsMade": [cls.serialize(r) for r in reports_made],
                    "falseReportCount": sum(1 for r in reports_made if r.status == ReportStatus.DISMISSED.value),
                },
                "relatedContent": cls._related_content(session, report.content_type, report.content_id),
                "aiAnalysis": analyze_report(report.type, conversation, report.reported_user),
            },
        }
