"""
後台使用者管理
列表、詳細資料與停權/警告/停用/管理員權限/永久刪除等動作
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session
from clerva.models import (
    AIMemoryEntry, AIUsageLog, AIUserMemory, AnnouncementDismissal, FlaggedContent, Group,
    GroupMember, GroupRole, Match, MatchStatus, Message, Post, PostComment, Profile, Report,
    SuspiciousActivityLog, User, UserBan, UserRole, UserWarning, as_utc, iso, utcnow,
)
from clerva.services.moderation_service import ModerationService
from clerva.services.report_service import ReportService
from clerva.utils.errors import APIError, Forbidden, NotFound
from clerva.utils.validation import require_choice, require_id, strict_int

logger = logging.getLogger(__name__)

ACTIONS = (
    "ban", "unban", "warn", "deactivate", "reactivate",
    "grant_admin", "revoke_admin", "permanent_delete",
)
# 一般管理員不能對其他管理員執行的動作
PROTECTED_ACTIONS = {"ban", "warn", "deactivate", "grant_admin", "revoke_admin", "permanent_delete"}
AUDIT_ACTIONS = {
    "ban": "user_banned",
    "unban": "user_unbanned",
    "warn": "user_warned",
    "deactivate": "user_deactivated",
    "reactivate": "user_reactivated",
    "grant_admin": "admin_granted",
    "revoke_admin": "admin_revoked",
    "permanent_delete": "user_permanently_deleted",
}
MESSAGES = {
    "ban": "User banned",
    "unban": "User unbanned",
    "warn": "Warning issued",
    "deactivate": "User deactivated",
    "reactivate": "User reactivated",
    "grant_admin": "Admin access granted",
    "revoke_admin": "Admin access revoked",
    "permanent_delete": "User permanently deleted",
}
SORT_FIELDS = {
    "createdAt": User.created_at,
    "lastLoginAt": User.last_login_at,
    "name": User.name,
    "email": User.email,
}
DELETED_SENDER = "deleted-user"
RECENT_MESSAGES = 50
RECENT_POSTS = 30
NO_REASON = "No reason provided"


class AdminUserService:
    """後台使用者管理服務類"""

    @classmethod
    def serialize(cls, u: User, ban: Optional[UserBan] = None, counts: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        data = {
            **u.summary(),
            "role": u.role,
            "isAdmin": u.is_admin,
            "isSuperAdmin": u.is_super_admin,
            "createdAt": iso(u.created_at),
            "lastLoginAt": iso(u.last_login_at),
            "deactivatedAt": iso(u.deactivated_at),
            "deactivationReason": u.deactivation_reason,
            "ban": {"type": ban.type, "expiresAt": iso(ban.expires_at), "reason": ban.reason} if ban else None,
        }
        if counts is not None:
            data["counts"] = counts
        return data

    @staticmethod
    def _active_bans(session: Session, user_ids: List[str]) -> Dict[str, UserBan]:
        """未過期的停權（永久或到期日在未來）"""
        if not user_ids:
            return {}
        now = utcnow()
        return {
            b.user_id: b for b in session.scalars(
                select(UserBan).where(
                    UserBan.user_id.in_(user_ids),
                    or_(UserBan.expires_at.is_(None), UserBan.expires_at > now),
                )
            )
        }

    @staticmethod
    def _counts_by_user(session: Session, column, user_ids: List[str]) -> Dict[str, int]:
        return dict(session.execute(
            select(column, func.count()).where(column.in_(user_ids)).group_by(column)
        ).all())

    @classmethod
    def list_users(
        cls, session: Session, page: int, limit: int,
        search: Optional[str] = None, role: Optional[str] = None, status: Optional[str] = None,
        sort_by: Optional[str] = None, sort_order: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        使用者列表

        Args:
            search: email 或名稱（不分大小寫）
            role: FREE / PREMIUM，其他值忽略
            status: active / deactivated，其他值忽略

        Returns:
            (使用者, 總數)
        """
        conds = []
        if search:
            pattern = f"%{search.lower()}%"
            conds.append(or_(func.lower(User.email).like(pattern), func.lower(User.name).like(pattern)))
        if role in {r.value for r in UserRole}:
            conds.append(User.role == role)
        if status == "active":
            conds.append(User.deactivated_at.is_(None))
        elif status == "deactivated":
            conds.append(User.deactivated_at.is_not(None))

        column = SORT_FIELDS.get(sort_by or "", User.created_at)
        order = column.asc() if (sort_order or "").lower() == "asc" else column.desc()

        total = session.scalar(select(func.count(User.id)).where(*conds)) or 0
        rows = session.scalars(
            select(User).where(*conds).order_by(order, User.id)
            .offset((page - 1) * limit).limit(limit)
        ).all()

        ids = [u.id for u in rows]
        bans = cls._active_bans(session, ids)
        messages = cls._counts_by_user(session, Message.sender_id, ids) if ids else {}
        posts = cls._counts_by_user(session, Post.user_id, ids) if ids else {}
        groups = cls._counts_by_user(session, GroupMember.user_id, ids) if ids else {}
        return [cls.serialize(u, bans.get(u.id), {
            "sentMessages": messages.get(u.id, 0),
            "posts": posts.get(u.id, 0),
            "groupMemberships": groups.get(u.id, 0),
        }) for u in rows], total

    @classmethod
    def details(cls, session: Session, user_id: str) -> Dict[str, Any]:
        """單一使用者的完整資料與風險指標"""
        user = session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")

        def count(stmt) -> int:
            return int(session.scalar(stmt) or 0)

        messages = session.scalars(
            select(Message).where(Message.sender_id == user.id)
            .order_by(Message.created_at.desc()).limit(RECENT_MESSAGES)
        ).all()
        posts = session.scalars(
            select(Post).where(Post.user_id == user.id)
            .order_by(Post.created_at.desc()).limit(RECENT_POSTS)
        ).all()
        memberships = session.execute(
            select(GroupMember, Group).join(Group, Group.id == GroupMember.group_id)
            .where(GroupMember.user_id == user.id).order_by(GroupMember.joined_at.desc())
        ).all()
        member_counts = cls._counts_by_user(
            session, GroupMember.group_id, [g.id for _, g in memberships]
        ) if memberships else {}
        matches = session.scalars(
            select(Match).where(
                or_(Match.sender_id == user.id, Match.receiver_id == user.id),
                Match.status == MatchStatus.ACCEPTED.value,
            ).order_by(Match.updated_at.desc())
        ).all()
        partner_ids = [m.receiver_id if m.sender_id == user.id else m.sender_id for m in matches]
        partners = {u.id: u for u in session.scalars(select(User).where(User.id.in_(partner_ids)))} if partner_ids else {}
        reports_against = session.scalars(
            select(Report).where(Report.reported_user_id == user.id).order_by(Report.created_at.desc())
        ).all()
        reports_filed = session.scalars(
            select(Report).where(Report.reporter_id == user.id).order_by(Report.created_at.desc())
        ).all()
        warnings = session.scalars(
            select(UserWarning).where(UserWarning.user_id == user.id).order_by(UserWarning.created_at.desc())
        ).all()
        ban = session.scalar(select(UserBan).where(UserBan.user_id == user.id))

        now = utcnow()
        return {
            "user": cls.serialize(user, cls._active_bans(session, [user.id]).get(user.id)),
            "activityStats": {
                "totalMessages": count(select(func.count(Message.id)).where(Message.sender_id == user.id)),
                "totalPosts": count(select(func.count(Post.id)).where(Post.user_id == user.id)),
                "totalComments": count(select(func.count(PostComment.id)).where(PostComment.user_id == user.id)),
                "totalGroups": len(memberships),
                "totalPartners": len(matches),
                "totalReportsAgainst": len(reports_against),
                "totalWarnings": len(warnings),
                "accountAge": (now - as_utc(user.created_at)).days,
            },
            "recentMessages": [{
                "id": m.id,
                "content": m.content,
                "type": m.type,
                "recipientId": m.recipient_id,
                "groupId": m.group_id,
                "isDeleted": m.deleted_at is not None,
                "createdAt": iso(m.created_at),
            } for m in messages],
            "recentPosts": [{
                "id": p.id,
                "content": p.content,
                "isDeleted": p.is_deleted,
                "createdAt": iso(p.created_at),
            } for p in posts],
            "groupMemberships": [{
                "role": gm.role,
                "joinedAt": iso(gm.joined_at),
                "group": {
                    "id": g.id,
                    "name": g.name,
                    "isDeleted": g.is_deleted,
                    "memberCount": member_counts.get(g.id, 0),
                },
            } for gm, g in memberships],
            "partnerConnections": [{
                "matchId": m.id,
                "status": m.status,
                "connectedAt": iso(m.updated_at),
                "partner": partners[pid].summary() if pid in partners else None,
            } for m, pid in zip(matches, partner_ids)],
            "reportsAgainst": [ReportService.serialize(r, with_users=False) for r in reports_against],
            "reportsFiled": [ReportService.serialize(r, with_users=False) for r in reports_filed],
            "warnings": [ModerationService.serialize_warning(w) for w in warnings],
            "ban": ModerationService.serialize_ban(ban),
            "riskIndicators": {
                "hasWarnings": bool(warnings),
                "warningCount": len(warnings),
                "hasReportsAgainst": bool(reports_against),
                "reportCount": len(reports_against),
                "isBanned": ban is not None,
                "banType": ban.type if ban else None,
                "isDeactivated": user.deactivated_at is not None,
                "daysSinceLastLogin": (now - as_utc(user.last_login_at)).days if user.last_login_at else None,
            },
        }

    # ---- 動作 ----

    @classmethod
    def _check_permissions(cls, actor: User, target: User, action: str) -> None:
        """管理員階層：超級管理員不可被操作；一般管理員不可對其他管理員執行受保護動作"""
        if target.is_super_admin:
            raise Forbidden("Cannot perform any admin action on the super admin")
        if action not in PROTECTED_ACTIONS:
            return
        if target.is_admin and not actor.is_super_admin:
            raise Forbidden("Only the super admin can perform this action on other administrators")
        if action in ("grant_admin", "revoke_admin") and not actor.is_super_admin:
            raise Forbidden("Only the super admin can grant or revoke admin privileges")
        if action == "permanent_delete" and not actor.is_super_admin:
            raise Forbidden("Only the super admin can permanently delete users")

    @classmethod
    def take_action(cls, session: Session, actor: User, data: Dict[str, Any]) -> Tuple[str, str, Dict[str, Any], Dict[str, Any]]:
        """
        執行後台動作

        Returns:
            (稽核 action, 目標 user id, 稽核 details, 額外回應欄位)
        """
        action = data.get("action")
        user_id = data.get("userId")
        if not action or not user_id:
            raise APIError("Missing required fields")
        user_id = require_id(user_id, "Missing required fields")
        if user_id == actor.id:
            raise Forbidden("Cannot perform admin actions on yourself")
        target = session.get(User, user_id)
        if target is None:
            raise NotFound("User not found")
        require_choice(action, ACTIONS, "Unknown action")
        cls._check_permissions(actor, target, action)

        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise APIError("reason must be a string")

        if action == "ban":
            duration = data.get("duration")
            ModerationService.ban_user(session, target.id, actor.id, reason or NO_REASON, duration_days=duration)
            return AUDIT_ACTIONS[action], target.id, {
                "reason": reason, "duration": duration,
                "banType": "temporary" if duration else "permanent",
            }, {}

        if action == "unban":
            ban = session.scalar(select(UserBan).where(UserBan.user_id == target.id))
            if ban is None:
                raise NotFound("User is not banned")
            session.delete(ban)
            if target.deactivated_at is not None and target.deactivation_reason == ban.reason:
                target.deactivated_at = None
                target.deactivation_reason = None
            return AUDIT_ACTIONS[action], target.id, {"reason": reason}, {}

        if action == "warn":
            severity = data.get("severity")
            severity = 1 if severity is None else strict_int(severity)
            if severity is None or severity < 1:
                raise APIError("severity must be a positive integer")
            ModerationService.warn_user(session, target.id, actor.id, reason or NO_REASON, severity=severity)
            return AUDIT_ACTIONS[action], target.id, {"reason": reason, "severity": severity}, {}

        if action == "deactivate":
            target.deactivated_at = utcnow()
            target.deactivation_reason = reason or "Deactivated by admin"
            return AUDIT_ACTIONS[action], target.id, {"reason": reason}, {}

        if action == "reactivate":
            target.deactivated_at = None
            target.deactivation_reason = None
            return AUDIT_ACTIONS[action], target.id, {"reason": reason}, {}

        if action in ("grant_admin", "revoke_admin"):
            target.is_admin = action == "grant_admin"
            logger.info("%s: target=%s by=%s", action, target.id, actor.id)
            return AUDIT_ACTIONS[action], target.id, {}, {}

        details, deleted = cls.permanent_delete(session, target)
        details["reason"] = reason
        return AUDIT_ACTIONS[action], deleted["id"], details, {"deletedUser": deleted}

    @classmethod
    def permanent_delete(cls, session: Session, target: User) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        永久刪除使用者及其附屬資料（呼叫端同一交易內提交）
        自己建立的小組轉給第一位小組管理員，沒有則標記刪除
        """
        uid = target.id
        stats = {
            "sentMessages": int(session.scalar(select(func.count(Message.id)).where(Message.sender_id == uid)) or 0),
            "posts": int(session.scalar(select(func.count(Post.id)).where(Post.user_id == uid)) or 0),
            "groupMemberships": int(session.scalar(
                select(func.count(GroupMember.id)).where(GroupMember.user_id == uid)) or 0),
        }
        deleted = {"id": uid, "email": target.email, "name": target.name}
        details = {
            "deletedUserEmail": target.email,
            "deletedUserName": target.name,
            "accountAge": (utcnow() - as_utc(target.created_at)).days,
            "stats": stats,
        }

        for model in (UserBan, UserWarning, AnnouncementDismissal, SuspiciousActivityLog,
                      AIUserMemory, AIMemoryEntry, AIUsageLog):
            session.execute(delete(model).where(model.user_id == uid))
        session.execute(
            update(FlaggedContent).where(FlaggedContent.sender_id == uid).values(sender_id=DELETED_SENDER)
        )

        for group in session.scalars(select(Group).where(Group.owner_id == uid)):
            heir = session.scalar(
                select(GroupMember).where(
                    GroupMember.group_id == group.id,
                    GroupMember.user_id != uid,
                    GroupMember.role.in_((GroupRole.ADMIN.value, GroupRole.OWNER.value)),
                ).order_by(GroupMember.joined_at)
            )
            if heir is not None:
                group.owner_id = heir.user_id
                heir.role = GroupRole.OWNER.value
            else:
                group.is_deleted = True
        session.flush()

        session.execute(delete(GroupMember).where(GroupMember.user_id == uid))
        session.execute(delete(Profile).where(Profile.user_id == uid))
        session.execute(delete(User).where(User.id == uid))
        logger.info("user %s permanently deleted", uid)
        return details, deleted
