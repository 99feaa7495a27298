"""
公告服務
負責公告的建立、管理、通知派送與使用者關閉狀態
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple
from sqlalchemy import func, insert, or_, select
from sqlalchemy.orm import Session
from clerva.models import (
    Announcement, AnnouncementDismissal, AnnouncementPriority, AnnouncementStatus,
    Notification, User, UserRole, iso, new_id, utcnow,
)
from clerva.utils.config_handler import get_setting
from clerva.utils.errors import APIError, NotFound
from clerva.utils.validation import parse_datetime, require_choice, require_id

logger = logging.getLogger(__name__)

NOTIFICATION_PREVIEW_CHARS = 200
TITLE_MAX = 200
PRIORITIES = {p.value for p in AnnouncementPriority}
ROLES = {r.value for r in UserRole}


def chunked(rows: List[Any], size: int) -> Iterator[List[Any]]:
    """每批最多 size 筆"""
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


class AnnouncementService:
    """公告服務類"""

    @classmethod
    def serialize(cls, a: Announcement, dismissal_count: Optional[int] = None) -> Dict[str, Any]:
        data = {
            "id": a.id,
            "title": a.title,
            "content": a.content,
            "priority": a.priority,
            "status": a.status,
            "targetRole": a.target_role,
            "targetUserIds": a.target_user_ids or [],
            "startsAt": iso(a.starts_at),
            "expiresAt": iso(a.expires_at),
            "createdById": a.created_by_id,
            "createdAt": iso(a.created_at),
            "updatedAt": iso(a.updated_at),
        }
        if dismissal_count is not None:
            data["createdBy"] = a.creator.summary() if a.creator else None
            data["dismissalCount"] = dismissal_count
        return data

    @classmethod
    def list_announcements(
        cls, session: Session, page: int, limit: int, status: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], int]:
        """後台列表：新到舊，附建立者與關閉數。"""
        q = select(Announcement)
        count_q = select(func.count(Announcement.id))
        if status:
            q = q.where(Announcement.status == status)
            count_q = count_q.where(Announcement.status == status)
        total = session.scalar(count_q) or 0
        rows = session.scalars(
            q.order_by(Announcement.created_at.desc()).offset((page - 1) * limit).limit(limit)
        ).all()

        counts: Dict[str, int] = {}
        ids = [a.id for a in rows]
        if ids:
            counts = dict(session.execute(
                select(AnnouncementDismissal.announcement_id, func.count(AnnouncementDismissal.id))
                .where(AnnouncementDismissal.announcement_id.in_(ids))
                .group_by(AnnouncementDismissal.announcement_id)
            ).all())
        return [cls.serialize(a, counts.get(a.id, 0)) for a in rows], total

    @staticmethod
    def _check_title(title: str) -> None:
        # 通知標題會加上前綴，長度需留給 Notification.title
        if len(title) > TITLE_MAX:
            raise APIError(f"Title must be at most {TITLE_MAX} characters")

    @staticmethod
    def _target_role(value: Any) -> Optional[str]:
        if value in (None, ""):
            return None
        return require_choice(value, ROLES, "Invalid target role")

    @classmethod
    def _get(cls, session: Session, announcement_id: Any) -> Announcement:
        a = session.get(Announcement, require_id(announcement_id))
        if a is None:
            raise NotFound("Announcement not found")
        return a

    @classmethod
    def create_announcement(cls, session: Session, admin_id: str, data: Dict[str, Any]) -> Tuple[Announcement, int]:
        """
        建立公告並派送通知

        Args:
            session: 資料庫會話
            admin_id: 建立者
            data: title, content, priority, targetRole, targetUserIds, startsAt, expiresAt

        Returns:
            (公告, 實際送出的通知數)
        """
        title = (data.get("title") or "").strip() if isinstance(data.get("title"), str) else ""
        content = (data.get("content") or "").strip() if isinstance(data.get("content"), str) else ""
        if not title or not content:
            raise APIError("Title and content are required")
        cls._check_title(title)
        priority = require_choice(data.get("priority") or AnnouncementPriority.NORMAL.value, PRIORITIES, "Invalid priority")
        target_role = cls._target_role(data.get("targetRole"))
        target_ids = data.get("targetUserIds")
        target_ids = [t for t in target_ids if isinstance(t, str)] if isinstance(target_ids, list) else []

        announcement = Announcement(
            title=title,
            content=content,
            priority=priority,
            status=AnnouncementStatus.ACTIVE.value,
            target_role=target_role,
            target_user_ids=target_ids,
            starts_at=parse_datetime(data.get("startsAt"), "startsAt") or utcnow(),
            expires_at=parse_datetime(data.get("expiresAt"), "expiresAt"),
            created_by_id=admin_id,
        )
        session.add(announcement)
        session.flush()

        sent = cls._send_notifications(session, announcement)
        return announcement, sent

    @classmethod
    def _target_user_ids(cls, session: Session, a: Announcement) -> List[str]:
        if a.target_user_ids:
            return list(session.scalars(select(User.id).where(User.id.in_(a.target_user_ids))))
        if a.target_role:
            return list(session.scalars(select(User.id).where(User.role == a.target_role)))
        return list(session.scalars(select(User.id).where(User.deactivated_at.is_(None))))

    @classmethod
    def _send_notifications(cls, session: Session, a: Announcement) -> int:
        """分批寫入通知；失敗只記錄，不影響公告建立。"""
        try:
            with session.begin_nested():
                user_ids = cls._target_user_ids(session, a)
                if not user_ids:
                    return 0
                message = a.content
                if len(message) > NOTIFICATION_PREVIEW_CHARS:
                    message = message[:NOTIFICATION_PREVIEW_CHARS] + "..."
                now = utcnow()
                rows = [{
                    "id": new_id(),
                    "user_id": uid,
                    "type": "ANNOUNCEMENT",
                    "title": f"📢 {a.title}",
                    "message": message,
                    "action_url": "/dashboard",
                    "is_read": False,
                    "created_at": now,
                } for uid in user_ids]
                batch = int(get_setting("notification_batch_size") or 500)
                for chunk in chunked(rows, batch):
                    session.execute(insert(Notification), chunk)
                return len(rows)
        except Exception as e:
            logger.warning("announcement %s notifications failed: %s", a.id, e, exc_info=True)
            return 0

    @classmethod
    def update_announcement(cls, session: Session, data: Dict[str, Any]) -> Tuple[Announcement, Dict[str, Any]]:
        """只更新有帶的欄位；回傳 (公告, 變更內容)。"""
        a = cls._get(session, data.get("id"))
        changes: Dict[str, Any] = {}
        for key in ("title", "content"):
            if key in data:
                value = data[key].strip() if isinstance(data[key], str) else ""
                if not value:
                    raise APIError(f"{key.capitalize()} cannot be empty")
                if key == "title":
                    cls._check_title(value)
                setattr(a, key, value)
                changes[key] = value
        if "targetRole" in data:
            a.target_role = cls._target_role(data["targetRole"])
            changes["targetRole"] = a.target_role
        if "priority" in data:
            a.priority = require_choice(data["priority"], PRIORITIES, "Invalid priority")
            changes["priority"] = a.priority
        if "targetUserIds" in data:
            ids = data["targetUserIds"] if isinstance(data["targetUserIds"], list) else []
            a.target_user_ids = ids
            changes["targetUserIds"] = ids
        if "startsAt" in data:
            a.starts_at = parse_datetime(data["startsAt"], "startsAt")
            changes["startsAt"] = data["startsAt"]
        if "expiresAt" in data:
            a.expires_at = parse_datetime(data["expiresAt"], "expiresAt")
            changes["expiresAt"] = data["expiresAt"]
        session.flush()
        return a, changes

    @classmethod
    def publish(cls, session: Session, announcement_id: Optional[str]) -> Announcement:
        a = cls._get(session, announcement_id)
        a.status = AnnouncementStatus.ACTIVE.value
        a.starts_at = utcnow()
        return a

    @classmethod
    def archive(cls, session: Session, announcement_id: Optional[str]) -> Announcement:
        a = cls._get(session, announcement_id)
        a.status = AnnouncementStatus.ARCHIVED.value
        return a

    @classmethod
    def delete(cls, session: Session, announcement_id: Optional[str]) -> None:
        session.delete(cls._get(session, announcement_id))

    @classmethod
    def get_active_for_user(cls, session: Session, user: User) -> List[Dict[str, Any]]:
        """
        目前生效且指向此使用者、尚未被關閉的公告
        HIGH/URGENT 在前，其餘依建立時間新到舊
        """
        now = utcnow()
        dismissed = select(AnnouncementDismissal.announcement_id).where(
            AnnouncementDismissal.user_id == user.id
        )
        rows = session.scalars(
            select(Announcement).where(
                Announcement.status == AnnouncementStatus.ACTIVE.value,
                or_(Announcement.starts_at.is_(None), Announcement.starts_at <= now),
                or_(Announcement.expires_at.is_(None), Announcement.expires_at > now),
                Announcement.id.not_in(dismissed),
            ).order_by(Announcement.created_at.desc())
        ).all()

        def targeted(a: Announcement) -> bool:
            # JSON 欄位的包含判斷在各資料庫寫法不同，於此過濾
            if a.target_user_ids:
                return user.id in a.target_user_ids
            if a.target_role:
                return a.target_role == user.role
            return True

        urgent = {AnnouncementPriority.HIGH.value, AnnouncementPriority.URGENT.value}
        visible = [a for a in rows if targeted(a)]
        visible.sort(key=lambda a: a.priority not in urgent)
        return [cls.serialize(a) for a in visible]

    @classmethod
    def dismiss(cls, session: Session, announcement_id: str, user_id: str) -> None:
        """重複關閉視為成功"""
        if session.get(Announcement, announcement_id) is None:
            raise NotFound("Announcement not found")
        exists = session.scalar(
            select(AnnouncementDismissal.id).where(
                AnnouncementDismissal.announcement_id == announcement_id,
                AnnouncementDismissal.user_id == user_id,
            )
        )
        if exists is None:
            session.add(AnnouncementDismissal(announcement_id=announcement_id, user_id=user_id))
