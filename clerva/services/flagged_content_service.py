"""
AI 標記內容複核
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session
from clerva.models import FlaggedContent, FlagStatus, Post, User, iso, utcnow
from clerva.services.moderation_service import ModerationService
from clerva.utils.errors import APIError, NotFound
from clerva.utils.validation import require_choice, require_id

logger = logging.getLogger(__name__)

ACTIONS = ("approve", "remove", "warn", "ban")


class FlaggedContentService:

    @classmethod
    def list_flagged(
        cls, session: Session, page: int, limit: int,
        status: Optional[str] = None, content_type: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int, Dict[str, Any]]:
        """待審在前，其次 AI 分數高者，再依標記時間新到舊"""
        conds = []
        if status:
            conds.append(FlaggedContent.status == status)
        if content_type:
            conds.append(FlaggedContent.content_type == content_type)

        total = session.scalar(select(func.count(FlaggedContent.id)).where(*conds)) or 0
        rows = session.scalars(
            select(FlaggedContent).where(*conds).order_by(
                case((FlaggedContent.status == FlagStatus.PENDING.value, 0), else_=1),
                case((FlaggedContent.ai_score.is_(None), 1), else_=0),
                FlaggedContent.ai_score.desc(),
                FlaggedContent.flagged_at.desc(),
            ).offset((page - 1) * limit).limit(limit)
        ).all()

        user_ids = {r.sender_id for r in rows} | {r.reviewed_by_id for r in rows if r.reviewed_by_id}
        users = {u.id: u for u in session.scalars(select(User).where(User.id.in_(user_ids)))} if user_ids else {}

        items = []
        for r in rows:
            sender = users.get(r.sender_id)
            reviewer = users.get(r.reviewed_by_id) if r.reviewed_by_id else None
            item = cls.serialize(r)
            # 帳號已刪除時改用快取的名稱/信箱
            item["sender"] = sender.summary() if sender else {
                "id": r.sender_id, "name": r.sender_name, "email": r.sender_email, "avatarUrl": None,
            }
            item["reviewedBy"] = {"id": reviewer.id, "name": reviewer.name, "email": reviewer.email} if reviewer else None
            items.append(item)

        by_status = dict(session.execute(
            select(FlaggedContent.status, func.count(FlaggedContent.id)).group_by(FlaggedContent.status)
        ).all())
        return items, total, {"byStatus": by_status}

    @classmethod
    def serialize(cls, r: FlaggedContent) -> Dict[str, Any]:
        return {
            "id": r.id,
            "contentType": r.content_type,
            "contentId": r.content_id,
            "content": r.content,
            "senderId": r.sender_id,
            "senderName": r.sender_name,
            "senderEmail": r.sender_email,
            "flagReason": r.flag_reason,
            "aiScore": r.ai_score,
            "status": r.status,
            "reviewedById": r.reviewed_by_id,
            "reviewedAt": iso(r.reviewed_at),
            "reviewNotes": r.review_notes,
            "actionTaken": r.action_taken,
            "flaggedAt": iso(r.flagged_at),
        }

    @classmethod
    def _mark(cls, r: FlaggedContent, admin_id: str, status: str, notes: str, action_taken: str) -> None:
        r.status = status
        r.reviewed_by_id = admin_id
        r.reviewed_at = utcnow()
        r.review_notes = notes
        r.action_taken = action_taken

    @classmethod
    def take_action(cls, session: Session, admin_id: str, data: Dict[str, Any]) -> Tuple[str, str, str, Dict[str, Any]]:
        """
        approve / remove / warn / ban

        Returns:
            稽核用的 (action, target_type, target_id, details)
        """
        action = data.get("action")
        flagged_id = data.get("flaggedContentId")
        if not flagged_id or not action:
            raise APIError("Missing required fields")
        require_choice(action, ACTIONS, "Invalid action")
        r = session.get(FlaggedContent, require_id(flagged_id, "Missing required fields"))
        if r is None:
            raise NotFound("Flagged content not found")
        notes = data.get("notes")
        if notes is not None and not isinstance(notes, str):
            raise APIError("Notes must be a string")

        if action == "approve":
            cls._mark(r, admin_id, FlagStatus.APPROVED.value, notes or "Content approved by admin", "none")
            return "flagged_content_approved", "flagged_content", r.id, {"notes": notes}

        if action == "remove":
            cls._mark(r, admin_id, FlagStatus.REMOVED.value, notes or "Content removed by admin", "deleted")
            if r.content_type == "POST" and r.content_id:
                post = session.get(Post, r.content_id)
                if post is not None:
                    post.is_deleted = True
            return "flagged_content_removed", "flagged_content", r.id, {"notes": notes, "contentType": r.content_type}

        if action == "warn":
            cls._mark(r, admin_id, FlagStatus.WARNING.value, notes or "User warned", "warned")
            ModerationService.warn_user(
                session, r.sender_id, admin_id, notes or f"Flagged content: {r.flag_reason or 'policy violation'}",
            )
            return "user_warned", "user", r.sender_id, {"notes": notes, "contentId": r.id}

        ban_reason = data.get("banReason")
        if ban_reason is not None and not isinstance(ban_reason, str):
            raise APIError("banReason must be a string")
        ban_reason = ban_reason or "Content violation"
        cls._mark(r, admin_id, FlagStatus.REMOVED.value, notes or f"User banned: {ban_reason}", "banned")
        ModerationService.ban_user(session, r.sender_id, admin_id, ban_reason, duration_days=data.get("banDuration"))
        return "user_banned", "user", r.sender_id, {
            "reason": ban_reason,
            "duration": data.get("banDuration") or "permanent",
            "contentId": r.id,
        }

    @classmethod
    def delete(cls, session: Session, flagged_id: Optional[str]) -> None:
        if not flagged_id:
            raise APIError("Missing flaggedContentId")
        r = session.get(FlaggedContent, require_id(flagged_id, "Missing flaggedContentId"))
        if r is None:
            raise NotFound("Flagged content not found")
        session.delete(r)
