"""
意見回饋服務
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from clerva.models import Feedback, FeedbackStatus, iso, utcnow
from clerva.utils.config_handler import get_setting
from clerva.utils.errors import APIError, NotFound
from clerva.utils.validation import require_choice, require_id, strict_int, string_list

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "createdAt": Feedback.created_at,
    "rating": Feedback.rating,
    "status": Feedback.status,
    "updatedAt": Feedback.updated_at,
}
STATUS_ACTIONS = {
    "review": FeedbackStatus.REVIEWED.value,
    "resolve": FeedbackStatus.RESOLVED.value,
    "archive": FeedbackStatus.ARCHIVED.value,
}


class FeedbackService:

    @classmethod
    def submit(cls, session: Session, user_id: str, data: Dict[str, Any]) -> Feedback:
        rating = strict_int(data.get("rating"))
        if rating is None or not 1 <= rating <= 5:
            raise APIError("Rating must be an integer between 1 and 5")
        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            raise APIError("Message is required")
        max_len = int(get_setting("feedback_message_max") or 5000)
        message = message.strip()
        if len(message) > max_len:
            raise APIError(f"Message too long (max {max_len} characters)")
        fb = Feedback(
            user_id=user_id,
            rating=rating,
            message=message,
            screenshots=string_list(data.get("screenshots")),
        )
        session.add(fb)
        session.flush()
        return fb

    @classmethod
    def serialize(cls, fb: Feedback) -> Dict[str, Any]:
        reviewer = fb.reviewed_by
        return {
            "id": fb.id,
            "userId": fb.user_id,
            "rating": fb.rating,
            "message": fb.message,
            "screenshots": fb.screenshots or [],
            "status": fb.status,
            "adminNotes": fb.admin_notes,
            "reviewedById": fb.reviewed_by_id,
            "reviewedAt": iso(fb.reviewed_at),
            "createdAt": iso(fb.created_at),
            "updatedAt": iso(fb.updated_at),
            "user": fb.user.summary() if fb.user else None,
            "reviewedBy": {"id": reviewer.id, "name": reviewer.name, "email": reviewer.email} if reviewer else None,
        }

    @classmethod
    def list_feedback(
        cls, session: Session, page: int, limit: int,
        status: Optional[str] = None, rating: Optional[str] = None,
        sort_by: Optional[str] = None, sort_order: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int, Dict[str, Any]]:
        conds = []
        if status:
            conds.append(Feedback.status == status)
        if rating:
            try:
                conds.append(Feedback.rating == int(rating))
            except ValueError:
                raise APIError("Invalid rating")

        column = SORT_FIELDS.get(sort_by or "", Feedback.created_at)
        order = column.asc() if (sort_order or "").lower() == "asc" else column.desc()

        total = session.scalar(select(func.count(Feedback.id)).where(*conds)) or 0
        rows = session.scalars(
            select(Feedback).where(*conds).order_by(order, Feedback.id)
            .offset((page - 1) * limit).limit(limit)
        ).all()

        by_status = dict(session.execute(
            select(Feedback.status, func.count(Feedback.id)).group_by(Feedback.status)
        ).all())
        by_rating = {str(r): c for r, c in session.execute(
            select(Feedback.rating, func.count(Feedback.id)).group_by(Feedback.rating)
        ).all()}
        avg = session.scalar(select(func.avg(Feedback.rating)))
        stats = {
            "byStatus": by_status,
            "byRating": by_rating,
            "averageRating": round(float(avg), 2) if avg is not None else 0,
            "total": total,
        }
        return [cls.serialize(fb) for fb in rows], total, stats

    @classmethod
    def handle(cls, session: Session, admin_id: str, data: Dict[str, Any]) -> Tuple[Feedback, str]:
        """
        review / resolve / archive / add_notes

        Returns:
            (feedback, action)
        """
        action = data.get("action")
        feedback_id = data.get("feedbackId")
        if not action or not feedback_id:
            raise APIError("Missing required fields")
        fb = session.get(Feedback, require_id(feedback_id, "Missing required fields"))
        if fb is None:
            raise NotFound("Feedback not found")
        require_choice(action, (*STATUS_ACTIONS, "add_notes"), "Unknown action")
        notes = data.get("adminNotes")
        if notes is not None and not isinstance(notes, str):
            raise APIError("adminNotes must be a string")

        if action in STATUS_ACTIONS:
            fb.status = STATUS_ACTIONS[action]
            fb.reviewed_by_id = admin_id
            fb.reviewed_at = utcnow()
            fb.admin_notes = notes or fb.admin_notes
        else:
            fb.admin_notes = notes
        session.flush()
        return fb, action

    @classmethod
    def delete(cls, session: Session, feedback_id: Optional[str]) -> None:
        if not feedback_id:
            raise APIError("Feedback ID required")
        fb = session.get(Feedback, require_id(feedback_id, "Feedback ID required"))
        if fb is None:
            raise NotFound("Feedback not found")
        session.delete(fb)
