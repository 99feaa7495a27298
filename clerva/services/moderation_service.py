"""
停權與警告
檢舉處理與 AI 標記複核共用
"""
from datetime import timedelta
import logging
from typing import Any, Dict, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from clerva.models import BanType, User, UserBan, UserWarning, iso, utcnow
from clerva.utils.errors import APIError
from clerva.utils.validation import strict_int

logger = logging.getLogger(__name__)


class ModerationService:

    @classmethod
    def ban_user(
        cls,
        session: Session,
        user_id: str,
        issued_by_id: str,
        reason: str,
        duration_days: Any = None,
        report_id: Optional[str] = None,
    ) -> UserBan:
        """
        停權使用者：寫入（或覆蓋）UserBan 並停用帳號
        duration_days 為正整數時為暫時停權；未帶或 0 為永久，其他值 400
        """
        days = strict_int(duration_days) if duration_days is not None else 0
        if days is None or days < 0:
            raise APIError("banDuration must be a whole number of days")
        temporary = days > 0
        now = utcnow()
        ban = session.scalar(select(UserBan).where(UserBan.user_id == user_id))
        if ban is None:
            ban = UserBan(user_id=user_id)
            session.add(ban)
        ban.issued_by_id = issued_by_id
        ban.type = BanType.TEMPORARY.value if temporary else BanType.PERMANENT.value
        ban.reason = reason
        ban.report_id = report_id
        ban.expires_at = now + timedelta(days=days) if temporary else None

        user = session.get(User, user_id)
        if user is not None:
            user.deactivated_at = now
            user.deactivation_reason = reason
        logger.info("user %s banned by %s (%s)", user_id, issued_by_id, ban.type)
        return ban

    @classmethod
    def warn_user(
        cls,
        session: Session,
        user_id: str,
        issued_by_id: str,
        reason: str,
        severity: int = 1,
        report_id: Optional[str] = None,
    ) -> UserWarning:
        warning = UserWarning(
            user_id=user_id,
            issued_by_id=issued_by_id,
            reason=reason,
            severity=severity,
            report_id=report_id,
        )
        session.add(warning)
        return warning

    @staticmethod
    def serialize_ban(ban: Optional[UserBan]) -> Optional[Dict[str, Any]]:
        if ban is None:
            return None
        return {
            "id": ban.id,
            "userId": ban.user_id,
            "issuedById": ban.issued_by_id,
            "type": ban.type,
            "reason": ban.reason,
            "reportId": ban.report_id,
            "expiresAt": iso(ban.expires_at),
            "createdAt": iso(ban.created_at),
        }

    @staticmethod
    def serialize_warning(w: UserWarning) -> Dict[str, Any]:
        return {
            "id": w.id,
            "userId": w.user_id,
            "issuedById": w.issued_by_id,
            "reason": w.reason,
            "severity": w.severity,
            "reportId": w.report_id,
            "createdAt": iso(w.created_at),
        }
