"""
管理員操作稽核紀錄
所有後台寫入動作都透過 log_admin_action 留下一筆 AdminAuditLog。
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from flask import has_request_context, request
from sqlalchemy.orm import Session
from clerva.models import AdminAuditLog, User
from clerva.utils.ratelimit import get_client_ip

logger = logging.getLogger(__name__)


# 與 AdminAuditLog 欄位長度一致
IP_MAX = 64
USER_AGENT_MAX = 512
TARGET_ID_MAX = 255


def _clip(value: Optional[str], size: int) -> Optional[str]:
    if value is None:
        return None
    return str(value)[:size]


def get_user_agent() -> str:
    if not has_request_context():
        return "unknown"
    return _clip(request.headers.get("User-Agent"), USER_AGENT_MAX) or "unknown"


def request_meta() -> Dict[str, str]:
    """目前請求的 IP 與 UA，供 log_admin_action 使用。"""
    if not has_request_context():
        return {"ip_address": "unknown", "user_agent": "unknown"}
    return {"ip_address": _clip(get_client_ip(), IP_MAX), "user_agent": get_user_agent()}


def log_admin_action(
    session: Session,
    admin_id: str,
    action: str,
    target_type: str,
    target_id: str,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Optional[AdminAuditLog]:
    """
    寫入一筆稽核紀錄（不 commit，隨呼叫端交易一起提交）。
    在 savepoint 內先 flush，寫入失敗只回滾這一筆並記 log，不影響主要操作。
    """
    try:
        with session.begin_nested():
            admin = session.get(User, admin_id)
            row = AdminAuditLog(
                admin_id=admin_id,
                admin_name=admin.name if admin else None,
                admin_email=admin.email if admin else None,
                action=action,
                target_type=target_type,
                target_id=_clip(target_id, TARGET_ID_MAX),
                details=details or {},
                ip_address=_clip(ip_address, IP_MAX),
                user_agent=_clip(user_agent, USER_AGENT_MAX),
            )
            session.add(row)
            session.flush()
        return row
    except Exception as e:
        logger.warning("failed to write admin audit log %s/%s: %s", action, target_id, e)
        return None
