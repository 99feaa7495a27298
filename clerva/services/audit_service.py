"""
稽核紀錄查詢與清除
"""
from datetime import timedelta
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session
from clerva.models import AdminAuditLog, User, iso, utcnow
from clerva.utils.admin_audit import log_admin_action
from clerva.utils.errors import APIError, Forbidden
from clerva.utils.validation import strict_int

logger = logging.getLogger(__name__)

PURGE_CONFIRMATION = "DELETE_ALL_AUDIT_LOGS"
MAX_FILTER_ADMINS = 100
MAX_FILTER_ACTIONS = 50


class AuditService:

    @classmethod
    def serialize(cls, log: AdminAuditLog, admin: Optional[User]) -> Dict[str, Any]:
        return {
            "id": log.id,
            "adminId": log.admin_id,
            "adminName": log.admin_name,
            "adminEmail": log.admin_email,
            "action": log.action,
            "targetType": log.target_type,
            "targetId": log.target_id,
            "details": log.details or {},
            "ipAddress": log.ip_address,
            "userAgent": log.user_agent,
            "createdAt": iso(log.created_at),
            "admin": admin.summary() if admin else None,
        }

    @classmethod
    def list_logs(
        cls, session: Session, page: int, limit: int,
        admin_id: Optional[str] = None, action: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int, Dict[str, Any]]:
        q = select(AdminAuditLog, User).outerjoin(User, User.id == AdminAuditLog.admin_id)
        count_q = select(func.count(AdminAuditLog.id))
        if admin_id:
            q = q.where(AdminAuditLog.admin_id == admin_id)
            count_q = count_q.where(AdminAuditLog.admin_id == admin_id)
        if action:
            q = q.where(AdminAuditLog.action == action)
            count_q = count_q.where(AdminAuditLog.action == action)

        total = session.scalar(count_q) or 0
        rows = session.execute(
            q.order_by(AdminAuditLog.created_at.desc()).offset((page - 1) * limit).limit(limit)
        ).all()
        logs = [cls.serialize(log, admin) for log, admin in rows]
        return logs, total, cls.filter_options(session)

    @classmethod
    def filter_options(cls, session: Session) -> Dict[str, Any]:
        """篩選選單：最近出現過的管理員與動作"""
        latest_admin = (
            select(AdminAuditLog.admin_id, func.max(AdminAuditLog.created_at).label("last"))
            .group_by(AdminAuditLog.admin_id)
            .order_by(func.max(AdminAuditLog.created_at).desc())
            .limit(MAX_FILTER_ADMINS)
        )
        admin_ids = [r.admin_id for r in session.execute(latest_admin)]
        users = {u.id: u for u in session.scalars(select(User).where(User.id.in_(admin_ids)))} if admin_ids else {}

        # 已刪除的管理員改用紀錄上的快取名稱
        cached: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        if admin_ids:
            for row in session.execute(
                select(AdminAuditLog.admin_id, AdminAuditLog.admin_name, AdminAuditLog.admin_email)
                .where(AdminAuditLog.admin_id.in_(admin_ids))
                .order_by(AdminAuditLog.created_at.desc())
            ):
                prev = cached.get(row.admin_id)
                if prev is None or not (prev[0] or prev[1]):
                    cached[row.admin_id] = (row.admin_name, row.admin_email)

        admins = []
        for aid in admin_ids:
            u = users.get(aid)
            name_cached, email_cached = cached.get(aid, (None, None))
            name = (
                (u.name if u else None) or name_cached
                or (u.email if u else None) or email_cached
                or "Unknown Admin"
            )
            admins.append({"id": aid, "name": name})

        actions = [
            r.action for r in session.execute(
                select(AdminAuditLog.action)
                .group_by(AdminAuditLog.action)
                .order_by(func.max(AdminAuditLog.created_at).desc())
                .limit(MAX_FILTER_ACTIONS)
            )
        ]
        return {"admins": admins, "actions": actions}

    @classmethod
    def delete_logs(
        cls, session: Session, admin: User, body: Dict[str, Any], meta: Dict[str, str]
    ) -> int:
        """
        刪除稽核紀錄（僅限超級管理員）
        刪除前先寫一筆 AUDIT_LOGS_PURGED / AUDIT_LOGS_DELETED，該筆不會被本次刪掉

        Returns:
            刪除筆數
        """
        ids = body.get("ids")
        delete_all = bool(body.get("deleteAll"))
        if not delete_all and not (isinstance(ids, list) and ids):
            raise APIError("No logs specified for deletion")
        if not admin.is_super_admin:
            raise Forbidden(
                "Only super admin can delete all audit logs" if delete_all
                else "Only super admin can delete audit logs"
            )

        if delete_all:
            if body.get("confirmDelete") != PURGE_CONFIRMATION:
                raise APIError(f'Missing confirmation. Send confirmDelete: "{PURGE_CONFIRMATION}"')
            retention = strict_int(body.get("retentionDays"))
            stmt = delete(AdminAuditLog)
            if retention and retention > 0:
                stmt = stmt.where(AdminAuditLog.created_at < utcnow() - timedelta(days=retention))
            marker = log_admin_action(
                session, admin.id, "AUDIT_LOGS_PURGED", "AdminAuditLog", "bulk",
                {"retentionDays": retention if retention and retention > 0 else "all",
                 "deletedAt": utcnow().isoformat()},
                **meta,
            )
        else:
            ids = [str(i) for i in ids]
            stmt = delete(AdminAuditLog).where(AdminAuditLog.id.in_(ids))
            marker = log_admin_action(
                session, admin.id, "AUDIT_LOGS_DELETED", "AdminAuditLog", ",".join(ids)[:255],
                {"deletedIds": ids, "deletedCount": len(ids), "deletedAt": utcnow().isoformat()},
                **meta,
            )

        session.flush()
        if marker is not None:
            stmt = stmt.where(AdminAuditLog.id != marker.id)
        result = session.execute(stmt.execution_options(synchronize_session=False))
        logger.info("admin %s deleted %s audit logs", admin.id, result.rowcount)
        return int(result.rowcount or 0)
