"""
Module: clerva/routes/routes_admin_audit.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.audit_service import AuditService
from clerva.utils.admin_audit import request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import json_body, ok_response, pagination_payload, parse_pagination

bp = Blueprint("admin_audit", __name__, url_prefix="/api/admin/audit")


@bp.get("")
@admin_rate_limit("default")
@admin_required
def list_audit_logs():
    page, limit = parse_pagination(default_limit=50)
    with get_session() as s:
        logs, total, filters = AuditService.list_logs(
            s, page, limit,
            admin_id=request.args.get("adminId") or None,
            action=request.args.get("action") or None,
        )
    return ok_response(logs=logs, pagination=pagination_payload(total, page, limit), filters=filters)


@bp.delete("")
@admin_rate_limit("userActions")
@admin_required
def delete_audit_logs():
    # 超級管理員檢查在服務層，讓「未指定刪除目標」先回 400
    with get_session() as s:
        deleted = AuditService.delete_logs(s, g.current_user, json_body(), request_meta())
        s.commit()
    return ok_response(deletedCount=deleted)
