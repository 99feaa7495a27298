"""
Module: clerva/routes/routes_admin_users.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.admin_user_service import MESSAGES, AdminUserService
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import json_body, ok_response, pagination_payload, parse_pagination

bp = Blueprint("admin_users", __name__, url_prefix="/api/admin/users")

DETAIL_SECTIONS = ["profile", "messages", "posts", "groups", "connections", "reports", "warnings"]


@bp.get("")
@admin_rate_limit("users")
@admin_required
def list_users():
    page, limit = parse_pagination()
    args = request.args
    with get_session() as s:
        users, total = AdminUserService.list_users(
            s, page, limit,
            search=(args.get("search") or "").strip() or None,
            role=args.get("role") or None,
            status=args.get("status") or None,
            sort_by=args.get("sortBy"),
            sort_order=args.get("sortOrder"),
        )
    return ok_response(users=users, pagination=pagination_payload(total, page, limit))


@bp.get("/<user_id>/details")
@admin_rate_limit("default")
@admin_required
def user_details(user_id: str):
    admin = g.current_user
    with get_session() as s:
        data = AdminUserService.details(s, user_id)
        log_admin_action(s, admin.id, "VIEW_USER_DETAILS", "user", user_id,
                         {"viewedSections": DETAIL_SECTIONS}, **request_meta())
        s.commit()
    return ok_response(data=data)


@bp.post("")
@admin_rate_limit("userActions")
@admin_required
def user_action():
    admin = g.current_user
    data = json_body()
    with get_session() as s:
        audit_action, target_id, details, extra = AdminUserService.take_action(s, admin, data)
        log_admin_action(s, admin.id, audit_action, "user", target_id, details, **request_meta())
        s.commit()
    return ok_response(message=MESSAGES[data["action"]], **extra)
