"""
Module: clerva/routes/routes_admin_flagged.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.flagged_content_service import FlaggedContentService
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import json_body, ok_response, pagination_payload, parse_pagination

bp = Blueprint("admin_flagged", __name__, url_prefix="/api/admin/flagged-content")


@bp.get("")
@admin_rate_limit("default")
@admin_required
def list_flagged():
    page, limit = parse_pagination()
    with get_session() as s:
        items, total, stats = FlaggedContentService.list_flagged(
            s, page, limit,
            status=request.args.get("status") or None,
            content_type=request.args.get("contentType") or None,
        )
    return ok_response(flaggedContent=items, pagination=pagination_payload(total, page, limit), statistics=stats)


@bp.post("")
@admin_rate_limit("userActions")
@admin_required
def flagged_action():
    admin = g.current_user
    with get_session() as s:
        action, target_type, target_id, details = FlaggedContentService.take_action(s, admin.id, json_body())
        log_admin_action(s, admin.id, action, target_type, target_id, details, **request_meta())
        s.commit()
    return ok_response(action=action, message="Action applied")


@bp.delete("")
@admin_rate_limit("userActions")
@admin_required
def delete_flagged():
    admin = g.current_user
    flagged_id = json_body().get("flaggedContentId")
    with get_session() as s:
        FlaggedContentService.delete(s, flagged_id)
        log_admin_action(s, admin.id, "flagged_content_deleted", "flagged_content", flagged_id, {}, **request_meta())
        s.commit()
    return ok_response(message="Flagged content deleted")
