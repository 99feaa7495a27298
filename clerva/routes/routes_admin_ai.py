"""
Module: clerva/routes/routes_admin_ai.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.ai_memory_service import AIMemoryService
from clerva.services.ai_monitoring_service import AIMonitoringService
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import ok_response

bp = Blueprint("admin_ai", __name__, url_prefix="/api/admin")


@bp.get("/ai-monitoring")
@admin_rate_limit("dashboard")
@admin_required
def ai_monitoring():
    period = request.args.get("period", "day")
    with get_session() as s:
        data = AIMonitoringService.summary(s, period)
    return ok_response(**data)


@bp.get("/ai-memory")
@admin_rate_limit("dashboard")
@admin_required
def ai_memory_overview():
    with get_session() as s:
        data = AIMemoryService.overview(s, request.args.get("search") or None)
    return ok_response(**data)


@bp.get("/ai-memory/<user_id>")
@admin_rate_limit("default")
@admin_required
def ai_memory_user(user_id: str):
    with get_session() as s:
        data = AIMemoryService.user_detail(s, user_id)
    return ok_response(**data)


@bp.delete("/ai-memory/entries/<entry_id>")
@admin_rate_limit("userActions")
@admin_required
def ai_memory_deactivate(entry_id: str):
    admin = g.current_user
    with get_session() as s:
        entry = AIMemoryService.deactivate_entry(s, entry_id)
        log_admin_action(s, admin.id, "ai_memory_entry_deactivated", "ai_memory_entry", entry.id,
                         {"userId": entry.user_id, "category": entry.category}, **request_meta())
        s.commit()
    return ok_response(message="Memory entry deactivated")
