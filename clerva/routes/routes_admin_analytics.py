"""
Module: clerva/routes/routes_admin_analytics.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.analytics_service import DEFAULT_PERIOD, AnalyticsService
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import json_body, ok_response

bp = Blueprint("admin_analytics", __name__, url_prefix="/api/admin/analytics")


@bp.get("")
@admin_rate_limit("dashboard")
@admin_required
def analytics():
    view = request.args.get("view", "overview")
    period = request.args.get("period", DEFAULT_PERIOD)
    with get_session() as s:
        data = AnalyticsService.get(s, view, period, request.args)
    return ok_response(view=view, period=period, data=data)


# 標記可疑行為已審閱；PATCH 與 POST 皆可
@bp.patch("")
@bp.post("")
@admin_rate_limit("userActions")
@admin_required
def review_suspicious_activity():
    admin = g.current_user
    data = json_body()
    with get_session() as s:
        activity = AnalyticsService.review_suspicious(s, admin.id, data)
        log_admin_action(s, admin.id, "REVIEW_SUSPICIOUS_ACTIVITY", "suspicious_activity", activity.id,
                         {"actionTaken": activity.action_taken}, **request_meta())
        s.commit()
        payload = AnalyticsService.serialize_activity(activity)
    return ok_response(activity=payload)
