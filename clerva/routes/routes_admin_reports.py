"""
Module: clerva/routes/routes_admin_reports.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.report_service import ReportService
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import json_body, ok_response, pagination_payload, parse_pagination

bp = Blueprint("admin_reports", __name__, url_prefix="/api/admin/reports")


@bp.get("")
@admin_rate_limit("default")
@admin_required
def list_reports():
    page, limit = parse_pagination()
    with get_session() as s:
        items, total, stats = ReportService.list_reports(
            s, page, limit,
            status=request.args.get("status") or None,
            report_type=request.args.get("type") or None,
        )
    return ok_response(reports=items, pagination=pagination_payload(total, page, limit), statistics=stats)


@bp.post("")
@admin_rate_limit("userActions")
@admin_required
def handle_report():
    admin = g.current_user
    data = json_body()
    with get_session() as s:
        report = ReportService.handle_report(s, admin.id, data)
        details = {"status": report.status, "resolution": report.resolution}
        if report.action_taken == "banned":
            details.update({
                "bannedUserId": report.reported_user_id,
                "banDuration": data.get("banDuration") or "permanent",
            })
        log_admin_action(s, admin.id, f"report_{data.get('action')}", "report", report.id, details, **request_meta())
        s.commit()
        payload = ReportService.serialize(report)
    return ok_response(report=payload)


@bp.get("/<report_id>/investigate")
@admin_rate_limit("search")
@admin_required
def investigate_report(report_id: str):
    with get_session() as s:
        data = ReportService.investigate(s, report_id)
    return ok_response(**data)
