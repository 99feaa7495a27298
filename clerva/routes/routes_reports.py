"""
Module: clerva/routes/routes_reports.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
import logging
from flask import Blueprint, g
from clerva.services.report_service import ReportService
from clerva.utils.authz import login_required
from clerva.utils.db import get_session
from clerva.utils.response_helpers import json_body, ok_response

logger = logging.getLogger(__name__)

bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@bp.post("")
@login_required
def submit_report():
    user = g.current_user
    with get_session() as s:
        report = ReportService.create_report(s, user.id, json_body())
        s.commit()
        logger.info("report %s submitted by %s on %s/%s", report.id, user.id, report.content_type, report.content_id)
        payload = ReportService.serialize(report, with_users=False)
    return ok_response(201, report=payload, message="Report submitted")


@bp.get("")
@login_required
def my_reports():
    with get_session() as s:
        items = ReportService.list_own(s, g.current_user.id)
    return ok_response(reports=items)
