"""
Module: clerva/routes/routes_admin_feedback.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.feedback_service import STATUS_ACTIONS, FeedbackService
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import json_body, ok_response, pagination_payload, parse_pagination

bp = Blueprint("admin_feedback", __name__, url_prefix="/api/admin/feedback")

AUDIT_ACTIONS = {
    "review": "feedback_reviewed",
    "resolve": "feedback_resolved",
    "archive": "feedback_archived",
}


@bp.get("")
@admin_rate_limit("default")
@admin_required
def list_feedback():
    page, limit = parse_pagination()
    args = request.args
    with get_session() as s:
        items, total, stats = FeedbackService.list_feedback(
            s, page, limit,
            status=args.get("status") or None,
            rating=args.get("rating") or None,
            sort_by=args.get("sortBy"),
            sort_order=args.get("sortOrder"),
        )
    return ok_response(feedback=items, pagination=pagination_payload(total, page, limit), statistics=stats)


@bp.post("")
@admin_rate_limit("userActions")
@admin_required
def handle_feedback():
    admin = g.current_user
    with get_session() as s:
        fb, action = FeedbackService.handle(s, admin.id, json_body())
        if action in STATUS_ACTIONS:
            log_admin_action(s, admin.id, AUDIT_ACTIONS[action], "feedback", fb.id,
                             {"status": fb.status, "adminNotes": fb.admin_notes}, **request_meta())
        s.commit()
        payload = FeedbackService.serialize(fb)
    return ok_response(feedback=payload)


@bp.delete("")
@admin_rate_limit("userActions")
@admin_required
def delete_feedback():
    admin = g.current_user
    feedback_id = json_body().get("feedbackId")
    with get_session() as s:
        FeedbackService.delete(s, feedback_id)
        log_admin_action(s, admin.id, "feedback_deleted", "feedback", feedback_id, {}, **request_meta())
        s.commit()
    return ok_response(message="Feedback deleted")
