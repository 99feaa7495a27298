"""
Module: clerva/routes/routes_feedback.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g
from clerva.services.feedback_service import FeedbackService
from clerva.utils.authz import login_required
from clerva.utils.db import get_session
from clerva.utils.response_helpers import json_body, ok_response

bp = Blueprint("feedback", __name__, url_prefix="/api/feedback")


@bp.post("")
@login_required
def submit_feedback():
    with get_session() as s:
        fb = FeedbackService.submit(s, g.current_user.id, json_body())
        s.commit()
        payload = FeedbackService.serialize(fb)
    return ok_response(201, feedback=payload, message="Thank you for your feedback")
