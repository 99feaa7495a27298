"""
Module: clerva/routes/routes_announcements.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g
from clerva.services.announcement_service import AnnouncementService
from clerva.utils.authz import login_required
from clerva.utils.db import get_session
from clerva.utils.response_helpers import ok_response

bp = Blueprint("announcements", __name__, url_prefix="/api/announcements")


@bp.get("")
@login_required
def active_announcements():
    with get_session() as s:
        items = AnnouncementService.get_active_for_user(s, g.current_user)
    return ok_response(announcements=items)


@bp.post("/<announcement_id>/dismiss")
@login_required
def dismiss_announcement(announcement_id: str):
    with get_session() as s:
        AnnouncementService.dismiss(s, announcement_id, g.current_user.id)
        s.commit()
    return ok_response(message="Announcement dismissed")
