"""
Module: clerva/routes/routes_admin_announcements.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
import logging
from flask import Blueprint, g, request
from clerva.services.announcement_service import AnnouncementService
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required
from clerva.utils.db import get_session
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import error_response, json_body, ok_response, pagination_payload, parse_pagination

logger = logging.getLogger(__name__)

bp = Blueprint("admin_announcements", __name__, url_prefix="/api/admin/announcements")


@bp.get("")
@admin_rate_limit("default")
@admin_required
def list_announcements():
    page, limit = parse_pagination()
    status = request.args.get("status") or None
    with get_session() as s:
        items, total = AnnouncementService.list_announcements(s, page, limit, status)
    return ok_response(announcements=items, pagination=pagination_payload(total, page, limit))


@bp.post("")
@admin_rate_limit("userActions")
@admin_required
def manage_announcement():
    admin = g.current_user
    data = json_body()
    action = data.get("action")
    meta = request_meta()

    with get_session() as s:
        if action == "create":
            ann, sent = AnnouncementService.create_announcement(s, admin.id, data)
            log_admin_action(s, admin.id, "announcement_created", "announcement", ann.id,
                             {"title": ann.title, "priority": ann.priority, "notificationsSent": sent}, **meta)
            s.commit()
            return ok_response(201, announcement=AnnouncementService.serialize(ann), notificationsSent=sent)

        if action == "update":
            ann, changes = AnnouncementService.update_announcement(s, data)
            log_admin_action(s, admin.id, "announcement_updated", "announcement", ann.id, {"changes": changes}, **meta)
            s.commit()
            return ok_response(announcement=AnnouncementService.serialize(ann))

        if action == "publish":
            ann = AnnouncementService.publish(s, data.get("id"))
            log_admin_action(s, admin.id, "announcement_published", "announcement", ann.id, {"title": ann.title}, **meta)
            s.commit()
            return ok_response(announcement=AnnouncementService.serialize(ann))

        if action == "archive":
            ann = AnnouncementService.archive(s, data.get("id"))
            log_admin_action(s, admin.id, "announcement_archived", "announcement", ann.id, {"title": ann.title}, **meta)
            s.commit()
            return ok_response(announcement=AnnouncementService.serialize(ann))

        if action == "delete":
            ann_id = data.get("id")
            AnnouncementService.delete(s, ann_id)
            log_admin_action(s, admin.id, "announcement_deleted", "announcement", ann_id, {}, **meta)
            s.commit()
            logger.info("announcement %s deleted by %s", ann_id, admin.id)
            return ok_response(message="Announcement deleted")

    return error_response("Invalid action")
