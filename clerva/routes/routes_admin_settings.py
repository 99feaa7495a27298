"""
Module: clerva/routes/routes_admin_settings.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
import logging
from flask import Blueprint, g
from clerva.utils.admin_audit import log_admin_action, request_meta
from clerva.utils.authz import admin_required, is_super_admin
from clerva.utils.config_handler import load_config, update_settings, validate_settings
from clerva.utils.db import get_session
from clerva.utils.errors import Forbidden
from clerva.utils.ratelimit import admin_rate_limit
from clerva.utils.response_helpers import json_body, ok_response

logger = logging.getLogger(__name__)

bp = Blueprint("admin_settings", __name__, url_prefix="/api/admin/settings")


@bp.get("")
@admin_rate_limit("default")
@admin_required
def get_settings():
    return ok_response(settings=load_config())


@bp.patch("")
@admin_rate_limit("userActions")
@admin_required
def patch_settings():
    admin = g.current_user
    if not is_super_admin(admin):
        raise Forbidden("Only the super admin can change platform settings")
    changes = validate_settings(json_body().get("settings"))
    previous = load_config()
    data = update_settings(changes)
    logger.info("settings updated by %s: %s", admin.id, sorted(changes))
    with get_session() as s:
        log_admin_action(s, admin.id, "settings_updated", "settings", "config", {
            "changes": changes,
            "previous": {k: previous.get(k) for k in changes},
        }, **request_meta())
        s.commit()
    return ok_response(settings=data)
