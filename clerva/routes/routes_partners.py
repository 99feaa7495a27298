"""
Module: clerva/routes/routes_partners.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
from flask import Blueprint, g, request
from clerva.services.partner_service import PartnerService, validate_search
from clerva.utils.authz import login_required
from clerva.utils.db import get_session
from clerva.utils.response_helpers import ok_response

bp = Blueprint("partners", __name__, url_prefix="/api/partners")

SEARCH_CACHE_CONTROL = "private, max-age=30, stale-while-revalidate=60"


@bp.post("/search")
@login_required
def search_partners():
    criteria = validate_search(request.get_json(silent=True))
    with get_session() as s:
        data = PartnerService.search(s, g.current_user.id, criteria)
    resp, status = ok_response(**data)
    resp.headers["Cache-Control"] = SEARCH_CACHE_CONTROL
    return resp, status
