from __future__ import annotations
from flask import Blueprint, jsonify
from clerva import __version__
from clerva.utils.db import get_db_health

bp = Blueprint("status", __name__, url_prefix="/api")


@bp.get("/healthz")
def healthz():
    db = get_db_health()
    return jsonify({"ok": bool(db.get("ok")), "version": __version__, "db": db}), (200 if db.get("ok") else 503)
