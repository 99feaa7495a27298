"""
Module: clerva/utils/authz.py
Unified comment style: module docstring + minimal inline notes.
"""
from functools import wraps
import logging
from flask import g, jsonify, request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from sqlalchemy.orm import Session
from clerva.models import User
from clerva.utils.db import get_session

logger = logging.getLogger(__name__)


def get_current_user(session: Session | None = None) -> User | None:
    """以 JWT sub（users.id）取得目前使用者；未帶 token 回 None。"""
    verify_jwt_in_request(optional=True)
    ident = get_jwt_identity()
    if not ident:
        return None
    if session is not None:
        return session.get(User, str(ident))
    with get_session() as s:
        return s.get(User, str(ident))


def _unauthenticated():
    return jsonify({"ok": False, "error": "Not authenticated"}), 401


def login_required(fn):
    """登入驗證；通過後把使用者放在 g.current_user。"""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = get_current_user()
        if user is None:
            return _unauthenticated()
        if user.deactivated_at is not None:
            return jsonify({"ok": False, "error": "Account deactivated"}), 403
        g.current_user = user
        return fn(*args, **kwargs)
    return wrapper


def admin_required(fn):
    """管理員驗證：is_admin 且未停權。"""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = get_current_user()
        if user is None:
            return _unauthenticated()
        if not user.is_admin or user.deactivated_at is not None:
            logger.warning(
                "admin access denied: user=%s path=%s method=%s",
                user.id, request.path, request.method,
            )
            return jsonify({"ok": False, "error": "Not authorized"}), 403
        g.current_user = user
        return fn(*args, **kwargs)
    return wrapper


def is_super_admin(user: User | None) -> bool:
    return bool(user and user.is_admin and user.is_super_admin and user.deactivated_at is None)
