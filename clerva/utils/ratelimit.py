"""
Module: clerva/utils/ratelimit.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
import logging
import time
from functools import wraps
from typing import Callable, Dict, Tuple
from flask import current_app, jsonify, request
from clerva.utils.cache import get_redis

logger = logging.getLogger(__name__)

Bucket = Tuple[float, float]
_buckets: Dict[str, Bucket] = {}

# 每分鐘請求數
ADMIN_PRESETS: Dict[str, Tuple[int, int]] = {
    "default": (100, 60),
    "dashboard": (30, 60),
    "search": (20, 60),
    "userActions": (30, 60),
    "users": (60, 60),
}


def _normalize_ip(ip: str | None) -> str:
    s = (ip or "").strip()
    if s.startswith("::ffff:") and s.count(":") >= 2:
        s = s.split(":")[-1]
    if s.startswith("[") and s.endswith("]"):
        s = s[1:-1]
    return s or "unknown"


def get_client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = (
        (forwarded.split(",")[0].strip() if forwarded else "")
        or request.headers.get("X-Real-IP")
        or request.remote_addr
        or "unknown"
    )
    return _normalize_ip(ip)


def _too_many(retry: int):
    resp = jsonify({
        "ok": False,
        "error": "Too many requests, please try again later",
        "retry_after": retry,
    })
    resp.headers["Retry-After"] = str(retry)
    return resp, 429


def reset_buckets() -> None:
    _buckets.clear()


def _redis_window(r, key: str, calls: int, per_seconds: int) -> int:
    """固定視窗計數；回傳 0 表示放行，否則為需等待秒數"""
    count = int(r.incr(key))
    if count == 1:
        r.expire(key, per_seconds)
    if count <= calls:
        return 0
    ttl = r.ttl(key)
    return int(ttl) if ttl and ttl > 0 else per_seconds


def rate_limit(calls: int, per_seconds: int, scope: str = "") -> Callable:
    """
    簡易 Token Bucket：每個 IP 在 per_seconds 內允許 calls 次請求。
    有 Redis 時改用固定視窗計數。
    """
    capacity = float(calls)
    refill_rate = capacity / float(per_seconds)

    def deco(fn: Callable):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_app.config.get("RATELIMIT_ENABLED", True):
                return fn(*args, **kwargs)

            key = f"rl:{scope or fn.__name__}:{get_client_ip()}:{per_seconds}"
            r = get_redis()
            if r is not None:
                try:
                    retry = _redis_window(r, key, calls, per_seconds)
                except Exception as e:
                    logger.warning("redis rate limit failed, using local bucket: %s", e)
                else:
                    if retry:
                        logger.info("rate limited %s (redis)", key)
                        return _too_many(retry)
                    return fn(*args, **kwargs)

            now = time.time()
            tokens, last = _buckets.get(key, (capacity, now))
            delta = max(0.0, now - last)
            tokens = min(capacity, tokens + delta * refill_rate)
            if tokens < 1.0:
                retry = int(max(1, (1.0 - tokens) / refill_rate))
                logger.info("rate limited %s", key)
                return _too_many(retry)
            _buckets[key] = (tokens - 1.0, now)
            return fn(*args, **kwargs)
        return wrapper
    return deco


def admin_rate_limit(preset: str = "default") -> Callable:
    calls, per = ADMIN_PRESETS.get(preset, ADMIN_PRESETS["default"])
    return rate_limit(calls, per, scope=f"admin:{preset}")
