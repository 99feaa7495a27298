"""
Module: clerva/utils/cache.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

_local: Dict[str, Tuple[float, Any]] = {}
_lock = threading.Lock()

_redis = None
_redis_checked = False


def get_redis():
    """REDIS_URL 有設且 PING 成功才回傳 client，否則 None。"""
    global _redis, _redis_checked
    if _redis_checked:
        return _redis
    _redis_checked = True
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    try:
        import redis
        client = redis.Redis.from_url(url, decode_responses=True)
        client.ping()
        _redis = client
        logger.info("redis available for cache/rate limit")
    except Exception as e:
        logger.warning("redis unavailable (%s), falling back to in-process store", e)
        _redis = None
    return _redis


def reset_redis() -> None:
    global _redis, _redis_checked
    _redis = None
    _redis_checked = False


def get_or_set_cached(key: str, ttl: int, fn: Callable[[], Any]) -> Any:
    """
    以 key 快取 fn() 的結果 ttl 秒。
    ttl <= 0 時不快取，直接計算。值需可 JSON 序列化。
    """
    if ttl <= 0:
        return fn()
    r = get_redis()
    if r is not None:
        try:
            raw = r.get(f"cache:{key}")
            if raw is not None:
                return json.loads(raw)
            value = fn()
            r.setex(f"cache:{key}", ttl, json.dumps(value))
            return value
        except Exception as e:
            logger.warning("redis cache error on %s: %s", key, e)
    now = time.time()
    with _lock:
        hit = _local.get(key)
        if hit and hit[0] > now:
            return hit[1]
    value = fn()
    with _lock:
        _local[key] = (now + ttl, value)
    return value


def clear(prefix: str = "") -> None:
    with _lock:
        for k in [k for k in _local if k.startswith(prefix)]:
            _local.pop(k, None)
    r = get_redis()
    if r is not None:
        try:
            for k in r.scan_iter(f"cache:{prefix}*"):
                r.delete(k)
        except Exception as e:
            logger.warning("redis cache clear failed: %s", e)
