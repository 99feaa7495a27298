"""
回應輔助函數
提供統一的 API 回應格式與分頁參數解析
"""
from math import ceil
from typing import Any, Dict, Tuple
from flask import jsonify, request


def ok_response(status_code: int = 200, **data: Any) -> tuple:
    """
    成功回應：{"ok": true, ...data}

    Args:
        status_code: HTTP 狀態碼
        **data: 併入回應的欄位
    """
    return jsonify({"ok": True, **data}), status_code


def error_response(message: str, status_code: int = 400, **extra: Any) -> tuple:
    """
    錯誤回應：{"ok": false, "error": message}

    Args:
        message: 錯誤訊息
        status_code: HTTP 狀態碼
        **extra: 額外欄位（例如 details）
    """
    return jsonify({"ok": False, "error": message, **extra}), status_code


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def parse_pagination(default_limit: int = 20, max_limit: int = 100) -> Tuple[int, int]:
    """
    解析 ?page&limit：page 最小 1，limit 夾在 1..max_limit。

    Returns:
        (page, limit)
    """
    page = max(1, _int_arg("page", 1))
    limit = min(max(1, _int_arg("limit", default_limit)), max_limit)
    return page, limit


def pagination_payload(total: int, page: int, limit: int) -> Dict[str, int]:
    """後台列表共用的分頁區塊"""
    return {
        "total": total,
        "pages": ceil(total / limit) if limit else 0,
        "currentPage": page,
        "limit": limit,
    }


def json_body() -> Dict[str, Any]:
    """取 JSON body；非物件時回空 dict。"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
