"""輸入清理與型別轉換"""
from datetime import datetime, timezone
from typing import Any, Optional
from clerva.utils.errors import APIError


def clean_input(text: Any, max_length: int = 1000) -> str:
    """去頭尾空白並截斷"""
    if not text or not isinstance(text, str):
        return ""
    return text.strip()[:max_length]


def parse_datetime(value: Any, field: str = "date") -> Optional[datetime]:
    """接受 ISO 8601 字串（含 Z 結尾）；空值回 None。"""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise APIError(f"Invalid {field}")
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def strict_int(value: Any) -> Optional[int]:
    """只接受真正的整數（bool 不算）；其他回 None。"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def string_list(value: Any) -> list:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v]


def require_choice(value: Any, allowed, message: str) -> str:
    """列舉值必須是字串且在允許清單內，否則 400"""
    if not isinstance(value, str) or value not in allowed:
        raise APIError(message)
    return value


def require_id(value: Any, message: str = "ID is required") -> str:
    """JSON 帶來的 id 只接受非空字串"""
    if not isinstance(value, str) or not value.strip():
        raise APIError(message)
    return value.strip()

