"""
Module: clerva/utils/config_handler.py
Unified comment style: module docstring + minimal inline notes.
"""
import json, os
import logging
from pathlib import Path
from typing import Any, Dict
from clerva.utils.errors import APIError

logger = logging.getLogger(__name__)

DEFAULT_DATA: Dict[str, Any] = {
    "group_min_members": 2,
    "group_max_members": 50,
    "group_default_members": 10,
    "report_description_max": 2000,
    "notification_batch_size": 500,
    "feedback_message_max": 5000,
}


def _data_dir() -> Path:
    # 每次呼叫時讀環境變數，測試可切換目錄
    raw = os.getenv("CONFIG_DIR") or os.getenv("DATA_DIR")
    if raw:
        return Path(raw)
    return Path(__file__).parent.parent / "data"


def config_path() -> Path:
    return _data_dir() / "config.json"


def load_config() -> Dict[str, Any]:
    path = config_path()
    if not path.exists():
        data = DEFAULT_DATA.copy()
        try:
            save_config(data)
        except OSError as e:
            logger.warning("cannot write default config to %s: %s", path, e)
        return data
    try:
        data: Dict[str, Any] = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("config file %s unreadable, using defaults: %s", path, e)
        data = DEFAULT_DATA.copy()
    changed = False
    for k, v in DEFAULT_DATA.items():
        if k not in data:
            data[k] = v
            changed = True
    if changed:
        try:
            save_config(data)
        except OSError as e:
            logger.warning("cannot update config %s: %s", path, e)
    return data


def save_config(data: Dict[str, Any]) -> None:
    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def get_setting(key: str) -> Any:
    """讀單一設定值，缺值時回預設。"""
    return load_config().get(key, DEFAULT_DATA.get(key))


def update_settings(changes: Dict[str, Any]) -> Dict[str, Any]:
    """只接受已知鍵，其餘忽略。"""
    data = load_config()
    for k, v in (changes or {}).items():
        if k in DEFAULT_DATA:
            data[k] = v
    save_config(data)
    return data


def validate_settings(changes: Any) -> Dict[str, int]:
    """
    後台修改設定前的檢查
    只接受已知鍵與正整數，小組人數需維持 最小 <= 預設 <= 最大
    """
    if not isinstance(changes, dict) or not changes:
        raise APIError("No settings provided")
    unknown = sorted(k for k in changes if k not in DEFAULT_DATA)
    if unknown:
        raise APIError(f"Unknown settings: {', '.join(unknown)}")
    clean: Dict[str, int] = {}
    for k, v in changes.items():
        if isinstance(v, bool) or not isinstance(v, int) or v < 1:
            raise APIError(f"{k} must be a positive integer")
        clean[k] = v

    merged = {**load_config(), **clean}
    if not merged["group_min_members"] <= merged["group_default_members"] <= merged["group_max_members"]:
        raise APIError("group_default_members must be between group_min_members and group_max_members")
    if merged["group_min_members"] < 2:
        raise APIError("group_min_members must be at least 2")
    return clean
