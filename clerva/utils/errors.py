"""
Module: clerva/utils/errors.py
Unified comment style: module docstring + minimal inline notes.
"""
from typing import Any, Dict, Optional


class APIError(Exception):
    """服務層丟出、由 app 錯誤處理器轉成 JSON 的錯誤。"""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(APIError):
    status_code = 404


class Forbidden(APIError):
    status_code = 403
