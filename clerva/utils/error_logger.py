#!/usr/bin/env python3
"""
日誌設定
主控台輸出 + 可選的錯誤檔案（LOG_DIR）
"""
import logging
import logging.handlers
import os
import sys
from typing import Optional

# 配置日誌格式
DETAILED_LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(funcName)s() | %(message)s'

_configured = False


def configure_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """設置根 logger；重複呼叫不會重複加 handler。"""
    global _configured
    root = logging.getLogger()
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    if _configured:
        return root

    # 控制台處理器
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(DETAILED_LOG_FORMAT))
    root.addHandler(console_handler)

    # 文件處理器（只記錯誤）
    log_dir = log_dir or os.getenv("LOG_DIR")
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, "clerva_errors.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            file_handler.setLevel(logging.ERROR)
            file_handler.setFormatter(logging.Formatter(DETAILED_LOG_FORMAT))
            root.addHandler(file_handler)
        except OSError as e:
            root.warning("cannot create log file under %s: %s", log_dir, e)

    _configured = True
    return root


def log_exception(logger: logging.Logger, where: str, error: Exception, **context) -> None:
    """記錄例外與上下文（含 traceback）。"""
    ctx = " ".join(f"{k}={v}" for k, v in context.items())
    logger.error("%s failed: %s: %s %s", where, type(error).__name__, error, ctx, exc_info=error)
