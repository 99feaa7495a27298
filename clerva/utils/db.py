# clerva/utils/db.py
from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator
import logging
import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

logger = logging.getLogger(__name__)

class Base(DeclarativeBase):
    pass

_engine = None
SessionLocal = None
EFFECTIVE_DB_URL = ""

DEFAULT_SQLITE_URL = "sqlite:///clerva.db"

def _normalize_url(url: str) -> str:
    if not url:
        return url
    # psycopg v3 driver; Supabase hands out plain postgres:// URLs
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url.replace("postgresql://", "postgresql+psycopg://") if url.startswith("postgresql://") else url

def _sqlite_savepoints(eng) -> None:
    # pysqlite 自行管理 BEGIN，SAVEPOINT 需要改由 SQLAlchemy 發出
    @event.listens_for(eng, "connect")
    def _connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

def init_engine_session(url: str | None = None):
    """
    初始化資料庫：
    1) 呼叫端傳入 url 或設了 DATABASE_URL -> 直接使用
    2) 未設時回退到本機 SQLite 檔案
    建好連線後建立所有資料表。
    """
    global _engine, SessionLocal, EFFECTIVE_DB_URL

    raw = url or os.getenv("DATABASE_URL", "") or DEFAULT_SQLITE_URL
    effective = _normalize_url(raw)
    kwargs: dict = {"pool_pre_ping": True}
    if effective.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}

    eng = create_engine(effective, **kwargs)
    if effective.startswith("sqlite"):
        _sqlite_savepoints(eng)
    # 立刻測試一次連線，避免把壞 URL 留到後面出錯
    with eng.connect() as conn:
        conn.exec_driver_sql("SELECT 1")

    if _engine is not None:
        _engine.dispose()
    _engine = eng
    SessionLocal = sessionmaker(bind=_engine, autoflush=False, autocommit=False, expire_on_commit=False)

    import clerva.models  # noqa: F401  register mappers
    Base.metadata.create_all(_engine)
    EFFECTIVE_DB_URL = effective
    logger.info("DB connected: %s", _mask_url(effective))
    return _engine

def get_engine():
    if _engine is None:
        init_engine_session()
    return _engine

def _mask_url(url: str) -> str:
    if '://' not in url or '@' not in url:
        return url
    left, rest = url.split('://', 1)
    cred_part, host_part = rest.rsplit('@', 1)
    if ':' in cred_part:
        user = cred_part.split(':', 1)[0]
        masked = f"{user}:***"
    else:
        masked = cred_part
    return f"{left}://{masked}@{host_part}"

def get_db_health() -> dict:
    """回傳 DB 健康狀態，供 /api/healthz 使用。"""
    ok = False
    driver = None
    err = None
    url = EFFECTIVE_DB_URL or os.getenv("DATABASE_URL", "")
    try:
        eng = get_engine()
        with eng.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        ok = True
        driver = eng.url.drivername
    except Exception as e:
        logger.error("DB health check failed: %s", e)
        err = str(e)
    return {
        "ok": ok,
        "url": _mask_url(url),
        "driver": driver,
        **({"error": err} if err else {}),
    }

@contextmanager
def get_session() -> Iterator[Session]:
    if SessionLocal is None:
        init_engine_session()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
