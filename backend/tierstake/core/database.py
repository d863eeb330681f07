"""
Database configuration and session management
"""
import logging
import time
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tierstake.core.config import get_settings
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import db_queries_total, db_query_duration_seconds

# Lazy initialization - don't create engine at module level
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None

Base = declarative_base()


def setup_db_metrics(engine: Engine) -> None:
    """Attach query counters and timers to an engine"""

    @event.listens_for(engine, "before_cursor_execute")
    def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault('query_start_time', []).append(time.time())

    @event.listens_for(engine, "after_cursor_execute")
    def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if conn.info.get('query_start_time'):
            duration = time.time() - conn.info['query_start_time'].pop()
            words = statement.strip().split()
            operation = words[0].lower() if words else "unknown"
            db_queries_total.labels(operation=operation).inc()
            db_query_duration_seconds.labels(operation=operation).observe(duration)


def build_engine(url: str, **overrides) -> Engine:
    """Create an engine with timeouts applied for the target backend"""
    settings = get_settings()
    timeout = settings.store_timeout_seconds
    kwargs = {"pool_pre_ping": True, "echo": settings.log_sqlalchemy}
    if url.startswith("postgresql"):
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            connect_args={
                "connect_timeout": timeout,
                "options": f"-c statement_timeout={timeout * 1000}"
            },
        )
    elif url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": timeout, "check_same_thread": False}
    kwargs.update(overrides)
    engine = create_engine(url, **kwargs)
    setup_db_metrics(engine)
    return engine


def get_engine() -> Engine:
    """Get or create database engine (lazy initialization)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        LoggingConfig.configure()
        _engine = build_engine(settings.database_url)
        if not settings.log_sqlalchemy:
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return _engine


def get_session_local() -> sessionmaker:
    """Get or create session factory (lazy initialization)"""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables registered on Base"""
    import tierstake.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
