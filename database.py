from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

import config


class Base(DeclarativeBase):
    pass


def make_engine(url: str = config.DATABASE_URL, timeout: float = config.DB_TIMEOUT_SECONDS) -> Engine:
    """Create an engine. SQLite connections get foreign keys switched on."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(url, pool_pre_ping=True, pool_recycle=300, pool_timeout=timeout)


def make_session_factory(engine: Engine) -> sessionmaker:
    # Rows stay readable after commit; the store closes sessions eagerly.
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_store(request: Request):
    """FastAPI dependency: the LedgerStore owned by the running app."""
    return request.app.state.store
