from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .settings import settings


def _connect_args(database_url: str) -> dict[str, object]:
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        # sync routes run on the FastAPI threadpool
        return {"check_same_thread": False}
    if backend == "postgresql" and settings.DB_STATEMENT_TIMEOUT_SECONDS > 0:
        timeout_ms = int(settings.DB_STATEMENT_TIMEOUT_SECONDS * 1000)
        return {"options": f"-c statement_timeout={timeout_ms}"}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.DATABASE_URL),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """One session per resolution pass or API request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db() -> Iterator[Session]:
    with session_scope() as db:
        yield db
