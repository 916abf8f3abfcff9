"""Database session management"""
import functools
import logging
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from reelcoin.core.config import settings
from reelcoin.core.exceptions import UpstreamUnavailableError
from reelcoin.models.base import Base

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)

# Connection-level failures; anything else is a bug, not an outage
TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError)

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    import reelcoin.models  # noqa: F401 - registers every model with Base.metadata
    Base.metadata.create_all(bind=engine)


def translate_db_errors(operation: str) -> Callable[[F], F]:
    """Decorator: report an unreachable database as UpstreamUnavailableError.

    Applies to every query the wrapped function runs, including reads made
    before its write transaction starts. The session passed as ``db`` is
    rolled back so it can be reused.
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except TRANSIENT_DB_ERRORS as e:
                db = kwargs.get("db")
                if db is None:
                    db = next((arg for arg in args if isinstance(arg, Session)), None)
                if db is not None:
                    db.rollback()
                logger.error(f"{operation}: database unavailable: {e}", exc_info=True)
                raise UpstreamUnavailableError("The wallet is temporarily unavailable. Please try again.") from e
        return wrapper
    return decorator
