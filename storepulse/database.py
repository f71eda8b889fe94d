"""Database engine, session factory and FastAPI dependency.

WHAT:
    Builds the SQLAlchemy engine from `DATABASE_URL` and exposes
    `SessionLocal` and `get_db()`.

WHY:
    - Routers get a request-scoped session via `Depends(get_db)`.
    - The sync scheduler opens its own sessions through `SessionLocal`,
      one per unit of work.

USAGE:
    from storepulse.database import SessionLocal, get_db

    @router.get("/items")
    def get_items(db: Session = Depends(get_db)):
        ...
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings


DATABASE_URL = get_settings().DATABASE_URL


# Connection pool configuration for production:
# - pool_recycle: Recreate connections after 1 hour to prevent stale connections
# - pool_pre_ping: Check connection health before use
#
# NOTE: SQLite engines (tests/dev) do not support pool_size/max_overflow.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# Base is defined in storepulse.models to ensure a single registry across the app
from .models import Base  # noqa: E402


def init_db() -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
