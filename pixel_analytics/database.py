from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from pixel_analytics.config import get_settings

Base = declarative_base()


def create_db_engine(database_url: str | None = None) -> Engine:
    """Build an engine for the event store.

    SQLite connections are shared with FastAPI's worker threads and wait on
    write locks instead of failing immediately.
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    # Import models so they register on Base.metadata
    from pixel_analytics import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def ping(bind: Engine | None = None) -> bool:
    with (bind or engine).connect() as conn:
        conn.execute(text("SELECT 1"))
    return True
