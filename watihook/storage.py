import logging
from typing import Generator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from watihook.config import settings

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # check_same_thread=False lets SQLite sessions move to worker threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=False,
)

# Records returned from worker threads stay readable after commit
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

Base = declarative_base()

# Composite (counterparty_id, timestamp) index backing ordered conversation reads
MESSAGE_THREAD_INDEX = "ix_whatsapp_messages_counterparty_timestamp"
MESSAGES_TABLE = "whatsapp_messages"


def init_db(bind: Engine = engine) -> None:
    """
    Create all tables and indexes.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {bind.url}")
    try:
        # Import models to register them with Base.metadata
        from watihook import models  # noqa: F401

        Base.metadata.create_all(bind=bind)
        build_indexes(bind)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def build_indexes(bind: Engine = engine) -> None:
    """
    Ensure the composite thread index exists. While it is missing (dropped
    for a migration, or still being built on a restored database) ordered
    thread reads are served by the fallback query.
    """
    from watihook.models import message_thread_index

    message_thread_index.create(bind=bind, checkfirst=True)
    logger.info(f"Index built: {MESSAGE_THREAD_INDEX}")


def drop_indexes(bind: Engine = engine) -> None:
    from watihook.models import message_thread_index

    message_thread_index.drop(bind=bind, checkfirst=True)
    logger.info(f"Index dropped: {MESSAGE_THREAD_INDEX}")


def index_ready(db: Session) -> bool:
    """Whether the composite thread index exists in the database."""
    inspector = inspect(db.get_bind())
    return any(
        index.get("name") == MESSAGE_THREAD_INDEX
        for index in inspector.get_indexes(MESSAGES_TABLE)
    )


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and the message tables exist.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            tables = set(inspect(db.get_bind()).get_table_names())
            missing = {MESSAGES_TABLE, "whatsapp_attachments", "wati_webhook_events"} - tables
            if missing:
                logger.error(f"Database schema not applied: missing tables {sorted(missing)}")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
