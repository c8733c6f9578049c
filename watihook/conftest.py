"""
Pytest configuration and shared fixtures.

Test environment variables are set before any watihook import so the
cached settings and the engine pick them up.
"""

import os
import tempfile

import pytest

os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'watihook_test.db')}"
)
os.environ.setdefault("WATI_API_TOKEN", "test-token")
os.environ.setdefault("WATI_BASE_URL", "https://wati.test/api/v1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from watihook.config import get_settings
get_settings.cache_clear()

from watihook.storage import Base, SessionLocal, engine, init_db  # noqa: E402


@pytest.fixture(scope="function")
def db():
    """Session over fresh tables and indexes for each test."""
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="session", autouse=True)
def clean_database():
    """Drop tables left behind by an interrupted run."""
    from watihook import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
