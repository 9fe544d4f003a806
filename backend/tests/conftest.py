import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hookscheduler.core.config import get_settings

# Run tests against a local SQLite file instead of whatever DATABASE_URL the
# environment points at, and keep the scheduler from arming timers at import.
test_db_path = ROOT / "test.db"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{test_db_path}")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

# Clear any cached settings so subsequent imports pick up the test configuration.
get_settings.cache_clear()

from hookscheduler.database.connection import Base
import hookscheduler.database.models.models  # noqa: F401,E402


@pytest.fixture
def session_factory():
    """Sessions sharing one in-memory database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
