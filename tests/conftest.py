"""
Pytest configuration and shared fixtures.

Test settings are set in the environment before any app imports, then the
settings cache is cleared so they take effect.
"""

import os
from datetime import datetime

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_chat_history.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DEFAULT_TABLE", "chat_messages")

from chat_history.config import get_settings  # noqa: E402
get_settings.cache_clear()

from chat_history.models import message_table  # noqa: E402
from chat_history.storage import Base, SessionLocal, engine, init_db  # noqa: E402


def build_message(session_id: str, created_at: str, content: str = "hi", role: str = "human", email_sent=None) -> dict:
    """Build a message row; created_at is an ISO timestamp string."""
    return {
        "session_id": session_id,
        "created_at": datetime.fromisoformat(created_at),
        "message": {"type": role, "content": content},
        "email_sent": email_sent,
    }


@pytest.fixture
def msg():
    """Factory for message rows."""
    return build_message


@pytest.fixture(scope="function")
def db():
    """Database session with fresh message tables for each test."""
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def insert_messages(db):
    """Insert message rows into a table and commit."""
    def insert(rows, table_name: str = "chat_messages"):
        db.execute(message_table(table_name).insert(), list(rows))
        db.commit()
    return insert
