"""
SQLAlchemy table definitions for chat message tables.

Every configured history table shares the same message layout, so tables
are built on demand by name and registered on the shared metadata.
For Pydantic response schemas, see schemas.py.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Table

from chat_history.storage import Base


def message_table(name: str) -> Table:
    """
    Return the Table object for a chat message table.

    Columns:
        id: primary key
        session_id: conversation identifier
        message: free-form JSON payload
        created_at: message timestamp (naive UTC)
        email_sent: delivery flag, null when not applicable
    """
    existing = Base.metadata.tables.get(name)
    if existing is not None:
        return existing

    return Table(
        name,
        Base.metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("session_id", String, nullable=False, index=True),
        Column("message", JSON, nullable=True),
        Column("created_at", DateTime, nullable=False, index=True),
        Column("email_sent", Boolean, nullable=True),
    )
