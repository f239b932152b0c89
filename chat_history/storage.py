import logging
from datetime import datetime
from typing import Generator, Iterable, Mapping, Optional

from sqlalchemy import Boolean, create_engine, func, inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from chat_history.config import settings

logger = logging.getLogger(__name__)


class QueryError(Exception):
    """A read against the message store failed."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

# One engine per process, shared by every request through its connection pool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Create the configured message tables if they do not exist yet.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        from chat_history.models import message_table
        from chat_history.tables import TABLE_CONFIGS

        for name in TABLE_CONFIGS:
            message_table(name)

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


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


def check_db_health(table_name: str) -> bool:
    """
    Check if the database is reachable and the given table exists.

    Returns:
        True if DB is healthy and the table exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

        if not inspect(engine).has_table(table_name):
            logger.error(f"Database schema not applied: '{table_name}' table not found")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Query helpers
# =============================================================================

def _query_error(e: SQLAlchemyError) -> QueryError:
    # Driver errors carry the readable message on .orig
    orig = getattr(e, "orig", None)
    return QueryError(str(orig) if orig is not None else str(e))


def _date_bounded(stmt, table, since: Optional[datetime], until: Optional[datetime]):
    if since is not None:
        stmt = stmt.where(table.c.created_at >= since)
        logger.debug(f"Applied lower bound: {since.isoformat()}")
    if until is not None:
        stmt = stmt.where(table.c.created_at <= until)
        logger.debug(f"Applied upper bound: {until.isoformat()}")
    return stmt


def _coerce(column, value: str):
    if isinstance(column.type, Boolean):
        return value.lower() in ("true", "1", "yes")
    return value


def _equality_filtered(stmt, table, equals: Optional[Mapping[str, str]]):
    for column_name, value in (equals or {}).items():
        column = table.c.get(column_name)
        if column is None:
            logger.debug(f"Skipping filter on unknown column: {column_name}")
            continue
        stmt = stmt.where(column == _coerce(column, value))
        logger.debug(f"Applied equality filter: {column_name}={value}")
    return stmt


# =============================================================================
# Message Repository Functions
# =============================================================================

def fetch_session_activity(
    db: Session,
    table_name: str,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    equals: Optional[Mapping[str, str]] = None,
) -> list:
    """
    Lightweight read of (session_id, created_at) for every matching message.

    Args:
        db: Database session
        table_name: Message table to read
        since: Inclusive lower bound on created_at
        until: Inclusive upper bound on created_at
        equals: Optional column equality constraints

    Returns:
        List of rows exposing .session_id and .created_at

    Raises:
        QueryError: if the database read fails
    """
    from chat_history.models import message_table

    table = message_table(table_name)
    logger.info(f"Querying session activity: table={table_name}")

    stmt = select(table.c.session_id, table.c.created_at)
    stmt = _date_bounded(stmt, table, since, until)
    stmt = _equality_filtered(stmt, table, equals)

    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as e:
        logger.error(f"Session activity query failed on {table_name}: {e}")
        raise _query_error(e) from e

    logger.debug(f"Session activity rows: {len(rows)}")
    return rows


def fetch_session_messages(
    db: Session,
    table_name: str,
    session_ids: Iterable[str],
) -> list[dict]:
    """
    Full-row read of every message belonging to the given sessions.

    Rows are ordered by created_at ASC, id ASC.

    Raises:
        QueryError: if the database read fails
    """
    from chat_history.models import message_table

    table = message_table(table_name)
    session_ids = list(session_ids)
    logger.info(f"Querying messages for {len(session_ids)} sessions: table={table_name}")

    stmt = (
        select(table)
        .where(table.c.session_id.in_(session_ids))
        .order_by(table.c.created_at.asc(), table.c.id.asc())
    )

    try:
        rows = db.execute(stmt).mappings().all()
    except SQLAlchemyError as e:
        logger.error(f"Session messages query failed on {table_name}: {e}")
        raise _query_error(e) from e

    logger.debug(f"Session message rows: {len(rows)}")
    return [dict(row) for row in rows]


def get_stats(
    db: Session,
    table_name: str,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> dict:
    """
    Compute message-level counts for a table within an optional date range.

    Computes:
    - total_messages: count of matching messages
    - sessions_count: number of distinct sessions
    - first_message_at: earliest timestamp (None if no messages)
    - last_message_at: latest timestamp (None if no messages)

    Raises:
        QueryError: if the database read fails
    """
    from chat_history.models import message_table

    table = message_table(table_name)
    logger.info(f"Computing message statistics: table={table_name}")

    stmt = select(
        func.count(table.c.id),
        func.count(func.distinct(table.c.session_id)),
        func.min(table.c.created_at),
        func.max(table.c.created_at),
    )
    stmt = _date_bounded(stmt, table, since, until)

    try:
        total_messages, sessions_count, first_at, last_at = db.execute(stmt).one()
    except SQLAlchemyError as e:
        logger.error(f"Stats query failed on {table_name}: {e}")
        raise _query_error(e) from e

    logger.info(f"Stats computed: {total_messages} messages, {sessions_count} sessions")

    return {
        "total_messages": total_messages or 0,
        "sessions_count": sessions_count or 0,
        "first_message_at": first_at,
        "last_message_at": last_at,
    }
