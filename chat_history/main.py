import csv
import io
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from chat_history.config import settings
from chat_history.storage import QueryError, init_db, check_db_health, get_db, get_stats
from chat_history.logging_utils import setup_logging, RequestLoggingMiddleware, log_history_data
from chat_history.metrics import get_metrics, get_metrics_content_type
from chat_history.filters import FilterState, InvalidFilterError
from chat_history.paginator import SessionPaginator
from chat_history.tables import (
    SESSION_MESSAGES_KEY,
    TABLE_CONFIGS,
    TableConfig,
    UnknownTableError,
    get_table_config,
)
from chat_history.utils import end_of_day, format_timestamp, start_of_day
from chat_history.view import ExpansionState, HistoryView
from chat_history.schemas import (
    ColumnResponse,
    DetailRowResponse,
    ErrorResponse,
    FilterOptionResponse,
    FilterResponse,
    HealthResponse,
    HistoryResponse,
    MessageResponse,
    SessionResponse,
    StatsResponse,
    TableResponse,
    TablesResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ["session_id", "id", "created_at", "role", "content", "email_sent"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Ensure configured message tables exist
    """
    init_db()
    yield


app = FastAPI(
    title="Chat History Admin API",
    description="Browse chat message history grouped by conversation session",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Helpers
# =============================================================================

def _table_or_404(table_name: str) -> TableConfig:
    try:
        return get_table_config(table_name)
    except UnknownTableError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"unknown table: {table_name}"
        )


def _filters_from_request(request: Request) -> FilterState:
    try:
        filters = FilterState.from_query_params(request.query_params)
        filters.validate()
    except InvalidFilterError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    return filters


def _paginator_factory(table: TableConfig):
    def build(db: Session) -> SessionPaginator:
        return SessionPaginator(
            db,
            table,
            rank_with_all_filters=settings.RANK_WITH_ALL_FILTERS,
        )
    return build


def _table_response(table: TableConfig) -> TableResponse:
    return TableResponse(
        table_name=table.table_name,
        label=table.label,
        columns=[
            ColumnResponse(
                id=c.id,
                header=c.header,
                is_primary=c is table.primary_column,
                class_name=c.class_name,
            )
            for c in table.columns
        ],
        filters=[
            FilterResponse(
                id=f.id,
                label=f.label,
                type=f.type,
                options=[FilterOptionResponse(value=o.value, label=o.label) for o in f.options],
            )
            for f in table.filters
        ],
    )


def _session_response(view: HistoryView, session_id: str, messages: list[dict]) -> SessionResponse:
    """Render one session: a summary row from its first message, plus detail rows if expanded."""
    table = view.table
    summary = {**messages[0], SESSION_MESSAGES_KEY: messages}
    expanded = view.expansion.is_expanded(session_id)

    detail = []
    if expanded:
        primary = table.primary_column
        detail = [
            DetailRowResponse(
                id=msg["id"],
                timestamp=format_timestamp(msg["created_at"]),
                content=primary.cell(msg),
            )
            for msg in messages
        ]

    return SessionResponse(
        session_id=session_id,
        last_activity=view.result.last_activity[session_id],
        message_count=len(messages),
        expanded=expanded,
        cells={column.id: column.cell(summary) for column in table.columns},
        messages=[MessageResponse.model_validate(msg) for msg in messages],
        detail=detail,
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    default table exists. Otherwise returns 503 (Service Unavailable).
    """
    if not check_db_health(settings.DEFAULT_TABLE):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Table Routes
# =============================================================================

@app.get("/tables", response_model=TablesResponse)
async def list_tables() -> TablesResponse:
    """List browsable tables with their columns and filters."""
    return TablesResponse(
        default_table=settings.DEFAULT_TABLE,
        tables=[_table_response(t) for t in TABLE_CONFIGS.values()],
    )


@app.get(
    "/tables/{table_name}/history",
    response_model=HistoryResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown table"},
        422: {"description": "Invalid filter value"},
        502: {"model": ErrorResponse, "description": "Query failed"},
    }
)
async def get_history(
    table_name: str,
    request: Request,
    page: Annotated[int, Query(ge=1, description="1-based page number")] = 1,
    from_param: Annotated[str | None, Query(alias="from", description="Inclusive start date (YYYY-MM-DD)")] = None,
    to: Annotated[str | None, Query(description="Inclusive end date (YYYY-MM-DD)")] = None,
    preset: Annotated[str | None, Query(description="Quick range: 7d, 30d or 90d")] = None,
    expand: Annotated[list[str], Query(description="Session ids to render expanded")] = [],
    db: Session = Depends(get_db)
) -> HistoryResponse:
    """
    One page of sessions, ranked by most recent message.

    Query Parameters:
        - page: Page number (default 1, 15 sessions per page)
        - from / to: Inclusive date range on created_at
        - preset: Quick date range, overrides from/to
        - expand: Session id to include detail rows for (repeatable)
        - any filter id configured for the table

    Only the date range decides which sessions are ranked unless
    RANK_WITH_ALL_FILTERS is enabled.
    """
    table = _table_or_404(table_name)
    filters = _filters_from_request(request)
    logger.info(f"GET history: table={table_name}, filters={filters.values}")

    view = HistoryView(
        table,
        filters=filters,
        expansion=ExpansionState(expand),
        paginator_factory=_paginator_factory(table),
    )

    if not view.refresh(db):
        log_history_data(request, table=table_name, page=filters.page, result="error")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=view.error
        )

    sessions = [
        _session_response(view, session_id, messages)
        for session_id, messages in view.result.sessions()
    ]

    result = "ok" if sessions else "empty"
    log_history_data(request, table=table_name, page=filters.page, sessions=len(sessions), result=result)
    logger.info(f"GET history: returned {len(sessions)} of {view.total_sessions} sessions (page={filters.page})")

    return HistoryResponse(
        table=table_name,
        page=filters.page,
        page_size=view.page_size,
        total_sessions=view.total_sessions,
        total_pages=view.result.total_pages,
        sessions=sessions,
        filters=filters.to_query_params(),
        active_preset=filters.active_preset,
        query=view.query_string(),
    )


@app.get(
    "/tables/{table_name}/history/export",
    responses={
        200: {"content": {"text/csv": {}}, "description": "Messages of every ranked session"},
        404: {"model": ErrorResponse, "description": "Unknown table"},
        502: {"model": ErrorResponse, "description": "Query failed"},
    }
)
async def export_history(
    table_name: str,
    request: Request,
    db: Session = Depends(get_db)
) -> Response:
    """
    Export every session matching the filters as CSV.

    Sessions appear in the same order as in the paged view; messages are
    oldest first within a session.
    """
    table = _table_or_404(table_name)
    filters = _filters_from_request(request)
    paginator = _paginator_factory(table)(db)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()

    count = 0
    try:
        for msg in paginator.export(filters):
            payload = msg.get("message")
            writer.writerow({
                "session_id": msg["session_id"],
                "id": msg["id"],
                "created_at": msg["created_at"].isoformat() if msg["created_at"] else "",
                "role": payload.get("type", "") if isinstance(payload, dict) else "",
                "content": payload.get("content", "") if isinstance(payload, dict) else (payload or ""),
                "email_sent": "" if msg.get("email_sent") is None else str(bool(msg["email_sent"])).lower(),
            })
            count += 1
    except QueryError as e:
        logger.error(f"Error exporting messages: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message
        )

    logger.info(f"Exported {count} messages from {table_name}")
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{table_name}.csv"'},
    )


@app.get(
    "/tables/{table_name}/stats",
    response_model=StatsResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown table"},
        502: {"model": ErrorResponse, "description": "Query failed"},
    }
)
async def get_statistics(
    table_name: str,
    request: Request,
    db: Session = Depends(get_db)
) -> StatsResponse:
    """
    Message and session counts for a table within the date filter.

    Response:
        - total_messages: messages inside the date range
        - sessions_count: distinct sessions among them
        - first_message_at / last_message_at: null if no messages
    """
    table = _table_or_404(table_name)
    filters = _filters_from_request(request)
    date_from, date_to = filters.date_from, filters.date_to

    try:
        stats = get_stats(
            db,
            table.table_name,
            since=start_of_day(date_from) if date_from else None,
            until=end_of_day(date_to) if date_to else None,
        )
    except QueryError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message
        )

    return StatsResponse(table=table_name, **stats)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
