"""
Pydantic schemas for API responses.

This module contains:
- Table configuration models (columns, filters)
- Session page models for the history endpoint
- Stats, health and error models
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Table Configuration Models
# =============================================================================

class FilterOptionResponse(BaseModel):
    value: str
    label: str


class FilterResponse(BaseModel):
    """A filter the operator can set for a table."""
    id: str = Field(..., description="Filter identifier, also the query parameter name")
    label: str
    type: str = Field(..., description="text or select")
    options: list[FilterOptionResponse] = Field(default_factory=list)


class ColumnResponse(BaseModel):
    id: str
    header: str
    is_primary: bool = False
    class_name: str = ""


class TableResponse(BaseModel):
    """Configuration of one browsable table."""
    table_name: str
    label: str
    columns: list[ColumnResponse]
    filters: list[FilterResponse]


class TablesResponse(BaseModel):
    default_table: str
    tables: list[TableResponse]


# =============================================================================
# History Models
# =============================================================================

class MessageResponse(BaseModel):
    """A single stored message."""
    id: int = Field(..., description="Unique message identifier")
    session_id: str = Field(..., description="Conversation the message belongs to")
    message: Any = Field(None, description="Free-form message payload")
    created_at: datetime = Field(..., description="Message timestamp")
    email_sent: Optional[bool] = Field(None, description="Delivery flag")

    model_config = {"from_attributes": True}


class DetailRowResponse(BaseModel):
    """One message of an expanded session, rendered with the primary column."""
    id: int
    timestamp: str = Field(..., description="Formatted message timestamp")
    content: Any


class SessionResponse(BaseModel):
    """
    A conversation session on the current page.

    - cells: the summary row, column id -> rendered value of the first message
    - messages: every message in the session, oldest first
    - detail: rendered rows, only filled when the session is expanded
    """
    session_id: str
    last_activity: datetime
    message_count: int = Field(..., ge=0)
    expanded: bool = False
    cells: dict[str, Any] = Field(default_factory=dict)
    messages: list[MessageResponse] = Field(default_factory=list)
    detail: list[DetailRowResponse] = Field(default_factory=list)


class HistoryResponse(BaseModel):
    """
    Response model for GET /tables/{table}/history.

    Contains:
    - sessions: sessions on the page, most recent activity first
    - total_sessions: sessions matching the date range, independent of page
    - filters: the effective filter state
    - query: canonical query string to mirror in the browser URL
    """
    table: str
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    total_sessions: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)
    sessions: list[SessionResponse] = Field(default_factory=list)
    filters: dict[str, str] = Field(default_factory=dict)
    active_preset: Optional[str] = None
    query: str = ""


# =============================================================================
# Stats / Health / Error Models
# =============================================================================

class StatsResponse(BaseModel):
    """Message-level counts for a table within the date filter."""
    table: str
    total_messages: int = Field(..., ge=0)
    sessions_count: int = Field(..., ge=0)
    first_message_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")
