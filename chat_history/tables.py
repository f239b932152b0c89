"""
Table configuration for the history dashboard.

Each browsable table is described by a TableConfig: which columns to show
for a session and which filters the operator can set. Columns are data, not
subclasses: an accessor pulls a value from a message record and an optional
render callable formats it for display.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from chat_history.utils import format_timestamp

logger = logging.getLogger(__name__)

# Key under which a summary record carries every message of its session
SESSION_MESSAGES_KEY = "_session_messages"


@dataclass(frozen=True)
class ColumnDef:
    id: str
    header: str
    accessor: Callable[[dict], Any]
    render: Optional[Callable[[Any, dict], Any]] = None
    is_primary: bool = False
    class_name: str = ""

    def cell(self, record: dict) -> Any:
        value = self.accessor(record)
        if self.render is not None:
            return self.render(value, record)
        return value


@dataclass(frozen=True)
class FilterOption:
    value: str
    label: str


@dataclass(frozen=True)
class FilterDef:
    id: str
    label: str
    type: str = "text"  # text | select
    options: tuple[FilterOption, ...] = ()


@dataclass(frozen=True)
class TableConfig:
    table_name: str
    label: str
    columns: tuple[ColumnDef, ...]
    filters: tuple[FilterDef, ...] = field(default_factory=tuple)

    @property
    def primary_column(self) -> ColumnDef:
        """The column flagged primary, else the first one."""
        for column in self.columns:
            if column.is_primary:
                return column
        return self.columns[0]

    @property
    def other_columns(self) -> list[ColumnDef]:
        primary = self.primary_column
        return [c for c in self.columns if c is not primary]

    @property
    def filter_ids(self) -> list[str]:
        return [f.id for f in self.filters]


class UnknownTableError(LookupError):
    """No configuration exists for the requested table."""


# =============================================================================
# Accessors and renderers
# =============================================================================

def message_content(record: dict) -> str:
    """
    Text of a message payload.

    Payloads are usually {"type": ..., "content": ...}; anything else is
    shown as-is.
    """
    payload = record.get("message")
    if isinstance(payload, dict):
        return str(payload.get("content", ""))
    if payload is None:
        return ""
    return str(payload)


def message_role(record: dict) -> str:
    payload = record.get("message")
    if isinstance(payload, dict):
        return str(payload.get("type", ""))
    return ""


def session_message_count(record: dict) -> int:
    return len(record.get(SESSION_MESSAGES_KEY) or [record])


def render_yes_no(value, record: dict) -> str:
    if value is None:
        return "-"
    return "Yes" if value else "No"


def render_timestamp(value, record: dict) -> str:
    return format_timestamp(value)


def render_conversation(value, record: dict) -> str:
    # Summary rows show who opened the conversation
    role = message_role(record)
    return f"{role}: {value}" if role else value


# =============================================================================
# Registry
# =============================================================================

EMAIL_SENT_OPTIONS = (
    FilterOption(value="true", label="Sent"),
    FilterOption(value="false", label="Not sent"),
)

TABLE_CONFIGS: dict[str, TableConfig] = {
    "chat_messages": TableConfig(
        table_name="chat_messages",
        label="Chat messages",
        columns=(
            ColumnDef(
                id="message",
                header="Conversation",
                accessor=message_content,
                render=render_conversation,
                is_primary=True,
            ),
            ColumnDef(id="session_id", header="Session", accessor=lambda r: r.get("session_id")),
            ColumnDef(id="messages", header="Messages", accessor=session_message_count),
            ColumnDef(
                id="created_at",
                header="Started",
                accessor=lambda r: r.get("created_at"),
                render=render_timestamp,
                class_name="whitespace-nowrap",
            ),
            ColumnDef(
                id="email_sent",
                header="Email sent",
                accessor=lambda r: r.get("email_sent"),
                render=render_yes_no,
            ),
        ),
        filters=(
            FilterDef(id="session_id", label="Session ID"),
            FilterDef(id="email_sent", label="Email", type="select", options=EMAIL_SENT_OPTIONS),
        ),
    ),
    "lead_messages": TableConfig(
        table_name="lead_messages",
        label="Lead messages",
        columns=(
            ColumnDef(
                id="created_at",
                header="Date",
                accessor=lambda r: r.get("created_at"),
                render=render_timestamp,
            ),
            ColumnDef(id="message", header="Message", accessor=message_content, is_primary=True),
            ColumnDef(id="session_id", header="Lead", accessor=lambda r: r.get("session_id")),
        ),
        filters=(
            FilterDef(id="session_id", label="Lead ID"),
        ),
    ),
}


def get_table_config(table_name: str) -> TableConfig:
    """
    Look up a table configuration by table name.

    Raises:
        UnknownTableError: if no table with that name is configured
    """
    try:
        return TABLE_CONFIGS[table_name]
    except KeyError:
        logger.warning(f"Unknown table requested: {table_name}")
        raise UnknownTableError(table_name)
