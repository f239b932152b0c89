"""
History view state.

A HistoryView is what one dashboard page holds between interactions: the
filter state, which sessions are expanded, the last page that loaded
successfully, and whether a fetch is loading or failed.

Fetches are tagged with a monotonic id. Only the most recently issued fetch
may update the view; anything older that resolves later is dropped.
"""

import itertools
import logging
import threading
from datetime import date
from typing import Callable, Optional

from sqlalchemy.orm import Session

from chat_history.filters import FilterState
from chat_history.metrics import record_history_fetch
from chat_history.paginator import PAGE_SIZE, SessionPage, SessionPaginator
from chat_history.storage import QueryError
from chat_history.tables import TableConfig

logger = logging.getLogger(__name__)


class FetchSequencer:
    """Issues increasing fetch ids and remembers the latest one."""

    def __init__(self):
        self._counter = itertools.count(1)
        self._latest = 0
        self._lock = threading.Lock()

    def issue(self) -> int:
        with self._lock:
            self._latest = next(self._counter)
            return self._latest

    def is_latest(self, fetch_id: int) -> bool:
        with self._lock:
            return fetch_id == self._latest


class ExpansionState:
    """Per-session expanded/collapsed flags. Never persisted."""

    def __init__(self, expanded=()):
        self._expanded: dict[str, bool] = {sid: True for sid in expanded}

    def toggle(self, session_id: str) -> bool:
        self._expanded[session_id] = not self._expanded.get(session_id, False)
        return self._expanded[session_id]

    def is_expanded(self, session_id: str) -> bool:
        return self._expanded.get(session_id, False)


class HistoryView:
    """
    State of one history page.

    Args:
        table: Table being browsed
        filters: Initial filter state
        paginator_factory: Builds a SessionPaginator for a database session
    """

    def __init__(
        self,
        table: TableConfig,
        filters: Optional[FilterState] = None,
        expansion: Optional[ExpansionState] = None,
        paginator_factory: Optional[Callable[[Session], SessionPaginator]] = None,
    ):
        self.table = table
        self.filters = filters or FilterState()
        self.expansion = expansion or ExpansionState()
        self.paginator_factory = paginator_factory or (lambda db: SessionPaginator(db, table))
        self.sequencer = FetchSequencer()

        self.result: Optional[SessionPage] = None
        self.loading = False
        self.error: Optional[str] = None

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    @property
    def session_order(self) -> list[str]:
        return self.result.session_order if self.result else []

    @property
    def grouped_messages(self) -> dict[str, list[dict]]:
        return self.result.grouped_messages if self.result else {}

    @property
    def total_sessions(self) -> int:
        return self.result.total_sessions if self.result else 0

    @property
    def page_size(self) -> int:
        return self.result.page_size if self.result else PAGE_SIZE

    def query_string(self) -> str:
        return self.filters.query_string()

    # -------------------------------------------------------------------------
    # User interactions
    # -------------------------------------------------------------------------

    def change_filter(self, filter_id: str, value) -> None:
        self.filters.set(filter_id, value)

    def change_page(self, page: int) -> None:
        self.filters.set("page", page)

    def select_preset(self, preset: str, today: Optional[date] = None) -> None:
        self.filters.apply_preset(preset, today=today)

    def toggle_session(self, session_id: str) -> bool:
        return self.expansion.toggle(session_id)

    # -------------------------------------------------------------------------
    # Fetch lifecycle
    # -------------------------------------------------------------------------

    def begin_fetch(self) -> int:
        """Mark the view loading and return the id of the new fetch."""
        fetch_id = self.sequencer.issue()
        self.loading = True
        self.error = None
        logger.debug(f"Fetch {fetch_id} started for {self.table.table_name}")
        return fetch_id

    def complete_fetch(self, fetch_id: int, page: SessionPage) -> bool:
        """
        Apply a fetch result if it is still the latest fetch.

        Returns:
            True if applied, False if the result was stale and dropped
        """
        if not self.sequencer.is_latest(fetch_id):
            logger.info(f"Dropping stale fetch {fetch_id} for {self.table.table_name}")
            record_history_fetch(self.table.table_name, "stale")
            return False

        self.result = page
        self.loading = False
        record_history_fetch(self.table.table_name, "ok" if page.session_order else "empty")
        return True

    def fail_fetch(self, fetch_id: int, message: str) -> bool:
        """
        Record a fetch failure if it is still the latest fetch.

        The previously displayed page is kept.
        """
        if not self.sequencer.is_latest(fetch_id):
            logger.info(f"Dropping stale failure of fetch {fetch_id}: {message}")
            record_history_fetch(self.table.table_name, "stale")
            return False

        self.error = message or "An unexpected error occurred."
        self.loading = False
        record_history_fetch(self.table.table_name, "error")
        return True

    def refresh(self, db: Session) -> bool:
        """
        Fetch the page the filters point at and apply it.

        Returns:
            True if the view now shows the fetched page, False on failure or
            when a newer fetch superseded this one
        """
        fetch_id = self.begin_fetch()
        try:
            page = self.paginator_factory(db).fetch(self.filters.page, self.filters)
        except QueryError as e:
            logger.error(f"Error fetching messages: {e.message}")
            self.fail_fetch(fetch_id, e.message)
            return False
        return self.complete_fetch(fetch_id, page)
