"""
Session paginator: ranks conversation sessions by their latest message and
serves them a page at a time.

A fetch is two reads:

1. (session_id, created_at) for every message inside the date range, reduced
   in memory to the last activity per session, ranked newest first.
2. Full rows for just the sessions on the requested page, oldest first,
   grouped by session.

The second read is skipped when the page holds no sessions.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator, Optional, Tuple

from sqlalchemy.orm import Session

from chat_history.filters import FilterState
from chat_history.storage import fetch_session_activity, fetch_session_messages
from chat_history.tables import TableConfig
from chat_history.utils import end_of_day, start_of_day

logger = logging.getLogger(__name__)

PAGE_SIZE = 15

# Sessions per full-row read when exporting every page
EXPORT_BATCH_SIZE = 200


@dataclass
class SessionPage:
    """One page of sessions, in display order, with their messages."""

    page: int
    page_size: int
    total_sessions: int
    session_order: list[str] = field(default_factory=list)
    grouped_messages: dict[str, list[dict]] = field(default_factory=dict)
    last_activity: dict[str, datetime] = field(default_factory=dict)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_sessions / self.page_size) if self.total_sessions else 0

    def sessions(self) -> Iterator[Tuple[str, list[dict]]]:
        """(session_id, messages) in display order, skipping sessions with no rows."""
        for session_id in self.session_order:
            messages = self.grouped_messages.get(session_id)
            if messages:
                yield session_id, messages


# =============================================================================
# Ranking primitives
# =============================================================================

def last_activity_by_session(rows: Iterable) -> dict[str, datetime]:
    """Reduce (session_id, created_at) rows to the latest created_at per session."""
    last_activity: dict[str, datetime] = {}
    for row in rows:
        current = last_activity.get(row.session_id)
        if current is None or row.created_at > current:
            last_activity[row.session_id] = row.created_at
    return last_activity


def rank_sessions(last_activity: dict[str, datetime]) -> list[str]:
    """Session ids by last activity, newest first; ties by session id ascending."""
    by_id = sorted(last_activity)
    # sort is stable under reverse=True, so the id order survives on ties
    return sorted(by_id, key=last_activity.__getitem__, reverse=True)


def page_bounds(page: int, page_size: int) -> Tuple[int, int]:
    start = (page - 1) * page_size
    return start, start + page_size


def group_by_session(rows: Iterable[dict]) -> dict[str, list[dict]]:
    """Group message rows by session, keeping their incoming order."""
    groups: dict[str, list[dict]] = {}
    for row in rows:
        groups.setdefault(row["session_id"], []).append(row)
    return groups


# =============================================================================
# Paginator
# =============================================================================

class SessionPaginator:
    """
    Serves pages of sessions from one message table.

    Args:
        db: Database session used for both reads
        table: Configuration of the table to read
        page_size: Sessions per page
        rank_with_all_filters: Also apply the table's text/select filters
            when ranking. Off by default, in which case only the date range
            decides which sessions exist.
    """

    def __init__(
        self,
        db: Session,
        table: TableConfig,
        page_size: int = PAGE_SIZE,
        rank_with_all_filters: bool = False,
    ):
        self.db = db
        self.table = table
        self.page_size = page_size
        self.rank_with_all_filters = rank_with_all_filters

    def _equality_criteria(self, filters: FilterState) -> Optional[dict[str, str]]:
        if not self.rank_with_all_filters:
            return None
        criteria = filters.criteria(self.table.filter_ids)
        # "all" is the select filters' no-constraint choice
        return {k: v for k, v in criteria.items() if v != "all"}

    def rank(self, filters: FilterState) -> Tuple[list[str], dict[str, datetime]]:
        """
        Rank every session matching the filters.

        Returns:
            Tuple of (session ids newest first, last activity per session)

        Raises:
            QueryError: if the activity read fails
        """
        date_from = filters.date_from
        date_to = filters.date_to

        rows = fetch_session_activity(
            self.db,
            self.table.table_name,
            since=start_of_day(date_from) if date_from else None,
            until=end_of_day(date_to) if date_to else None,
            equals=self._equality_criteria(filters),
        )
        last_activity = last_activity_by_session(rows)
        ranked = rank_sessions(last_activity)
        logger.debug(f"Ranked {len(ranked)} sessions from {len(rows)} rows")
        return ranked, last_activity

    def fetch(self, page: int, filters: FilterState) -> SessionPage:
        """
        Fetch one page of sessions.

        Args:
            page: 1-based page number
            filters: Current filter state

        Returns:
            SessionPage with sessions in last-activity order

        Raises:
            QueryError: if either read fails
        """
        logger.info(f"Fetching sessions: table={self.table.table_name}, page={page}")

        ranked, last_activity = self.rank(filters)
        start, end = page_bounds(page, self.page_size)
        page_ids = ranked[start:end]

        result = SessionPage(
            page=page,
            page_size=self.page_size,
            total_sessions=len(ranked),
        )

        if not page_ids:
            logger.info(f"No sessions on page {page} of {result.total_pages}")
            return result

        rows = fetch_session_messages(self.db, self.table.table_name, page_ids)

        result.session_order = page_ids
        result.grouped_messages = group_by_session(rows)
        result.last_activity = {sid: last_activity[sid] for sid in page_ids}

        logger.info(
            f"Fetched page {page}: {len(page_ids)} sessions, "
            f"{len(rows)} messages, {result.total_sessions} sessions total"
        )
        return result

    def export(self, filters: FilterState) -> Iterator[dict]:
        """
        Yield every message of every ranked session, across all pages.

        Sessions come in ranking order and messages oldest first, matching
        what paging through the view would show.

        Raises:
            QueryError: if any read fails
        """
        ranked, _ = self.rank(filters)
        logger.info(f"Exporting {len(ranked)} sessions from {self.table.table_name}")

        for start in range(0, len(ranked), EXPORT_BATCH_SIZE):
            batch = ranked[start:start + EXPORT_BATCH_SIZE]
            groups = group_by_session(
                fetch_session_messages(self.db, self.table.table_name, batch)
            )
            for session_id in batch:
                yield from groups.get(session_id, [])
