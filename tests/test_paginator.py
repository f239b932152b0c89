"""
Tests for the session paginator.

Tests cover:
- Ranking sessions by last activity, newest first
- Tie-breaking on equal last activity
- Inclusive day bounds of the date filter
- Page slicing and total session count
- Skipping the full-row read for empty pages
- Chronological grouping within a session
- Optional ranking with all filters
- Export across every page
- Query failures
"""

from collections import namedtuple
from datetime import datetime

import pytest

import chat_history.paginator as paginator_module
from chat_history.filters import FilterState
from chat_history.paginator import (
    PAGE_SIZE,
    SessionPaginator,
    group_by_session,
    last_activity_by_session,
    page_bounds,
    rank_sessions,
)
from chat_history.storage import QueryError
from chat_history.tables import TableConfig, get_table_config

Row = namedtuple("Row", ["session_id", "created_at"])


@pytest.fixture
def table():
    return get_table_config("chat_messages")


@pytest.fixture
def paginator(db, table):
    return SessionPaginator(db, table)


class TestRankingPrimitives:
    """Test the pure ranking helpers."""

    def test_last_activity_keeps_maximum(self):
        rows = [
            Row("a", datetime(2024, 1, 3)),
            Row("a", datetime(2024, 1, 1)),
            Row("b", datetime(2024, 1, 2)),
            Row("a", datetime(2024, 1, 2)),
        ]
        assert last_activity_by_session(rows) == {
            "a": datetime(2024, 1, 3),
            "b": datetime(2024, 1, 2),
        }

    def test_rank_newest_first(self):
        ranked = rank_sessions({
            "A": datetime(2024, 1, 3),
            "B": datetime(2024, 1, 5),
            "C": datetime(2024, 1, 1),
        })
        assert ranked == ["B", "A", "C"]

    def test_rank_ties_broken_by_session_id(self):
        same = datetime(2024, 1, 1, 12, 0)
        ranked = rank_sessions({"z": same, "m": same, "a": same, "new": datetime(2024, 2, 1)})
        assert ranked == ["new", "a", "m", "z"]

    def test_page_bounds(self):
        assert page_bounds(1, 15) == (0, 15)
        assert page_bounds(3, 15) == (30, 45)

    def test_group_by_session_preserves_order(self):
        rows = [
            {"session_id": "a", "id": 1},
            {"session_id": "b", "id": 2},
            {"session_id": "a", "id": 3},
        ]
        groups = group_by_session(rows)
        assert [r["id"] for r in groups["a"]] == [1, 3]
        assert [r["id"] for r in groups["b"]] == [2]


class TestSessionPaginatorFetch:
    """Test fetching pages from the database."""

    def test_example_ordering(self, paginator, insert_messages, msg):
        """Sessions are ordered by their latest message, newest first."""
        insert_messages([
            msg("A", "2024-01-02T10:00:00"),
            msg("A", "2024-01-03T10:00:00"),
            msg("B", "2024-01-05T10:00:00"),
            msg("C", "2024-01-01T10:00:00"),
        ])

        page = paginator.fetch(1, FilterState())

        assert page.session_order == ["B", "A", "C"]
        assert page.total_sessions == 3
        assert page.total_pages == 1
        assert page.page_size == PAGE_SIZE

    def test_messages_grouped_chronologically(self, paginator, insert_messages, msg):
        """Messages within a session come back oldest first, whatever the insert order."""
        insert_messages([
            msg("A", "2024-01-03T10:00:00", "third"),
            msg("A", "2024-01-01T10:00:00", "first"),
            msg("A", "2024-01-02T10:00:00", "second"),
        ])

        page = paginator.fetch(1, FilterState())

        contents = [m["message"]["content"] for m in page.grouped_messages["A"]]
        assert contents == ["first", "second", "third"]
        timestamps = [m["created_at"] for m in page.grouped_messages["A"]]
        assert timestamps == sorted(timestamps)

    def test_last_activity_reported_per_session(self, paginator, insert_messages, msg):
        insert_messages([
            msg("A", "2024-01-01T10:00:00"),
            msg("A", "2024-01-04T08:30:00"),
        ])

        page = paginator.fetch(1, FilterState())

        assert page.last_activity == {"A": datetime(2024, 1, 4, 8, 30)}

    def test_pages_are_ranked_across_boundaries(self, paginator, insert_messages, msg):
        """Every session on page N is at least as recent as every session on page N+1."""
        insert_messages([
            msg(f"s{i:02d}", f"2024-01-{(i % 28) + 1:02d}T{i % 24:02d}:00:00")
            for i in range(40)
        ])

        first = paginator.fetch(1, FilterState())
        second = paginator.fetch(2, FilterState())
        third = paginator.fetch(3, FilterState())

        assert len(first.session_order) == 15
        assert len(second.session_order) == 15
        assert len(third.session_order) == 10
        assert first.total_sessions == second.total_sessions == third.total_sessions == 40
        assert first.total_pages == 3

        oldest_on_first = min(first.last_activity.values())
        newest_on_second = max(second.last_activity.values())
        assert oldest_on_first >= newest_on_second

        all_ids = first.session_order + second.session_order + third.session_order
        assert len(set(all_ids)) == 40

    def test_total_independent_of_page(self, paginator, insert_messages, msg):
        insert_messages([msg(f"s{i}", "2024-01-01T10:00:00") for i in range(5)])

        assert paginator.fetch(1, FilterState()).total_sessions == 5
        assert paginator.fetch(9, FilterState()).total_sessions == 5

    def test_page_past_end_is_empty(self, paginator, insert_messages, msg):
        insert_messages([msg("A", "2024-01-01T10:00:00")])

        page = paginator.fetch(2, FilterState())

        assert page.session_order == []
        assert page.grouped_messages == {}
        assert page.total_sessions == 1

    def test_empty_page_skips_full_row_query(self, paginator, monkeypatch):
        """No sessions means no second read."""
        def fail(*args, **kwargs):
            raise AssertionError("full-row query should not run")

        monkeypatch.setattr(paginator_module, "fetch_session_messages", fail)

        page = paginator.fetch(1, FilterState())

        assert page.session_order == []
        assert page.total_sessions == 0
        assert page.total_pages == 0

    def test_session_missing_from_second_read_is_skipped(self, paginator, insert_messages, msg, monkeypatch):
        """A session deleted between the two reads is left out of the rendered sessions."""
        insert_messages([
            msg("A", "2024-01-01T10:00:00"),
            msg("B", "2024-01-02T10:00:00"),
        ])
        real_fetch = paginator_module.fetch_session_messages

        def drop_b(db, table_name, session_ids):
            return [row for row in real_fetch(db, table_name, session_ids) if row["session_id"] != "B"]

        monkeypatch.setattr(paginator_module, "fetch_session_messages", drop_b)

        page = paginator.fetch(1, FilterState())

        assert page.session_order == ["B", "A"]
        assert [sid for sid, _ in page.sessions()] == ["A"]


class TestDateFilter:
    """Test that date bounds cover whole days."""

    def test_single_day_includes_whole_day(self, paginator, insert_messages, msg):
        insert_messages([
            msg("before", "2024-01-01T23:59:59.999000"),
            msg("start", "2024-01-02T00:00:00"),
            msg("end", "2024-01-02T23:59:59.999000"),
            msg("after", "2024-01-03T00:00:00"),
        ])

        page = paginator.fetch(1, FilterState({"from": "2024-01-02", "to": "2024-01-02"}))

        assert set(page.session_order) == {"start", "end"}
        assert page.total_sessions == 2

    def test_ranking_uses_only_messages_in_range(self, paginator, insert_messages, msg):
        """Last activity is computed from messages inside the range only."""
        insert_messages([
            msg("A", "2024-01-02T09:00:00"),
            msg("A", "2024-02-01T09:00:00"),  # outside range
            msg("B", "2024-01-03T09:00:00"),
        ])

        page = paginator.fetch(1, FilterState({"from": "2024-01-01", "to": "2024-01-31"}))

        assert page.session_order == ["B", "A"]
        assert page.last_activity["A"] == datetime(2024, 1, 2, 9, 0)

    def test_full_rows_not_date_bounded(self, paginator, insert_messages, msg):
        """Once a session is on the page, all of its messages are shown."""
        insert_messages([
            msg("A", "2024-01-02T09:00:00"),
            msg("A", "2024-02-01T09:00:00"),
        ])

        page = paginator.fetch(1, FilterState({"to": "2024-01-31"}))

        assert len(page.grouped_messages["A"]) == 2

    def test_open_ended_from(self, paginator, insert_messages, msg):
        insert_messages([
            msg("old", "2023-06-01T00:00:00"),
            msg("new", "2024-06-01T00:00:00"),
        ])

        page = paginator.fetch(1, FilterState({"from": "2024-01-01"}))

        assert page.session_order == ["new"]


class TestRankingFilters:
    """Test which non-date filters take part in ranking."""

    def test_text_filters_ignored_by_default(self, paginator, insert_messages, msg):
        insert_messages([
            msg("A", "2024-01-01T10:00:00"),
            msg("B", "2024-01-02T10:00:00"),
        ])

        page = paginator.fetch(1, FilterState({"session_id": "A"}))

        assert page.session_order == ["B", "A"]
        assert page.total_sessions == 2

    def test_all_filters_applied_when_enabled(self, db, table, insert_messages, msg):
        insert_messages([
            msg("A", "2024-01-01T10:00:00", email_sent=True),
            msg("B", "2024-01-02T10:00:00", email_sent=False),
            msg("C", "2024-01-03T10:00:00", email_sent=True),
        ])
        paginator = SessionPaginator(db, table, rank_with_all_filters=True)

        page = paginator.fetch(1, FilterState({"email_sent": "true"}))
        assert page.session_order == ["C", "A"]

        page = paginator.fetch(1, FilterState({"session_id": "B", "email_sent": "all"}))
        assert page.session_order == ["B"]


class TestExport:
    """Test exporting every ranked session."""

    def test_export_spans_all_pages_in_rank_order(self, paginator, insert_messages, msg):
        insert_messages([
            msg(f"s{i:02d}", f"2024-01-01T{i % 24:02d}:{i // 24:02d}:00")
            for i in range(20)
        ] + [msg("s19", "2023-12-31T00:00:00", "early")])

        rows = list(paginator.export(FilterState()))

        assert len(rows) == 21
        session_sequence = []
        for row in rows:
            if not session_sequence or session_sequence[-1] != row["session_id"]:
                session_sequence.append(row["session_id"])
        ranked, _ = paginator.rank(FilterState())
        assert session_sequence == ranked

        s19 = [r for r in rows if r["session_id"] == "s19"]
        assert s19[0]["message"]["content"] == "early"

    def test_export_empty(self, paginator):
        assert list(paginator.export(FilterState())) == []


class TestQueryFailure:
    """Test that database errors surface as QueryError."""

    def test_missing_table_raises_query_error(self, db, table):
        missing = TableConfig(table_name="no_such_table", label="Missing", columns=table.columns)

        with pytest.raises(QueryError) as exc_info:
            SessionPaginator(db, missing).fetch(1, FilterState())

        assert "no_such_table" in exc_info.value.message
