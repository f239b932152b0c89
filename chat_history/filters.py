"""
Filter state for the history view.

Holds every filter value as a string keyed by filter id, exactly as it
travels in the URL query string. Reserved ids:

- page: 1-based page number, defaults to "1"
- from / to: ISO calendar dates (YYYY-MM-DD) bounding created_at
- preset: quick date range, expanded into from/to on load and never mirrored
"""

import logging
from datetime import date, datetime
from typing import Mapping, Optional
from urllib.parse import urlencode

from chat_history.utils import DATE_PRESETS, preset_range

logger = logging.getLogger(__name__)

PAGE_KEY = "page"
FROM_KEY = "from"
TO_KEY = "to"
PRESET_KEY = "preset"
DEFAULT_PAGE = "1"

DATE_KEYS = (FROM_KEY, TO_KEY)

# Query parameters that belong to the view rather than the filter state
NON_FILTER_KEYS = (PRESET_KEY, "expand")


class InvalidFilterError(ValueError):
    """A filter value could not be interpreted."""


def _parse_date(key: str, value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        # Tolerate full timestamps, only the calendar date matters
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        raise InvalidFilterError(f"{key} must be an ISO date (YYYY-MM-DD), got {value!r}")


class FilterState:
    """Mutable mapping of filter id to value, with page-reset semantics."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self.values: dict[str, str] = {PAGE_KEY: DEFAULT_PAGE}
        if values:
            self.values.update({k: str(v) for k, v in values.items()})
        self.active_preset: Optional[str] = None

    @classmethod
    def from_query_params(cls, params: Mapping[str, str], today: Optional[date] = None) -> "FilterState":
        """
        Build filter state from URL query parameters.

        A `preset` parameter is applied on top of the other values; the
        page number from the URL survives it.
        """
        values = {k: v for k, v in params.items() if k not in NON_FILTER_KEYS}
        state = cls(values)

        preset = params.get(PRESET_KEY)
        if preset:
            page = state.values[PAGE_KEY]
            state.apply_preset(preset, today=today)
            state.values[PAGE_KEY] = page

        logger.debug(f"Filter state from query: {state.values}")
        return state

    def get(self, filter_id: str, default: str = "") -> str:
        return self.values.get(filter_id, default)

    def set(self, filter_id: str, value) -> None:
        """
        Change one filter value.

        Any change other than the page itself sends the view back to page 1.
        Editing either date bound clears the active preset.
        """
        self.values[filter_id] = "" if value is None else str(value)
        if filter_id != PAGE_KEY:
            self.values[PAGE_KEY] = DEFAULT_PAGE
        if filter_id in DATE_KEYS:
            self.active_preset = None

    def apply_preset(self, preset: str, today: Optional[date] = None) -> None:
        """Set from/to to a quick date range and mark it active."""
        if preset not in DATE_PRESETS:
            raise InvalidFilterError(
                f"preset must be one of {', '.join(DATE_PRESETS)}, got {preset!r}"
            )
        date_from, date_to = preset_range(preset, today=today)
        self.values[FROM_KEY] = date_from
        self.values[TO_KEY] = date_to
        self.values[PAGE_KEY] = DEFAULT_PAGE
        self.active_preset = preset

    @property
    def page(self) -> int:
        raw = self.values.get(PAGE_KEY) or DEFAULT_PAGE
        try:
            page = int(raw)
        except ValueError:
            raise InvalidFilterError(f"page must be a positive integer, got {raw!r}")
        if page < 1:
            raise InvalidFilterError(f"page must be a positive integer, got {raw!r}")
        return page

    @property
    def date_from(self) -> Optional[date]:
        return _parse_date(FROM_KEY, self.values.get(FROM_KEY))

    @property
    def date_to(self) -> Optional[date]:
        return _parse_date(TO_KEY, self.values.get(TO_KEY))

    def validate(self) -> None:
        """Raise InvalidFilterError if the page or either date is malformed."""
        _ = (self.page, self.date_from, self.date_to)

    def criteria(self, filter_ids) -> dict[str, str]:
        """Non-empty values for the given table filter ids."""
        return {fid: self.values[fid] for fid in filter_ids if self.values.get(fid)}

    def to_query_params(self) -> dict[str, str]:
        """Values worth keeping in the URL: non-empty, and page only past 1."""
        return {
            key: value
            for key, value in self.values.items()
            if value and (key != PAGE_KEY or value != DEFAULT_PAGE)
        }

    def query_string(self) -> str:
        return urlencode(self.to_query_params())

    def copy(self) -> "FilterState":
        clone = FilterState(self.values)
        clone.active_preset = self.active_preset
        return clone
