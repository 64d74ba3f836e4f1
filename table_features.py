import unicodedata
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any


ASC = "asc"
DESC = "desc"


@dataclass(frozen=True)
class SortConfig:
    key: str | None = None
    direction: str | None = None


@dataclass(frozen=True)
class FilterConfig:
    key: str
    value: str


def _is_missing(value: Any) -> bool:
    return value is None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def collation_key(value: Any) -> tuple[str, str]:
    """Case- and accent-insensitive ordering key; the raw text breaks ties."""
    text = str(value)
    decomposed = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
    return folded, text


def compare_values(a: Any, b: Any) -> int:
    if _is_number(a) and _is_number(b):
        return (a > b) - (a < b)
    left, right = collation_key(a), collation_key(b)
    return (left > right) - (left < right)


class TableFeatures:
    """Search, filter and single-column sort state for one table.

    Each table or dialog owns its own instance; nothing is shared.
    """

    def __init__(
        self,
        data: list[dict[str, Any]],
        searchable_keys: tuple[str, ...] | list[str] = (),
        initial_sort: SortConfig | None = None,
        initial_search_query: str = "",
    ):
        self._data = list(data)
        self.searchable_keys = tuple(searchable_keys)
        self.sort_config = initial_sort or SortConfig()
        self.search_query = initial_search_query
        self.filters: list[FilterConfig] = []

    def set_data(self, data: list[dict[str, Any]]) -> None:
        self._data = list(data)

    def set_search_query(self, query: str) -> None:
        self.search_query = query or ""

    def handle_sort(self, key: str) -> SortConfig:
        current = self.sort_config
        if current.key == key:
            if current.direction == ASC:
                self.sort_config = SortConfig(key, DESC)
            elif current.direction == DESC:
                self.sort_config = SortConfig()
            else:
                self.sort_config = SortConfig(key, ASC)
        else:
            self.sort_config = SortConfig(key, ASC)
        return self.sort_config

    def add_filter(self, key: str, value: str) -> None:
        for index, existing in enumerate(self.filters):
            if existing.key == key:
                self.filters[index] = FilterConfig(key, value)
                return
        self.filters.append(FilterConfig(key, value))

    def remove_filter(self, key: str) -> None:
        self.filters = [f for f in self.filters if f.key != key]

    def clear_filters(self) -> None:
        self.filters = []
        self.search_query = ""

    def _matches_search(self, row: dict[str, Any], query: str) -> bool:
        for key in self.searchable_keys:
            value = row.get(key)
            if not _is_missing(value) and query in str(value).lower():
                return True
        return False

    @property
    def filtered_data(self) -> list[dict[str, Any]]:
        result = list(self._data)

        if self.search_query and self.searchable_keys:
            query = self.search_query.lower()
            result = [row for row in result if self._matches_search(row, query)]

        for active in self.filters:
            if not active.value:
                continue
            needle = active.value.lower()
            result = [
                row
                for row in result
                if not _is_missing(row.get(active.key))
                and needle in str(row.get(active.key)).lower()
            ]

        key, direction = self.sort_config.key, self.sort_config.direction
        if key and direction:
            present = [row for row in result if not _is_missing(row.get(key))]
            missing = [row for row in result if _is_missing(row.get(key))]
            present.sort(
                key=cmp_to_key(lambda a, b: compare_values(a.get(key), b.get(key))),
                reverse=direction == DESC,
            )
            result = present + missing

        return result
