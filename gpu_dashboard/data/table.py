"""In-memory table derivation for the GPU metrics view.

Sorting, filtering and pagination operate on the already-fetched snapshot
and on the underlying values of each column, never on formatted strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .formatting import (
    format_gib,
    format_percentage,
    format_power,
    format_relative_time,
    format_temperature,
    get_temperature_color,
    get_utilization_bar_color,
    get_utilization_color,
)
from .models import GPUMetrics

DEFAULT_PAGE_SIZE = 10
HIGH_UTILIZATION_PERCENT = 70.0


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Column:
    """A table column: underlying value, display string and optional tone."""

    id: str
    header: str
    accessor: Callable[[GPUMetrics], Any]
    formatter: Callable[[GPUMetrics], str]
    tone: Optional[Callable[[GPUMetrics], str]] = None


COLUMNS: Tuple[Column, ...] = (
    Column("node_name", "Node", lambda m: m.node_name, lambda m: m.node_name),
    Column("gpu_index", "GPU#", lambda m: m.gpu_index, lambda m: str(m.gpu_index)),
    Column("gpu_name", "Model", lambda m: m.gpu_name, lambda m: m.gpu_name),
    Column(
        "utilization",
        "Utilization",
        lambda m: m.utilization,
        lambda m: format_percentage(m.utilization),
        lambda m: get_utilization_color(m.utilization),
    ),
    Column(
        "memory",
        "Memory",
        lambda m: m.memory_used,
        lambda m: f"{format_gib(m.memory_used)} / {format_gib(m.memory_total)}",
    ),
    Column(
        "memory_utilization",
        "Memory %",
        lambda m: m.memory_utilization,
        lambda m: format_percentage(m.memory_utilization),
        lambda m: get_utilization_color(m.memory_utilization),
    ),
    Column(
        "temperature",
        "Temperature",
        lambda m: m.temperature,
        lambda m: format_temperature(m.temperature),
        lambda m: get_temperature_color(m.temperature),
    ),
    Column(
        "power",
        "Power",
        lambda m: m.power_draw,
        lambda m: f"{format_power(m.power_draw)} / {format_power(m.power_limit)}",
    ),
    Column("timestamp", "Updated", lambda m: m.timestamp, lambda m: format_relative_time(m.timestamp)),
)

COLUMNS_BY_ID: Dict[str, Column] = {c.id: c for c in COLUMNS}


# =============================================================================
# Sort / Filter State
# =============================================================================


@dataclass(frozen=True)
class SortState:
    """Single-column sort; ``column=None`` means original order."""

    column: Optional[str] = None
    direction: Optional[SortDirection] = None

    @property
    def is_sorted(self) -> bool:
        return self.column is not None and self.direction is not None

    def toggled(self, column_id: str) -> "SortState":
        """Next state in the ascending → descending → unsorted cycle."""
        if self.column != column_id or self.direction is None:
            return SortState(column_id, SortDirection.ASC)
        if self.direction is SortDirection.ASC:
            return SortState(column_id, SortDirection.DESC)
        return SortState()

    @classmethod
    def parse(cls, column: Optional[str], direction: Optional[str]) -> "SortState":
        """Build from query parameters; unknown columns or orders mean unsorted."""
        if not column or column not in COLUMNS_BY_ID:
            return cls()
        try:
            parsed = SortDirection((direction or "asc").lower())
        except ValueError:
            return cls()
        return cls(column, parsed)


@dataclass(frozen=True)
class FilterConfig:
    """Row filters applied before pagination.

    ``query`` is the global filter: a case-insensitive substring match over
    every column's underlying value. The remaining fields narrow further.
    """

    query: str = ""
    node_filter: str = ""
    utilization_range: Optional[Tuple[float, float]] = None
    temperature_range: Optional[Tuple[float, float]] = None
    only_high_utilization: bool = False

    @property
    def is_active(self) -> bool:
        return bool(
            self.query.strip()
            or self.node_filter.strip()
            or self.utilization_range
            or self.temperature_range
            or self.only_high_utilization
        )

    def matches(self, row: GPUMetrics) -> bool:
        needle = self.query.strip().lower()
        if needle and not any(needle in str(c.accessor(row)).lower() for c in COLUMNS):
            return False
        node = self.node_filter.strip().lower()
        if node and node not in row.node_name.lower():
            return False
        if self.utilization_range and not _within(row.utilization, self.utilization_range):
            return False
        if self.temperature_range and not _within(row.temperature, self.temperature_range):
            return False
        if self.only_high_utilization and row.utilization < HIGH_UTILIZATION_PERCENT:
            return False
        return True


def _within(value: float, bounds: Tuple[float, float]) -> bool:
    low, high = bounds
    return low <= value <= high


# =============================================================================
# Derivations
# =============================================================================


def _sort_key(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    return value


def sort_rows(rows: Sequence[GPUMetrics], sort: SortState) -> List[GPUMetrics]:
    """Stable sort; ties keep their original relative order."""
    if not sort.is_sorted or sort.column not in COLUMNS_BY_ID:
        return list(rows)
    accessor = COLUMNS_BY_ID[sort.column].accessor
    return sorted(
        rows,
        key=lambda row: _sort_key(accessor(row)),
        reverse=sort.direction is SortDirection.DESC,
    )


def filter_rows(rows: Sequence[GPUMetrics], filters: Optional[FilterConfig]) -> List[GPUMetrics]:
    if filters is None or not filters.is_active:
        return list(rows)
    return [row for row in rows if filters.matches(row)]


def page_count_for(total_rows: int, page_size: int) -> int:
    size = max(page_size, 1)
    return max((total_rows + size - 1) // size, 1)


def paginate(rows: Sequence[GPUMetrics], page_index: int, page_size: int) -> Tuple[List[GPUMetrics], int]:
    """Slice one page; the index is clamped into ``[0, page_count)``.

    Returns:
        Tuple of (page rows, effective page index)
    """
    size = max(page_size, 1)
    last = page_count_for(len(rows), size) - 1
    index = min(max(page_index, 0), last)
    start = index * size
    return list(rows[start:start + size]), index


@dataclass
class Cell:
    column: str
    text: str
    tone: Optional[str] = None
    bar: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"column": self.column, "text": self.text, "tone": self.tone, "bar": self.bar}


def render_cells(row: GPUMetrics) -> List[Cell]:
    cells = []
    for column in COLUMNS:
        tone = column.tone(row) if column.tone else None
        bar = get_utilization_bar_color(row.utilization) if column.id == "utilization" else None
        cells.append(Cell(column.id, column.formatter(row), tone, bar))
    return cells


@dataclass
class TablePage:
    """One rendered page of the GPU table."""

    rows: List[GPUMetrics]
    page_index: int
    page_count: int
    page_size: int
    total_rows: int
    filtered_rows: int
    sort: SortState = field(default_factory=SortState)
    filters: FilterConfig = field(default_factory=FilterConfig)
    version: Optional[int] = None

    @property
    def has_previous(self) -> bool:
        return self.page_index > 0

    @property
    def has_next(self) -> bool:
        return self.page_index < self.page_count - 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [{"id": c.id, "header": c.header} for c in COLUMNS],
            "rows": [
                {
                    "record": row.to_dict(),
                    "cells": [cell.to_dict() for cell in render_cells(row)],
                }
                for row in self.rows
            ],
            "pagination": {
                "page_index": self.page_index,
                "page_count": self.page_count,
                "page_size": self.page_size,
                "total_rows": self.total_rows,
                "filtered_rows": self.filtered_rows,
                "has_previous": self.has_previous,
                "has_next": self.has_next,
            },
            "sort": {
                "column": self.sort.column,
                "direction": self.sort.direction.value if self.sort.direction else None,
            },
            "filter": self.filters.query,
            "version": self.version,
        }


def build_table_page(
    rows: Sequence[GPUMetrics],
    *,
    sort: Optional[SortState] = None,
    filters: Optional[FilterConfig] = None,
    page_index: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
    version: Optional[int] = None,
) -> TablePage:
    """Filter, sort and paginate a snapshot in one pass."""
    sort = sort or SortState()
    filters = filters or FilterConfig()
    filtered = filter_rows(rows, filters)
    ordered = sort_rows(filtered, sort)
    page_rows, index = paginate(ordered, page_index, page_size)
    return TablePage(
        rows=page_rows,
        page_index=index,
        page_count=page_count_for(len(ordered), page_size),
        page_size=max(page_size, 1),
        total_rows=len(rows),
        filtered_rows=len(ordered),
        sort=sort,
        filters=filters,
        version=version,
    )


class GPUTable:
    """Stateful table: holds sort, filter and page index over a snapshot.

    The page index resets to 0 whenever the dataset identity changes
    (a new poll result) or the filter changes.
    """

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE):
        self.page_size = max(page_size, 1)
        self.sort = SortState()
        self.filters = FilterConfig()
        self.page_index = 0
        self._rows: List[GPUMetrics] = []
        self._version: Optional[int] = None

    @property
    def rows(self) -> List[GPUMetrics]:
        return list(self._rows)

    def set_data(self, rows: Sequence[GPUMetrics], version: Optional[int] = None) -> None:
        if version is None or version != self._version:
            self.page_index = 0
        self._rows = list(rows)
        self._version = version

    def toggle_sort(self, column_id: str) -> SortState:
        if column_id not in COLUMNS_BY_ID:
            raise KeyError(f"Unknown column: {column_id}")
        self.sort = self.sort.toggled(column_id)
        return self.sort

    def set_filter(self, query: str = "", **kwargs) -> None:
        self.filters = FilterConfig(query=query, **kwargs)
        self.page_index = 0

    def go_to_page(self, page_index: int) -> int:
        _, self.page_index = paginate(self._derived(), page_index, self.page_size)
        return self.page_index

    def next_page(self) -> int:
        return self.go_to_page(self.page_index + 1)

    def previous_page(self) -> int:
        return self.go_to_page(self.page_index - 1)

    def _derived(self) -> List[GPUMetrics]:
        return sort_rows(filter_rows(self._rows, self.filters), self.sort)

    def page(self) -> TablePage:
        return build_table_page(
            self._rows,
            sort=self.sort,
            filters=self.filters,
            page_index=self.page_index,
            page_size=self.page_size,
            version=self._version,
        )
