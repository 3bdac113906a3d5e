"""Data layer - models, formatting, table derivation, and aggregation."""

from .models import (
    APIResponse,
    GPUMetrics,
    GPUNode,
    GPUUtilization,
    Severity,
)
from .stats import GPUStats, compute_stats
from .table import (
    COLUMNS,
    FilterConfig,
    GPUTable,
    SortDirection,
    SortState,
    TablePage,
    build_table_page,
)

__all__ = [
    "APIResponse",
    "GPUMetrics",
    "GPUNode",
    "GPUUtilization",
    "Severity",
    "GPUStats",
    "compute_stats",
    "COLUMNS",
    "FilterConfig",
    "GPUTable",
    "SortDirection",
    "SortState",
    "TablePage",
    "build_table_page",
]
