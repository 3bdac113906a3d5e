"""Data models for GPU cluster monitoring.

This module defines the records returned by the GPU metrics API,
following these semantic principles:

1. SNAPSHOTS
   - Every record is an immutable point-in-time observation
   - A poll returns a whole new list; nothing is merged or patched

2. EXPLICIT UNITS
   - Memory: gibibytes (float)
   - Utilization and temperature: percent (0-100) and degrees Celsius
   - Power: watts (float)
   - Time: ISO 8601 strings (metrics) or epoch seconds (utilization)

3. DEFENSIVE PARSING
   - The lightweight utilization endpoint encodes numbers as strings
   - Unparseable numeric fields become 0 rather than failing the poll
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


# =============================================================================
# Severity (display classification)
# =============================================================================


class Severity(str, Enum):
    """Three-band classification used for display styling."""

    LOW = "LOW"  # Utilization <30%, temperature <60°C
    MEDIUM = "MEDIUM"  # Utilization <70%, temperature <80°C
    HIGH = "HIGH"  # At or above the upper threshold


def _safe_number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(str(value).strip().replace(",", ""))
    except (TypeError, ValueError):
        return default
    # "NaN" and "inf" parse as floats but are not usable readings
    return number if math.isfinite(number) else default


def _safe_int(value: Any, default: int = 0) -> int:
    return int(_safe_number(value, default))


# =============================================================================
# GPU Records
# =============================================================================


@dataclass(frozen=True)
class GPUMetrics:
    """Metrics for one GPU on one node at a point in time.

    Units:
    - memory_used, memory_total, memory_free: gibibytes (float)
    - utilization, memory_utilization: percent (0-100)
    - temperature: degrees Celsius
    - power_draw, power_limit: watts
    """

    node_name: str
    gpu_index: int
    gpu_name: str
    utilization: float  # Unit: percent (0-100)
    memory_used: float  # Unit: GiB
    memory_total: float  # Unit: GiB
    memory_utilization: float  # Unit: percent (0-100)
    temperature: float  # Unit: °C
    power_draw: float  # Unit: W
    power_limit: float  # Unit: W
    timestamp: str  # ISO timestamp
    memory_free: Optional[float] = None  # Unit: GiB

    def __post_init__(self):
        if self.memory_free is None:
            object.__setattr__(self, "memory_free", max(self.memory_total - self.memory_used, 0.0))

    @property
    def key(self) -> str:
        """Stable row identifier for (node, GPU index)."""
        return f"{self.node_name}/{self.gpu_index}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GPUMetrics":
        memory_free = data.get("memory_free")
        return cls(
            node_name=str(data.get("node_name", "")),
            gpu_index=_safe_int(data.get("gpu_index")),
            gpu_name=str(data.get("gpu_name", "")),
            utilization=_safe_number(data.get("utilization")),
            memory_used=_safe_number(data.get("memory_used")),
            memory_total=_safe_number(data.get("memory_total")),
            memory_utilization=_safe_number(data.get("memory_utilization")),
            temperature=_safe_number(data.get("temperature")),
            power_draw=_safe_number(data.get("power_draw")),
            power_limit=_safe_number(data.get("power_limit")),
            timestamp=str(data.get("timestamp", "")),
            memory_free=_safe_number(memory_free) if memory_free is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GPUNode:
    """Inventory entry for a GPU-equipped node."""

    node_name: str
    gpu_count: int
    gpu_models: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GPUNode":
        models = data.get("gpu_models") or []
        return cls(
            node_name=str(data.get("node_name", "")),
            gpu_count=_safe_int(data.get("gpu_count")),
            gpu_models=[str(m) for m in models],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GPUUtilization:
    """Lightweight utilization sample.

    The API sends ``gpu_index`` and ``utilization`` as strings and
    ``timestamp`` as epoch seconds.
    """

    node: str
    gpu_index: int
    utilization: float  # Unit: percent (0-100)
    timestamp: float  # Unit: epoch seconds

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GPUUtilization":
        return cls(
            node=str(data.get("node", "")),
            gpu_index=_safe_int(data.get("gpu_index")),
            utilization=_safe_number(data.get("utilization")),
            timestamp=_safe_number(data.get("timestamp")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Response Envelope
# =============================================================================


@dataclass
class APIResponse(Generic[T]):
    """The ``{success, data?, message?, error?}`` envelope around every body."""

    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def payload(self) -> Optional[T]:
        """Data, or None when the envelope reports failure."""
        if not self.success:
            return None
        return self.data

    @classmethod
    def from_dict(
        cls,
        body: Any,
        parse_data: Optional[Callable[[Any], T]] = None,
    ) -> "APIResponse[T]":
        if not isinstance(body, dict):
            return cls(success=False, error="Malformed response envelope")
        success = bool(body.get("success", False))
        raw = body.get("data")
        data = raw
        if success and raw is not None and parse_data is not None:
            data = parse_data(raw)
        return cls(
            success=success,
            data=data,
            message=body.get("message"),
            error=body.get("error"),
        )

    def to_dict(self, dump_data: Optional[Callable[[T], Any]] = None) -> Dict[str, Any]:
        data = self.payload
        if data is not None and dump_data is not None:
            data = dump_data(data)
        return {
            "success": self.success,
            "data": data,
            "message": self.message,
            "error": self.error,
        }


def parse_list(item_cls) -> Callable[[Any], list]:
    """Parser for a JSON array of records; non-dict items are skipped."""

    def _parse(raw: Any) -> list:
        if not isinstance(raw, list):
            return []
        return [item_cls.from_dict(item) for item in raw if isinstance(item, dict)]

    return _parse


def dump_list(items: Optional[list]) -> list:
    return [item.to_dict() for item in items or []]
