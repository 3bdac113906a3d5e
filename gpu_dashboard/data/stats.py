"""Aggregate statistics over the current GPU metrics snapshot."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Sequence

from .models import GPUMetrics

ACTIVE_UTILIZATION_PERCENT = 5.0
HIGH_TEMPERATURE_CELSIUS = 80.0


@dataclass(frozen=True)
class GPUStats:
    """Summary statistics for the stat cards."""

    total_gpus: int
    active_gpus: int  # utilization > 5%
    average_utilization: float  # Unit: percent, 0.0 when there are no GPUs
    high_temp_gpus: int  # temperature > 80°C
    active_ratio: float  # active / total, 0.0 when there are no GPUs

    @property
    def active_percent(self) -> float:
        return self.active_ratio * 100

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_stats(metrics: Sequence[GPUMetrics]) -> GPUStats:
    """Compute summary statistics; an empty snapshot yields zeros."""
    total = len(metrics)
    if total == 0:
        return GPUStats(
            total_gpus=0,
            active_gpus=0,
            average_utilization=0.0,
            high_temp_gpus=0,
            active_ratio=0.0,
        )

    active = sum(1 for m in metrics if m.utilization > ACTIVE_UTILIZATION_PERCENT)
    high_temp = sum(1 for m in metrics if m.temperature > HIGH_TEMPERATURE_CELSIUS)
    average = sum(m.utilization for m in metrics) / total

    return GPUStats(
        total_gpus=total,
        active_gpus=active,
        average_utilization=average,
        high_temp_gpus=high_temp,
        active_ratio=active / total,
    )
