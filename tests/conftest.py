"""Pytest configuration and shared fixtures."""

import pytest

from gpu_dashboard.data.models import GPUMetrics


def _metrics_dict(**overrides):
    data = {
        "node_name": "gpu-node-1",
        "gpu_index": 0,
        "gpu_name": "NVIDIA A100-SXM4-80GB",
        "utilization": 50.0,
        "memory_used": 40.0,
        "memory_total": 80.0,
        "memory_utilization": 50.0,
        "temperature": 65.0,
        "power_draw": 250.0,
        "power_limit": 400.0,
        "timestamp": "2026-01-22T12:00:00Z",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_metrics():
    """Factory for GPUMetrics records with sensible defaults."""

    def _make(**overrides):
        return GPUMetrics.from_dict(_metrics_dict(**overrides))

    return _make


@pytest.fixture
def sample_metrics_dicts():
    """Two GPUs: one busy and hot, one idle and cool."""
    return [
        _metrics_dict(
            node_name="gpu-node-1",
            gpu_index=0,
            utilization=95.0,
            temperature=85.0,
        ),
        _metrics_dict(
            node_name="gpu-node-2",
            gpu_index=1,
            gpu_name="NVIDIA H100",
            utilization=2.0,
            temperature=40.0,
            memory_used=1.0,
        ),
    ]


@pytest.fixture
def metrics_envelope(sample_metrics_dicts):
    """Successful response body from GET /v1/gpu/metrics."""
    return {"success": True, "data": sample_metrics_dicts, "message": "ok"}


@pytest.fixture
def sample_nodes_envelope():
    """Successful response body from GET /v1/gpu/nodes."""
    return {
        "success": True,
        "data": [
            {"node_name": "gpu-node-1", "gpu_count": 8, "gpu_models": ["NVIDIA A100-SXM4-80GB"]},
            {"node_name": "gpu-node-2", "gpu_count": 4, "gpu_models": ["NVIDIA H100"]},
        ],
    }


@pytest.fixture
def sample_utilization_envelope():
    """Response body from GET /v1/gpu/utilization (numbers sent as strings)."""
    return {
        "success": True,
        "data": [
            {"node": "gpu-node-1", "gpu_index": "0", "utilization": "87.5", "timestamp": 1769083200},
            {"node": "gpu-node-1", "gpu_index": "1", "utilization": "n/a", "timestamp": 1769083200},
            {"node": "gpu-node-2", "gpu_index": "NaN", "utilization": "inf", "timestamp": "Infinity"},
            {"node": "gpu-node-2", "gpu_index": "1", "utilization": "-inf", "timestamp": "nan"},
        ],
    }
