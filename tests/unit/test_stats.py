"""Tests for aggregate statistics."""

from gpu_dashboard.data.stats import compute_stats


class TestComputeStats:
    def test_two_gpus(self, make_metrics):
        metrics = [
            make_metrics(gpu_index=0, utilization=95.0, temperature=82.0),
            make_metrics(gpu_index=1, utilization=2.0, temperature=40.0),
        ]
        stats = compute_stats(metrics)
        assert stats.total_gpus == 2
        assert stats.active_gpus == 1
        assert stats.high_temp_gpus == 1
        assert stats.average_utilization == 48.5
        assert stats.active_ratio == 0.5
        assert stats.active_percent == 50.0

    def test_empty(self):
        stats = compute_stats([])
        assert stats.total_gpus == 0
        assert stats.active_gpus == 0
        assert stats.high_temp_gpus == 0
        assert stats.average_utilization == 0.0
        assert stats.active_ratio == 0.0

    def test_thresholds_are_strict(self, make_metrics):
        # Exactly 5% is not active; exactly 80°C is not hot
        stats = compute_stats([make_metrics(utilization=5.0, temperature=80.0)])
        assert stats.active_gpus == 0
        assert stats.high_temp_gpus == 0

    def test_to_dict(self, make_metrics):
        data = compute_stats([make_metrics(utilization=50.0)]).to_dict()
        assert data == {
            "total_gpus": 1,
            "active_gpus": 1,
            "average_utilization": 50.0,
            "high_temp_gpus": 0,
            "active_ratio": 1.0,
        }
