"""GPU cluster dashboard: polls the GPU metrics API and serves the dashboard."""

__version__ = "1.0.0"
