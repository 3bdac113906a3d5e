#!/usr/bin/env python3
"""
GPU Dashboard - Main entry point.

Runs the dashboard server with background metric/health polling and API
endpoints.
"""

from __future__ import annotations

import argparse
from http.server import ThreadingHTTPServer

from ..api.client import GPUApiClient
from .config import Config
from .routes import DashboardRequestHandler
from .workers import DashboardState, EventLoopThread

SHUTDOWN_TIMEOUT = 10


def apply_overrides(config: Config, args) -> Config:
    """Override config values with the CLI arguments that were given."""
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.url_prefix:
        config.server.url_prefix = args.url_prefix
    if args.api_url:
        config.api.base_url = args.api_url
    if args.timeout:
        config.api.timeout = args.timeout
    if args.insecure:
        config.api.verify_tls = False
    if args.ca_bundle:
        config.api.ca_bundle = args.ca_bundle
    if args.metrics_interval:
        config.polling.metrics_interval = args.metrics_interval
    if args.health_interval:
        config.polling.health_interval = args.health_interval
    if args.auto_refresh is not None:
        config.polling.auto_refresh = args.auto_refresh
    return config


def request_timeout_for(config: Config) -> float:
    """Longest a handler waits on the loop: one metrics query with all retries."""
    retry = config.metrics_retry
    attempts = retry.retries + 1
    return config.api.timeout * attempts + retry.delay * retry.retries + 5


def run_server(args) -> None:
    """Run the dashboard server."""
    # Load configuration
    config = apply_overrides(Config.load(args.config), args)
    print(f"[config] Loaded: ui.title={config.ui.title!r}, api.base_url={config.api.base_url!r}")

    client = GPUApiClient(
        config.api.base_url,
        origin=config.api.origin,
        timeout=config.api.timeout,
        verify=config.api.verify_tls,
        ca_bundle=config.api.ca_bundle,
    )
    print(f"[dashboard] Upstream API: {client.base_url}")

    # Start the event loop that owns the cache and pollers
    loop_thread = EventLoopThread()
    loop_thread.start()

    state = DashboardState(client, config)
    loop_thread.call(state.start)

    # Configure the request handler
    DashboardRequestHandler.state = state
    DashboardRequestHandler.loop_thread = loop_thread
    DashboardRequestHandler.url_prefix = config.server.url_prefix
    DashboardRequestHandler.title = config.ui.title
    DashboardRequestHandler.subtitle = config.ui.subtitle
    DashboardRequestHandler.request_timeout = request_timeout_for(config)
    DashboardRequestHandler.config = config.to_dict()

    # Create and run the server
    server = ThreadingHTTPServer((config.server.host, config.server.port), DashboardRequestHandler)

    print(f"[dashboard] Serving on http://{config.server.host}:{config.server.port}")
    if config.server.url_prefix:
        print(f"[dashboard] URL prefix: {config.server.url_prefix}")
    print(
        f"[dashboard] Polling metrics every {config.polling.metrics_interval}s "
        f"(auto-refresh {'on' if config.polling.auto_refresh else 'off'}), "
        f"health every {config.polling.health_interval}s"
    )

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\n[dashboard] Shutting down...")
    finally:
        server.server_close()
        try:
            loop_thread.run_coroutine(state.stop(), SHUTDOWN_TIMEOUT)
        except Exception as e:
            print(f"[dashboard] Error stopping pollers: {e}")
        loop_thread.stop()
        loop_thread.join(timeout=5)
        client.close()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="GPU Cluster Monitoring Dashboard",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Server options
    parser.add_argument("--host", default=None, help="Bind address (config default 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (config default 3000)")
    parser.add_argument("--config", type=str, help="Path to config YAML file")
    parser.add_argument(
        "--url-prefix",
        default="",
        help="Path prefix for reverse proxy setup",
    )

    # Upstream API options
    parser.add_argument(
        "--api-url",
        default=None,
        help="Override the GPU metrics API base URL",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="HTTP timeout for API requests in seconds",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        default=False,
        help="Skip TLS verification",
    )
    parser.add_argument(
        "--ca-bundle",
        type=str,
        help="Path to a custom CA bundle",
    )

    # Polling options
    parser.add_argument(
        "--metrics-interval",
        type=int,
        default=None,
        help="Metrics poll interval in seconds",
    )
    parser.add_argument(
        "--health-interval",
        type=int,
        default=None,
        help="Health check interval in seconds",
    )
    parser.add_argument(
        "--auto-refresh",
        dest="auto_refresh",
        action="store_true",
        default=None,
        help="Start with metrics auto-refresh on",
    )
    parser.add_argument(
        "--no-auto-refresh",
        dest="auto_refresh",
        action="store_false",
        help="Start with metrics auto-refresh off",
    )

    return parser.parse_args(argv)


def main():
    """Entry point for the gpu-dashboard command."""
    args = parse_args()
    run_server(args)


if __name__ == "__main__":
    main()
