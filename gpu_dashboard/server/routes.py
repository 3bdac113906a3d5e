"""HTTP request handlers for the dashboard.

Provides the HTML page, JSON endpoints for the view state and table, and
the refresh / auto-refresh controls.
"""

from __future__ import annotations

import concurrent.futures
import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

from ..data.table import FilterConfig, SortState
from .view import render_dashboard

if TYPE_CHECKING:
    from .workers import DashboardState, EventLoopThread


def _log(msg: str) -> None:
    print(msg, flush=True)


TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _first(params: Dict[str, List[str]], name: str, default: Optional[str] = None) -> Optional[str]:
    values = params.get(name)
    return values[0] if values else default


def _parse_int(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else default
    except ValueError:
        return default


def _parse_range(params: Dict[str, List[str]], low_name: str, high_name: str) -> Optional[Tuple[float, float]]:
    low, high = _first(params, low_name), _first(params, high_name)
    if low is None and high is None:
        return None
    try:
        return (float(low) if low else float("-inf"), float(high) if high else float("inf"))
    except ValueError:
        return None


def parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def parse_table_query(params: Dict[str, List[str]]) -> Dict[str, Any]:
    """Translate query parameters into ``DashboardState.table_page`` kwargs."""
    filters = FilterConfig(
        query=_first(params, "q", "") or "",
        node_filter=_first(params, "node", "") or "",
        utilization_range=_parse_range(params, "util_min", "util_max"),
        temperature_range=_parse_range(params, "temp_min", "temp_max"),
        only_high_utilization=parse_bool(_first(params, "high", "false")) is True,
    )
    return {
        "sort": SortState.parse(_first(params, "sort"), _first(params, "order")),
        "filters": filters,
        "page_index": _parse_int(_first(params, "page"), 0),
        "version": _parse_int(_first(params, "version")),
    }


class DashboardRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the dashboard.

    Serves:
    - The rendered dashboard page
    - API endpoints for view state, table pages, nodes and utilization
    - Refresh and auto-refresh controls
    """

    # These will be set by the server
    state: Optional["DashboardState"] = None
    loop_thread: Optional["EventLoopThread"] = None
    url_prefix: str = ""
    title: str = "GPU Monitoring Dashboard"
    subtitle: str = ""
    request_timeout: float = 130.0
    config: Optional[Dict] = None

    def do_GET(self):
        parsed = urlparse(self.path)
        if self._maybe_redirect_root(parsed):
            return
        stripped = self._strip_prefix(parsed.path)
        if stripped is None:
            self.send_error(HTTPStatus.NOT_FOUND, "Invalid prefix")
            return
        params = parse_qs(parsed.query)

        if stripped in ("/", "/index.html"):
            return self._guarded(self._handle_index, params)
        if stripped == "/api/status":
            return self._guarded(self._handle_status)
        if stripped == "/api/metrics":
            return self._guarded(self._handle_metrics, params)
        if stripped == "/api/stats":
            return self._guarded(self._handle_stats)
        if stripped == "/api/nodes":
            return self._guarded(self._handle_nodes)
        if stripped == "/api/utilization":
            return self._guarded(self._handle_utilization)
        if stripped == "/api/config":
            return self._handle_config()

        self._send_json({"error": "Unknown endpoint"}, status_code=HTTPStatus.NOT_FOUND)

    def do_OPTIONS(self):
        stripped = self._strip_prefix(urlparse(self.path).path)
        if stripped is None or not stripped.startswith("/api/"):
            self.send_error(HTTPStatus.NOT_FOUND, "Unknown endpoint")
            return
        self.send_response(HTTPStatus.NO_CONTENT)
        self._send_cors_headers()
        self.send_header("Access-Control-Allow-Methods", "GET,POST,OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.end_headers()

    def do_POST(self):
        parsed = urlparse(self.path)
        stripped = self._strip_prefix(parsed.path)
        if stripped is None:
            self.send_error(HTTPStatus.NOT_FOUND, "Invalid prefix")
            return
        if stripped == "/api/refresh":
            return self._guarded(self._handle_refresh)
        if stripped == "/api/auto-refresh":
            return self._guarded(self._handle_auto_refresh, parse_qs(parsed.query))
        self._send_json({"error": "Unknown endpoint"}, status_code=HTTPStatus.NOT_FOUND)

    # --- API Handlers ---

    def _handle_index(self, params):
        snapshot, page = self._view(params)
        body = render_dashboard(
            snapshot,
            page,
            title=self.title,
            subtitle=self.subtitle,
            url_prefix=self.url_prefix,
        ).encode("utf-8")
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store, max-age=0")
        self.end_headers()
        self.wfile.write(body)

    def _handle_status(self):
        snapshot, _ = self._view()
        self._send_json(snapshot)

    def _handle_metrics(self, params):
        snapshot, page = self._view(params)
        metrics = snapshot["metrics"]
        if metrics["status"] == "error":
            # Error state replaces the table; no stale rows alongside it
            self._send_json({"status": "error", "error": metrics["error"]}, status_code=HTTPStatus.BAD_GATEWAY)
            return
        self._send_json({"status": metrics["status"], "table": page.to_dict(), "stats": snapshot["stats"]})

    def _handle_stats(self):
        snapshot, _ = self._view()
        self._send_json({"stats": snapshot["stats"], "status": snapshot["metrics"]["status"]})

    def _handle_nodes(self):
        query_state = self.loop_thread.run_coroutine(self.state.nodes(), self.request_timeout)
        self._send_query(query_state)

    def _handle_utilization(self):
        query_state = self.loop_thread.run_coroutine(self.state.utilization(), self.request_timeout)
        self._send_query(query_state)

    def _handle_refresh(self):
        ok, detail = self.loop_thread.run_coroutine(self.state.refresh(), self.request_timeout)
        if self._is_form_post():
            return self._redirect_home()
        status = HTTPStatus.OK if ok else HTTPStatus.BAD_GATEWAY
        self._send_json({"ok": ok, "detail": detail}, status_code=status)

    def _handle_auto_refresh(self, params):
        body = self._read_body()
        raw = body.get("enabled", _first(params, "enabled"))
        enabled = parse_bool(raw) if raw is not None else None
        if enabled is None:
            self._send_json({"error": "Expected enabled=true|false"}, status_code=HTTPStatus.BAD_REQUEST)
            return
        enabled = self._on_loop(lambda: self.state.set_auto_refresh(enabled))
        if self._is_form_post():
            return self._redirect_home()
        self._send_json({"auto_refresh": enabled})

    def _handle_config(self):
        """Return public configuration for clients."""
        config_data = self.config or {}
        self._send_json({
            "ui": config_data.get("ui", {}),
            "polling": config_data.get("polling", {}),
            "table": config_data.get("table", {}),
        })

    # --- Helper Methods ---

    def _guarded(self, handler, *args):
        if not self.state or not self.loop_thread:
            self._send_json({"error": "Server not initialized."}, status_code=HTTPStatus.SERVICE_UNAVAILABLE)
            return
        try:
            handler(*args)
        except concurrent.futures.TimeoutError:
            self._send_json({"error": "Dashboard state did not respond in time."}, status_code=HTTPStatus.GATEWAY_TIMEOUT)
        except Exception as exc:
            _log(f"[dashboard] {self.command} {self.path} failed: {exc!r}")
            self._send_json({"error": f"Internal error: {exc}"}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    def _on_loop(self, fn):
        return self.loop_thread.call(fn, timeout=self.request_timeout)

    def _view(self, params: Optional[Dict[str, List[str]]] = None):
        """Snapshot (and table page when ``params`` is given) in one loop call.

        A stale metrics result is refetched in the background, so the page
        renders what the cache holds now.
        """

        def load():
            self.state.request_metrics()
            snapshot = self.state.snapshot()
            page = self.state.table_page(**parse_table_query(params)) if params is not None else None
            return snapshot, page

        return self._on_loop(load)

    def _send_query(self, query_state):
        payload = self.state.query_payload(query_state)
        status = HTTPStatus.BAD_GATEWAY if query_state.is_error else HTTPStatus.OK
        self._send_json(payload, status_code=status)

    def _read_body(self) -> Dict[str, Any]:
        length = _parse_int(self.headers.get("Content-Length"), 0) or 0
        if length <= 0:
            return {}
        raw = self.rfile.read(length).decode("utf-8", errors="replace")
        if self._is_form_post():
            return {k: v[0] for k, v in parse_qs(raw).items() if v}
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _is_form_post(self) -> bool:
        content_type = self.headers.get("Content-Type", "")
        return content_type.startswith("application/x-www-form-urlencoded")

    def _redirect_home(self):
        self.send_response(HTTPStatus.SEE_OTHER)
        self.send_header("Location", self._build_prefixed_path("/"))
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_json(self, data: Any, *, status_code: HTTPStatus = HTTPStatus.OK):
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store, max-age=0")
        self._send_cors_headers()
        self.end_headers()
        self.wfile.write(body)

    def _send_cors_headers(self):
        self.send_header("Access-Control-Allow-Origin", "*")

    def _strip_prefix(self, path: str) -> Optional[str]:
        norm_prefix = (self.url_prefix or "").rstrip("/")
        if not norm_prefix:
            return path or "/"
        if not norm_prefix.startswith("/"):
            norm_prefix = f"/{norm_prefix}"
        if not path.startswith(norm_prefix):
            return None
        stripped = path[len(norm_prefix):] or "/"
        if not stripped.startswith("/"):
            stripped = "/" + stripped
        return stripped

    def _maybe_redirect_root(self, parsed) -> bool:
        prefix = self.url_prefix
        if not prefix:
            return False
        norm_prefix = prefix.rstrip("/") or "/"
        if not norm_prefix.startswith("/"):
            norm_prefix = f"/{norm_prefix}"
        if parsed.path == norm_prefix and not parsed.path.endswith("/"):
            location = norm_prefix + "/"
            if parsed.query:
                location += f"?{parsed.query}"
            self.send_response(HTTPStatus.MOVED_PERMANENTLY)
            self.send_header("Location", location)
            self.end_headers()
            return True
        return False

    def _build_prefixed_path(self, path: str) -> str:
        norm_prefix = (self.url_prefix or "").rstrip("/")
        if norm_prefix and not norm_prefix.startswith("/"):
            norm_prefix = f"/{norm_prefix}"
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{norm_prefix}{path}" if norm_prefix else path
