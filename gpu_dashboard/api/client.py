"""GPU metrics API client.

Wraps the four read endpoints of the GPU monitoring backend and normalizes
transport failures into the ``ApiError`` taxonomy.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Union

import certifi
import requests
import urllib3
from requests.adapters import HTTPAdapter

from ..data.models import (
    APIResponse,
    GPUMetrics,
    GPUNode,
    GPUUtilization,
    parse_list,
)
from .errors import (
    ApiError,
    InvalidResponseError,
    NetworkError,
    RequestTimeoutError,
    error_for_status,
)

DEFAULT_BASE_URL = "/api"
DEFAULT_ORIGIN = "http://localhost:8080"
DEFAULT_TIMEOUT = 30

HEALTH_PATH = "/health"
METRICS_PATH = "/v1/gpu/metrics"
NODES_PATH = "/v1/gpu/nodes"
UTILIZATION_PATH = "/v1/gpu/utilization"


def _log(msg: str) -> None:
    print(msg, flush=True)


def resolve_base_url(base_url: Optional[str], origin: str = DEFAULT_ORIGIN) -> str:
    """Resolve the configured API base into an absolute URL.

    A relative base such as ``/api`` is joined onto ``origin``.
    """
    base = (base_url or DEFAULT_BASE_URL).strip()
    if base.startswith(("http://", "https://")):
        return base.rstrip("/")
    if not base.startswith("/"):
        base = f"/{base}"
    return f"{origin.rstrip('/')}{base}".rstrip("/")


class GPUApiClient:
    """Client for the GPU monitoring REST API.

    Every method issues one GET and returns the parsed ``APIResponse``
    envelope, or raises an ``ApiError`` subclass. Retries are left to the
    query cache, so the underlying adapter never retries on its own.
    """

    def __init__(
        self,
        base_url: Optional[str] = DEFAULT_BASE_URL,
        *,
        origin: str = DEFAULT_ORIGIN,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
        ca_bundle: Optional[str] = None,
    ):
        self.base_url = resolve_base_url(base_url, origin)
        self.timeout = timeout
        self._verify = self._determine_verify(verify, ca_bundle)
        self._session: Optional[requests.Session] = None

        if self._verify is False:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # --- Endpoints ---

    def check_health(self) -> APIResponse[Dict[str, Any]]:
        return self._get(HEALTH_PATH)

    def get_gpu_metrics(self) -> APIResponse[List[GPUMetrics]]:
        return self._get(METRICS_PATH, parse_list(GPUMetrics))

    def get_gpu_nodes(self) -> APIResponse[List[GPUNode]]:
        return self._get(NODES_PATH, parse_list(GPUNode))

    def get_gpu_utilization(self) -> APIResponse[List[GPUUtilization]]:
        return self._get(UTILIZATION_PATH, parse_list(GPUUtilization))

    # --- Session handling ---

    def _determine_verify(self, verify: bool, ca_bundle: Optional[str]) -> Union[bool, str]:
        if not verify:
            return False
        if ca_bundle:
            return ca_bundle
        return certifi.where()

    def _get_session(self) -> requests.Session:
        """Get or create the pooled session."""
        if self._session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=0, pool_connections=4, pool_maxsize=8)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            session.verify = self._verify
            session.headers.update({
                "Content-Type": "application/json",
                "User-Agent": "gpu-dashboard/1.0",
            })
            self._session = session
        return self._session

    def close(self) -> None:
        """Close the session and release pooled connections."""
        if self._session is not None:
            self._session.close()
            self._session = None

    # --- Request plumbing ---

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _get(self, path: str, parse_data: Optional[Callable[[Any], Any]] = None) -> APIResponse:
        url = self.url_for(path)
        try:
            resp = self._get_session().get(url, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise self._report(RequestTimeoutError(cause=exc), url)
        except requests.exceptions.RequestException as exc:
            raise self._report(NetworkError(cause=exc), url)

        if not 200 <= resp.status_code < 300:
            raise self._report(error_for_status(resp.status_code), url)

        try:
            body = resp.json()
        except ValueError as exc:
            raise self._report(InvalidResponseError(status_code=resp.status_code, cause=exc), url)

        return APIResponse.from_dict(body, parse_data)

    @staticmethod
    def _report(error: ApiError, url: str) -> ApiError:
        detail = f" ({error.cause})" if error.cause else ""
        _log(f"[api] GET {url} failed: {error.message}{detail}")
        return error
