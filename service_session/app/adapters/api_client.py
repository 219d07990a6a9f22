"""
Backend HTTP client for the session layer.
"""

import time
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from shared.errors import ApiError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig
    from shared.metrics import MetricsCollector


class _ServerError(Exception):
    """5xx response, raised inside the breaker so it counts as a failure."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class ApiClient:
    """Thin JSON client for the RetroLens backend.

    Attaches ``Authorization: Bearer <token>`` only when a token is given,
    maps transport failures and non-2xx responses to ``ApiError`` and trips a
    circuit breaker so a dead backend fails fast. It never retries: retry
    policy belongs to the query cache.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        health_check_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.health_check_timeout = health_check_timeout
        self.transport = transport
        self.metrics = metrics
        self.logger = get_logger("session.api_client")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name="backend_api",
        )

    @classmethod
    def from_config(cls, config: "BaseConfig", **kwargs) -> "ApiClient":
        kwargs.setdefault("circuit_breaker", CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_timeout,
            name="backend_api",
        ))
        return cls(
            config.api_base_url,
            timeout=config.api_timeout,
            health_check_timeout=config.health_check_timeout,
            **kwargs,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        async def _request() -> httpx.Response:
            async with httpx.AsyncClient(timeout=timeout or self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=_clean_params(params),
                    json=json,
                    headers=headers,
                )
            if response.status_code >= 500:
                raise _ServerError(response)
            return response

        start = time.perf_counter()
        try:
            response = await self.circuit_breaker.call(_request)
        except CircuitBreakerOpenError as exc:
            self.logger.warning("Backend circuit open; failing fast", method=method, path=path)
            raise ApiError(503, str(exc), {"path": path})
        except _ServerError as exc:
            response = exc.response
        except httpx.TimeoutException as exc:
            self.logger.error("Backend request timeout", method=method, path=path)
            self._record(method, endpoint or path, 0, start)
            raise ApiError(0, "Network error: request timed out", {"path": path, "error": str(exc)})
        except httpx.HTTPError as exc:
            self.logger.error("Backend HTTP error", method=method, path=path, error=str(exc))
            self._record(method, endpoint or path, 0, start)
            raise ApiError(0, details={"path": path, "error": str(exc)})

        self._record(method, endpoint or path, response.status_code, start)

        if not response.is_success:
            message = _error_message(response)
            self.logger.warning(
                "Backend request failed",
                method=method,
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise ApiError(response.status_code, message, {"path": path})

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError:
            self.logger.error("Malformed backend response", method=method, path=path)
            raise ApiError(502, "Malformed response from backend", {"path": path})

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def health_check(self) -> Dict[str, Any]:
        """Check that the backend answers ``/health``."""
        result = await self.get("/health", endpoint="/health", timeout=self.health_check_timeout)
        return result or {}

    def _record(self, method: str, endpoint: str, status_code: int, start: float) -> None:
        if self.metrics:
            self.metrics.record_http_request(method, endpoint, status_code, time.perf_counter() - start)


def _clean_params(params: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not params:
        return None
    return {k: v for k, v in params.items() if v is not None and v != []}


def _error_message(response: httpx.Response) -> Optional[str]:
    """Best-effort error text from a JSON error body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        detail = body.get("message") or body.get("detail")
        if isinstance(detail, str):
            return f"HTTP {response.status_code}: {detail}"
    return None


def as_list(data: Any) -> List[Any]:
    """Unwrap list payloads that some endpoints wrap in an envelope."""
    if data is None:
        return []
    if isinstance(data, dict):
        for field in ("items", "data", "results"):
            if isinstance(data.get(field), list):
                return data[field]
        return []
    return list(data)
