"""
REST client for the operational API.

The operational API fronts the infrastructure the inventory system runs
on. The agent reads service status and network/performance metrics from
it and calls the remediation primitives the healing dispatcher triggers:
restart, scale, reconnect and cleanup.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)


class OperationsAPIError(Exception):
    """Request failed; status_code is None for transport errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class OperationsClient:
    """
    Async client for the operational API.

    Server errors, timeouts and connection errors are retried with
    exponential backoff; 4xx responses fail on the first attempt.

    Usage:
        async with OperationsClient("http://ops:8081", api_key=key) as ops:
            services = await ops.get_service_status()
            await ops.restart_service("inventory-api")
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Args:
            base_url: Root URL of the operational API
            session: Shared aiohttp session (one is created and owned otherwise)
            api_key: Sent as a bearer token when set
            timeout: Total timeout per attempt in seconds
            max_retries: Attempts for retryable failures
            retry_delay: First backoff delay, doubled per attempt
        """
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay

    async def __aenter__(self) -> "OperationsClient":
        self._ensure_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this client created it."""
        session, owned = self._session, self._owns_session
        if session is not None and owned:
            self._session = None
            await session.close()

    async def _send(self, method: str, path: str, **kwargs) -> Any:
        """One attempt. Transport errors become OperationsAPIError."""
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            async with self._ensure_session().request(
                method, f"{self.base_url}{path}", headers=headers, **kwargs
            ) as response:
                if response.status >= 400:
                    kind = "Server error" if response.status >= 500 else "API error"
                    raise OperationsAPIError(
                        f"{kind}: {response.status} - {await response.text()}",
                        status_code=response.status,
                    )
                return await response.json()
        except asyncio.TimeoutError:
            raise OperationsAPIError(f"{method} {path} timed out")
        except aiohttp.ClientError as e:
            raise OperationsAPIError(f"{method} {path} failed: {e}") from e

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send with retries.

        Raises:
            OperationsAPIError: On a 4xx, or the last error once attempts run out
        """
        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._send(method, path, **kwargs)
            except OperationsAPIError as e:
                if not e.retryable or attempt == self._max_retries:
                    raise
                delay = self._retry_delay * 2 ** (attempt - 1)
                logger.warning(f"{e} (attempt {attempt}/{self._max_retries}, retrying in {delay:.1f}s)")
                await asyncio.sleep(delay)

    # =========================================================================
    # Status and metrics
    # =========================================================================

    async def get_service_status(self) -> Dict[str, Dict[str, Any]]:
        """
        Status of every managed service.

        Returns:
            {service_name: {"running": bool, "cpu": float, "memory": float}}
        """
        data = await self._request("GET", "/services")
        services = data.get("services", data) if isinstance(data, dict) else {}
        return {
            name: {
                "running": bool(info.get("running", False)),
                "cpu": float(info.get("cpu", 0)),
                "memory": float(info.get("memory", 0)),
            }
            for name, info in services.items()
        }

    async def get_network_metrics(self) -> Dict[str, float]:
        """Packet loss (%) and latency (ms) between the service hosts."""
        data = await self._request("GET", "/metrics/network")
        return {
            "packet_loss": float(data.get("packet_loss", 0)),
            "latency_ms": float(data.get("latency_ms", 0)),
        }

    async def get_performance_metrics(self) -> Dict[str, float]:
        """Error rate (fraction) and mean response time (ms) of the API."""
        data = await self._request("GET", "/metrics/performance")
        return {
            "error_rate": float(data.get("error_rate", 0)),
            "response_time": float(data.get("response_time_ms", 0)),
            "requests_per_minute": float(data.get("requests_per_minute", 0)),
        }

    # =========================================================================
    # Remediation primitives
    # =========================================================================

    async def restart_service(self, service: str) -> Dict[str, Any]:
        logger.info(f"Requesting restart of {service}")
        return await self._request("POST", f"/services/{service}/restart")

    async def scale_resources(self, component: str, direction: str = "up") -> Dict[str, Any]:
        logger.info(f"Requesting scale {direction} of {component}")
        return await self._request(
            "POST", f"/resources/{component}/scale", json={"direction": direction}
        )

    async def reconnect(self, component: str) -> Dict[str, Any]:
        logger.info(f"Requesting reconnect of {component}")
        return await self._request("POST", f"/components/{component}/reconnect")

    async def cleanup(self, component: str) -> Dict[str, Any]:
        logger.info(f"Requesting cleanup of {component}")
        return await self._request("POST", f"/components/{component}/cleanup")
