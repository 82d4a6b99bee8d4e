"""HTTP client with retries, timeouts, and circuit breaker."""
import httpx
from typing import Optional, Dict, Any
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    RetryCallState
)
import structlog
from datetime import datetime

logger = structlog.get_logger(__name__)


class CircuitOpenError(httpx.HTTPError):
    """Raised without touching the network while a service's breaker is open."""


class CircuitBreaker:
    """Simple circuit breaker to avoid hammering down services."""

    def __init__(self, failure_threshold: int = 5, timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = "closed"  # closed, open, half_open

    def call_succeeded(self):
        """Reset on success."""
        self.failure_count = 0
        self.state = "closed"

    def call_failed(self):
        """Record failure."""
        self.failure_count += 1
        self.last_failure_time = datetime.now()

        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self.state = "open"
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
                threshold=self.failure_threshold
            )

    def can_attempt(self) -> bool:
        """Check if we can attempt a call."""
        if self.state == "closed":
            return True

        if self.state == "open":
            if self.last_failure_time:
                elapsed = (datetime.now() - self.last_failure_time).total_seconds()
                if elapsed >= self.timeout:
                    self.state = "half_open"
                    logger.info("circuit_breaker_half_open")
                    return True
            return False

        # half_open: allow one attempt
        return True


class RobustHTTPClient:
    """HTTP client with retries, timeouts, and circuit breaker.

    Only transport errors (connection refused, timeouts) are retried; an HTTP
    error status is returned to the caller immediately as
    `httpx.HTTPStatusError`. Server errors (5xx) and transport failures count
    against the service's breaker; client errors (4xx) do not.
    """

    def __init__(
        self,
        default_timeout: float = 30.0,
        max_retries: int = 3,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 10.0,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.default_timeout = default_timeout
        self.max_retries = max_retries
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.circuit_breaker_threshold = circuit_breaker_threshold
        self.circuit_breaker_timeout = circuit_breaker_timeout
        self.transport = transport

    def _get_circuit_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create circuit breaker for a service."""
        if service_name not in self.circuit_breakers:
            self.circuit_breakers[service_name] = CircuitBreaker(
                failure_threshold=self.circuit_breaker_threshold,
                timeout=self.circuit_breaker_timeout
            )
        return self.circuit_breakers[service_name]

    def _log_retry(self, retry_state: RetryCallState):
        """Log retry attempts."""
        logger.warning(
            "http_retry_attempt",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_retries + 1,
            exception=str(retry_state.outcome.exception())
        )

    async def request_async(
        self,
        method: str,
        url: str,
        service_name: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        timeout: Optional[float] = None
    ) -> httpx.Response:
        """Request with retries and circuit breaker."""
        timeout = timeout or self.default_timeout
        cb = self._get_circuit_breaker(service_name)

        if not cb.can_attempt():
            raise CircuitOpenError(f"Circuit breaker open for {service_name}")

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_exponential(multiplier=1, min=self.retry_wait_min, max=self.retry_wait_max),
                retry=retry_if_exception_type(httpx.TransportError),
                before_sleep=self._log_retry,
                reraise=True
            ):
                with attempt:
                    async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                        response = await client.request(
                            method, url, headers=headers, params=params, json=json
                        )
                        response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code >= 500:
                cb.call_failed()
            logger.error(
                "http_request_failed",
                service=service_name,
                method=method,
                url=url,
                status_code=e.response.status_code,
                circuit_breaker_state=cb.state
            )
            raise
        except httpx.HTTPError as e:
            cb.call_failed()
            logger.error(
                "http_request_failed",
                service=service_name,
                method=method,
                url=url,
                error=str(e),
                circuit_breaker_state=cb.state
            )
            raise

        cb.call_succeeded()
        return response

    async def get_async(
        self,
        url: str,
        service_name: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> httpx.Response:
        """GET request with retries and circuit breaker."""
        return await self.request_async("GET", url, service_name, headers=headers, params=params, timeout=timeout)

    async def post_async(
        self,
        url: str,
        service_name: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        timeout: Optional[float] = None
    ) -> httpx.Response:
        """POST request with retries and circuit breaker."""
        return await self.request_async(
            "POST", url, service_name, headers=headers, params=params, json=json, timeout=timeout
        )

    async def delete_async(
        self,
        url: str,
        service_name: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> httpx.Response:
        """DELETE request with retries and circuit breaker."""
        return await self.request_async("DELETE", url, service_name, headers=headers, params=params, timeout=timeout)


# Global instance
_http_client: Optional[RobustHTTPClient] = None


def get_http_client() -> RobustHTTPClient:
    """Get global HTTP client instance."""
    global _http_client
    if _http_client is None:
        from mediatier.config import config

        if config is not None:
            _http_client = RobustHTTPClient(
                default_timeout=config.http.timeout,
                max_retries=config.http.max_retries,
                circuit_breaker_threshold=config.http.circuit_breaker_threshold,
                circuit_breaker_timeout=config.http.circuit_breaker_timeout
            )
        else:
            _http_client = RobustHTTPClient()
    return _http_client


def connect_test_timeout() -> float:
    """Timeout for connectivity checks (shorter than data calls)."""
    from mediatier.config import config

    return config.http.connect_test_timeout if config is not None else 10.0
