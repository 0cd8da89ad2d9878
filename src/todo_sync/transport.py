"""HTTP transport for the todo API.

Wraps ``httpx.AsyncClient`` with bearer authentication from the session store,
a fixed timeout, retries of idempotent requests on transient failures and
normalization of error responses into ``ApiError`` subclasses.
"""

import asyncio
import email.utils
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .config import TransportConfig
from .errors import (
    ApiError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    UnauthorizedError,
    error_for_status,
)
from .session import SessionStore


logger = logging.getLogger(__name__)

# Retry-After is honored only for these statuses
RETRY_AFTER_STATUS_CODES = (413, 429, 503)


class TransportClient:
    """Async JSON client for the todo API."""

    def __init__(self, config: Optional[TransportConfig] = None,
                 session_store: Optional[SessionStore] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """Initialize the transport.

        Args:
            config: Request policy (timeout, retries)
            session_store: Source of the bearer token; cleared on 401
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
            sleep: Coroutine used to wait between retries
        """
        self.config = config or TransportConfig()
        self.session_store = session_store
        self.client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            transport=transport,
        )
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _build_headers(self, method: str) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.session_store.token() if self.session_store else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if method != "GET":
            headers["Content-Type"] = "application/json"
        return headers

    async def request(self, method: str, path: str, body: Optional[Any] = None,
                      params: Optional[Dict[str, str]] = None) -> Any:
        """Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the API base URL
            body: JSON-serializable request body
            params: Query parameters

        Returns:
            Decoded JSON, or None for an empty response

        Raises:
            RequestTimeoutError: If the request times out
            NetworkError: If no response could be obtained
            ClientError: On 4xx responses (UnauthorizedError for 401)
            ServerError: On 5xx responses
        """
        method = method.upper()
        retryable = method in self.config.retry_methods
        attempt = 0

        while True:
            attempt += 1
            can_retry = retryable and attempt <= self.config.max_retries
            try:
                response = await self.client.request(
                    method,
                    path,
                    json=body,
                    params=params,
                    headers=self._build_headers(method),
                )
            except httpx.TimeoutException as e:
                self.logger.error(f"{method} {path} timed out after {self.config.timeout}s")
                raise RequestTimeoutError(
                    f"Request timed out after {self.config.timeout:g}s",
                    description=f"{method} {path}",
                ) from e
            except httpx.TransportError as e:
                if can_retry:
                    delay = self._backoff(attempt)
                    self.logger.warning(
                        f"Attempt {attempt} of {method} {path} failed, retrying in {delay:.2f}s: {e}"
                    )
                    await self._sleep(delay)
                    continue
                self.logger.error(f"{method} {path} failed: {e}")
                raise NetworkError(f"Request failed: {e}", description=f"{method} {path}") from e

            self.logger.debug(f"{method} {path} -> {response.status_code}")

            if response.is_success:
                return self._decode(response)

            if can_retry and response.status_code in self.config.retryable_status_codes:
                delay = self._retry_delay(attempt, response)
                self.logger.warning(
                    f"Attempt {attempt} of {method} {path} got {response.status_code}, "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                continue

            error = self._to_error(response)
            if isinstance(error, UnauthorizedError) and self.session_store is not None:
                self.logger.warning("API rejected the session token, logging out")
                self.session_store.clear()
            self.logger.error(f"{method} {path} failed with {response.status_code}: {error.message}")
            raise error

    async def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Optional[Any] = None) -> Any:
        return await self.request("POST", path, body=body)

    async def put(self, path: str, body: Optional[Any] = None) -> Any:
        return await self.request("PUT", path, body=body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    # Helpers

    def _backoff(self, attempt: int) -> float:
        return self.config.backoff_factor * (2 ** (attempt - 1))

    def _retry_delay(self, attempt: int, response: httpx.Response) -> float:
        if response.status_code in RETRY_AFTER_STATUS_CODES:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None:
                return min(retry_after, self.config.max_retry_after)
        return self._backoff(attempt)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ServerError(
                "Invalid JSON in API response",
                status=response.status_code,
                description=str(e),
            ) from e

    @staticmethod
    def _to_error(response: httpx.Response) -> ApiError:
        """Normalize an error response using the API's error envelope."""
        status = response.status_code
        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and (data.get("message") or data.get("error")):
            message = data.get("message") or data.get("error")
            code = data.get("error")
            body_status = data.get("status")
        else:
            message = f"HTTP {status}: {response.reason_phrase}"
            code = "Network Error"
            body_status = None

        error = error_for_status(status, str(message), code)
        if isinstance(body_status, int):
            error.status = body_status
        return error


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - time.time())
