"""Async HTTP client for the conservatory backend records API.

Sends authenticated JSON requests and maps HTTP failures onto the store error
hierarchy so callers can tell transient failures from permanent ones:

    401        -> StoreAuthenticationError
    403        -> StorePermissionError
    404        -> RecordNotFoundError
    409, 412   -> PreconditionFailedError
    5xx        -> TransientStoreError
    other 4xx  -> PermanentStoreError

Reads are retried on TransientStoreError. Writes are not: ``$inc`` and
``$push`` applied twice would double-count.
"""

import asyncio
from typing import Any

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.enrollment.config import EnrollmentConfig, get_config
from src.enrollment.errors import (
    PermanentStoreError,
    PreconditionFailedError,
    RecordNotFoundError,
    StoreAuthenticationError,
    StoreError,
    StorePermissionError,
    TransientStoreError,
)
from src.enrollment.logging import get_logger
from src.enrollment.store.base import RecordStore

logger = get_logger(__name__)


class HttpRecordStore(RecordStore):
    """RecordStore over the backend REST API.

    Attributes:
        base_url: API root, e.g. http://localhost:3001/api.
        token: Bearer token, empty for anonymous access.
        timeout: Per-request total timeout.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        read_retry_attempts: int = 3,
        read_retry_wait_seconds: float = 1.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.read_retry_attempts = read_retry_attempts
        self.read_retry_wait_seconds = read_retry_wait_seconds

    @classmethod
    def from_config(cls, config: EnrollmentConfig | None = None) -> "HttpRecordStore":
        config = config or get_config()
        return cls(
            base_url=config.records_api_url,
            token=config.records_api_token,
            timeout=config.request_timeout_seconds,
            read_retry_attempts=config.read_retry_attempts,
            read_retry_wait_seconds=config.read_retry_wait_seconds,
        )

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _error_for(status: int, data: Any, method: str, path: str) -> StoreError:
        if isinstance(data, dict):
            detail = data.get("error") or data.get("message") or ""
        else:
            detail = str(data or "")

        if status == 401:
            return StoreAuthenticationError("Authentication failed. Please login again.")
        if status == 403:
            return StorePermissionError("Access denied. Insufficient permissions.")
        if status == 404:
            return RecordNotFoundError(f"Resource not found: {path}")
        if status in (409, 412):
            return PreconditionFailedError(detail or f"Precondition failed for {path}")
        if status >= 500:
            return TransientStoreError(f"Server error ({status}) on {method} {path}")
        return PermanentStoreError(detail or f"HTTP {status} on {method} {path}")

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("api_request", method=method, path=path)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method, url, json=body, headers=self._get_headers()
                ) as response:
                    if response.content_type == "application/json":
                        data = await response.json()
                    else:
                        data = await response.text()

                    if response.status >= 400:
                        error = self._error_for(response.status, data, method, path)
                        logger.warning(
                            "api_error",
                            method=method,
                            path=path,
                            status=response.status,
                            error=str(error),
                        )
                        raise error

                    logger.debug(
                        "api_response", method=method, path=path, status=response.status
                    )
                    return data
        except StoreError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning("api_timeout", method=method, path=path)
            raise TransientStoreError(
                "Request timeout. Please check your connection."
            ) from e
        except aiohttp.ClientError as e:
            logger.warning(
                "api_connection_error", method=method, path=path, error=str(e)
            )
            raise TransientStoreError(f"Connection failed: {e}") from e

    async def get(self, path: str) -> dict[str, Any]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.read_retry_attempts),
            wait=wait_fixed(self.read_retry_wait_seconds),
            retry=retry_if_exception_type(TransientStoreError),
            reraise=True,
        ):
            with attempt:
                return await self._request("GET", path)
        raise AssertionError("unreachable")  # AsyncRetrying always returns or raises

    async def patch(
        self,
        path: str,
        update: dict[str, Any],
        *,
        transaction: Any = None,
        array_filters: list[dict[str, Any]] | None = None,
        precondition: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"update": update}
        if array_filters:
            body["arrayFilters"] = array_filters
        if transaction is not None:
            body["transaction"] = transaction
        if precondition:
            body["precondition"] = precondition
        return await self._request("PATCH", path, body)

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", path, body)
