"""AutoCount HTTP Client.

Low-level HTTP client for AutoCount API gateway calls.
Handles authentication headers, timeouts, retries, and error mapping.

Only idempotent requests (GET, PUT) are retried. A POST that times out or
fails mid-flight is never re-sent, since the gateway may already have
created the document.
"""

from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import asyncio
import json
import logging

import aiohttp

from connectors.erp_base import (
    ERPError,
    ERPAuthenticationError,
    ERPConflictError,
    ERPNotFoundError,
    ERPTimeoutError,
)

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = ("GET", "PUT")


class AutoCountApiError(ERPError):
    """Base exception for AutoCount API errors."""
    pass


class AutoCountAuthenticationError(AutoCountApiError, ERPAuthenticationError):
    """Authentication failed (login rejected, 401/403)."""
    pass


class AutoCountNotFoundError(AutoCountApiError, ERPNotFoundError):
    """Resource not found (404)."""
    pass


class AutoCountConflictError(AutoCountApiError, ERPConflictError):
    """Resource already exists (409 or an "already exists" body)."""
    pass


class AutoCountTimeoutError(AutoCountApiError, ERPTimeoutError):
    """Request exceeded the configured timeout."""
    pass


def _json_default(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps_payload(payload: Any) -> str:
    """Serialize request bodies; Decimals go out as numbers, dates as ISO text."""
    return json.dumps(payload, default=_json_default)


def _is_already_exists(body: str) -> bool:
    return "already exist" in body.lower()


def error_for_status(status: int, body: str, url: str) -> AutoCountApiError:
    """Map a non-2xx response to the matching error class."""
    if status in (401, 403):
        return AutoCountAuthenticationError(f"Authentication failed: {body}", status, body)
    if status == 404:
        return AutoCountNotFoundError(f"Resource not found: {url}", status, body)
    if status == 409 or _is_already_exists(body):
        return AutoCountConflictError(f"Already exists: {body}", status, body)
    return AutoCountApiError(f"API error {status}: {body}", status, body)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    base_delay: float = 0.5  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class AutoCountApiConfig:
    """Configuration for AutoCount API client."""
    base_url: str
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    timeout_seconds: int = 30

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


class AutoCountApiClient:
    """HTTP client for the AutoCount API gateway.

    Provides:
    - One aiohttp session and one login per connect()
    - Bounded per-request timeouts
    - Retries with backoff for idempotent requests
    - Status-code to exception mapping

    Usage:
        client = AutoCountApiClient(auth_provider, api_config)
        await client.connect()
        items = await client.get("items")
        await client.disconnect()
    """

    def __init__(self, auth_provider, api_config: AutoCountApiConfig):
        from connectors.autocount.ac_auth import AutoCountAuthProvider

        self.auth_provider: AutoCountAuthProvider = auth_provider
        self.api_config = api_config
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self.auth_provider.is_authenticated

    async def connect(self) -> None:
        """Open the HTTP session and log in.

        Raises:
            AutoCountAuthenticationError: Login failed
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(json_serialize=dumps_payload)
        try:
            await self.auth_provider.authenticate(self._session)
        except AutoCountApiError:
            await self.disconnect()
            raise

    async def disconnect(self) -> None:
        """Close HTTP session."""
        self.auth_provider.clear()
        if self._session:
            await self._session.close()
            self._session = None

    def _get_headers(self) -> Dict[str, str]:
        auth_header = self.auth_provider.get_authorization_header()
        if not auth_header:
            raise AutoCountAuthenticationError("Not authenticated. Call connect() first.")

        return {
            "Authorization": auth_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an authenticated request, retrying idempotent methods.

        Returns:
            Decoded JSON body ({} for an empty body)

        Raises:
            AutoCountAuthenticationError: 401/403
            AutoCountNotFoundError: 404
            AutoCountConflictError: 409 or "already exists"
            AutoCountTimeoutError: Request timed out
            AutoCountApiError: Other API errors
        """
        if not self._session:
            raise AutoCountApiError("Not connected. Call connect() first.")

        url = self.api_config.url(path)
        retry_config = self.api_config.retry_config
        retryable = method.upper() in IDEMPOTENT_METHODS
        attempts = retry_config.max_retries + 1 if retryable else 1
        timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)

        for attempt in range(attempts):
            has_next = attempt + 1 < attempts
            try:
                async with self._session.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    json=data,
                    timeout=timeout,
                ) as response:
                    response_text = await response.text()

                    if response.status < 300:
                        if not response_text:
                            return {}
                        try:
                            return json.loads(response_text)
                        except json.JSONDecodeError:
                            raise AutoCountApiError(
                                f"Invalid JSON from {method} {path}",
                                response.status,
                                response_text,
                            )

                    if response.status in retry_config.retry_on_status and has_next:
                        delay = retry_config.get_delay(attempt)
                        logger.warning(
                            f"{method} {path} failed with {response.status}, "
                            f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue

                    raise error_for_status(response.status, response_text, url)

            except asyncio.TimeoutError:
                if has_next:
                    logger.warning(f"{method} {path} timed out, retrying")
                    await asyncio.sleep(retry_config.get_delay(attempt))
                    continue
                raise AutoCountTimeoutError(
                    f"{method} {path} timed out after {self.api_config.timeout_seconds}s"
                )
            except aiohttp.ClientError as e:
                if has_next:
                    logger.warning(f"{method} {path} failed with {type(e).__name__}: {e}, retrying")
                    await asyncio.sleep(retry_config.get_delay(attempt))
                    continue
                raise AutoCountApiError(f"{method} {path} failed: {e}")

        raise AutoCountApiError(f"{method} {path} failed after {attempts} attempts")

    async def get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def post(self, path: str, data: Dict[str, Any]) -> Any:
        return await self._request("POST", path, data=data)

    async def put(self, path: str, data: Dict[str, Any]) -> Any:
        return await self._request("PUT", path, data=data)
