"""AutoCount Authentication Provider.

Handles username/password login against the AutoCount API gateway.
The gateway answers ``POST /auth/login`` with a bearer token under either
``token`` or ``AccessToken`` depending on its version.

Tokens are held in memory for one sync run only and are never persisted;
token expiry is the gateway's concern, so every run logs in afresh.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import aiohttp

from connectors.autocount.ac_client import AutoCountAuthenticationError

TOKEN_KEYS = ("token", "AccessToken", "accessToken")


@dataclass
class AutoCountAuthConfig:
    """Configuration for AutoCount authentication.

    Attributes:
        base_url: API gateway root (no trailing slash)
        username: API user
        password: API password
        timeout_seconds: Login request timeout
    """
    base_url: str
    username: str
    password: str
    timeout_seconds: int = 30

    @property
    def login_endpoint(self) -> str:
        """Get the login endpoint."""
        return f"{self.base_url}/auth/login"


@dataclass
class AutoCountToken:
    """Bearer token obtained for one run."""
    access_token: str
    obtained_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def authorization_header(self) -> str:
        """Get the Authorization header value."""
        return f"Bearer {self.access_token}"


def extract_token(payload: Any) -> Optional[str]:
    """Pull the token out of a login response body, whichever key it uses."""
    if not isinstance(payload, dict):
        return None
    for key in TOKEN_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class AutoCountAuthProvider:
    """Authentication provider for AutoCount.

    Usage:
        auth = AutoCountAuthProvider(config)
        await auth.authenticate(session)
        headers = {"Authorization": auth.get_authorization_header()}
    """

    def __init__(self, config: AutoCountAuthConfig):
        self.config = config
        self._token: Optional[AutoCountToken] = None

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    async def authenticate(self, session: aiohttp.ClientSession) -> AutoCountToken:
        """Log in and keep the token for the rest of the run.

        Raises:
            AutoCountAuthenticationError: Bad credentials, unreachable host,
                timeout, non-2xx response, or a response without a token
        """
        body = {"username": self.config.username, "password": self.config.password}
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)

        try:
            async with session.post(
                self.config.login_endpoint,
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=timeout,
            ) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    raise AutoCountAuthenticationError(
                        f"AutoCount login failed: {response.status} - {error_text}",
                        response.status,
                        error_text,
                    )
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = None
        except asyncio.TimeoutError:
            raise AutoCountAuthenticationError(
                f"AutoCount login timed out after {self.config.timeout_seconds}s"
            )
        except aiohttp.ClientError as e:
            raise AutoCountAuthenticationError(f"AutoCount host unreachable: {e}")

        token = extract_token(payload)
        if not token:
            raise AutoCountAuthenticationError("AutoCount login response did not contain a token")

        self._token = AutoCountToken(access_token=token)
        return self._token

    def get_token(self) -> Optional[AutoCountToken]:
        return self._token

    def get_authorization_header(self) -> Optional[str]:
        """Get the Authorization header value, or None before login."""
        return self._token.authorization_header if self._token else None

    def clear(self) -> None:
        """Forget the token at the end of a run."""
        self._token = None
