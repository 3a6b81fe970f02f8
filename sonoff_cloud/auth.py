"""Authentication session: credentials, tokens and refresh timing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .errors import (
    SonoffAuthError,
    SonoffClientError,
    SonoffInvalidCredentials,
    SonoffProtocolViolation,
    SonoffResponseError,
    SonoffTransportError,
    SonoffUnauthorized,
    SonoffUnreachable,
)
from .models import Credentials, TokenSet

if TYPE_CHECKING:
    from .http import SonoffResponse
    from .transport import RequestTransport

_LOGGER = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = 30 * 24 * 3600.0
DEFAULT_REFRESH_MARGIN = 0.2


class AuthSession:
    """Owns the account credentials and the current TokenSet.

    The TokenSet is immutable and swapped as a whole, so concurrent readers
    see either the previous or the new pair. No lock is held across a
    network call; concurrent refresh requests share one in-flight refresh.
    """

    def __init__(
        self,
        transport: RequestTransport,
        *,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN,
        default_ttl: float = DEFAULT_TOKEN_TTL,
        clock: Callable[[], float] = time.time,
        label: str = "auth",
    ) -> None:
        self._transport = transport
        self._refresh_margin = refresh_margin
        self._default_ttl = default_ttl
        self._clock = clock
        self._label = label
        self._credentials: Credentials | None = None
        self._tokens: TokenSet | None = None
        self._refresh_task: asyncio.Task[TokenSet] | None = None

    @property
    def tokens(self) -> TokenSet | None:
        """Current token snapshot."""
        return self._tokens

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    def is_expiring_soon(self, margin: float | None = None) -> bool:
        """True when no token is held or its remaining life is under the margin.

        Args:
            margin: Fraction of the original TTL (defaults to refresh_margin)
        """
        tokens = self._tokens
        if tokens is None:
            return True
        margin = self._refresh_margin if margin is None else margin
        return tokens.remaining(self._clock()) <= tokens.ttl * margin

    def invalidate(self) -> None:
        """Drop the held tokens, forcing a login on the next cycle."""
        self._tokens = None

    async def authenticate(self, credentials: Credentials) -> TokenSet:
        """Log in and replace the held credentials and tokens.

        Raises:
            SonoffInvalidCredentials: Login was rejected. Not retryable.
            SonoffUnreachable: Login could not be completed. Retryable.
        """
        _LOGGER.debug("[%s] Logging in as %s", self._label, credentials.identifier)
        try:
            response = await self._transport.login(credentials)
            tokens = self._parse_tokens(response, previous=None)
        except SonoffUnauthorized as err:
            raise SonoffInvalidCredentials("Login rejected") from err
        except SonoffResponseError as err:
            if 500 <= err.status < 600:
                raise SonoffUnreachable(f"Login failed ({err.status})") from err
            raise SonoffInvalidCredentials(f"Login rejected ({err.status})") from err
        except SonoffTransportError as err:
            raise SonoffUnreachable(f"Login failed: {err}") from err

        self._credentials = credentials
        self._tokens = tokens
        _LOGGER.info("[%s] Authenticated", self._label)
        return tokens

    async def refresh(self, tokens: TokenSet | None = None) -> TokenSet:
        """Exchange the refresh token for a new pair.

        Concurrent callers share one request.

        Raises:
            SonoffAuthError: Refresh failed; the held tokens are dropped and
                a full authentication is required.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(
                self._do_refresh(tokens or self._tokens)
            )
        return await asyncio.shield(self._refresh_task)

    async def cancel(self) -> None:
        """Abort an in-flight refresh and wait for it to finish."""
        task, self._refresh_task = self._refresh_task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        _LOGGER.debug("[%s] Token refresh aborted", self._label)

    async def _do_refresh(self, tokens: TokenSet | None) -> TokenSet:
        if tokens is None or not tokens.refresh_token:
            raise SonoffAuthError("No refresh token available")
        try:
            response = await self._transport.refresh(
                tokens.refresh_token, tokens.access_token
            )
            new_tokens = self._parse_tokens(response, previous=tokens)
        except SonoffClientError as err:
            _LOGGER.warning("[%s] Token refresh failed: %s", self._label, err)
            self._tokens = None
            raise SonoffAuthError("Token refresh failed") from err

        self._tokens = new_tokens
        _LOGGER.debug("[%s] Tokens refreshed", self._label)
        return new_tokens

    async def ensure_fresh(self) -> TokenSet:
        """Return usable tokens, refreshing or re-authenticating as needed.

        A failed refresh falls through to one full authentication with the
        held credentials.
        """
        tokens = self._tokens
        if tokens is not None and not self.is_expiring_soon():
            return tokens

        if tokens is not None and tokens.refresh_token:
            try:
                return await self.refresh(tokens)
            except SonoffAuthError:
                _LOGGER.info("[%s] Refresh failed, re-authenticating", self._label)

        if self._credentials is None:
            raise SonoffAuthError("Not authenticated")
        return await self.authenticate(self._credentials)

    def _parse_tokens(
        self, response: SonoffResponse, *, previous: TokenSet | None
    ) -> TokenSet:
        data: Any = response.data
        if not isinstance(data, dict) or not isinstance(data.get("at"), str):
            raise SonoffProtocolViolation("Token response has no access token")

        now = self._clock()
        expires_at = now + self._default_ttl
        if isinstance(data.get("expires_in"), (int, float)):
            expires_at = now + float(data["expires_in"])
        elif isinstance(data.get("atExpiredTime"), (int, float)):
            expires_at = float(data["atExpiredTime"]) / 1000.0

        user = data.get("user")
        apikey = user.get("apikey") if isinstance(user, dict) else None
        if apikey is None and previous is not None:
            apikey = previous.apikey

        refresh_token = data.get("rt")
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token

        return TokenSet(
            access_token=data["at"],
            refresh_token=refresh_token,
            expires_at=expires_at,
            issued_at=now,
            apikey=apikey,
        )
