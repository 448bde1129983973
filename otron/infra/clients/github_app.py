"""GitHub App installation token cache.

An explicitly constructed service that caches installation access tokens
per installation id and refreshes them through an injected fetcher.
Collaborators receive the instance; there is no module-level client.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW = timedelta(seconds=60)


@dataclass(frozen=True)
class InstallationToken:
    token: str
    expires_at: datetime


TokenFetcher = Callable[[int], Awaitable[InstallationToken]]


class InstallationTokenCache:
    """Expiring cache of installation tokens.

    A cached token is reused until it is within ``refresh_skew`` of its
    expiry. Concurrent requests for the same installation share one fetch.

    Args:
        fetch_token: Async callable creating a fresh token for an
            installation id (the GitHub App access-token endpoint).
        refresh_skew: How long before expiry a token is considered stale.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        fetch_token: TokenFetcher,
        *,
        refresh_skew: timedelta = DEFAULT_REFRESH_SKEW,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetch_token = fetch_token
        self._refresh_skew = refresh_skew
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tokens: dict[int, InstallationToken] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    async def get_token(self, installation_id: int) -> str:
        """Return a valid token for ``installation_id``, fetching if needed."""
        cached = self._fresh(installation_id)
        if cached is not None:
            return cached.token

        lock = self._locks.setdefault(installation_id, asyncio.Lock())
        async with lock:
            cached = self._fresh(installation_id)
            if cached is not None:
                return cached.token
            token = await self._fetch_token(installation_id)
            self._tokens[installation_id] = token
            logger.debug(
                "Fetched token for installation %d (expires %s)",
                installation_id,
                token.expires_at.isoformat(),
            )
            return token.token

    def invalidate(self, installation_id: int | None = None) -> None:
        """Drop one cached token, or all of them."""
        if installation_id is None:
            self._tokens.clear()
        else:
            self._tokens.pop(installation_id, None)

    def _fresh(self, installation_id: int) -> InstallationToken | None:
        cached = self._tokens.get(installation_id)
        if cached is None:
            return None
        if cached.expires_at - self._refresh_skew <= self._clock():
            return None
        return cached
