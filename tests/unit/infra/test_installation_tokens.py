"""Unit tests for the GitHub App installation token cache."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from otron.infra.clients.github_app import InstallationToken, InstallationTokenCache

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class Clock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self) -> datetime:
        return self.now


class CountingFetcher:
    def __init__(self, lifetime: timedelta = timedelta(hours=1)) -> None:
        self.calls: list[int] = []
        self.lifetime = lifetime

    async def __call__(self, installation_id: int) -> InstallationToken:
        self.calls.append(installation_id)
        await asyncio.sleep(0)
        return InstallationToken(
            token=f"tok-{installation_id}-{len(self.calls)}",
            expires_at=NOW + self.lifetime,
        )


class TestInstallationTokenCache:
    @pytest.mark.asyncio
    async def test_reuses_fresh_token(self) -> None:
        fetcher = CountingFetcher()
        cache = InstallationTokenCache(fetcher, clock=Clock())

        first = await cache.get_token(42)
        second = await cache.get_token(42)

        assert first == second == "tok-42-1"
        assert fetcher.calls == [42]

    @pytest.mark.asyncio
    async def test_refreshes_inside_skew(self) -> None:
        fetcher = CountingFetcher()
        clock = Clock()
        cache = InstallationTokenCache(fetcher, clock=clock)
        await cache.get_token(42)

        clock.now = NOW + timedelta(minutes=59, seconds=30)
        token = await cache.get_token(42)

        assert token == "tok-42-2"

    @pytest.mark.asyncio
    async def test_installations_are_independent(self) -> None:
        fetcher = CountingFetcher()
        cache = InstallationTokenCache(fetcher, clock=Clock())

        assert await cache.get_token(1) == "tok-1-1"
        assert await cache.get_token(2) == "tok-2-2"

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_fetch(self) -> None:
        fetcher = CountingFetcher()
        cache = InstallationTokenCache(fetcher, clock=Clock())

        tokens = await asyncio.gather(*(cache.get_token(7) for _ in range(5)))

        assert set(tokens) == {"tok-7-1"}
        assert fetcher.calls == [7]

    @pytest.mark.asyncio
    async def test_invalidate(self) -> None:
        fetcher = CountingFetcher()
        cache = InstallationTokenCache(fetcher, clock=Clock())
        await cache.get_token(1)
        await cache.get_token(2)

        cache.invalidate(1)
        await cache.get_token(1)
        await cache.get_token(2)
        assert fetcher.calls == [1, 2, 1]

        cache.invalidate()
        await cache.get_token(2)
        assert fetcher.calls == [1, 2, 1, 2]
