"""
Unit tests for WarehouseClientCache.
"""

from __future__ import annotations

import asyncio

import pytest

from warehouse_query.core.client_cache import WarehouseClientCache

from conftest import FakeClientFactory, make_postgres_credentials


class TestResolveClient:
    def test_same_credentials_return_same_instance(
        self, client_cache: WarehouseClientCache, client_factory: FakeClientFactory
    ) -> None:
        first = client_cache.resolve_client("p1", make_postgres_credentials())
        second = client_cache.resolve_client("p1", make_postgres_credentials())

        assert first is second
        assert len(client_factory.built) == 1

    def test_equal_by_value_not_identity(
        self, client_cache: WarehouseClientCache
    ) -> None:
        creds_a = make_postgres_credentials()
        creds_b = make_postgres_credentials()
        assert creds_a is not creds_b

        assert client_cache.resolve_client("p1", creds_a) is client_cache.resolve_client(
            "p1", creds_b
        )

    def test_changed_credentials_build_new_client(
        self, client_cache: WarehouseClientCache, client_factory: FakeClientFactory
    ) -> None:
        old = client_cache.resolve_client("p1", make_postgres_credentials())
        new = client_cache.resolve_client(
            "p1", make_postgres_credentials(password="rotated")
        )

        assert new is not old
        assert new.credentials.password == "rotated"
        assert client_cache.get("p1") is new

    def test_projects_are_isolated(self, client_cache: WarehouseClientCache) -> None:
        a = client_cache.resolve_client("p1", make_postgres_credentials())
        b = client_cache.resolve_client("p2", make_postgres_credentials())

        assert a is not b
        assert len(client_cache) == 2

    def test_uncacheable_client_is_not_stored(
        self, client_cache: WarehouseClientCache, client_factory: FakeClientFactory
    ) -> None:
        cached = client_cache.resolve_client("p1", make_postgres_credentials())
        tunnelled = client_cache.resolve_client(
            "p1", make_postgres_credentials(), cacheable=False
        )

        assert tunnelled is not cached
        assert client_cache.get("p1") is cached


class TestCheckout:
    @pytest.mark.asyncio
    async def test_superseded_client_closed_after_last_lease(
        self, client_cache: WarehouseClientCache
    ) -> None:
        async with client_cache.checkout("p1", make_postgres_credentials()) as old:
            async with client_cache.checkout(
                "p1", make_postgres_credentials(password="rotated")
            ) as new:
                assert new is not old
                # Still leased by the outer block.
                assert old.closed is False
            assert new.closed is False
            assert old.closed is False

        assert old.closed is True
        assert old.close_calls == 1
        assert client_cache.get("p1") is new

    @pytest.mark.asyncio
    async def test_superseded_idle_client_closed_on_next_checkout(
        self, client_cache: WarehouseClientCache
    ) -> None:
        async with client_cache.checkout("p1", make_postgres_credentials()) as old:
            pass

        async with client_cache.checkout(
            "p1", make_postgres_credentials(password="rotated")
        ):
            assert old.closed is True

    @pytest.mark.asyncio
    async def test_cached_client_stays_open_between_checkouts(
        self, client_cache: WarehouseClientCache
    ) -> None:
        async with client_cache.checkout("p1", make_postgres_credentials()) as first:
            pass
        async with client_cache.checkout("p1", make_postgres_credentials()) as second:
            pass

        assert first is second
        assert first.closed is False

    @pytest.mark.asyncio
    async def test_uncacheable_client_closed_on_release(
        self, client_cache: WarehouseClientCache
    ) -> None:
        async with client_cache.checkout(
            "p1", make_postgres_credentials(), cacheable=False
        ) as client:
            assert client.closed is False

        assert client.closed is True
        assert client_cache.get("p1") is None

    @pytest.mark.asyncio
    async def test_lease_released_when_block_raises(
        self, client_cache: WarehouseClientCache
    ) -> None:
        with pytest.raises(RuntimeError):
            async with client_cache.checkout(
                "p1", make_postgres_credentials(), cacheable=False
            ) as client:
                raise RuntimeError("boom")

        assert client.closed is True

    @pytest.mark.asyncio
    async def test_concurrent_rotation_last_writer_wins(
        self, client_cache: WarehouseClientCache, client_factory: FakeClientFactory
    ) -> None:
        creds_a = make_postgres_credentials(password="a")
        creds_b = make_postgres_credentials(password="b")

        async def use(creds):
            async with client_cache.checkout("p1", creds) as client:
                await asyncio.sleep(0.01)
                return client

        client_a, client_b = await asyncio.gather(use(creds_a), use(creds_b))

        cached = client_cache.get("p1")
        assert cached in (client_a, client_b)
        assert cached.closed is False
        # The loser is closed once released.
        loser = client_a if cached is client_b else client_b
        assert loser.closed is True

        # The next resolution re-checks equality against the winner.
        again = client_cache.resolve_client("p1", cached.credentials)
        assert again is cached


class TestCloseAll:
    @pytest.mark.asyncio
    async def test_close_all_closes_cached_and_retired(
        self, client_cache: WarehouseClientCache
    ) -> None:
        a = client_cache.resolve_client("p1", make_postgres_credentials())
        b = client_cache.resolve_client("p2", make_postgres_credentials())

        await client_cache.close_all()

        assert a.closed and b.closed
        assert len(client_cache) == 0

    @pytest.mark.asyncio
    async def test_close_failure_does_not_stop_others(
        self, client_cache: WarehouseClientCache, client_factory: FakeClientFactory
    ) -> None:
        a = client_cache.resolve_client("p1", make_postgres_credentials())
        b = client_cache.resolve_client("p2", make_postgres_credentials())

        async def broken_close() -> None:
            raise OSError("socket already gone")

        a.close = broken_close  # type: ignore[method-assign]

        await client_cache.close_all()

        assert b.closed is True
