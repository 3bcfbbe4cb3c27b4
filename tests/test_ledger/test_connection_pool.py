"""Tests for the bounded FIFO connection pool.

Uses a fake transport so no sockets are opened.
"""

import asyncio

import pytest

from ammtrail.ledger.connection_pool import ConnectionPool


class FakeTransport:
    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        self.sent: list[str] = []
        self.closed = False
        self.fail_send = False

    async def send(self, message: str) -> None:
        if self.fail_send:
            raise OSError("connection reset")
        self.sent.append(message)

    async def recv(self) -> str:
        return "{}"

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def opened() -> list[FakeTransport]:
    return []


@pytest.fixture
def pool(opened: list[FakeTransport]) -> ConnectionPool:
    async def connector(endpoint: str) -> FakeTransport:
        transport = FakeTransport(endpoint)
        opened.append(transport)
        return transport

    return ConnectionPool(connector, max_connections=3, grant_delay=0.0)


class TestCapacity:
    @pytest.mark.asyncio
    async def test_acquire_under_capacity(self, pool: ConnectionPool) -> None:
        connection = await pool.acquire("wss://a")
        assert pool.active_count == 1
        await connection.close()
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_fourth_request_queues_until_release(self, pool: ConnectionPool) -> None:
        held = [await pool.acquire("wss://a") for _ in range(3)]
        assert pool.active_count == 3

        waiter = asyncio.create_task(pool.acquire("wss://b"))
        await asyncio.sleep(0)
        assert not waiter.done()
        assert pool.queued_count == 1

        await held[0].close()
        connection = await asyncio.wait_for(waiter, timeout=1)
        assert connection.endpoint == "wss://b"
        assert pool.active_count == 3

        for c in [*held[1:], connection]:
            await c.close()
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_waiters_granted_in_fifo_order(self, pool: ConnectionPool) -> None:
        held = [await pool.acquire("wss://a") for _ in range(3)]
        order: list[str] = []

        async def wait_for(name: str) -> None:
            connection = await pool.acquire(name)
            order.append(name)
            await connection.close()

        tasks = [asyncio.create_task(wait_for(f"wss://{i}")) for i in range(3)]
        await asyncio.sleep(0)
        for c in held:
            await c.close()
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

        assert order == ["wss://0", "wss://1", "wss://2"]
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_waiter_granted_after_grant_delay(self) -> None:
        async def connector(endpoint: str) -> FakeTransport:
            return FakeTransport(endpoint)

        pool = ConnectionPool(connector, max_connections=1, grant_delay=0.2)
        held = await pool.acquire("wss://a")
        waiter = asyncio.create_task(pool.acquire("wss://b"))
        await asyncio.sleep(0)

        loop = asyncio.get_running_loop()
        released_at = loop.time()
        await held.close()
        await asyncio.sleep(0.05)
        assert not waiter.done()
        assert pool.active_count == 0

        connection = await asyncio.wait_for(waiter, timeout=1)
        assert loop.time() - released_at >= 0.15
        assert pool.active_count == 1
        await connection.close()

    @pytest.mark.asyncio
    async def test_active_never_exceeds_max(self, opened: list[FakeTransport]) -> None:
        peak = 0

        async def connector(endpoint: str) -> FakeTransport:
            return FakeTransport(endpoint)

        pool = ConnectionPool(connector, max_connections=3, grant_delay=0.0)

        async def worker() -> None:
            nonlocal peak
            connection = await pool.acquire("wss://a")
            peak = max(peak, pool.active_count)
            await asyncio.sleep(0.001)
            await connection.close()

        await asyncio.wait_for(asyncio.gather(*(worker() for _ in range(12))), timeout=2)
        assert peak == 3
        assert pool.active_count == 0


class TestRelease:
    @pytest.mark.asyncio
    async def test_double_close_releases_once(self, pool: ConnectionPool) -> None:
        first = await pool.acquire("wss://a")
        second = await pool.acquire("wss://a")
        await first.close()
        await first.close()
        assert pool.active_count == 1
        await second.close()

    @pytest.mark.asyncio
    async def test_send_error_closes_and_releases(
        self, pool: ConnectionPool, opened: list[FakeTransport]
    ) -> None:
        connection = await pool.acquire("wss://a")
        opened[0].fail_send = True
        with pytest.raises(OSError):
            await connection.send("ping")
        assert opened[0].closed
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_context_manager_releases(self, pool: ConnectionPool) -> None:
        async with await pool.acquire("wss://a") as connection:
            await connection.send("ping")
            assert pool.active_count == 1
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_connect_failure_releases_and_propagates(self) -> None:
        async def connector(endpoint: str) -> FakeTransport:
            raise OSError("refused")

        pool = ConnectionPool(connector, max_connections=1, grant_delay=0.0)
        with pytest.raises(OSError):
            await pool.acquire("wss://a")
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self, pool: ConnectionPool) -> None:
        held = [await pool.acquire("wss://a") for _ in range(3)]
        waiter = asyncio.create_task(pool.acquire("wss://b"))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        for c in held:
            await c.close()
        await asyncio.sleep(0.01)
        assert pool.active_count == 0
        assert pool.queued_count == 0
