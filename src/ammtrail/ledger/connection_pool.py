"""Bounded connection pool shared by every ledger request.

Public nodes rate-limit aggressively, so the pool caps the number of open
sockets across ALL endpoints (not per endpoint). Requests beyond the cap wait
in a FIFO queue. When a connection is released, the next waiter is granted
its slot after a short delay so that a burst of releases does not turn into a
burst of reconnects.

All state mutation happens synchronously inside pool methods on the event
loop, so no lock is required.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, Self

from ammtrail.logging import get_logger

logger = get_logger(__name__)


class Transport(Protocol):
    """Minimal socket interface the pool hands out (a websockets connection)."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> Any: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


class PooledConnection:
    """A transport bound to a pool slot.

    The slot is returned exactly once: on explicit close(), on leaving the
    async context, or when send/recv raises. Later calls are no-ops.
    After a failed send/recv the close handshake is bounded by abort_timeout.
    """

    def __init__(
        self,
        endpoint: str,
        transport: Transport,
        on_release: Callable[[], None],
        abort_timeout: float = 0.5,
    ) -> None:
        self.endpoint = endpoint
        self._transport = transport
        self._on_release = on_release
        self._abort_timeout = abort_timeout
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def send(self, message: str) -> None:
        try:
            await self._transport.send(message)
        except BaseException:
            await self._shutdown(self._abort_timeout)
            raise

    async def recv(self) -> Any:
        try:
            return await self._transport.recv()
        except BaseException:
            await self._shutdown(self._abort_timeout)
            raise

    async def close(self) -> None:
        """Close the socket and give the slot back to the pool."""
        await self._shutdown(None)

    async def _shutdown(self, timeout: float | None) -> None:
        if self._released:
            return
        self._released = True
        try:
            async with asyncio.timeout(timeout):
                await self._transport.close()
        except Exception:
            logger.debug("connection_close_failed", endpoint=self.endpoint, exc_info=True)
        finally:
            self._on_release()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()


class ConnectionPool:
    """Caps concurrent connections and queues the rest in FIFO order.

    Usage:
        pool = ConnectionPool(connector, max_connections=3)
        async with await pool.acquire("wss://xrplcluster.com") as conn:
            await conn.send(payload)
            reply = await conn.recv()

    The pool never retries: if the connector raises, the slot is freed and the
    error goes to the caller, which decides about failover.
    """

    def __init__(
        self,
        connector: Connector,
        max_connections: int = 3,
        grant_delay: float = 0.05,
        abort_timeout: float = 0.5,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self._connector = connector
        self._max_connections = max_connections
        self._grant_delay = grant_delay
        self._abort_timeout = abort_timeout
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._grant_scheduled = False

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queued_count(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def max_connections(self) -> int:
        return self._max_connections

    async def acquire(self, endpoint: str) -> PooledConnection:
        """Wait for a slot, then open a connection to endpoint."""
        await self._reserve_slot()
        try:
            transport = await self._connector(endpoint)
        except BaseException:
            self._release_slot()
            raise
        logger.debug(
            "connection_acquired",
            endpoint=endpoint,
            active=self._active,
            queued=self.queued_count,
        )
        return PooledConnection(
            endpoint, transport, self._release_slot, abort_timeout=self._abort_timeout
        )

    # ──────────────────────────────────────────────
    # Slot bookkeeping
    # ──────────────────────────────────────────────

    async def _reserve_slot(self) -> None:
        # Fast path only when nobody is queued ahead of us (keeps FIFO order)
        if self._active < self._max_connections and not self._waiters:
            self._active += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was granted just as we were cancelled: hand it back
                self._release_slot()
            else:
                self._discard_waiter(waiter)
            raise

    def _discard_waiter(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def _release_slot(self) -> None:
        self._active -= 1
        if self._waiters and not self._grant_scheduled:
            self._grant_scheduled = True
            asyncio.get_running_loop().call_later(self._grant_delay, self._grant_next)

    def _grant_next(self) -> None:
        self._grant_scheduled = False
        while self._waiters and self._active < self._max_connections:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._active += 1
            waiter.set_result(None)
