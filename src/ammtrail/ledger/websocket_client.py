"""Ledger client implementation over JSON WebSockets.

Each request borrows a connection from the shared ConnectionPool, sends one
JSON command tagged with a monotonically increasing id, waits for the
response carrying that id, and closes the connection. The whole round trip,
including time spent queued for a pool slot, is bounded by the caller's
timeout.
"""

import asyncio
import itertools
import json

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from ammtrail.config import NodeSettings
from ammtrail.exceptions import NodeRequestError
from ammtrail.ledger.client import LedgerClient
from ammtrail.ledger.connection_pool import ConnectionPool, Transport
from ammtrail.logging import get_logger

logger = get_logger(__name__)


class WebsocketLedgerClient(LedgerClient):
    """Concrete ledger client using the websockets library."""

    def __init__(
        self,
        settings: NodeSettings,
        pool: ConnectionPool | None = None,
    ) -> None:
        self._settings = settings
        self._pool = pool or ConnectionPool(
            self._open_connection,
            max_connections=settings.max_connections,
            grant_delay=settings.grant_delay,
            abort_timeout=settings.close_timeout,
        )
        self._ids = itertools.count(1)

    @property
    def pool(self) -> ConnectionPool:
        """Access the underlying connection pool."""
        return self._pool

    async def _open_connection(self, endpoint: str) -> Transport:
        return await connect(
            endpoint,
            open_timeout=self._settings.open_timeout,
            close_timeout=self._settings.close_timeout,
            max_size=None,
        )

    async def close(self) -> None:
        """Connections are per-request; nothing stays open between calls."""
        logger.debug("ledger_client_closed", active=self._pool.active_count)

    async def request(
        self,
        endpoint: str,
        command: str,
        params: dict,
        timeout: float,
    ) -> dict:
        """Send one command and return its "result" object.

        Raises NodeRequestError on timeout, socket failure, undecodable
        frames, or an error status from the node.
        """
        request_id = next(self._ids)
        payload = {"id": request_id, "command": command, **params}

        try:
            async with asyncio.timeout(timeout):
                response = await self._round_trip(endpoint, request_id, payload)
        except TimeoutError as e:
            raise NodeRequestError(endpoint, f"{command} timed out after {timeout}s") from e
        except (OSError, WebSocketException) as e:
            raise NodeRequestError(endpoint, f"{command} socket error: {e}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise NodeRequestError(endpoint, f"{command} malformed response") from e

        result = response.get("result")
        if response.get("status") == "error" or not isinstance(result, dict):
            error = response.get("error")
            if error is None and isinstance(result, dict):
                error = result.get("error")
            raise NodeRequestError(endpoint, f"{command} failed: {error or 'no result'}")
        return result

    async def _round_trip(self, endpoint: str, request_id: int, payload: dict) -> dict:
        connection = await self._pool.acquire(endpoint)
        async with connection:
            await connection.send(json.dumps(payload))
            while True:
                frame = await connection.recv()
                message = json.loads(frame)
                # Nodes may interleave unsolicited frames; match on id
                if isinstance(message, dict) and message.get("id") == request_id:
                    return message
