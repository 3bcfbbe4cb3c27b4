"""Ledger access layer -- bounded WebSocket connections, node client, pool discovery."""

from ammtrail.ledger.client import LedgerClient
from ammtrail.ledger.connection_pool import ConnectionPool, PooledConnection
from ammtrail.ledger.discovery import PoolDiscovery
from ammtrail.ledger.websocket_client import WebsocketLedgerClient

__all__ = [
    "ConnectionPool",
    "LedgerClient",
    "PoolDiscovery",
    "PooledConnection",
    "WebsocketLedgerClient",
]
