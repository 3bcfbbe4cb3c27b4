"""Abstract ledger client interface.

Defines the contract for talking to remote ledger nodes. Discovery and the
history fetcher depend only on this interface, keeping socket details isolated
in the concrete implementation.
"""

from abc import ABC, abstractmethod


class LedgerClient(ABC):
    """Abstract base class for ledger node clients.

    Every method targets one explicit endpoint: failover across endpoints is
    the caller's job. Failures (timeout, socket error, malformed or error
    response) raise NodeRequestError.
    """

    @abstractmethod
    async def close(self) -> None:
        """Release any resources held by the client."""
        ...

    @abstractmethod
    async def request(
        self,
        endpoint: str,
        command: str,
        params: dict,
        timeout: float,
    ) -> dict:
        """Send one command and return the matching response's "result" object."""
        ...

    async def amm_info(
        self,
        endpoint: str,
        asset: dict,
        asset2: dict,
        timeout: float,
    ) -> dict:
        """Look up the AMM pool holding asset/asset2."""
        return await self.request(
            endpoint, "amm_info", {"asset": asset, "asset2": asset2}, timeout
        )

    async def account_tx(
        self,
        endpoint: str,
        account: str,
        limit: int,
        timeout: float,
        ledger_index_min: int = -1,
        marker: object | None = None,
    ) -> dict:
        """Fetch one page of an account's transaction history, newest first.

        Pagination is NOT handled here -- callers pass back the "marker" of
        the previous result to continue.
        """
        params: dict = {
            "account": account,
            "ledger_index_min": ledger_index_min,
            "ledger_index_max": -1,
            "limit": limit,
            "forward": False,
        }
        if marker is not None:
            params["marker"] = marker
        return await self.request(endpoint, "account_tx", params, timeout)
