"""Paginated account history fetch with endpoint failover.

Walks an account's transaction history backwards (newest first) one page at
a time using the node's continuation marker. Each page has its own timeout;
a failed or timed-out page stops pagination for that endpoint and whatever
was collected so far is kept.

Endpoints are tried in configured order and the first one yielding any
transactions is used exclusively. Results from different endpoints are
never merged.
"""

import asyncio
import math

from ammtrail.config import FetchSettings, NodeSettings
from ammtrail.exceptions import HistoryUnavailableError, NodeRequestError
from ammtrail.ledger.client import LedgerClient
from ammtrail.logging import get_logger
from ammtrail.models import ProgressCallback, ProgressUpdate

logger = get_logger(__name__)


class HistoryFetcher:
    """Fetches raw transaction history for an account.

    Usage:
        fetcher = HistoryFetcher(client, settings.node, settings.fetch)
        transactions = await fetcher.fetch_history(pool_address)
    """

    def __init__(
        self,
        client: LedgerClient,
        node_settings: NodeSettings,
        fetch_settings: FetchSettings,
    ) -> None:
        self._client = client
        self._node_settings = node_settings
        self._settings = fetch_settings

    async def fetch_history(
        self,
        address: str,
        resume_from_ledger: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[dict]:
        """Return raw transactions for the account, newest first.

        With resume_from_ledger only ledgers at or above it are requested.
        Raises HistoryUnavailableError if no endpoint answered a single page;
        an empty list means the account simply has no (new) history.
        """
        ledger_index_min = resume_from_ledger if resume_from_ledger is not None else -1
        any_answered = False

        for endpoint in self._node_settings.endpoints:
            transactions, answered = await self._fetch_pages(
                endpoint, address, ledger_index_min, progress
            )
            any_answered = any_answered or answered
            if transactions:
                logger.info(
                    "history_fetched",
                    endpoint=endpoint,
                    address=address,
                    transactions=len(transactions),
                    ledger_index_min=ledger_index_min,
                )
                return transactions

        if not any_answered:
            logger.warning(
                "history_unavailable",
                address=address,
                endpoints=len(self._node_settings.endpoints),
            )
            raise HistoryUnavailableError(
                f"Could not fetch transactions for {address}: all endpoints failed"
            )

        logger.info("history_empty", address=address, ledger_index_min=ledger_index_min)
        return []

    async def _fetch_pages(
        self,
        endpoint: str,
        address: str,
        ledger_index_min: int,
        progress: ProgressCallback | None,
    ) -> tuple[list[dict], bool]:
        """Page through one endpoint.

        Returns (transactions, answered) where answered is True if at least
        one page came back from the node, even an empty one.
        """
        collected: list[dict] = []
        answered = False
        marker: object | None = None
        pages = 0
        max_pages = self._settings.max_pages

        while pages < max_pages:
            try:
                result = await self._client.account_tx(
                    endpoint,
                    address,
                    limit=self._settings.page_size,
                    timeout=self._settings.page_timeout,
                    ledger_index_min=ledger_index_min,
                    marker=marker,
                )
            except NodeRequestError as e:
                logger.warning(
                    "history_page_failed",
                    endpoint=endpoint,
                    address=address,
                    page=pages + 1,
                    error=str(e),
                )
                break

            answered = True
            page = result.get("transactions")
            if not isinstance(page, list) or not page:
                break

            collected.extend(page)
            marker = result.get("marker")
            pages += 1

            if progress is not None:
                await progress(
                    ProgressUpdate(
                        message=f"Fetching AMM transactions... Page {pages} of {max_pages}",
                        percent=min(30 + math.floor(pages / max_pages * 50), 80),
                    )
                )

            if not marker:
                break
            if pages < max_pages:
                await asyncio.sleep(self._settings.page_delay)

        return collected, answered
