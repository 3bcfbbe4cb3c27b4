"""AMM pool discovery: resolve a trading pair to its pool account.

Tries every configured endpoint in order and, for each, the normal asset
ordering followed by the reversed one (reversed only when both legs are
issued assets). The first endpoint/ordering returning a pool account wins.

"No pool" is a legitimate outcome and is returned as None. Every request
failure, including timeouts on every endpoint, also ends in None: discovery
never raises for network reasons.
"""

from ammtrail.config import NodeSettings
from ammtrail.exceptions import NodeRequestError
from ammtrail.ledger.client import LedgerClient
from ammtrail.ledger.codec import (
    asset_descriptor,
    encode_currency_code,
    is_valid_account_address,
    is_valid_currency_code,
)
from ammtrail.logging import get_logger
from ammtrail.models import (
    Asset,
    AssetOrder,
    PoolLocation,
    ProgressCallback,
    ProgressUpdate,
)

logger = get_logger(__name__)


class PoolDiscovery:
    """Resolves trading pairs to AMM pool addresses.

    Usage:
        discovery = PoolDiscovery(client, settings.node)
        location = await discovery.resolve(Asset("USD", "rIssuer..."), Asset("XRP"))
    """

    def __init__(self, client: LedgerClient, settings: NodeSettings) -> None:
        self._client = client
        self._settings = settings

    async def resolve(
        self,
        asset1: Asset,
        asset2: Asset,
        progress: ProgressCallback | None = None,
    ) -> PoolLocation | None:
        """Return the pool location for the pair, or None if no pool was found."""
        if not (_is_valid_asset(asset1) and _is_valid_asset(asset2)):
            logger.info(
                "pool_discovery_invalid_assets",
                currency1=asset1.currency,
                currency2=asset2.currency,
            )
            return None

        if progress is not None:
            await progress(
                ProgressUpdate(
                    message=f"Searching for AMM pool for {asset1.currency}/{asset2.currency}...",
                    percent=10,
                )
            )

        orderings = [(asset1, asset2, AssetOrder.NORMAL)]
        if not asset1.is_native and not asset2.is_native:
            orderings.append((asset2, asset1, AssetOrder.REVERSED))

        for endpoint in self._settings.endpoints:
            for first, second, order in orderings:
                address = await self._query(endpoint, first, second)
                if address:
                    logger.info(
                        "pool_found",
                        endpoint=endpoint,
                        address=address,
                        order=order.value,
                    )
                    return PoolLocation(address=address, order=order)

        logger.info(
            "pool_not_found",
            currency1=asset1.currency,
            currency2=asset2.currency,
            endpoints=len(self._settings.endpoints),
        )
        return None

    async def _query(self, endpoint: str, first: Asset, second: Asset) -> str | None:
        try:
            result = await self._client.amm_info(
                endpoint,
                asset_descriptor(first),
                asset_descriptor(second),
                timeout=self._settings.discovery_timeout,
            )
        except NodeRequestError as e:
            logger.debug("amm_info_failed", endpoint=endpoint, error=str(e))
            return None

        amm = result.get("amm")
        if isinstance(amm, dict) and isinstance(amm.get("account"), str):
            return amm["account"]
        return None


def _is_valid_asset(asset: Asset) -> bool:
    if not is_valid_currency_code(encode_currency_code(asset.currency)):
        return False
    return asset.is_native or is_valid_account_address(asset.issuer)
