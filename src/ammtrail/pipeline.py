"""Pair history service -- cache-aware orchestration of discovery, fetch,
normalization, aggregation and statistics.

load_pair_history() flow:
  1. Processed cache hit with the same base orientation -> aggregate, done.
  2. Raw cache hit -> resume the fetch from the cached last ledger index via
     the cached pool address and merge new transactions in front.
  3. Miss -> discover the pool, fetch its full history.
  4. Normalize, write raw and processed entries, aggregate, summarize.

Progress milestones are reported through the optional callback. The service
never raises: failures come back as PairHistory.error.
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import InvalidOperation

from ammtrail.analytics.aggregation import TimeSeriesPoint, aggregate
from ammtrail.analytics.normalizer import (
    CanonicalObservation,
    NormalizationContext,
    determine_base_currency,
    extract_swap,
    last_ledger_index,
    normalize_all,
    transaction_hash,
)
from ammtrail.analytics.stats import StatsRecord, summarize
from ammtrail.data.cache import CacheLayer
from ammtrail.data.fetcher import HistoryFetcher
from ammtrail.data.models import CacheKind
from ammtrail.exceptions import HistoryUnavailableError
from ammtrail.ledger.codec import is_valid_account_address
from ammtrail.ledger.discovery import PoolDiscovery
from ammtrail.logging import get_logger, request_context
from ammtrail.models import (
    AssetOrder,
    ProgressCallback,
    ProgressUpdate,
    TimeRange,
    TradingPair,
)
from ammtrail.pnl.positions import SwapGroup, group_swaps_by_pair

logger = get_logger(__name__)

NO_POOL_ERROR = "No AMM pool found for this token pair"

#: Swaps kept per group in the aggregate cache namespace.
MAX_CACHED_SWAPS_PER_GROUP = 100


@dataclass
class PairHistory:
    """Outcome of loading a pair. error is set instead of raising."""

    points: list[TimeSeriesPoint] = field(default_factory=list)
    stats: StatsRecord = field(default_factory=StatsRecord)
    asset1_is_base: bool = True
    from_cache: bool = False
    error: str | None = None
    not_found: bool = False

    def to_dict(self) -> dict:
        return {
            "points": [p.to_dict() for p in self.points],
            "stats": self.stats.to_dict(),
            "asset1IsBase": self.asset1_is_base,
            "fromCache": self.from_cache,
            "error": self.error,
            "notFound": self.not_found,
        }


def merge_transactions(newer: list[dict], cached: list[dict]) -> list[dict]:
    """Newer transactions first, then cached ones, dropping repeated hashes."""
    seen: set[str] = set()
    merged = []
    for raw in [*newer, *cached]:
        tx_hash = transaction_hash(raw)
        if tx_hash is not None:
            if tx_hash in seen:
                continue
            seen.add(tx_hash)
        merged.append(raw)
    return merged


class PairHistoryService:
    """Loads chart data for trading pairs and swap groups for accounts.

    Usage:
        service = PairHistoryService(discovery, fetcher, cache)
        history = await service.load_pair_history(pair, TimeRange.D7, prices)
    """

    def __init__(
        self,
        discovery: PoolDiscovery,
        fetcher: HistoryFetcher,
        cache: CacheLayer,
    ) -> None:
        self._discovery = discovery
        self._fetcher = fetcher
        self._cache = cache

    # ──────────────────────────────────────────────
    # Pair history
    # ──────────────────────────────────────────────

    async def load_pair_history(
        self,
        pair: TradingPair,
        time_range: TimeRange,
        prices: Mapping[str, float | None],
        progress: ProgressCallback | None = None,
        now_ms: int | None = None,
    ) -> PairHistory:
        """Load, aggregate and summarize a pair's pool history."""
        asset1_is_base = determine_base_currency(pair, prices)
        with request_context(pair=pair.key, range=time_range.value):
            try:
                return await self._load(pair, time_range, asset1_is_base, progress, now_ms)
            except Exception as e:
                logger.error("pair_history_failed", error=str(e), exc_info=True)
                return PairHistory(
                    asset1_is_base=asset1_is_base,
                    error=str(e) or e.__class__.__name__,
                )

    async def _load(
        self,
        pair: TradingPair,
        time_range: TimeRange,
        asset1_is_base: bool,
        progress: ProgressCallback | None,
        now_ms: int | None,
    ) -> PairHistory:
        key = pair.key

        cached_observations = await self._cached_observations(key, asset1_is_base)
        if cached_observations is not None:
            await _emit(progress, "Loading cached chart data...", 100)
            logger.info("pair_history_cache_hit", kind="processed")
            return _build(cached_observations, time_range, asset1_is_base, True, now_ms)

        raw_entry = await self._cache.get(key, CacheKind.RAW)
        if raw_entry is not None and raw_entry.data:
            await _emit(progress, "Loading cached transaction data...", 30)
            order = _parse_order(raw_entry.extra.get("assetOrder"))
            pool_address = raw_entry.extra.get("poolAddress")
            transactions = raw_entry.data
            newer = await self._resume(pool_address, raw_entry.extra.get("lastLedgerIndex"))
            if newer:
                transactions = merge_transactions(newer, transactions)
                await self._store_raw(key, transactions, order, pool_address)
            logger.info(
                "pair_history_cache_hit",
                kind="raw",
                cached=len(raw_entry.data),
                new=len(newer),
            )
        else:
            await _emit(progress, "Searching for AMM pool...", 0)
            location = await self._discovery.resolve(pair.asset1, pair.asset2, progress)
            if location is None:
                return PairHistory(
                    asset1_is_base=asset1_is_base,
                    error=NO_POOL_ERROR,
                    not_found=True,
                )
            order, pool_address = location.order, location.address

            await _emit(progress, "Fetching AMM transactions...", 30)
            try:
                transactions = await self._fetcher.fetch_history(pool_address, progress=progress)
            except HistoryUnavailableError as e:
                return PairHistory(asset1_is_base=asset1_is_base, error=str(e))
            await self._store_raw(key, transactions, order, pool_address)

        await _emit(progress, "Processing AMM data...", 70)
        context = NormalizationContext(
            asset1=pair.asset1,
            asset2=pair.asset2,
            order=order,
            asset1_is_base=asset1_is_base,
        )
        observations = normalize_all(transactions, context)
        await self._cache.put(
            key,
            CacheKind.PROCESSED,
            [o.to_dict() for o in observations],
            asset1IsBase=asset1_is_base,
        )

        history = _build(observations, time_range, asset1_is_base, False, now_ms)
        await _emit(progress, "Complete!", 100)
        logger.info(
            "pair_history_loaded",
            transactions=len(transactions),
            observations=len(observations),
            points=len(history.points),
        )
        return history

    async def _cached_observations(
        self,
        key: str,
        asset1_is_base: bool,
    ) -> list[CanonicalObservation] | None:
        entry = await self._cache.get(key, CacheKind.PROCESSED)
        if entry is None or entry.extra.get("asset1IsBase") != asset1_is_base:
            return None
        try:
            return [CanonicalObservation.from_dict(item) for item in entry.data]
        except (KeyError, TypeError, ValueError):
            logger.warning("processed_cache_corrupt")
            await self._cache.delete(key, CacheKind.PROCESSED)
            return None

    async def _resume(self, pool_address: object, last_index: object) -> list[dict]:
        """Fetch transactions at or after the cached last ledger.

        Transient failures keep the cached data as-is.
        """
        if not isinstance(pool_address, str) or not isinstance(last_index, int):
            return []
        try:
            return await self._fetcher.fetch_history(pool_address, resume_from_ledger=last_index)
        except HistoryUnavailableError as e:
            logger.warning("resume_fetch_failed", address=pool_address, error=str(e))
            return []

    async def _store_raw(
        self,
        key: str,
        transactions: list[dict],
        order: AssetOrder,
        pool_address: str | None,
    ) -> None:
        await self._cache.put(
            key,
            CacheKind.RAW,
            transactions,
            assetOrder=order.value,
            lastLedgerIndex=last_ledger_index(transactions),
            poolAddress=pool_address,
        )

    # ──────────────────────────────────────────────
    # Account swap groups
    # ──────────────────────────────────────────────

    async def load_swap_groups(self, account: str) -> list[SwapGroup]:
        """Group an account's swaps by pair, newest first.

        Raises:
            ValueError: If the account address is malformed.
            HistoryUnavailableError: If no endpoint could be reached.
        """
        if not is_valid_account_address(account):
            raise ValueError(f"Invalid account address: {account}")

        with request_context(account=account):
            return await self._load_swap_groups(account)

    async def _load_swap_groups(self, account: str) -> list[SwapGroup]:
        entry = await self._cache.get(account, CacheKind.AGGREGATE)
        if entry is not None:
            try:
                return [SwapGroup.from_dict(item) for item in entry.data]
            except (KeyError, TypeError, ValueError, InvalidOperation):
                logger.warning("swap_groups_cache_corrupt")
                await self._cache.delete(account, CacheKind.AGGREGATE)

        transactions = await self._fetcher.fetch_history(account)
        swaps = [s for s in (extract_swap(tx) for tx in transactions) if s is not None]
        groups = group_swaps_by_pair(swaps)

        serialized = []
        for group in groups:
            payload = group.to_dict()
            payload["swaps"] = payload["swaps"][:MAX_CACHED_SWAPS_PER_GROUP]
            serialized.append(payload)
        await self._cache.put(account, CacheKind.AGGREGATE, serialized)

        logger.info(
            "swap_groups_loaded",
            transactions=len(transactions),
            swaps=len(swaps),
            groups=len(groups),
        )
        return groups


def _parse_order(value: object) -> AssetOrder:
    try:
        return AssetOrder(value)
    except ValueError:
        return AssetOrder.NORMAL


def _build(
    observations: list[CanonicalObservation],
    time_range: TimeRange,
    asset1_is_base: bool,
    from_cache: bool,
    now_ms: int | None,
) -> PairHistory:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    points = aggregate(observations, time_range, now_ms=now_ms)
    return PairHistory(
        points=points,
        stats=summarize(points, now_ms=now_ms),
        asset1_is_base=asset1_is_base,
        from_cache=from_cache,
    )


async def _emit(progress: ProgressCallback | None, message: str, percent: int) -> None:
    if progress is not None:
        await progress(ProgressUpdate(message=message, percent=percent))
