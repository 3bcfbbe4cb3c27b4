"""Tests for PairHistoryService: cache tiers, resume, progress and failures.

Discovery and fetcher are mocked; the cache is real and memory-backed.
"""

from unittest.mock import AsyncMock

import pytest

from ammtrail.config import CacheSettings
from ammtrail.data.cache import CacheLayer
from ammtrail.data.models import CacheKind
from ammtrail.data.storage import MemoryStorage
from ammtrail.exceptions import HistoryUnavailableError
from ammtrail.models import AssetOrder, PoolLocation, ProgressUpdate, TimeRange, TradingPair
from ammtrail.pipeline import NO_POOL_ERROR, PairHistoryService, merge_transactions
from factories import ACCOUNT, LEDGER_EPOCH_MS, POOL_ADDRESS, USD_ISSUER, drops, eur, payment, usd

PAIR = TradingPair("USD", USD_ISSUER, "XRP", None)
DATE = 750_000_000
NOW_MS = LEDGER_EPOCH_MS + DATE * 1000 + 10 * 60 * 1000


def history(count: int, start_ledger: int = 100) -> list[dict]:
    """Pool payments, newest first, one minute apart."""
    return [
        payment(
            usd("10"),
            drops(25),
            date=DATE - i * 60,
            ledger_index=start_ledger + count - i,
            tx_hash=f"{start_ledger + count - i:064X}",
        )
        for i in range(count)
    ]


@pytest.fixture
def cache() -> CacheLayer:
    return CacheLayer(MemoryStorage(), CacheSettings())


@pytest.fixture
def discovery() -> AsyncMock:
    mock = AsyncMock()
    mock.resolve = AsyncMock(return_value=PoolLocation(POOL_ADDRESS, AssetOrder.NORMAL))
    return mock


@pytest.fixture
def fetcher() -> AsyncMock:
    mock = AsyncMock()
    mock.fetch_history = AsyncMock(return_value=history(5))
    return mock


@pytest.fixture
def service(discovery: AsyncMock, fetcher: AsyncMock, cache: CacheLayer) -> PairHistoryService:
    return PairHistoryService(discovery, fetcher, cache)


def recorder() -> tuple[list[ProgressUpdate], object]:
    updates: list[ProgressUpdate] = []

    async def progress(update: ProgressUpdate) -> None:
        updates.append(update)

    return updates, progress


class TestMergeTransactions:
    def test_newer_first_and_deduplicated(self) -> None:
        old = history(3, start_ledger=100)
        new = history(2, start_ledger=102)

        merged = merge_transactions(new, old)

        hashes = [raw["tx"]["hash"] for raw in merged]
        assert len(hashes) == len(set(hashes))
        assert hashes[0] == f"{104:064X}"
        assert len(merged) == 4


class TestLoadPairHistory:
    @pytest.mark.asyncio
    async def test_cold_load(
        self,
        service: PairHistoryService,
        fetcher: AsyncMock,
        cache: CacheLayer,
    ) -> None:
        updates, progress = recorder()

        result = await service.load_pair_history(PAIR, TimeRange.H1, {}, progress, now_ms=NOW_MS)

        assert result.error is None
        assert not result.from_cache
        assert result.asset1_is_base is True
        assert len(result.points) == 5
        assert result.stats.current == 2.5
        assert [u.percent for u in updates] == [0, 30, 70, 100]
        fetcher.fetch_history.assert_awaited_once_with(POOL_ADDRESS, progress=progress)

        raw = await cache.get(PAIR.key, CacheKind.RAW)
        assert raw is not None
        assert raw.extra == {
            "assetOrder": "normal",
            "lastLedgerIndex": 105,
            "poolAddress": POOL_ADDRESS,
        }
        processed = await cache.get(PAIR.key, CacheKind.PROCESSED)
        assert processed is not None
        assert processed.extra == {"asset1IsBase": True}
        assert len(processed.data) == 5

    @pytest.mark.asyncio
    async def test_processed_cache_hit(
        self,
        service: PairHistoryService,
        fetcher: AsyncMock,
        discovery: AsyncMock,
    ) -> None:
        first = await service.load_pair_history(PAIR, TimeRange.H1, {}, now_ms=NOW_MS)
        updates, progress = recorder()

        second = await service.load_pair_history(PAIR, TimeRange.H1, {}, progress, now_ms=NOW_MS)

        assert second.from_cache
        assert second.points == first.points
        assert [u.percent for u in updates] == [100]
        assert fetcher.fetch_history.await_count == 1
        assert discovery.resolve.await_count == 1

    @pytest.mark.asyncio
    async def test_orientation_change_resumes_from_raw_cache(
        self,
        service: PairHistoryService,
        fetcher: AsyncMock,
        discovery: AsyncMock,
        cache: CacheLayer,
    ) -> None:
        await service.load_pair_history(PAIR, TimeRange.H1, {}, now_ms=NOW_MS)
        fetcher.fetch_history = AsyncMock(return_value=history(2, start_ledger=104))
        flipped = {PAIR.asset1.price_key: 1.0, PAIR.asset2.price_key: 2.0}

        result = await service.load_pair_history(PAIR, TimeRange.H1, flipped, now_ms=NOW_MS)

        assert not result.asset1_is_base
        assert discovery.resolve.await_count == 1
        fetcher.fetch_history.assert_awaited_once_with(POOL_ADDRESS, resume_from_ledger=105)
        raw = await cache.get(PAIR.key, CacheKind.RAW)
        assert raw is not None
        # Ledger 105 is shared between the cached and resumed pages
        assert len(raw.data) == 6
        assert raw.extra["lastLedgerIndex"] == 106
        assert all(p.is_buying_base for p in result.points)

    @pytest.mark.asyncio
    async def test_resume_failure_keeps_cached_data(
        self,
        service: PairHistoryService,
        fetcher: AsyncMock,
    ) -> None:
        await service.load_pair_history(PAIR, TimeRange.H1, {}, now_ms=NOW_MS)
        fetcher.fetch_history = AsyncMock(side_effect=HistoryUnavailableError("down"))
        flipped = {PAIR.asset1.price_key: 1.0, PAIR.asset2.price_key: 2.0}

        result = await service.load_pair_history(PAIR, TimeRange.H1, flipped, now_ms=NOW_MS)

        assert result.error is None
        assert len(result.points) == 5

    @pytest.mark.asyncio
    async def test_no_pool(self, service: PairHistoryService, discovery: AsyncMock) -> None:
        discovery.resolve = AsyncMock(return_value=None)

        result = await service.load_pair_history(PAIR, TimeRange.H1, {}, now_ms=NOW_MS)

        assert result.not_found
        assert result.error == NO_POOL_ERROR
        assert result.points == []

    @pytest.mark.asyncio
    async def test_history_unavailable(self, service: PairHistoryService, fetcher: AsyncMock) -> None:
        fetcher.fetch_history = AsyncMock(side_effect=HistoryUnavailableError("all endpoints failed"))

        result = await service.load_pair_history(PAIR, TimeRange.H1, {}, now_ms=NOW_MS)

        assert result.error == "all endpoints failed"
        assert not result.not_found

    @pytest.mark.asyncio
    async def test_unexpected_error_is_returned_not_raised(
        self, service: PairHistoryService, discovery: AsyncMock
    ) -> None:
        discovery.resolve = AsyncMock(side_effect=RuntimeError("boom"))

        result = await service.load_pair_history(PAIR, TimeRange.H1, {}, now_ms=NOW_MS)

        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_empty_history_is_not_an_error(
        self, service: PairHistoryService, fetcher: AsyncMock
    ) -> None:
        fetcher.fetch_history = AsyncMock(return_value=[])

        result = await service.load_pair_history(PAIR, TimeRange.H1, {}, now_ms=NOW_MS)

        assert result.error is None
        assert result.points == []
        assert result.stats.current == 0.0


class TestLoadSwapGroups:
    @pytest.mark.asyncio
    async def test_invalid_address(self, service: PairHistoryService) -> None:
        with pytest.raises(ValueError):
            await service.load_swap_groups("not-an-address")

    @pytest.mark.asyncio
    async def test_groups_and_cache(
        self, service: PairHistoryService, fetcher: AsyncMock, cache: CacheLayer
    ) -> None:
        transactions = history(120) + [payment(usd("5"), eur("4"), tx_hash="E" * 64)]
        fetcher.fetch_history = AsyncMock(return_value=transactions)

        groups = await service.load_swap_groups(ACCOUNT)

        assert len(groups) == 2
        assert sum(len(g.swaps) for g in groups) == 121
        fetcher.fetch_history.assert_awaited_once_with(ACCOUNT)

        cached = await service.load_swap_groups(ACCOUNT)
        assert fetcher.fetch_history.await_count == 1
        assert max(len(g.swaps) for g in cached) == 100
        entry = await cache.get(ACCOUNT, CacheKind.AGGREGATE)
        assert entry is not None

    @pytest.mark.asyncio
    async def test_unavailable_propagates(
        self, service: PairHistoryService, fetcher: AsyncMock
    ) -> None:
        fetcher.fetch_history = AsyncMock(side_effect=HistoryUnavailableError("down"))
        with pytest.raises(HistoryUnavailableError):
            await service.load_swap_groups(ACCOUNT)
