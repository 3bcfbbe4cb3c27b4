"""Summary statistics over an aggregated price series.

Pure float analytics: current, high, low, 24h change and total volume.
"""

import math
import time
from dataclasses import dataclass

from ammtrail.analytics.aggregation import TimeSeriesPoint

#: Share of sorted prices dropped from each tail before taking high/low.
TAIL_TRIM_SHARE = 0.02

DAY_MS = 24 * 3600 * 1000


@dataclass(frozen=True)
class StatsRecord:
    current: float = 0.0
    high: float = 0.0
    low: float = 0.0
    change_24h: float = 0.0  # percent
    volume: float = 0.0

    def to_dict(self) -> dict:
        return {
            "current": self.current,
            "high": self.high,
            "low": self.low,
            "change24h": self.change_24h,
            "volume": self.volume,
        }


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def summarize(series: list[TimeSeriesPoint], now_ms: int | None = None) -> StatsRecord:
    """Compute summary statistics for a series.

    Points with price < 1, a non-finite price, or a negative or non-finite
    volume are ignored. Empty input yields all zeros.

    Args:
        series: Points in ascending time order.
        now_ms: Reference time for the 24h change; defaults to now.

    Returns:
        StatsRecord with non-finite fields coerced to 0.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    valid = [
        p
        for p in series
        if p.quote_per_base >= 1
        and math.isfinite(p.quote_per_base)
        and p.volume >= 0
        and math.isfinite(p.volume)
    ]
    if not valid:
        return StatsRecord()

    prices = sorted(p.quote_per_base for p in valid)
    current = valid[-1].quote_per_base

    remove = math.floor(len(prices) * TAIL_TRIM_SHARE)
    trimmed = prices[remove : len(prices) - remove] or prices
    high = max(trimmed)
    low = min(trimmed)

    day_ago = now_ms - DAY_MS
    reference = next((p for p in valid if p.time >= day_ago), None)
    if reference is not None and reference.quote_per_base > 0:
        change = (current - reference.quote_per_base) / reference.quote_per_base * 100
    else:
        change = 0.0

    volume = sum(p.volume for p in valid)

    return StatsRecord(
        current=_finite_or_zero(current),
        high=_finite_or_zero(high),
        low=_finite_or_zero(low),
        change_24h=_finite_or_zero(change),
        volume=_finite_or_zero(volume),
    )
