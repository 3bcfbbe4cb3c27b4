"""Bucket canonical observations into a chart-ready price series.

Pipeline: filter to the selected time range, trim IQR outliers, bucket by a
range-dependent width, and emit one volume-weighted point per non-empty
bucket at the bucket midpoint.

All functions are pure; the current time is injectable for tests.
"""

import math
import time
from collections.abc import Iterable
from dataclasses import dataclass

from ammtrail.analytics.normalizer import CanonicalObservation
from ammtrail.models import TimeRange

#: Used when the selected range contains no observations.
FALLBACK_RECENT_COUNT = 100

#: Trimming needs at least this many values.
MIN_TRIM_SAMPLE = 5

#: Never drop more than this share of the set as outliers.
MAX_OUTLIER_SHARE = 0.5

#: If fewer than this share survives trimming, use the untrimmed set.
MIN_SURVIVOR_SHARE = 0.3

IQR_MULTIPLIER = 1.5
VOLUME_DECIMALS = 6


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One chart point. quote_per_base is always >= 1."""

    time: int  # Unix milliseconds, bucket midpoint
    quote_per_base: float
    base_per_quote: float
    volume: float
    is_buying_base: bool

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "quotePerBase": self.quote_per_base,
            "basePerQuote": self.base_per_quote,
            "volume": self.volume,
            "isBuyingBase": self.is_buying_base,
        }


def _is_usable(observation: CanonicalObservation) -> bool:
    return (
        observation.price > 0
        and math.isfinite(observation.price)
        and observation.volume > 0
        and math.isfinite(observation.volume)
    )


def select_window(
    observations: list[CanonicalObservation],
    time_range: TimeRange,
    now_ms: int,
) -> list[CanonicalObservation]:
    """Observations inside [now - range, now], ascending by time.

    Falls back to the most recent observations when the window is empty.
    """
    lookback = time_range.lookback_seconds
    if lookback is None:
        selected = list(observations)
    else:
        start = now_ms - lookback * 1000
        selected = [o for o in observations if start <= o.time <= now_ms]
        if not selected:
            selected = sorted(observations, key=lambda o: o.time)[-FALLBACK_RECENT_COUNT:]

    selected.sort(key=lambda o: o.time)
    return selected


def trim_outliers(observations: list[CanonicalObservation]) -> list[CanonicalObservation]:
    """Drop IQR outliers, bounded so at most half of the set is removed.

    Sets smaller than MIN_TRIM_SAMPLE are returned unchanged. If trimming
    leaves fewer than MIN_SURVIVOR_SHARE of the input, the input is returned.
    """
    n = len(observations)
    if n < MIN_TRIM_SAMPLE:
        return list(observations)

    prices = sorted(o.price for o in observations)
    q1 = prices[math.floor(n * 0.25)]
    q3 = prices[math.floor(n * 0.75)]
    iqr = q3 - q1
    lower = max(0.0, q1 - IQR_MULTIPLIER * iqr)
    upper = q3 + IQR_MULTIPLIER * iqr

    kept: list[CanonicalObservation] = []
    dropped = 0
    for observation in observations:
        is_outlier = observation.price < lower or observation.price > upper
        if is_outlier and dropped + 1 <= n * MAX_OUTLIER_SHARE:
            dropped += 1
            continue
        kept.append(observation)

    if len(kept) < max(1, n * MIN_SURVIVOR_SHARE):
        return list(observations)
    return kept


@dataclass
class _Bucket:
    weighted_price: float = 0.0
    volume: float = 0.0
    buys: int = 0
    sells: int = 0


def aggregate(
    observations: Iterable[CanonicalObservation],
    time_range: TimeRange,
    now_ms: int | None = None,
) -> list[TimeSeriesPoint]:
    """Build the bucketed price series for a time range.

    Deterministic for a given (observations, time_range, now_ms).
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    usable = [o for o in observations if _is_usable(o)]
    if not usable:
        return []

    window = select_window(usable, time_range, now_ms)
    trimmed = trim_outliers(window)

    width_ms = time_range.bucket_seconds * 1000
    buckets: dict[int, _Bucket] = {}
    for observation in trimmed:
        key = (observation.time // width_ms) * width_ms
        bucket = buckets.setdefault(key, _Bucket())
        bucket.weighted_price += observation.price * observation.volume
        bucket.volume += observation.volume
        if observation.is_buying_base:
            bucket.buys += 1
        else:
            bucket.sells += 1

    points: list[TimeSeriesPoint] = []
    for key in sorted(buckets):
        bucket = buckets[key]
        if bucket.volume <= 0:
            continue
        price = bucket.weighted_price / bucket.volume
        if not (price > 0 and math.isfinite(price)):
            continue
        if price < 1:
            price = 1 / price
        if not math.isfinite(price):
            continue
        points.append(
            TimeSeriesPoint(
                time=key + width_ms // 2,
                quote_per_base=price,
                base_per_quote=1 / price,
                volume=round(bucket.volume, VOLUME_DECIMALS),
                is_buying_base=bucket.buys >= bucket.sells,
            )
        )
    return points
