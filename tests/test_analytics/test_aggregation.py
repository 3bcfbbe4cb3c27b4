"""Tests for time-range windowing, outlier trimming and bucketing."""

import math

import pytest

from ammtrail.analytics import aggregation
from ammtrail.analytics.aggregation import (
    FALLBACK_RECENT_COUNT,
    aggregate,
    select_window,
    trim_outliers,
)
from ammtrail.analytics.normalizer import CanonicalObservation
from ammtrail.models import TimeRange

NOW_MS = 1_700_000_000_000
MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


def obs(
    minutes_ago: float,
    price: float = 2.0,
    volume: float = 1.0,
    buying: bool = True,
) -> CanonicalObservation:
    return CanonicalObservation(
        time=int(NOW_MS - minutes_ago * MINUTE_MS),
        price=price,
        volume=volume,
        is_buying_base=buying,
    )


class TestSelectWindow:
    def test_filters_to_range_ascending(self) -> None:
        observations = [obs(10), obs(90), obs(30)]

        window = select_window(observations, TimeRange.H1, NOW_MS)

        assert [o.time for o in window] == [obs(30).time, obs(10).time]

    def test_all_keeps_everything(self) -> None:
        observations = [obs(60 * 24 * 400), obs(5)]
        assert len(select_window(observations, TimeRange.ALL, NOW_MS)) == 2

    def test_empty_window_falls_back_to_most_recent(self) -> None:
        observations = [obs(60 * 48 + i) for i in range(150)]

        window = select_window(observations, TimeRange.H1, NOW_MS)

        assert len(window) == FALLBACK_RECENT_COUNT
        assert window[-1].time == obs(60 * 48).time
        assert window == sorted(window, key=lambda o: o.time)


class TestTrimOutliers:
    def test_small_sets_untouched(self) -> None:
        observations = [obs(3, 100.0), obs(2, 200.0), obs(1, 100.0)]
        assert trim_outliers(observations) == observations

    def test_drops_extreme_price(self) -> None:
        observations = [obs(i, 2.0) for i in range(10)] + [obs(11, 50.0)]

        kept = trim_outliers(observations)

        assert len(kept) == 10
        assert all(o.price == 2.0 for o in kept)

    def test_preserves_input_order(self) -> None:
        observations = [obs(i, 2.0 + i * 0.01) for i in range(8)]
        assert trim_outliers(observations) == observations

    def test_heavy_tails_keep_at_least_half(self) -> None:
        prices = [100.0, 90.0, 2.0, 2.0, 2.0, 2.0, 2.0, 2.0, 0.01, 0.02]
        observations = [obs(i, price) for i, price in enumerate(prices)]

        kept = trim_outliers(observations)

        assert len(kept) >= math.ceil(len(observations) / 2)
        assert [o.price for o in kept] == [2.0] * 6

    def test_outlier_cap_keeps_later_outliers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(aggregation, "MAX_OUTLIER_SHARE", 0.2)
        prices = [100.0, 90.0, 2.0, 2.0, 2.0, 2.0, 2.0, 2.0, 0.01, 0.02]
        observations = [obs(i, price) for i, price in enumerate(prices)]

        kept = trim_outliers(observations)

        assert [o.price for o in kept] == [2.0] * 6 + [0.01, 0.02]

    def test_survivor_floor_returns_untrimmed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(aggregation, "MIN_SURVIVOR_SHARE", 0.7)
        prices = [100.0, 90.0, 2.0, 2.0, 2.0, 2.0, 2.0, 2.0, 0.01, 0.02]
        observations = [obs(i, price) for i, price in enumerate(prices)]

        assert trim_outliers(observations) == observations


class TestAggregate:
    def test_empty_input(self) -> None:
        assert aggregate([], TimeRange.H24, NOW_MS) == []

    def test_volume_weighted_bucket_at_midpoint(self) -> None:
        base = (NOW_MS - 30 * MINUTE_MS) // MINUTE_MS * MINUTE_MS
        observations = [
            CanonicalObservation(base + 1000, 2.0, 1.0, True),
            CanonicalObservation(base + 2000, 4.0, 3.0, False),
        ]

        points = aggregate(observations, TimeRange.H1, NOW_MS)

        assert len(points) == 1
        point = points[0]
        assert point.time == base + 30_000
        assert point.quote_per_base == pytest.approx(3.5)
        assert point.base_per_quote == pytest.approx(1 / 3.5)
        assert point.volume == 4.0

    def test_majority_direction_with_ties_buying(self) -> None:
        base = (NOW_MS - 30 * MINUTE_MS) // MINUTE_MS * MINUTE_MS
        observations = [
            CanonicalObservation(base + 1000, 2.0, 1.0, True),
            CanonicalObservation(base + 2000, 2.0, 1.0, False),
        ]

        points = aggregate(observations, TimeRange.H1, NOW_MS)

        assert points[0].is_buying_base is True

    def test_three_point_series_keeps_spike(self) -> None:
        observations = [obs(30, 100.0), obs(20, 200.0), obs(10, 100.0)]

        points = aggregate(observations, TimeRange.H1, NOW_MS)

        assert [p.quote_per_base for p in points] == [100.0, 200.0, 100.0]

    def test_points_ascending_and_at_least_one(self) -> None:
        observations = [obs(m, 1.0 + (m % 7) / 10, volume=0.5) for m in range(0, 600, 7)]

        points = aggregate(observations, TimeRange.H24, NOW_MS)

        assert points
        assert [p.time for p in points] == sorted(p.time for p in points)
        for p in points:
            assert p.quote_per_base >= 1
            assert math.isclose(p.quote_per_base * p.base_per_quote, 1.0)

    def test_unusable_observations_ignored(self) -> None:
        observations = [
            obs(10, float("inf")),
            obs(10, 2.0, volume=0.0),
            obs(10, -1.0),
        ]
        assert aggregate(observations, TimeRange.H1, NOW_MS) == []

    def test_volume_rounded_to_six_decimals(self) -> None:
        points = aggregate([obs(5, 2.0, volume=0.12345678)], TimeRange.H1, NOW_MS)
        assert points[0].volume == 0.123457

    def test_deterministic(self) -> None:
        observations = [obs(m * 13, 1.5 + (m % 3) / 10) for m in range(40)]
        first = aggregate(observations, TimeRange.D7, NOW_MS)
        second = aggregate(list(reversed(observations)), TimeRange.D7, NOW_MS)
        assert first == second

    def test_to_dict_uses_camel_case(self) -> None:
        point = aggregate([obs(5)], TimeRange.H1, NOW_MS)[0]
        assert set(point.to_dict()) == {
            "time",
            "quotePerBase",
            "basePerQuote",
            "volume",
            "isBuyingBase",
        }
