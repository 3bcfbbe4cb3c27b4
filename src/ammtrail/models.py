"""Shared data models for the AMM history pipeline.

Prices and volumes in the chart path are floats (they are display series and
are guarded for finiteness); money in the quote path is Decimal, see pnl.quote.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

NATIVE_CURRENCY = "XRP"

#: Separator between the two sorted "{currency}-{issuer}" halves of a pair key.
PAIR_KEY_SEPARATOR = "->"


class AssetOrder(str, Enum):
    """Which asset ordering the AMM pool was found under."""

    NORMAL = "normal"
    REVERSED = "reversed"


class TimeRange(str, Enum):
    """Selectable chart range with its lookback and bucket width."""

    H1 = "1H"
    H6 = "6H"
    H24 = "24H"
    D7 = "7D"
    D30 = "30D"
    ALL = "ALL"

    @classmethod
    def parse(cls, token: str | None) -> "TimeRange":
        """Return the matching range; unknown tokens fall back to 30D."""
        try:
            return cls(str(token).upper())
        except ValueError:
            return cls.D30

    @property
    def lookback_seconds(self) -> int | None:
        """Length of the filter window, None for ALL."""
        return _LOOKBACK_SECONDS[self]

    @property
    def bucket_seconds(self) -> int:
        return _BUCKET_SECONDS[self]


_LOOKBACK_SECONDS: dict[TimeRange, int | None] = {
    TimeRange.H1: 3600,
    TimeRange.H6: 6 * 3600,
    TimeRange.H24: 24 * 3600,
    TimeRange.D7: 7 * 24 * 3600,
    TimeRange.D30: 30 * 24 * 3600,
    TimeRange.ALL: None,
}

_BUCKET_SECONDS: dict[TimeRange, int] = {
    TimeRange.H1: 60,
    TimeRange.H6: 300,
    TimeRange.H24: 900,
    TimeRange.D7: 3600,
    TimeRange.D30: 14400,
    TimeRange.ALL: 14400,
}


@dataclass(frozen=True)
class Asset:
    """One side of a trading pair. The native asset has no issuer."""

    currency: str
    issuer: str | None = None

    @property
    def is_native(self) -> bool:
        return self.currency == NATIVE_CURRENCY

    @property
    def price_key(self) -> str:
        """Key into the external price lookup table."""
        return f"{self.currency}-{self.issuer}"


@dataclass(frozen=True)
class TradingPair:
    """Trading pair identity as supplied by the caller."""

    currency1: str
    issuer1: str | None
    currency2: str
    issuer2: str | None

    @property
    def asset1(self) -> Asset:
        return Asset(self.currency1, self.issuer1)

    @property
    def asset2(self) -> Asset:
        return Asset(self.currency2, self.issuer2)

    @property
    def key(self) -> str:
        """Order-independent key: key(A, B) == key(B, A)."""
        return normalized_pair_key(
            self.currency1, self.issuer1, self.currency2, self.issuer2
        )


def normalized_pair_key(
    currency1: str,
    issuer1: str | None,
    currency2: str,
    issuer2: str | None,
) -> str:
    """Build the commutative cache/discovery key for a pair of assets.

    The native asset's issuer is written as "XRP" whatever the caller sent.
    """
    halves = sorted([_key_half(currency1, issuer1), _key_half(currency2, issuer2)])
    return f"{halves[0]}{PAIR_KEY_SEPARATOR}{halves[1]}"


def _key_half(currency: str, issuer: str | None) -> str:
    if currency == NATIVE_CURRENCY:
        return f"{currency}-{NATIVE_CURRENCY}"
    return f"{currency}-{issuer or ''}"


@dataclass(frozen=True)
class PoolLocation:
    """Result of pool discovery: the AMM account and the ordering it matched."""

    address: str
    order: AssetOrder


@dataclass
class ProgressUpdate:
    """Progress milestone emitted to the caller while loading a pair."""

    message: str
    percent: int


ProgressCallback = Callable[[ProgressUpdate], Awaitable[None]]


@dataclass(frozen=True)
class SwapRecord:
    """One payment seen from the sender's side: sold v1 of c1, received v2 of c2.

    Issuers are None for the native asset.
    """

    c1: str
    i1: str | None
    v1: Decimal
    c2: str
    i2: str | None
    v2: Decimal
    date: int  # Unix milliseconds
    hash: str | None = None

    @property
    def sent_asset(self) -> Asset:
        return Asset(self.c1, self.i1)

    @property
    def received_asset(self) -> Asset:
        return Asset(self.c2, self.i2)

    def to_dict(self) -> dict:
        """Serialize for JSON, Decimals as strings."""
        return {
            "hash": self.hash,
            "c1": self.c1,
            "i1": self.i1,
            "v1": str(self.v1),
            "c2": self.c2,
            "i2": self.i2,
            "v2": str(self.v2),
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "SwapRecord":
        return cls(
            c1=payload["c1"],
            i1=payload.get("i1"),
            v1=Decimal(str(payload["v1"])),
            c2=payload["c2"],
            i2=payload.get("i2"),
            v2=Decimal(str(payload["v2"])),
            date=int(payload["date"]),
            hash=payload.get("hash"),
        )
