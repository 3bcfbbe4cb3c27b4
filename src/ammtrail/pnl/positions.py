"""Swap grouping by trading pair, open position detection, realized balances.

All amounts are Decimal. Swaps within a group are kept newest-first.
"""

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from ammtrail.models import NATIVE_CURRENCY, PAIR_KEY_SEPARATOR, Asset, SwapRecord

#: Balances whose magnitude is at or below this are treated as flat.
DUST_THRESHOLD = Decimal("0.000001")


def pair_key_for_assets(asset1: Asset, asset2: Asset) -> str:
    """Order-independent key for a pair of assets.

    The native asset's issuer is written as "XRP"; issued assets sort after
    native for the same currency.
    """

    def sort_key(asset: Asset) -> tuple[str, bool, str]:
        issuer = None if asset.is_native else asset.issuer
        return (asset.currency, issuer is not None, issuer or "")

    first, second = sorted([asset1, asset2], key=sort_key)

    def label(asset: Asset) -> str:
        issuer = None if asset.is_native else asset.issuer
        return f"{asset.currency}-{issuer or NATIVE_CURRENCY}"

    return f"{label(first)}{PAIR_KEY_SEPARATOR}{label(second)}"


@dataclass
class SwapGroup:
    """All swaps between two assets. asset1 is the first-seen sent asset."""

    asset1: Asset
    asset2: Asset
    swaps: list[SwapRecord] = field(default_factory=list)

    @property
    def pair_key(self) -> str:
        return pair_key_for_assets(self.asset1, self.asset2)

    @property
    def has_native_leg(self) -> bool:
        return self.asset1.is_native or self.asset2.is_native

    def to_dict(self) -> dict:
        return {
            "asset1": {"currency": self.asset1.currency, "issuer": self.asset1.issuer},
            "asset2": {"currency": self.asset2.currency, "issuer": self.asset2.issuer},
            "swaps": [s.to_dict() for s in self.swaps],
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "SwapGroup":
        return cls(
            asset1=Asset(payload["asset1"]["currency"], payload["asset1"].get("issuer")),
            asset2=Asset(payload["asset2"]["currency"], payload["asset2"].get("issuer")),
            swaps=[SwapRecord.from_dict(s) for s in payload["swaps"]],
        )


def group_swaps_by_pair(
    swaps: Iterable[SwapRecord],
    hidden_pairs: Collection[str] = (),
) -> list[SwapGroup]:
    """Group swaps by unordered asset pair, most recently active pair first."""
    groups: dict[str, SwapGroup] = {}
    for swap in sorted(swaps, key=lambda s: s.date, reverse=True):
        key = pair_key_for_assets(swap.sent_asset, swap.received_asset)
        if key in hidden_pairs:
            continue
        group = groups.get(key)
        if group is None:
            group = SwapGroup(asset1=swap.sent_asset, asset2=swap.received_asset)
            groups[key] = group
        group.swaps.append(swap)
    return list(groups.values())


@dataclass(frozen=True)
class OpenPosition:
    """Consecutive same-direction swaps at the head of a group."""

    sent_asset: Asset
    received_asset: Asset
    sent_amount: Decimal
    received_amount: Decimal
    swap_count: int


def open_position(group: SwapGroup) -> OpenPosition | None:
    """Walk swaps newest to oldest while they go the same way as the newest.

    Stops at the first swap in the opposite direction.
    """
    if not group.swaps:
        return None

    latest = group.swaps[0]
    forward = latest.sent_asset == group.asset1
    sent_total = Decimal("0")
    received_total = Decimal("0")
    count = 0

    for swap in group.swaps:
        if (swap.sent_asset == group.asset1) != forward:
            break
        sent_total += swap.v1
        received_total += swap.v2
        count += 1

    return OpenPosition(
        sent_asset=group.asset1 if forward else group.asset2,
        received_asset=group.asset2 if forward else group.asset1,
        sent_amount=sent_total,
        received_amount=received_total,
        swap_count=count,
    )


@dataclass(frozen=True)
class TokenBalance:
    currency: str
    issuer: str | None
    balance: Decimal

    def to_dict(self) -> dict:
        return {"currency": self.currency, "issuer": self.issuer, "balance": str(self.balance)}


@dataclass
class RealizedBalances:
    profitable: list[TokenBalance] = field(default_factory=list)
    deficit: list[TokenBalance] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "profitable": [t.to_dict() for t in self.profitable],
            "deficit": [t.to_dict() for t in self.deficit],
        }


def realized_balances(
    swaps: Iterable[SwapRecord],
    hidden_pairs: Collection[str] = (),
) -> RealizedBalances:
    """Net token flow across token-to-token swaps.

    Each swap debits v1 of the sold token and credits v2 of the bought one.
    Pairs with a native leg and hidden pairs are skipped.
    """
    balances: dict[tuple[str, str | None], Decimal] = {}
    for swap in swaps:
        if swap.sent_asset.is_native or swap.received_asset.is_native:
            continue
        if pair_key_for_assets(swap.sent_asset, swap.received_asset) in hidden_pairs:
            continue
        sold = (swap.c1, swap.i1)
        bought = (swap.c2, swap.i2)
        balances[sold] = balances.get(sold, Decimal("0")) - swap.v1
        balances[bought] = balances.get(bought, Decimal("0")) + swap.v2

    result = RealizedBalances()
    for (currency, issuer), balance in balances.items():
        if abs(balance) <= DUST_THRESHOLD:
            continue
        token = TokenBalance(currency=currency, issuer=issuer, balance=balance)
        if balance > 0:
            result.profitable.append(token)
        else:
            result.deficit.append(token)

    result.profitable.sort(key=lambda t: t.balance, reverse=True)
    result.deficit.sort(key=lambda t: t.balance)
    return result
