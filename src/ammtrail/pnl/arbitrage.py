"""Arbitrage chain search over profitable reverse quotes.

A chain is a sequence of token-to-token pairs where each link starts from
the asset the previous link received (same currency and issuer). No pair is
used twice in a chain.
"""

from collections.abc import Collection, Mapping
from dataclasses import dataclass
from decimal import Decimal

from ammtrail.models import Asset
from ammtrail.pnl.positions import SwapGroup, open_position
from ammtrail.pnl.quote import QuoteRecord

MAX_CHAIN_LENGTH = 4
MIN_CHAIN_LENGTH = 2
MAX_CHAINS = 10
DEFAULT_THRESHOLD = Decimal("0.5")  # percent


@dataclass(frozen=True)
class ChainLink:
    pair_key: str
    from_asset: Asset
    to_asset: Asset
    profit_percent: Decimal
    from_amount: Decimal
    to_amount: Decimal


@dataclass(frozen=True)
class ArbitrageChain:
    links: tuple[ChainLink, ...]
    total_profit_percent: Decimal

    @property
    def path(self) -> str:
        return " -> ".join(
            f"{link.from_asset.currency}>{link.to_asset.currency}" for link in self.links
        )

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "total_profit_percent": str(self.total_profit_percent),
            "links": [
                {
                    "pair_key": link.pair_key,
                    "from": {"currency": link.from_asset.currency, "issuer": link.from_asset.issuer},
                    "to": {"currency": link.to_asset.currency, "issuer": link.to_asset.issuer},
                    "profit_percent": str(link.profit_percent),
                    "from_amount": str(link.from_amount),
                    "to_amount": str(link.to_amount),
                }
                for link in self.links
            ],
        }


def _profitable_links(
    groups: list[SwapGroup],
    quotes: Mapping[str, QuoteRecord],
    hidden_pairs: Collection[str],
    threshold: Decimal,
) -> list[ChainLink]:
    links = []
    for group in groups:
        key = group.pair_key
        if key in hidden_pairs or group.has_native_leg:
            continue
        quote = quotes.get(key)
        if quote is None or not quote.is_profit or quote.profit_percent < threshold:
            continue
        position = open_position(group)
        if position is None:
            continue
        links.append(
            ChainLink(
                pair_key=key,
                from_asset=position.sent_asset,
                to_asset=position.received_asset,
                profit_percent=quote.profit_percent,
                from_amount=quote.original_amount,
                to_amount=quote.received_amount,
            )
        )
    return links


def find_arbitrage_chains(
    groups: list[SwapGroup],
    quotes: Mapping[str, QuoteRecord],
    hidden_pairs: Collection[str] = (),
    threshold: Decimal = DEFAULT_THRESHOLD,
) -> list[ArbitrageChain]:
    """Find the most profitable chains of linked profitable pairs.

    Args:
        groups: Swap groups, one per pair.
        quotes: Reverse quote per group pair key.
        hidden_pairs: Pair keys to ignore.
        threshold: Minimum profit percent for a link and for a chain total.

    Returns:
        Up to MAX_CHAINS chains of 2..MAX_CHAIN_LENGTH links, best first.
    """
    links = _profitable_links(groups, quotes, hidden_pairs, threshold)
    if len(links) < MIN_CHAIN_LENGTH:
        return []

    chains: list[ArbitrageChain] = []

    def extend(chain: list[ChainLink]) -> None:
        if len(chain) >= MIN_CHAIN_LENGTH:
            total = sum((link.profit_percent for link in chain), Decimal("0"))
            if total >= threshold:
                chains.append(ArbitrageChain(links=tuple(chain), total_profit_percent=total))
        if len(chain) >= MAX_CHAIN_LENGTH:
            return

        used = {link.pair_key for link in chain}
        tail = chain[-1].to_asset
        for candidate in links:
            if candidate.pair_key in used:
                continue
            if candidate.from_asset != tail:
                continue
            extend([*chain, candidate])

    for start in links:
        extend([start])

    chains.sort(key=lambda c: c.total_profit_percent, reverse=True)
    return chains[:MAX_CHAINS]
