"""Reverse quotes: what would unwinding a swap (or an open position) return now?

All calculations use Decimal arithmetic. The native asset is the reference
unit with price 1; every issued asset needs a positive price in the lookup
table under "{currency}-{issuer}", otherwise no quote is produced.

Fee rates come from QuoteSettings as three named profiles:
  - single-swap:  3%   (one historical swap)
  - position-run: 2.3% (a run of same-direction swaps)
  - latest-swap:  1%   (the most recent swap only)
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from ammtrail.config import QuoteSettings
from ammtrail.models import Asset, SwapRecord
from ammtrail.pnl.positions import SwapGroup, open_position

PriceTable = Mapping[str, Decimal | float | str | None]


class FeeProfile(str, Enum):
    """Named fee configuration applied to a reverse quote."""

    SINGLE_SWAP = "single-swap"
    POSITION_RUN = "position-run"
    LATEST_SWAP = "latest-swap"


@dataclass(frozen=True)
class QuoteRecord:
    """Result of a reverse quote. Reference values are in native units."""

    reverse_amount: Decimal
    reverse_currency: str
    profit_loss: Decimal
    profit_percent: Decimal
    is_profit: bool
    original_amount: Decimal
    original_currency: str
    received_amount: Decimal
    received_currency: str
    reference_value_sent: Decimal
    reference_value_received: Decimal
    fee_rate: Decimal
    profile: FeeProfile

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output, Decimals as strings."""
        return {
            "reverse_amount": str(self.reverse_amount),
            "reverse_currency": self.reverse_currency,
            "profit_loss": str(self.profit_loss),
            "profit_percent": str(self.profit_percent),
            "is_profit": self.is_profit,
            "original_amount": str(self.original_amount),
            "original_currency": self.original_currency,
            "received_amount": str(self.received_amount),
            "received_currency": self.received_currency,
            "reference_value_sent": str(self.reference_value_sent),
            "reference_value_received": str(self.reference_value_received),
            "fee_rate": str(self.fee_rate),
            "profile": self.profile.value,
        }


def reference_price(asset: Asset, prices: PriceTable) -> Decimal | None:
    """Price of an asset in native units, or None if unknown or non-positive."""
    if asset.is_native:
        return Decimal("1")
    raw = prices.get(asset.price_key)
    if raw is None:
        return None
    try:
        price = Decimal(str(raw))
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


class QuoteEngine:
    """Computes reverse quotes for swaps and open positions.

    Args:
        settings: Fee rates for each FeeProfile.
    """

    def __init__(self, settings: QuoteSettings) -> None:
        self._settings = settings

    def fee_rate(self, profile: FeeProfile) -> Decimal:
        if profile is FeeProfile.SINGLE_SWAP:
            return self._settings.single_swap_fee
        if profile is FeeProfile.POSITION_RUN:
            return self._settings.position_run_fee
        return self._settings.latest_swap_fee

    def reverse_quote(
        self,
        swap: SwapRecord,
        prices: PriceTable,
        profile: FeeProfile,
    ) -> QuoteRecord | None:
        """Quote selling the received side of a swap back into the sent asset.

        reverse_amount = v2 * p2 * (1 - fee) / p1, compared against v1.

        Returns:
            QuoteRecord, or None if a price is missing or v1 is zero.
        """
        return self._quote(
            sent_asset=swap.sent_asset,
            received_asset=swap.received_asset,
            sent_amount=swap.v1,
            received_amount=swap.v2,
            prices=prices,
            profile=profile,
        )

    def position_quote(self, group: SwapGroup, prices: PriceTable) -> QuoteRecord | None:
        """Quote unwinding the open position at the head of a swap group.

        Uses the position-run fee profile.
        """
        position = open_position(group)
        if position is None:
            return None
        return self._quote(
            sent_asset=position.sent_asset,
            received_asset=position.received_asset,
            sent_amount=position.sent_amount,
            received_amount=position.received_amount,
            prices=prices,
            profile=FeeProfile.POSITION_RUN,
        )

    def _quote(
        self,
        sent_asset: Asset,
        received_asset: Asset,
        sent_amount: Decimal,
        received_amount: Decimal,
        prices: PriceTable,
        profile: FeeProfile,
    ) -> QuoteRecord | None:
        sent_price = reference_price(sent_asset, prices)
        received_price = reference_price(received_asset, prices)
        if sent_price is None or received_price is None:
            return None
        if sent_amount <= 0:
            return None

        fee = self.fee_rate(profile)
        value_sent = sent_amount * sent_price
        value_received = received_amount * received_price
        reverse_amount = value_received * (Decimal("1") - fee) / sent_price
        profit_loss = reverse_amount - sent_amount

        return QuoteRecord(
            reverse_amount=reverse_amount,
            reverse_currency=sent_asset.currency,
            profit_loss=profit_loss,
            profit_percent=profit_loss / sent_amount * Decimal("100"),
            is_profit=profit_loss > 0,
            original_amount=sent_amount,
            original_currency=sent_asset.currency,
            received_amount=received_amount,
            received_currency=received_asset.currency,
            reference_value_sent=value_sent,
            reference_value_received=value_received,
            fee_rate=fee,
            profile=profile,
        )
