"""Raw ledger transaction -> canonical price observation.

classify_transaction() is the only place that touches the untyped node
payload. It returns either a RecognizedPayment with parsed amounts or an
UnrecognizedTransaction carrying the rejection reason. Everything downstream
works on typed values.

Both the classic {"tx": ..., "meta": ...} envelope and the API v2
{"tx_json": ..., "meta": ...} envelope are accepted.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from ammtrail.ledger.codec import LedgerAmount, is_positive_finite, ledger_time_to_ms, parse_amount
from ammtrail.models import Asset, AssetOrder, SwapRecord, TradingPair


@dataclass(frozen=True)
class RecognizedPayment:
    """A successful payment with both legs parsed."""

    sent: LedgerAmount
    delivered: LedgerAmount
    date: int | None  # ledger seconds
    hash: str | None
    ledger_index: int | None


@dataclass(frozen=True)
class UnrecognizedTransaction:
    reason: str


@dataclass(frozen=True)
class CanonicalObservation:
    """One swap against the pool, oriented as quote-per-base (price >= 1)."""

    time: int  # Unix milliseconds
    price: float
    volume: float
    is_buying_base: bool

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "price": self.price,
            "volume": self.volume,
            "isBuyingBase": self.is_buying_base,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "CanonicalObservation":
        return cls(
            time=int(payload["time"]),
            price=float(payload["price"]),
            volume=float(payload["volume"]),
            is_buying_base=bool(payload["isBuyingBase"]),
        )


@dataclass(frozen=True)
class NormalizationContext:
    """Pair identity and orientation used to interpret a pool transaction."""

    asset1: Asset
    asset2: Asset
    order: AssetOrder
    asset1_is_base: bool


def _envelope(raw: Mapping) -> tuple[Mapping | None, Mapping | None]:
    tx = raw.get("tx") or raw.get("tx_json")
    meta = raw.get("meta") or raw.get("metaData")
    if not isinstance(tx, Mapping):
        tx = None
    if not isinstance(meta, Mapping):
        meta = None
    return tx, meta


def classify_transaction(raw: object) -> RecognizedPayment | UnrecognizedTransaction:
    """Inspect a raw account_tx entry and parse it if it is a usable payment."""
    if not isinstance(raw, Mapping):
        return UnrecognizedTransaction("not an object")

    tx, meta = _envelope(raw)
    if tx is None:
        return UnrecognizedTransaction("missing transaction body")
    if tx.get("TransactionType") != "Payment":
        return UnrecognizedTransaction(f"type {tx.get('TransactionType')}")
    if meta is None:
        return UnrecognizedTransaction("missing metadata")

    result = meta.get("TransactionResult")
    if result is not None and result != "tesSUCCESS":
        return UnrecognizedTransaction(f"result {result}")

    # API v2 renames Amount to DeliverMax
    amount = tx.get("Amount", tx.get("DeliverMax"))
    sent = parse_amount(tx.get("SendMax") or amount)
    delivered = parse_amount(
        meta.get("DeliveredAmount") or meta.get("delivered_amount") or amount
    )
    if sent is None or delivered is None:
        return UnrecognizedTransaction("unparsable amount")

    date = tx.get("date", raw.get("date"))
    ledger_index = tx.get("ledger_index", raw.get("ledger_index"))
    return RecognizedPayment(
        sent=sent,
        delivered=delivered,
        date=int(date) if isinstance(date, (int, float)) else None,
        hash=tx.get("hash") or raw.get("hash"),
        ledger_index=int(ledger_index) if isinstance(ledger_index, (int, float)) else None,
    )


def normalize(raw: object, context: NormalizationContext) -> CanonicalObservation | None:
    """Turn one pool transaction into an observation, or None if unusable.

    Price is asset2/asset1 for the normal pool ordering and asset1/asset2
    for the reversed one, inverted when below 1. Volume is the amount of the
    numerator's counterpart (asset1 for normal, asset2 for reversed).
    """
    payment = classify_transaction(raw)
    if isinstance(payment, UnrecognizedTransaction):
        return None
    if payment.date is None:
        return None

    sent, delivered = payment.sent, payment.delivered
    if sent.matches(context.asset1) and delivered.matches(context.asset2):
        amount1, amount2 = sent.value, delivered.value
        sent_asset1 = True
    elif sent.matches(context.asset2) and delivered.matches(context.asset1):
        amount1, amount2 = delivered.value, sent.value
        sent_asset1 = False
    else:
        return None

    if not (is_positive_finite(amount1) and is_positive_finite(amount2)):
        return None

    if context.order is AssetOrder.NORMAL:
        price = amount2 / amount1
        volume = amount1
    else:
        price = amount1 / amount2
        volume = amount2

    if price < 1:
        price = 1 / price
    if not is_positive_finite(price):
        return None

    is_buying_base = (not context.asset1_is_base) if sent_asset1 else context.asset1_is_base

    return CanonicalObservation(
        time=ledger_time_to_ms(payment.date),
        price=price,
        volume=volume,
        is_buying_base=is_buying_base,
    )


def normalize_all(
    transactions: Iterable[object],
    context: NormalizationContext,
) -> list[CanonicalObservation]:
    observations = []
    for raw in transactions:
        observation = normalize(raw, context)
        if observation is not None:
            observations.append(observation)
    return observations


def extract_swap(raw: object) -> SwapRecord | None:
    """Sent and delivered legs of any successful payment, as a SwapRecord.

    Payments where both legs are the same asset are not swaps.
    """
    payment = classify_transaction(raw)
    if isinstance(payment, UnrecognizedTransaction) or payment.date is None:
        return None

    sent, delivered = payment.sent, payment.delivered
    v1, v2 = abs(sent.value), abs(delivered.value)
    if not (is_positive_finite(v1) and is_positive_finite(v2)):
        return None
    if sent.currency == delivered.currency and sent.issuer == delivered.issuer:
        return None

    return SwapRecord(
        c1=sent.currency,
        i1=sent.issuer,
        v1=Decimal(str(v1)),
        c2=delivered.currency,
        i2=delivered.issuer,
        v2=Decimal(str(v2)),
        date=ledger_time_to_ms(payment.date),
        hash=payment.hash,
    )


def ledger_index_of(raw: object) -> int | None:
    if not isinstance(raw, Mapping):
        return None
    tx, _ = _envelope(raw)
    index = (tx or {}).get("ledger_index", raw.get("ledger_index"))
    return int(index) if isinstance(index, (int, float)) else None


def last_ledger_index(transactions: Iterable[object]) -> int | None:
    """Highest ledger sequence present in the transactions."""
    indices = [i for i in (ledger_index_of(raw) for raw in transactions) if i is not None]
    return max(indices) if indices else None


def transaction_hash(raw: object) -> str | None:
    if not isinstance(raw, Mapping):
        return None
    tx, _ = _envelope(raw)
    return (tx or {}).get("hash") or raw.get("hash")


def determine_base_currency(
    pair: TradingPair,
    prices: Mapping[str, float | None],
) -> bool:
    """True if asset1 is the base asset.

    asset1 is base when both prices exist and price1 >= price2, when only
    price1 exists, or when neither does.
    """
    price1 = _usable_price(prices.get(pair.asset1.price_key))
    price2 = _usable_price(prices.get(pair.asset2.price_key))
    if price1 is not None and price2 is not None:
        return price1 >= price2
    if price1 is not None:
        return True
    if price2 is not None:
        return False
    return True


def _usable_price(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number == 0 or not math.isfinite(number):
        return None
    return number
