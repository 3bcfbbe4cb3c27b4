"""Currency code, address and amount helpers for XRP Ledger payloads.

Ledger conventions:
- Native amounts are strings of drops (1 XRP = 1,000,000 drops).
- Issued amounts are objects {currency, issuer, value} with value as a string.
- Currency codes are either 3 characters or 40 hex characters (20 bytes).
- Ledger timestamps are seconds since 2000-01-01T00:00:00Z.
"""

import math
import re
from dataclasses import dataclass
from typing import Any

from ammtrail.models import NATIVE_CURRENCY, Asset

DROPS_PER_XRP = 1_000_000

#: Seconds between the Unix epoch and the ledger epoch (2000-01-01).
LEDGER_EPOCH_OFFSET = 946_684_800

_HEX_CODE_LENGTH = 40

_STANDARD_CODE_RE = re.compile(r"^[A-Z0-9]{3}$")
_HEX_CODE_RE = re.compile(r"^[0-9A-F]{40}$")
_ADDRESS_RE = re.compile(r"^r[1-9A-HJ-NP-Za-km-z]{25,34}$")


@dataclass(frozen=True)
class LedgerAmount:
    """A parsed amount. issuer is None for the native asset."""

    currency: str
    issuer: str | None
    value: float

    def matches(self, asset: Asset) -> bool:
        """True if this amount is denominated in the given asset.

        The asset's currency is compared in its hex-encoded form, which is how
        non-standard codes appear on the ledger.
        """
        if asset.is_native or self.currency == NATIVE_CURRENCY:
            return asset.is_native and self.currency == NATIVE_CURRENCY
        return (
            self.currency == encode_currency_code(asset.currency)
            and self.issuer == asset.issuer
        )


def encode_currency_code(code: str) -> str:
    """Encode a currency code the way the ledger expects it.

    XRP and 3-character codes pass through. 40-character hex codes pass
    through upper-cased. Anything else is encoded as ASCII hex, right-padded
    with zeros to 40 hex characters.
    """
    if not code or code == NATIVE_CURRENCY:
        return code
    if len(code) == _HEX_CODE_LENGTH and _HEX_CODE_RE.match(code.upper()):
        return code.upper()
    if len(code) <= 3:
        return code
    encoded = code.encode("utf-8").hex().upper()
    return encoded.ljust(_HEX_CODE_LENGTH, "0")[:_HEX_CODE_LENGTH]


def is_valid_currency_code(code: str | None) -> bool:
    """Check an (already encoded) currency code."""
    if not code:
        return False
    if code == NATIVE_CURRENCY:
        return True
    return bool(_STANDARD_CODE_RE.match(code) or _HEX_CODE_RE.match(code))


def is_valid_account_address(address: str | None) -> bool:
    """Check the shape of a classic account address (r...)."""
    if not address:
        return False
    return bool(_ADDRESS_RE.match(address))


def asset_descriptor(asset: Asset) -> dict[str, str]:
    """Build the {currency[, issuer]} object used in amm_info requests."""
    if asset.is_native:
        return {"currency": NATIVE_CURRENCY}
    return {"currency": encode_currency_code(asset.currency), "issuer": asset.issuer or ""}


def parse_amount(raw: Any) -> LedgerAmount | None:
    """Parse a ledger amount field.

    Returns None for anything that is neither a drops string nor an issued
    amount object with a numeric value.
    """
    if isinstance(raw, str):
        try:
            drops = float(raw)
        except ValueError:
            return None
        return LedgerAmount(NATIVE_CURRENCY, None, drops / DROPS_PER_XRP)

    if isinstance(raw, dict) and raw.get("currency") and raw.get("value") is not None:
        try:
            value = float(raw["value"])
        except (TypeError, ValueError):
            return None
        return LedgerAmount(raw["currency"], raw.get("issuer"), value)

    return None


def is_positive_finite(value: float) -> bool:
    return value > 0 and math.isfinite(value)


def ledger_time_to_ms(ledger_seconds: int | float) -> int:
    """Convert a ledger timestamp to Unix epoch milliseconds."""
    return int((ledger_seconds + LEDGER_EPOCH_OFFSET) * 1000)
