"""Builders for raw ledger payloads used across the test suite."""

USD_ISSUER = "rhub8VRN55s94qWKDv6jmDy1pUykJzF3wq"
EUR_ISSUER = "rLNaPoKeeBjZe2qs6x52yVPZpZ8td4dc6w"
POOL_ADDRESS = "rPoo1AmmAccountXXXXXXXXXXXXXXXXXX"
ACCOUNT = "rTraderAccountYYYYYYYYYYYYYYYYYYY"

#: Unix milliseconds of ledger time 0 (2000-01-01T00:00:00Z).
LEDGER_EPOCH_MS = 946_684_800_000


def payment(
    sent: object,
    delivered: object,
    date: int = 750_000_000,
    ledger_index: int = 90_000_000,
    tx_hash: str = "A" * 64,
    result: str = "tesSUCCESS",
    envelope: str = "tx",
) -> dict:
    """Build a raw account_tx entry for a cross-currency payment."""
    return {
        envelope: {
            "TransactionType": "Payment",
            "Account": ACCOUNT,
            "Destination": ACCOUNT,
            "Amount": delivered,
            "SendMax": sent,
            "date": date,
            "ledger_index": ledger_index,
            "hash": tx_hash,
        },
        "meta": {
            "TransactionResult": result,
            "DeliveredAmount": delivered,
        },
        "validated": True,
    }


def usd(value: str) -> dict:
    return {"currency": "USD", "issuer": USD_ISSUER, "value": value}


def eur(value: str) -> dict:
    return {"currency": "EUR", "issuer": EUR_ISSUER, "value": value}


def drops(xrp: float) -> str:
    return str(int(xrp * 1_000_000))
