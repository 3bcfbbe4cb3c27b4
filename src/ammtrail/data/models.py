"""Cache entry models.

Entries are persisted as JSON objects:
    {"data": [...], "timestamp": ms, "expires": ms, ...extra}
Raw entries add assetOrder, lastLedgerIndex and poolAddress; processed entries
add asset1IsBase. Records inside "data" are stored newest-first.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CacheKind(str, Enum):
    """Logical cache namespace. The value is the storage key prefix."""

    RAW = "pair_raw_"
    PROCESSED = "pair_processed_"
    AGGREGATE = "swap_groups_"

    def storage_key(self, key: str) -> str:
        return f"{self.value}{key}"


@dataclass
class CacheEntry:
    """A decoded cache entry."""

    data: list[Any]
    timestamp: int  # Unix milliseconds when written
    expires: int  # Unix milliseconds
    extra: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now_ms: int) -> bool:
        return self.expires < now_ms

    def to_json_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "data": self.data,
            "timestamp": self.timestamp,
            "expires": self.expires,
        }

    @classmethod
    def from_json_dict(cls, payload: Any) -> "CacheEntry":
        """Decode a stored object. Raises ValueError if the shape is wrong."""
        if not isinstance(payload, dict):
            raise ValueError("cache entry is not an object")
        data = payload.get("data")
        timestamp = payload.get("timestamp")
        expires = payload.get("expires")
        if not isinstance(data, list):
            raise ValueError("cache entry data is not a list")
        if not isinstance(timestamp, (int, float)) or not isinstance(expires, (int, float)):
            raise ValueError("cache entry timestamps missing")
        extra = {
            k: v for k, v in payload.items() if k not in ("data", "timestamp", "expires")
        }
        return cls(data=data, timestamp=int(timestamp), expires=int(expires), extra=extra)
