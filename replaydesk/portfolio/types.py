"""Account-side records reported by the trading service.

These are read-only views of service state: the client refreshes them by
polling and never mutates them locally.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any

from replaydesk.time_utils import try_canonical_ms
from replaydesk.types import Side

log = logging.getLogger(__name__)


__all__ = [
    "Account",
    "EquitySnapshot",
    "Holding",
    "Trade",
    "holdings_from_payload",
    "snapshots_from_payload",
    "trades_from_payload",
]


def _float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _optional_finite(value: Any) -> float | None:
    if value is None:
        return None
    try:
        x = float(value)
    except (TypeError, ValueError):
        return None
    return x if math.isfinite(x) else None


@dataclass(frozen=True)
class Account:
    """Cash side of an account.

    Attributes:
        id: Service account identifier.
        cash_balance: Uninvested cash.
    """
    id: int | str
    cash_balance: float

    @classmethod
    def from_payload(cls, row: dict[str, Any]) -> "Account":
        return cls(
            id=row.get("id", row.get("accountId")),
            cash_balance=_float(row.get("cash_balance")),
        )


@dataclass(frozen=True)
class Holding:
    """One portfolio row: the position held in a single symbol."""
    symbol: str
    quantity: float
    avg_entry_price: float
    updated_at: Any = None

    @classmethod
    def from_payload(cls, row: dict[str, Any]) -> "Holding":
        return cls(
            symbol=str(row.get("symbol", "")),
            quantity=max(0.0, _float(row.get("quantity"))),
            avg_entry_price=_float(row.get("avg_entry_price")),
            updated_at=row.get("updated_at"),
        )


@dataclass(frozen=True)
class Trade:
    """An executed fill.

    ``timestamp`` keeps the raw service value; ``timestamp_ms`` is the
    canonical form, or ``None`` when the raw value is unusable (such trades
    are kept in the history but never placed on a chart).
    """
    timestamp: Any
    side: Side
    symbol: str
    quantity: float
    price: float
    pnl: float | None = None
    mode: str | None = None

    @classmethod
    def from_payload(cls, row: dict[str, Any]) -> "Trade":
        return cls(
            timestamp=row.get("timestamp"),
            side=Side.from_raw(row.get("side", "")),
            symbol=str(row.get("symbol", "")),
            quantity=_float(row.get("quantity")),
            price=_float(row.get("price")),
            pnl=_optional_finite(row.get("pnl")),
            mode=row.get("mode"),
        )

    @property
    def timestamp_ms(self) -> int | None:
        return try_canonical_ms(self.timestamp)


@dataclass(frozen=True)
class EquitySnapshot:
    """Total equity captured by the service at one point in time."""
    timestamp: Any
    total_equity: float

    @classmethod
    def from_payload(cls, row: dict[str, Any]) -> "EquitySnapshot":
        return cls(
            timestamp=row.get("timestamp", row.get("created_at")),
            total_equity=_float(row.get("total_equity"), default=math.nan),
        )

    @property
    def timestamp_ms(self) -> int | None:
        return try_canonical_ms(self.timestamp)


def _decode_rows(cls, rows, kind: str) -> list:
    out = []
    dropped = 0
    for row in rows or []:
        try:
            out.append(cls.from_payload(row))
        except (ValueError, AttributeError):
            dropped += 1
    if dropped:
        log.warning("Dropped %d malformed %s row%s", dropped, kind, "s" if dropped != 1 else "")
    return out


def holdings_from_payload(rows: list[dict[str, Any]]) -> list[Holding]:
    return _decode_rows(Holding, rows, "portfolio")


def trades_from_payload(rows: list[dict[str, Any]]) -> list[Trade]:
    """Decode the trade log, keeping the service's newest-first order."""
    return _decode_rows(Trade, rows, "trade")


def snapshots_from_payload(rows: list[dict[str, Any]]) -> list[EquitySnapshot]:
    """Decode the snapshot window, keeping the service's newest-first order."""
    return _decode_rows(EquitySnapshot, rows, "equity snapshot")
