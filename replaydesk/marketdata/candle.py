import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable

from replaydesk.time_utils import InvalidTimestamp, to_canonical_ms

log = logging.getLogger(__name__)

# Payload keys that may carry a candle's time, in order of preference.
TIME_KEYS = ("timestamp", "ts", "time")


@dataclass(frozen=True)
class Candle:
    """
    A single price sample of a fixed-interval series.

    Only ``timestamp`` and ``close`` are used by the replay engine; the other
    OHLCV fields are carried when the service provides them.

    Attributes:
        timestamp: Canonical epoch milliseconds (UTC)
        close: Closing price
        open: Opening price, if known
        high: Highest price during period, if known
        low: Lowest price during period, if known
        volume: Trading volume, if known
    """

    timestamp: int
    close: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    volume: float | None = None

    @classmethod
    def from_payload(cls, row: dict[str, Any]) -> "Candle":
        """Build a candle from a service row.

        Raises:
            InvalidTimestamp: if no usable time value is present.
            ValueError: if the close price is missing or not finite.
        """
        raw_ts = None
        for key in TIME_KEYS:
            if row.get(key) is not None:
                raw_ts = row[key]
                break
        ts = to_canonical_ms(raw_ts)

        try:
            close = float(row["close"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"candle close is missing or not numeric: {row!r}") from exc
        if not math.isfinite(close):
            raise ValueError(f"candle close is not finite: {row!r}")

        return cls(
            timestamp=ts,
            close=close,
            open=_optional_float(row.get("open")),
            high=_optional_float(row.get("high")),
            low=_optional_float(row.get("low")),
            volume=_optional_float(row.get("volume")),
        )

    def to_payload(self) -> dict[str, Any]:
        """Minimal wire shape sent back to the service with replay steps."""
        return {"timestamp": self.timestamp, "close": self.close}

    def __repr__(self) -> str:
        return f"Candle(timestamp={self.timestamp}, C={self.close:.5f})"


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_candles(rows: Iterable[dict[str, Any] | Candle]) -> list[Candle]:
    """
    Normalise a batch of service rows into candles.

    Rows without a usable time or close are dropped. Order is preserved;
    callers that need a sorted series must not assume this sorts.
    """
    candles: list[Candle] = []
    dropped = 0

    for row in rows or []:
        if isinstance(row, Candle):
            candles.append(row)
            continue
        try:
            candles.append(Candle.from_payload(row))
        except (InvalidTimestamp, ValueError, AttributeError):
            dropped += 1

    if dropped:
        log.warning("Dropped %d unusable candle row%s", dropped, "s" if dropped != 1 else "")

    return candles
