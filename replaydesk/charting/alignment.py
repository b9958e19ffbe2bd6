"""Candle-trade alignment.

Places discrete trade events on a time-bucketed price series. A marker is
anchored at the close of the candle the trade falls in, not at the trade's
own fill price, so markers always sit on the drawn price line; the fill
details travel along as metadata for hover text.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import numpy as np

from replaydesk.marketdata.candle import Candle
from replaydesk.portfolio.types import Trade
from replaydesk.types import Side

log = logging.getLogger(__name__)


__all__ = [
    "DEFAULT_MAX_MARKERS",
    "AlignMethod",
    "CandleTimeline",
    "TradeMarker",
    "align_trades",
    "bucket_index",
    "build_timeline",
    "nearest_index",
    "trades_in_window",
]


DEFAULT_MAX_MARKERS = 30


class AlignMethod(Enum):
    BUCKET = "bucket"  # candle[i].time <= t < candle[i+1].time
    NEAREST = "nearest"  # argmin |candle[i].time - t|
    AUTO = "auto"  # bucket for ordered series, nearest otherwise


@dataclass(frozen=True)
class CandleTimeline:
    times: np.ndarray  # int64 epoch ms, in series order
    closes: np.ndarray  # float64

    @property
    def is_ordered(self) -> bool:
        return bool(np.all(np.diff(self.times) >= 0)) if len(self.times) > 1 else True

    def __len__(self) -> int:
        return len(self.times)


def build_timeline(candles: Iterable[Candle]) -> CandleTimeline:
    candles = list(candles)
    return CandleTimeline(
        times=np.array([c.timestamp for c in candles], dtype=np.int64),
        closes=np.array([c.close for c in candles], dtype=np.float64),
    )


def bucket_index(times: np.ndarray, t: int) -> int | None:
    """
    Index of the candle whose span contains *t*.

    *times* must be non-decreasing. A time before the first candle has no
    bucket; a time at or after the last candle belongs to the last one.
    """
    if len(times) == 0:
        return None
    i = int(np.searchsorted(times, t, side="right")) - 1
    return i if i >= 0 else None


def nearest_index(times: np.ndarray, t: int) -> int | None:
    """Index of the candle closest in time to *t* (first one wins ties)."""
    if len(times) == 0:
        return None
    return int(np.argmin(np.abs(times.astype(np.int64) - np.int64(t))))


@dataclass(frozen=True)
class TradeMarker:
    """A trade placed on the price chart."""

    candle_index: int
    candle_time: int
    anchor_price: float  # close of the matched candle
    trade_time: int
    side: Side
    symbol: str
    price: float
    quantity: float
    pnl: float | None


def align_trades(
    candles: Sequence[Candle] | CandleTimeline,
    trades: Iterable[Trade],
    *,
    method: AlignMethod = AlignMethod.AUTO,
    max_markers: int | None = DEFAULT_MAX_MARKERS,
) -> list[TradeMarker]:
    """
    Map each trade to the candle it occurred in.

    Trades with unusable timestamps, and trades that match no candle, are
    left off the overlay. At most *max_markers* markers are returned, most
    recent trade first, so rendering cost does not grow with the length of
    the trade history.
    """
    timeline = candles if isinstance(candles, CandleTimeline) else build_timeline(candles)
    if len(timeline) == 0:
        return []

    if method is AlignMethod.AUTO:
        method = AlignMethod.BUCKET if timeline.is_ordered else AlignMethod.NEAREST
    locate = bucket_index if method is AlignMethod.BUCKET else nearest_index

    matched: list[TradeMarker] = []
    skipped = 0
    for trade in trades:
        t = trade.timestamp_ms
        if t is None:
            skipped += 1
            continue
        idx = locate(timeline.times, t)
        if idx is None:
            continue
        matched.append(
            TradeMarker(
                candle_index=idx,
                candle_time=int(timeline.times[idx]),
                anchor_price=float(timeline.closes[idx]),
                trade_time=t,
                side=trade.side,
                symbol=trade.symbol,
                price=trade.price,
                quantity=trade.quantity,
                pnl=trade.pnl,
            )
        )

    if skipped:
        log.debug("Skipped %d trade(s) without a usable timestamp", skipped)

    # stable sort keeps service order among equal times
    matched.sort(key=lambda m: m.trade_time, reverse=True)
    return matched if max_markers is None else matched[: max(0, max_markers)]


def trades_in_window(trades: Iterable[Trade], candles: Sequence[Candle]) -> list[Trade]:
    """Trades whose time lies within the span of *candles* (inclusive).

    With no candles there is no window and every timed trade is kept.
    """
    timed = [t for t in trades if t.timestamp_ms is not None]
    if not candles:
        return timed
    lo = min(c.timestamp for c in candles)
    hi = max(c.timestamp for c in candles)
    return [t for t in timed if lo <= t.timestamp_ms <= hi]
