from dataclasses import dataclass
from typing import Optional

import numpy as np

from replaydesk.marketdata.candle import Candle


@dataclass(frozen=True)
class CandleWindow:
    """Identifies one fetch of a candle series."""

    symbol: str
    interval: str
    limit: int
    offset: int = 0


class CandleCache:
    """
    Holds the candle sequence fetched for a single (symbol, window) pair.

    The sequence is immutable once stored; a new fetch for any window replaces
    the whole sequence. Provides the price arrays the replay view needs.

    Example:
        cache = CandleCache()
        cache.store(CandleWindow("BTCUSDT", "1m", 200, 500), candles)

        if cache.matches(window):
            closes = cache.get_closes()
            times = cache.get_times(count=22)  # first 22 candles only
    """

    def __init__(self) -> None:
        self.window: Optional[CandleWindow] = None
        self._candles: tuple[Candle, ...] = ()

    def store(self, window: CandleWindow, candles: list[Candle]) -> None:
        """Replace the cached sequence with a fresh fetch for *window*."""
        self.window = window
        self._candles = tuple(candles)

    def clear(self) -> None:
        """Drop the cached sequence (e.g. on reset or mode switch)."""
        self.window = None
        self._candles = ()

    def matches(self, window: CandleWindow) -> bool:
        """True if a non-empty sequence is cached for exactly *window*."""
        return self.window == window and bool(self._candles)

    def get_candles(self, count: Optional[int] = None) -> list[Candle]:
        """
        Get candle objects.

        Args:
            count: Number of leading candles to return (None = all)

        Returns:
            List of Candle objects, oldest first
        """
        if count is None:
            return list(self._candles)
        return list(self._candles[: max(0, count)])

    def get_times(self, count: Optional[int] = None) -> np.ndarray:
        """Get array of canonical millisecond timestamps."""
        candles = self.get_candles(count)
        return np.array([c.timestamp for c in candles], dtype=np.int64)

    def get_closes(self, count: Optional[int] = None) -> np.ndarray:
        """Get array of closing prices."""
        candles = self.get_candles(count)
        return np.array([c.close for c in candles], dtype=np.float64)

    @property
    def first(self) -> Optional[Candle]:
        return self._candles[0] if self._candles else None

    @property
    def last(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def __len__(self) -> int:
        return len(self._candles)

    def __repr__(self) -> str:
        return f"CandleCache(window={self.window}, candles={len(self)})"
