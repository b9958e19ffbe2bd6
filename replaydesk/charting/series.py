"""Renderable series derived from cached candles and equity snapshots."""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from replaydesk.marketdata.candle import Candle
from replaydesk.portfolio.types import EquitySnapshot
from replaydesk.types import Mode


__all__ = [
    "EquityCurve",
    "EquityPoint",
    "TrainingProgress",
    "dataset_range",
    "latest_price",
    "max_drawdown",
    "visible_candles",
]


def visible_candles(
    mode: Mode,
    live_candles: Sequence[Candle],
    training_candles: Sequence[Candle],
    replay_index: int,
) -> list[Candle]:
    """Candles to draw for *mode*.

    Training shows the replayed prefix up to and including the candle at the
    replay index; trading shows the live window as fetched.
    """
    if mode is Mode.TRAINING:
        return list(training_candles[: max(0, replay_index + 1)])
    return list(live_candles)


def latest_price(candles: Sequence[Candle]) -> float | None:
    """Close of the last candle, or ``None`` for an empty series."""
    if not candles:
        return None
    return float(candles[-1].close)


def dataset_range(training_candles: Sequence[Candle]) -> tuple[int, int] | None:
    """(first, last) timestamps of a training dataset with 2+ candles."""
    if len(training_candles) < 2:
        return None
    return training_candles[0].timestamp, training_candles[-1].timestamp


def max_drawdown(equity: Sequence[float] | np.ndarray) -> float:
    """Largest peak-to-trough fall of an equity series (zero or negative)."""
    values = np.asarray(equity, dtype=np.float64)
    if values.size == 0:
        return 0.0
    peaks = np.maximum.accumulate(values)
    return float(np.min(values - peaks))


@dataclass(frozen=True)
class EquityPoint:
    timestamp: int
    equity: float


@dataclass(frozen=True)
class EquityCurve:
    """Chronological equity series built from a snapshot window."""

    points: tuple[EquityPoint, ...]

    @classmethod
    def from_snapshots(cls, snapshots: Sequence[EquitySnapshot]) -> "EquityCurve":
        """Build the curve from a (typically newest-first) snapshot window.

        Snapshots without a parseable time or a finite equity are dropped;
        the rest are ordered oldest first.
        """
        points = []
        for s in snapshots:
            ts = s.timestamp_ms
            if ts is None or not np.isfinite(s.total_equity):
                continue
            points.append(EquityPoint(timestamp=ts, equity=float(s.total_equity)))
        points.sort(key=lambda p: p.timestamp)
        return cls(points=tuple(points))

    @property
    def values(self) -> np.ndarray:
        return np.array([p.equity for p in self.points], dtype=np.float64)

    @property
    def first(self) -> float | None:
        return self.points[0].equity if self.points else None

    @property
    def last(self) -> float | None:
        return self.points[-1].equity if self.points else None

    @property
    def minimum(self) -> float | None:
        return float(self.values.min()) if self.points else None

    @property
    def maximum(self) -> float | None:
        return float(self.values.max()) if self.points else None

    @property
    def max_drawdown(self) -> float:
        return max_drawdown(self.values)

    @property
    def drawable(self) -> bool:
        """A line needs at least two points."""
        return len(self.points) >= 2

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class TrainingProgress:
    """How far the replay pointer has moved through the requested window."""

    index: int
    limit: int
    started: bool

    @property
    def current(self) -> int:
        if not self.started:
            return 0
        return min(int(self.index), self.safe_limit)

    @property
    def safe_limit(self) -> int:
        return max(1, int(self.limit or 1))

    @property
    def percent(self) -> int:
        if not self.started:
            return 0
        return min(100, round(self.current / self.safe_limit * 100))
