# examples/offline_replay.py
"""Replay a synthetic dataset against the in-memory service."""
import logging
import math

from replaydesk import ClientConfig, InMemoryTradingService, Mode, Signal, run_dashboard
from replaydesk.marketdata.candle import Candle

log = logging.getLogger(__name__)

# 2025-01-15T00:00:00Z
START_MS = 1736899200000
LOOKBACK = 10


def momentum(closes):
    """Buy on 0.5% momentum over the lookback, sell on the reverse."""
    if len(closes) <= LOOKBACK:
        return Signal.HOLD
    change = (closes[-1] - closes[-1 - LOOKBACK]) / closes[-1 - LOOKBACK]
    log.debug("Momentum %.5f at %.2f", change, closes[-1])
    if change > 0.005:
        return Signal.BUY
    if change < -0.005:
        return Signal.SELL
    return Signal.HOLD


def synthetic_candles(count=700):
    return [
        Candle(timestamp=START_MS + i * 60_000, close=100 + 5 * math.sin(i / 15) + i * 0.01)
        for i in range(count)
    ]


if __name__ == "__main__":
    config = ClientConfig(
        base_url="memory://",
        training_period=0.05,
        train_limit=200,
        train_offset=500,
        log_level="DEBUG",
    )

    run_dashboard(
        config,
        service_factory=lambda: InMemoryTradingService({"BTCUSDT": synthetic_candles()}, decide=momentum),
        duration=15,
        mode=Mode.TRAINING,
    )
