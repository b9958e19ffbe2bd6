from .alignment import (
    DEFAULT_MAX_MARKERS,
    AlignMethod,
    CandleTimeline,
    TradeMarker,
    align_trades,
    bucket_index,
    build_timeline,
    nearest_index,
    trades_in_window,
)
from .series import (
    EquityCurve,
    EquityPoint,
    TrainingProgress,
    dataset_range,
    latest_price,
    max_drawdown,
    visible_candles,
)

__all__ = [
    "DEFAULT_MAX_MARKERS",
    "AlignMethod",
    "CandleTimeline",
    "EquityCurve",
    "EquityPoint",
    "TradeMarker",
    "TrainingProgress",
    "align_trades",
    "bucket_index",
    "build_timeline",
    "dataset_range",
    "latest_price",
    "max_drawdown",
    "nearest_index",
    "trades_in_window",
    "visible_candles",
]
