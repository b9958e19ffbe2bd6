from .candle import Candle, normalize_candles
from .candle_cache import CandleCache, CandleWindow

__all__ = [
    "Candle",
    "CandleCache",
    "CandleWindow",
    "normalize_candles",
]
