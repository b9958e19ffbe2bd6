# replaydesk/__init__.py
"""
Replaydesk - replay and synchronisation engine for a trading bot dashboard.

Drives a trading service's live and training (replay) loops, normalises
timestamps, aligns trades to candles and derives equity and PnL for display.
"""

from .config import ClientConfig
from .runner import run_dashboard
from .service import HttpTradingService, InMemoryTradingService, ServiceError, TradingService
from .session import Dashboard
from .time_utils import InvalidTimestamp, to_canonical_ms
from .types import Mode, Side, Signal

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ClientConfig",
    "Dashboard",
    "HttpTradingService",
    "InMemoryTradingService",
    "InvalidTimestamp",
    "Mode",
    "ServiceError",
    "Side",
    "Signal",
    "TradingService",
    "run_dashboard",
    "to_canonical_ms",
]
