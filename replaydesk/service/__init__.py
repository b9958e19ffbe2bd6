"""
Trading service clients.

The dashboard talks to the service only through :class:`TradingService`;
:class:`HttpTradingService` is the REST implementation and
:class:`InMemoryTradingService` an in-process simulator for offline runs.
"""

from .base import ServiceError, TradingService
from .http import HttpTradingService
from .memory import InMemoryTradingService

__all__ = [
    "HttpTradingService",
    "InMemoryTradingService",
    "ServiceError",
    "TradingService",
]
