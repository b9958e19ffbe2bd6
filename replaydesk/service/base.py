"""
Trading service interface.

The bot's decisions, order matching and persistence all live in an external
service; the client only observes it and drives its stepwise API. This
module defines that contract so the dashboard can run against the REST
backend or the in-memory simulator alike.
"""

import abc
from typing import Any

from replaydesk.marketdata.candle import Candle
from replaydesk.portfolio.types import Account, EquitySnapshot, Holding, Trade
from replaydesk.types import Mode


__all__ = [
    "ServiceError",
    "TradingService",
]


class ServiceError(Exception):
    """Uniform failure raised for anything that goes wrong at the service boundary.

    Attributes:
        status: HTTP status code, or ``None`` for transport-level failures
            (connection refused, timeout, undecodable body).
        message: Human-readable description.
    """

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        self.message = message
        prefix = f"{status} " if status is not None else ""
        super().__init__(f"{prefix}{message}".strip())


class TradingService(abc.ABC):
    """Abstract base for trading service clients."""

    async def start(self) -> None:
        """Initialise the client (e.g. open an HTTP session)."""

    async def close(self) -> None:
        """Close any underlying resources."""

    @abc.abstractmethod
    async def get_account(self, account_id: int) -> Account:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_portfolio(self, account_id: int) -> list[Holding]:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_trades(self, account_id: int) -> list[Trade]:
        """Fetch the trade history, newest first."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_candles(
        self, symbol: str, limit: int, interval: str, offset: int = 0
    ) -> list[Candle]:
        """
        Fetch a window of candles.

        Args:
            symbol: Market symbol (e.g. "BTCUSDT").
            limit: Number of candles.
            interval: Candle timeframe (e.g. "1m").
            offset: How many candles back from the most recent the window ends.

        Returns:
            Candles ordered oldest to newest.
        """
        raise NotImplementedError

    async def get_symbols(self) -> list[str]:
        """Symbols the service can trade. Optional; empty when unsupported."""
        return []

    @abc.abstractmethod
    async def run_live_step(self, account_id: int, symbol: str) -> str:
        """Execute one live trading decision and return the service's status text."""
        raise NotImplementedError

    @abc.abstractmethod
    async def run_replay_step(
        self,
        account_id: int,
        symbol: str,
        limit: int,
        index: int,
        offset: int,
        candles: list[Candle] | None = None,
    ) -> dict[str, Any]:
        """
        Advance the training replay by one candle.

        Returns:
            The raw step payload (``signal``, ``tradesExecuted``,
            ``nextIndex``, ``done``). Validation is left to the replay driver.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def reset_account(self, account_id: int) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_equity_snapshot(self, account_id: int, mode: Mode) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_equity_snapshots(
        self, account_id: int, mode: Mode, limit: int
    ) -> list[EquitySnapshot]:
        """Fetch the bounded snapshot window, newest first."""
        raise NotImplementedError
