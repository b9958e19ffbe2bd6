# tests/conftest.py
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from replaydesk.marketdata.candle import Candle
from replaydesk.service.memory import InMemoryTradingService
from replaydesk.types import Signal

# 2025-01-15T00:00:00Z
BASE_MS = 1736899200000
MINUTE_MS = 60_000


def make_candles(closes, start=BASE_MS, step=MINUTE_MS):
    """Candles one *step* apart, oldest first."""
    return [Candle(timestamp=start + i * step, close=float(c)) for i, c in enumerate(closes)]


class AsyncContextManagerMock:
    """Helper class to mock async context managers."""
    def __init__(self, return_value=None):
        self.return_value = return_value or MagicMock()

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, *args):
        return None


@pytest.fixture
def mock_http_response():
    """Create a mock HTTP response."""
    mock_response = MagicMock()
    mock_response.status = 200
    mock_response.json = AsyncMock(return_value={"id": 1, "cash_balance": 10000.0})
    mock_response.text = AsyncMock(return_value="")
    return mock_response


@pytest.fixture
def mock_aiohttp_session(mock_http_response):
    """Mock aiohttp ClientSession."""
    response_context = AsyncContextManagerMock(mock_http_response)

    mock_session = MagicMock()
    mock_session.request = MagicMock(return_value=response_context)
    mock_session.close = AsyncMock()

    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)

    return mock_session


@pytest.fixture
def btc_candles():
    """60 one-minute BTCUSDT candles rising by 1 per minute from 100."""
    return make_candles([100 + i for i in range(60)])


@pytest.fixture
def memory_service(btc_candles):
    """In-memory service that always holds."""
    return InMemoryTradingService(
        {"BTCUSDT": btc_candles, "ETHUSDT": make_candles([50.0] * 30)},
    )


@pytest.fixture
def alternating_service(btc_candles):
    """In-memory service that buys on even-length windows and sells on odd ones."""

    def decide(closes):
        return Signal.BUY if len(closes) % 2 == 0 else Signal.SELL

    return InMemoryTradingService({"BTCUSDT": btc_candles}, decide=decide)
