"""Tests for the aiohttp REST client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from replaydesk.marketdata.candle import Candle
from replaydesk.service.base import ServiceError
from replaydesk.service.http import DEFAULT_BASE_URL, HttpTradingService
from replaydesk.types import Mode, Side

JAN_15_MS = 1736899200000


def _service(session):
    return HttpTradingService("http://svc/api/", session=session)


def _call(session):
    args, kwargs = session.request.call_args
    return args[0], args[1], kwargs


class TestRequests:

    @pytest.mark.asyncio
    async def test_get_account(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value={"id": 2, "cash_balance": 9000})
        account = await _service(mock_aiohttp_session).get_account(2)

        method, url, kwargs = _call(mock_aiohttp_session)
        assert method == "GET"
        assert url == "http://svc/api/account"
        assert kwargs["params"] == {"accountId": "2"}
        assert account.cash_balance == 9000.0

    @pytest.mark.asyncio
    async def test_account_id_defaults_to_requested(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value={"cash_balance": 1})
        account = await _service(mock_aiohttp_session).get_account(7)
        assert account.id == 7

    @pytest.mark.asyncio
    async def test_get_candles_normalises(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value=[
            {"timestamp": JAN_15_MS // 1000, "close": 1},
            {"timestamp": None, "close": 2},
            {"timestamp": "2025-01-15T00:01:00Z", "close": "3"},
        ])
        candles = await _service(mock_aiohttp_session).get_candles("BTCUSDT", 100, "1m", 500)

        _, url, kwargs = _call(mock_aiohttp_session)
        assert url.endswith("/market/candles")
        assert kwargs["params"] == {"symbol": "BTCUSDT", "limit": "100", "interval": "1m", "offset": "500"}
        assert [c.timestamp for c in candles] == [JAN_15_MS, JAN_15_MS + 60_000]

    @pytest.mark.asyncio
    async def test_get_trades(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value=[
            {"timestamp": JAN_15_MS, "side": "sell", "symbol": "BTCUSDT", "quantity": 1, "price": 2, "pnl": 0.5},
        ])
        trades = await _service(mock_aiohttp_session).get_trades(1)
        assert trades[0].side is Side.SELL

    @pytest.mark.asyncio
    async def test_null_list_is_empty(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value=None)
        assert await _service(mock_aiohttp_session).get_portfolio(1) == []

    @pytest.mark.asyncio
    async def test_live_step_returns_text(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.text = AsyncMock(return_value="Signal=BUY")
        out = await _service(mock_aiohttp_session).run_live_step(1, "BTCUSDT")

        method, url, kwargs = _call(mock_aiohttp_session)
        assert (method, url) == ("POST", "http://svc/api/trade/step")
        assert kwargs["params"] == {"accountId": "1", "symbol": "BTCUSDT"}
        assert out == "Signal=BUY"

    @pytest.mark.asyncio
    async def test_replay_step_sends_candles(self, mock_aiohttp_session, mock_http_response):
        payload = {"signal": "HOLD", "tradesExecuted": 0, "nextIndex": 22, "done": False}
        mock_http_response.json = AsyncMock(return_value=payload)
        candles = [Candle(timestamp=JAN_15_MS, close=1.0, open=0.5)]

        out = await _service(mock_aiohttp_session).run_replay_step(2, "BTCUSDT", 200, 21, 500, candles)

        _, url, kwargs = _call(mock_aiohttp_session)
        assert url.endswith("/train/step")
        assert kwargs["params"]["index"] == "21"
        assert kwargs["json"] == [{"timestamp": JAN_15_MS, "close": 1.0}]
        assert out == payload

    @pytest.mark.asyncio
    async def test_replay_step_without_candles_sends_no_body(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value={"nextIndex": 22})
        await _service(mock_aiohttp_session).run_replay_step(2, "BTCUSDT", 200, 21, 0)
        _, _, kwargs = _call(mock_aiohttp_session)
        assert kwargs["json"] is None

    @pytest.mark.asyncio
    async def test_snapshot_endpoints_pass_mode(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value=[
            {"timestamp": JAN_15_MS + 1000, "total_equity": 1050},
            {"timestamp": JAN_15_MS, "total_equity": 1000},
        ])
        snapshots = await _service(mock_aiohttp_session).get_equity_snapshots(2, Mode.TRAINING, 200)

        _, url, kwargs = _call(mock_aiohttp_session)
        assert url.endswith("/equity/snapshots")
        assert kwargs["params"] == {"accountId": "2", "mode": "TRAINING", "limit": "200"}
        assert [s.total_equity for s in snapshots] == [1050.0, 1000.0]


class TestErrors:

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.status = 500
        mock_http_response.text = AsyncMock(return_value="boom")
        with pytest.raises(ServiceError) as exc:
            await _service(mock_aiohttp_session).reset_account(1)
        assert exc.value.status == 500
        assert "boom" in str(exc.value)

    @pytest.mark.asyncio
    async def test_transport_error(self, mock_aiohttp_session):
        mock_aiohttp_session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(ServiceError) as exc:
            await _service(mock_aiohttp_session).get_account(1)
        assert exc.value.status is None

    @pytest.mark.asyncio
    async def test_timeout(self, mock_aiohttp_session):
        mock_aiohttp_session.request = MagicMock(side_effect=asyncio.TimeoutError())
        with pytest.raises(ServiceError, match="timed out"):
            await _service(mock_aiohttp_session).get_trades(1)

    @pytest.mark.asyncio
    async def test_bad_json(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(side_effect=ValueError("Expecting value"))
        with pytest.raises(ServiceError, match="Malformed"):
            await _service(mock_aiohttp_session).get_portfolio(1)

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, mock_aiohttp_session, mock_http_response):
        mock_http_response.json = AsyncMock(return_value={"not": "a list"})
        with pytest.raises(ServiceError, match="Expected a list"):
            await _service(mock_aiohttp_session).get_trades(1)


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self, mock_aiohttp_session):
        service = _service(mock_aiohttp_session)
        await service.start()
        await service.close()
        mock_aiohttp_session.close.assert_not_awaited()

    def test_default_base_url(self):
        assert DEFAULT_BASE_URL == "http://localhost:8080/api"
