"""aiohttp client for the trading bot's REST API."""

import asyncio
import logging
from typing import Any

import aiohttp

from replaydesk.marketdata.candle import Candle, normalize_candles
from replaydesk.portfolio.types import (
    Account,
    EquitySnapshot,
    Holding,
    Trade,
    holdings_from_payload,
    snapshots_from_payload,
    trades_from_payload,
)
from replaydesk.service.base import ServiceError, TradingService
from replaydesk.types import Mode

log = logging.getLogger(__name__)


DEFAULT_BASE_URL = "http://localhost:8080/api"


class HttpTradingService(TradingService):
    """
    REST client for the trading service.

    - All requests share one ``aiohttp.ClientSession`` opened by :meth:`start`
      (or lazily on first use) and closed by :meth:`close`.
    - Responses are decoded into the client's own types here, so nothing
      downstream ever sees raw JSON shapes.
    - Every failure surfaces as :class:`ServiceError`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = float(timeout)
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
            log.debug("Opened HTTP session for %s", self._base_url)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            log.debug("Closed HTTP session for %s", self._base_url)
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        as_text: bool = False,
    ) -> Any:
        if self._session is None:
            await self.start()
        assert self._session is not None

        url = f"{self._base_url}{path}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}

        try:
            async with self._session.request(
                method, url, params=query, json=json_body
            ) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    raise ServiceError(f"{method} {path} failed: {body}".strip(), status=resp.status)
                if as_text:
                    return await resp.text()
                return await resp.json(content_type=None)
        except ServiceError:
            raise
        except asyncio.TimeoutError as e:
            raise ServiceError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise ServiceError(f"Network error on {method} {path}: {e}") from e
        except ValueError as e:
            # JSON decoding problems
            raise ServiceError(f"Malformed response from {method} {path}: {e}") from e

    async def _get_list(self, path: str, params: dict[str, Any]) -> list[Any]:
        data = await self._request("GET", path, params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ServiceError(f"Expected a list from GET {path}, got {type(data).__name__}")
        return data

    # ------------------------------------------------------------------
    # Account state
    # ------------------------------------------------------------------

    async def get_account(self, account_id: int) -> Account:
        data = await self._request("GET", "/account", params={"accountId": account_id})
        if not isinstance(data, dict):
            raise ServiceError(f"Expected an object from GET /account, got {type(data).__name__}")
        data.setdefault("id", account_id)
        return Account.from_payload(data)

    async def get_portfolio(self, account_id: int) -> list[Holding]:
        rows = await self._get_list("/portfolio", {"accountId": account_id})
        return holdings_from_payload(rows)

    async def get_trades(self, account_id: int) -> list[Trade]:
        rows = await self._get_list("/trades", {"accountId": account_id})
        return trades_from_payload(rows)

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def get_candles(
        self, symbol: str, limit: int, interval: str, offset: int = 0
    ) -> list[Candle]:
        rows = await self._get_list(
            "/market/candles",
            {"symbol": symbol, "limit": limit, "interval": interval, "offset": offset},
        )
        return normalize_candles(rows)

    async def get_symbols(self) -> list[str]:
        rows = await self._get_list("/market/symbols", {})
        return [str(s) for s in rows]

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    async def run_live_step(self, account_id: int, symbol: str) -> str:
        return await self._request(
            "POST",
            "/trade/step",
            params={"accountId": account_id, "symbol": symbol},
            as_text=True,
        )

    async def run_replay_step(
        self,
        account_id: int,
        symbol: str,
        limit: int,
        index: int,
        offset: int,
        candles: list[Candle] | None = None,
    ) -> dict[str, Any]:
        body = [c.to_payload() for c in candles] if candles else None
        data = await self._request(
            "POST",
            "/train/step",
            params={
                "accountId": account_id,
                "symbol": symbol,
                "limit": limit,
                "index": index,
                "offset": offset,
            },
            json_body=body,
        )
        if not isinstance(data, dict):
            raise ServiceError(f"Expected an object from POST /train/step, got {type(data).__name__}")
        return data

    async def reset_account(self, account_id: int) -> str:
        return await self._request(
            "POST", "/reset", params={"accountId": account_id}, as_text=True
        )

    # ------------------------------------------------------------------
    # Equity snapshots
    # ------------------------------------------------------------------

    async def create_equity_snapshot(self, account_id: int, mode: Mode) -> str:
        return await self._request(
            "POST",
            "/equity/snapshot",
            params={"accountId": account_id, "mode": mode.value},
            as_text=True,
        )

    async def get_equity_snapshots(
        self, account_id: int, mode: Mode, limit: int
    ) -> list[EquitySnapshot]:
        rows = await self._get_list(
            "/equity/snapshots",
            {"accountId": account_id, "mode": mode.value, "limit": limit},
        )
        return snapshots_from_payload(rows)
