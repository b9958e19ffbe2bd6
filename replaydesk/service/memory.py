from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from replaydesk.marketdata.candle import Candle, normalize_candles
from replaydesk.portfolio.types import Account, EquitySnapshot, Holding, Trade
from replaydesk.service.base import ServiceError, TradingService
from replaydesk.time_utils import now_ms
from replaydesk.types import Mode, Side, Signal

# Replays never decide on fewer candles than this.
MIN_HISTORY = 21

BUY_CASH_FRACTION = 0.10
SELL_POSITION_FRACTION = 0.10

Decider = Callable[[Sequence[float]], Signal]


def hold(closes: Sequence[float]) -> Signal:
    return Signal.HOLD


@dataclass
class _Position:
    quantity: float
    avg_entry_price: float
    updated_at: int


class InMemoryTradingService(TradingService):
    """
    In-process stand-in for the trading service.

    - candles are served from in-memory series per symbol
    - run_live_step decides on the latest window and fills at its last close
    - run_replay_step decides on candles[0 : index+1] and fills at candles[index]
    - buys spend 10% of cash, sells close 10% of the position and report pnl
    - snapshots mark holdings at the last price each account traded against

    The decision function is injected; the default always holds.
    """

    def __init__(
        self,
        candles: dict[str, list[Candle]] | None = None,
        *,
        decide: Decider = hold,
        initial_cash: float = 10000.0,
        clock: Callable[[], int] = now_ms,
    ):
        self._series: dict[str, list[Candle]] = {
            symbol: normalize_candles(series) for symbol, series in (candles or {}).items()
        }
        self._decide = decide
        self._initial_cash = float(initial_cash)
        self._clock = clock
        self._last_ts = 0
        self._ids = itertools.count(1)

        self.cash: dict[int, float] = {}
        self.positions: dict[int, dict[str, _Position]] = {}
        self.trades: dict[int, list[Trade]] = {}
        self.snapshots: dict[tuple[int, Mode], list[EquitySnapshot]] = {}
        self.marks: dict[int, dict[str, float]] = {}

        self.calls: list[tuple[str, Any]] = []
        self.started = False
        self.closed = False

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _tick_clock(self) -> int:
        ts = max(int(self._clock()), self._last_ts + 1)
        self._last_ts = ts
        return ts

    def _ensure_account(self, account_id: int) -> None:
        if account_id not in self.cash:
            self.cash[account_id] = self._initial_cash
            self.positions[account_id] = {}
            self.trades[account_id] = []
            self.marks[account_id] = {}

    def _equity(self, account_id: int) -> float:
        self._ensure_account(account_id)
        total = self.cash[account_id]
        for symbol, pos in self.positions[account_id].items():
            total += pos.quantity * self.marks[account_id].get(symbol, pos.avg_entry_price)
        return total

    def _fill(self, account_id: int, symbol: str, signal: Signal, price: float, ts: int, mode: Mode) -> int:
        """Apply *signal* at *price*; return the number of trades executed."""
        self._ensure_account(account_id)
        self.marks[account_id][symbol] = price
        if price <= 0:
            return 0

        book = self.positions[account_id]
        if signal is Signal.BUY:
            spend = self.cash[account_id] * BUY_CASH_FRACTION
            qty = spend / price
            if qty <= 0:
                return 0
            self.cash[account_id] -= spend
            pos = book.get(symbol)
            if pos is None:
                book[symbol] = _Position(quantity=qty, avg_entry_price=price, updated_at=ts)
            else:
                new_qty = pos.quantity + qty
                pos.avg_entry_price = (pos.avg_entry_price * pos.quantity + price * qty) / new_qty
                pos.quantity = new_qty
                pos.updated_at = ts
            trade = Trade(timestamp=ts, side=Side.BUY, symbol=symbol, quantity=qty, price=price, mode=mode.value)

        elif signal is Signal.SELL:
            pos = book.get(symbol)
            if pos is None or pos.quantity <= 0:
                return 0
            qty = pos.quantity * SELL_POSITION_FRACTION
            pos.quantity -= qty
            pos.updated_at = ts
            self.cash[account_id] += qty * price
            pnl = (price - pos.avg_entry_price) * qty
            if pos.quantity <= 0:
                book.pop(symbol, None)
            trade = Trade(timestamp=ts, side=Side.SELL, symbol=symbol, quantity=qty, price=price, pnl=pnl, mode=mode.value)

        else:
            return 0

        # history is kept newest first, like the service
        self.trades[account_id].insert(0, trade)
        return 1

    # ------------------------------------------------------------------
    # TradingService
    # ------------------------------------------------------------------

    async def get_account(self, account_id: int) -> Account:
        self.calls.append(("get_account", account_id))
        self._ensure_account(account_id)
        return Account(id=account_id, cash_balance=self.cash[account_id])

    async def get_portfolio(self, account_id: int) -> list[Holding]:
        self.calls.append(("get_portfolio", account_id))
        self._ensure_account(account_id)
        return [
            Holding(symbol=s, quantity=p.quantity, avg_entry_price=p.avg_entry_price, updated_at=p.updated_at)
            for s, p in self.positions[account_id].items()
        ]

    async def get_trades(self, account_id: int) -> list[Trade]:
        self.calls.append(("get_trades", account_id))
        self._ensure_account(account_id)
        return list(self.trades[account_id])

    async def get_candles(self, symbol: str, limit: int, interval: str, offset: int = 0) -> list[Candle]:
        self.calls.append(("get_candles", (symbol, limit, offset)))
        series = self._series.get(symbol, [])
        if limit <= 0:
            return []
        end = max(0, len(series) - max(0, offset))
        return series[max(0, end - limit) : end]

    async def get_symbols(self) -> list[str]:
        return sorted(self._series)

    async def run_live_step(self, account_id: int, symbol: str) -> str:
        self.calls.append(("run_live_step", account_id))
        series = self._series.get(symbol)
        if series is None:
            raise ServiceError(f"Unknown symbol {symbol}", status=400)
        if len(series) < MIN_HISTORY:
            return f"Signal={Signal.HOLD.value}"

        closes = [c.close for c in series]
        signal = self._decide(closes)
        self._fill(account_id, symbol, signal, closes[-1], self._tick_clock(), Mode.TRADING)
        return f"Signal={signal.value}"

    async def run_replay_step(
        self,
        account_id: int,
        symbol: str,
        limit: int,
        index: int,
        offset: int,
        candles: list[Candle] | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("run_replay_step", index))
        if candles:
            series = list(candles)
        else:
            series = await self.get_candles(symbol, limit, "1m", offset)

        index = max(index, MIN_HISTORY)
        if not series or index >= len(series):
            return {"done": True, "nextIndex": len(series), "tradesExecuted": 0, "signal": Signal.HOLD.value}

        closes = [c.close for c in series]
        signal = self._decide(closes[: index + 1])
        trades = self._fill(account_id, symbol, signal, closes[index], series[index].timestamp, Mode.TRAINING)

        next_index = index + 1
        return {
            "done": next_index >= len(series),
            "nextIndex": next_index,
            "tradesExecuted": trades,
            "signal": signal.value,
        }

    async def reset_account(self, account_id: int) -> str:
        self.calls.append(("reset_account", account_id))
        self.cash[account_id] = self._initial_cash
        self.positions[account_id] = {}
        self.trades[account_id] = []
        self.marks[account_id] = {}
        for key in [k for k in self.snapshots if k[0] == account_id]:
            del self.snapshots[key]
        return "OK"

    async def create_equity_snapshot(self, account_id: int, mode: Mode) -> str:
        self.calls.append(("create_equity_snapshot", account_id))
        snap = EquitySnapshot(timestamp=self._tick_clock(), total_equity=self._equity(account_id))
        self.snapshots.setdefault((account_id, mode), []).insert(0, snap)
        return f"SNAPSHOT-{next(self._ids)}"

    async def get_equity_snapshots(self, account_id: int, mode: Mode, limit: int) -> list[EquitySnapshot]:
        self.calls.append(("get_equity_snapshots", account_id))
        return list(self.snapshots.get((account_id, mode), []))[: max(0, limit)]
