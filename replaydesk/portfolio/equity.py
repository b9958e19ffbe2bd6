"""Equity and profit/loss accounting.

Combines the three independently refreshed series (account, portfolio,
trade history) plus the equity snapshot window into the summary figures
shown on the dashboard. Nothing here mutates its inputs, and a single bad
row or stale quote never fails the whole computation.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from replaydesk.portfolio.types import Account, EquitySnapshot, Holding, Trade
from replaydesk.types import Side

log = logging.getLogger(__name__)


__all__ = [
    "BaselineTracker",
    "EquitySummary",
    "HoldingValue",
    "PriceLookup",
    "baseline_from_snapshots",
    "compute_equity",
    "holdings_breakdown",
    "latest_snapshot_equity",
    "realized_pnl",
    "summarize",
]


PriceLookup = Callable[[str], float | None]


def _finite(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        x = float(value)
    except (TypeError, ValueError):
        return None
    return x if math.isfinite(x) else None


def _holding_value(holding: Holding, price_for: PriceLookup) -> float:
    price = _finite(price_for(holding.symbol))
    qty = _finite(holding.quantity)
    if price is None or qty is None:
        log.debug("No usable price/quantity for %s; counting it as 0", holding.symbol)
        return 0.0
    return qty * price


def compute_equity(
    account: Account | None,
    holdings: Iterable[Holding],
    price_for: PriceLookup,
) -> float:
    """Cash plus the marked value of every holding.

    A holding whose price is unavailable contributes 0. A missing account
    counts as zero cash.
    """
    cash = _finite(account.cash_balance) if account is not None else None
    total = cash or 0.0
    for holding in holdings:
        total += _holding_value(holding, price_for)
    return float(total)


def baseline_from_snapshots(snapshots: Sequence[EquitySnapshot]) -> float | None:
    """Equity of the oldest retained snapshot, or ``None`` if there is none.

    "Oldest" is decided by canonical timestamp so that out-of-order windows
    still yield a stable baseline. When no snapshot carries a parseable time
    the last element of the service's newest-first list is used.
    """
    usable = [s for s in snapshots if _finite(s.total_equity) is not None]
    if not usable:
        return None

    timed = [(s.timestamp_ms, s) for s in usable if s.timestamp_ms is not None]
    if timed:
        _, oldest = min(timed, key=lambda pair: pair[0])
    else:
        oldest = usable[-1]
    return float(oldest.total_equity)


def latest_snapshot_equity(snapshots: Sequence[EquitySnapshot]) -> float | None:
    """Equity of the newest snapshot (by time, else the head of the list)."""
    usable = [s for s in snapshots if _finite(s.total_equity) is not None]
    if not usable:
        return None
    timed = [(s.timestamp_ms, s) for s in usable if s.timestamp_ms is not None]
    if timed:
        _, newest = max(timed, key=lambda pair: pair[0])
    else:
        newest = usable[0]
    return float(newest.total_equity)


def realized_pnl(trades: Iterable[Trade]) -> float:
    """Sum of the pnl reported on SELL fills.

    BUY fills realise nothing, so their pnl entries are never counted even
    if the service fills them in.
    """
    total = 0.0
    for trade in trades:
        if trade.side is not Side.SELL:
            continue
        pnl = _finite(trade.pnl)
        if pnl is not None:
            total += pnl
    return float(total)


@dataclass(frozen=True)
class EquitySummary:
    """Figures for the dashboard summary bar.

    ``pnl`` and ``unrealized_pnl`` are ``None`` until a baseline exists; a
    zero there would wrongly claim "no change".
    """
    cash: float
    holdings_value: float
    equity: float
    baseline: float | None
    pnl: float | None
    realized_pnl: float
    unrealized_pnl: float | None
    trade_count: int
    last_trade_ms: int | None


def summarize(
    account: Account | None,
    holdings: Sequence[Holding],
    trades: Sequence[Trade],
    price_for: PriceLookup,
    baseline: float | None,
) -> EquitySummary:
    """Derive equity and the realised/unrealised PnL split.

    Invariant: ``realized_pnl + unrealized_pnl == pnl`` whenever ``pnl`` is
    defined.
    """
    cash = _finite(account.cash_balance) if account is not None else None
    equity = compute_equity(account, holdings, price_for)
    realized = realized_pnl(trades)

    pnl = None if baseline is None else equity - baseline
    unrealized = None if pnl is None else pnl - realized

    # trade history is newest first; take the first parseable time
    last_trade_ms = next(
        (t.timestamp_ms for t in trades if t.timestamp_ms is not None), None
    )

    return EquitySummary(
        cash=cash or 0.0,
        holdings_value=equity - (cash or 0.0),
        equity=equity,
        baseline=baseline,
        pnl=pnl,
        realized_pnl=realized,
        unrealized_pnl=unrealized,
        trade_count=len(trades),
        last_trade_ms=last_trade_ms,
    )


@dataclass(frozen=True)
class HoldingValue:
    symbol: str
    quantity: float
    value: float


def holdings_breakdown(
    holdings: Iterable[Holding],
    price_for: PriceLookup,
    top: int | None = 3,
) -> list[HoldingValue]:
    """Market value per held symbol, largest first, positive values only."""
    items = [
        HoldingValue(symbol=h.symbol, quantity=h.quantity, value=_holding_value(h, price_for))
        for h in holdings
    ]
    items = [i for i in items if i.value > 0]
    items.sort(key=lambda i: i.value, reverse=True)
    return items if top is None else items[:top]


class BaselineTracker:
    """
    Latches the PnL baseline once per (account, mode) activation.

    The dashboard calls :meth:`clear` whenever the active account/mode pair
    changes or the account is reset, then feeds each reloaded snapshot window
    to :meth:`observe`. The first window with a usable snapshot fixes the
    baseline until the next :meth:`clear`.
    """

    def __init__(self) -> None:
        self._baseline: float | None = None

    @property
    def baseline(self) -> float | None:
        return self._baseline

    def clear(self) -> None:
        self._baseline = None

    def observe(self, snapshots: Sequence[EquitySnapshot]) -> float | None:
        if self._baseline is None:
            self._baseline = baseline_from_snapshots(snapshots)
            if self._baseline is not None:
                log.info("Baseline equity established at %.2f", self._baseline)
        return self._baseline

    def latch(self, snapshots: Sequence[EquitySnapshot]) -> float | None:
        """Fix the baseline to the newest snapshot, replacing any previous value.

        Used right after a reset, when the window may still hold snapshots
        from before the reset.
        """
        self._baseline = latest_snapshot_equity(snapshots)
        if self._baseline is not None:
            log.info("Baseline equity re-established at %.2f", self._baseline)
        return self._baseline
