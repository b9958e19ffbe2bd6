"""Account, portfolio and equity accounting."""

from .equity import (
    BaselineTracker,
    EquitySummary,
    HoldingValue,
    PriceLookup,
    baseline_from_snapshots,
    compute_equity,
    holdings_breakdown,
    latest_snapshot_equity,
    realized_pnl,
    summarize,
)
from .types import (
    Account,
    EquitySnapshot,
    Holding,
    Trade,
    holdings_from_payload,
    snapshots_from_payload,
    trades_from_payload,
)

__all__ = [
    "Account",
    "BaselineTracker",
    "EquitySnapshot",
    "EquitySummary",
    "Holding",
    "HoldingValue",
    "PriceLookup",
    "Trade",
    "baseline_from_snapshots",
    "compute_equity",
    "holdings_breakdown",
    "holdings_from_payload",
    "latest_snapshot_equity",
    "realized_pnl",
    "snapshots_from_payload",
    "summarize",
    "trades_from_payload",
]
