"""
Dashboard controller.

Wires the service, the state machine, the replay driver and the polling
orchestrator together, and keeps the data the view layer renders: account,
holdings, trades and the equity snapshot window of the active mode, plus
the live candle window and per-symbol quotes.

Every operation that reloads data captures a :class:`TickContext` first and
checks it after each await, so a response that arrives after a mode switch,
pause or reset is dropped instead of overwriting fresher state.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from replaydesk.charting.alignment import TradeMarker, align_trades, trades_in_window
from replaydesk.charting.series import (
    EquityCurve,
    TrainingProgress,
    dataset_range,
    latest_price,
    visible_candles,
)
from replaydesk.config import ClientConfig
from replaydesk.events import DomainEvent, EventDispatcher
from replaydesk.marketdata.candle import Candle
from replaydesk.portfolio.equity import (
    BaselineTracker,
    EquitySummary,
    HoldingValue,
    holdings_breakdown,
    summarize,
)
from replaydesk.portfolio.types import Account, EquitySnapshot, Holding, Trade
from replaydesk.service.base import ServiceError, TradingService
from replaydesk.session.events import (
    ErrorRaised,
    ModeChanged,
    ReplayAdvanced,
    RunStateChanged,
    StatusChanged,
    TickCompleted,
)
from replaydesk.session.orchestrator import PollingOrchestrator
from replaydesk.session.replay import (
    ReplayDriver,
    ReplayError,
    StaleTick,
    StepFailure,
    TickContext,
)
from replaydesk.session.state import REPLAY_INDEX_FLOOR, SessionState, SessionStateMachine, initial_state
from replaydesk.types import Mode

log = logging.getLogger(__name__)


__all__ = [
    "ChartView",
    "Dashboard",
    "ModeData",
]


@dataclass
class ModeData:
    """Account data for one mode's account, cleared whenever the mode is re-entered."""

    account: Account | None = None
    holdings: list[Holding] = field(default_factory=list)
    trades: list[Trade] = field(default_factory=list)
    snapshots: list[EquitySnapshot] = field(default_factory=list)
    baseline: BaselineTracker = field(default_factory=BaselineTracker)

    def clear(self) -> None:
        self.account = None
        self.holdings = []
        self.trades = []
        self.snapshots = []
        self.baseline.clear()


@dataclass(frozen=True)
class ChartView:
    """Everything the price and equity charts need for one render."""

    mode: Mode
    symbol: str
    candles: list[Candle]
    markers: list[TradeMarker]
    trades: list[Trade]
    equity: EquityCurve
    progress: TrainingProgress | None
    dataset_range: tuple[int, int] | None


class Dashboard:
    """
    Client-side controller for the trading bot dashboard.

    Example:
        dashboard = Dashboard(HttpTradingService(cfg.base_url), cfg)
        dashboard.events.subscribe(StatusChanged, print)
        await dashboard.activate()
        await dashboard.start()      # TRADING loop, every cfg.trading_period
        await dashboard.select_mode(Mode.TRAINING)
        await dashboard.start()      # replay loop, every cfg.training_period
        ...
        await dashboard.close()
    """

    def __init__(
        self,
        service: TradingService,
        config: ClientConfig | None = None,
        *,
        events: EventDispatcher | None = None,
    ):
        self.config = config or ClientConfig()
        self.service = service
        self.events = events or EventDispatcher()

        self.machine = SessionStateMachine(
            initial_state(
                symbol=self.config.symbol,
                trading_account_id=self.config.trading_account_id,
                training_account_id=self.config.training_account_id,
                replay_limit=self.config.train_limit,
                replay_offset=self.config.train_offset,
            )
        )
        self.replay = ReplayDriver(service, self.machine, interval=self.config.interval)
        self.orchestrator = PollingOrchestrator(
            self.machine,
            self._tick,
            {mode: self.config.period_for(mode) for mode in Mode},
            on_error=self._tick_failed,
        )
        self.orchestrator.attach()
        self.machine.on_change(self._run_state_changed)

        self.data: dict[Mode, ModeData] = {mode: ModeData() for mode in Mode}
        self.live_candles: list[Candle] = []
        self.quotes: dict[str, float] = {}
        self.status: str = ""
        self.error: str | None = None
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.machine.state

    @property
    def mode(self) -> Mode:
        return self.state.mode

    @property
    def active(self) -> ModeData:
        return self.data[self.mode]

    def visible_candles(self) -> list[Candle]:
        return visible_candles(
            self.mode, self.live_candles, self.replay.candles, self.state.replay.index
        )

    def price_for(self, symbol: str) -> float | None:
        """Mark price for *symbol*.

        The chart symbol is marked at the latest visible candle (the replayed
        candle in TRAINING); other symbols use the last fetched quote.
        """
        if symbol == self.state.symbol:
            price = latest_price(self.visible_candles())
            if price is not None:
                return price
        return self.quotes.get(symbol)

    def summary(self) -> EquitySummary:
        data = self.active
        return summarize(data.account, data.holdings, data.trades, self.price_for, data.baseline.baseline)

    def holdings(self, top: int | None = 3) -> list[HoldingValue]:
        return holdings_breakdown(self.active.holdings, self.price_for, top=top)

    def chart(self) -> ChartView:
        state = self.state
        candles = self.visible_candles()
        symbol_trades = [t for t in self.active.trades if t.symbol == state.symbol]

        progress = None
        span = None
        if state.mode is Mode.TRAINING:
            started = state.replay_running or any(
                (t.mode or "").upper() == Mode.TRAINING.value for t in self.active.trades
            )
            progress = TrainingProgress(index=state.replay.index, limit=state.replay.limit, started=started)
            if state.replay_running or state.replay.index > REPLAY_INDEX_FLOOR:
                span = dataset_range(self.replay.candles)

        return ChartView(
            mode=state.mode,
            symbol=state.symbol,
            candles=candles,
            markers=align_trades(candles, symbol_trades, max_markers=self.config.max_markers),
            trades=trades_in_window(symbol_trades, candles),
            equity=EquityCurve.from_snapshots(self.active.snapshots),
            progress=progress,
            dataset_range=span,
        )

    # ------------------------------------------------------------------
    # events
    # ------------------------------------------------------------------

    async def _publish(self, event: DomainEvent) -> None:
        if isinstance(event, StatusChanged):
            self.status = event.message
        elif isinstance(event, ErrorRaised):
            self.error = event.message
        await self.events.publish(event)

    def _run_state_changed(self, old: SessionState, new: SessionState) -> None:
        # state machine listeners are synchronous; hand the event to the loop
        for mode in Mode:
            if old.is_running(mode) != new.is_running(mode):
                task = asyncio.create_task(
                    self._publish(RunStateChanged(mode=mode, running=new.is_running(mode)))
                )
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def _report(self, mode: Mode, exc: Exception) -> None:
        await self._publish(ErrorRaised(mode=mode, kind=type(exc).__name__, message=str(exc)))

    # ------------------------------------------------------------------
    # data loading
    # ------------------------------------------------------------------

    async def refresh(self, ctx: TickContext | None = None) -> bool:
        """
        Reload account, holdings and trades for the active mode.

        The three requests are issued together and committed only if all of
        them succeed, so the summary never mixes a new cash balance with old
        holdings. Outside a tick a failure is reported and False returned.
        """
        own = ctx is None
        ctx = ctx or TickContext.capture(self.state)
        account_id = ctx.account_id
        try:
            account, holdings, trades = await asyncio.gather(
                self.service.get_account(account_id),
                self.service.get_portfolio(account_id),
                self.service.get_trades(account_id),
            )
            ctx.check(self.state)
            if ctx.mode is Mode.TRADING:
                await self.refresh_market(ctx)
        except StaleTick as e:
            if not own:
                raise
            log.debug("Discarded stale refresh: %s", e)
            return False
        except ServiceError as e:
            if not own:
                raise
            log.error("Refresh failed: %s", e)
            await self._report(ctx.mode, e)
            return False

        data = self.data[ctx.mode]
        data.account = account
        data.holdings = list(holdings)
        data.trades = list(trades)
        log.debug(
            "Refreshed account %d: cash=%.2f holdings=%d trades=%d",
            account_id,
            account.cash_balance,
            len(data.holdings),
            len(data.trades),
        )
        return True

    async def refresh_market(self, ctx: TickContext | None = None) -> None:
        """Reload the live candle window and a quote for every other symbol.

        A failing quote only leaves that symbol unpriced; a failing candle
        window raises :class:`ServiceError`.
        """
        ctx = ctx or TickContext.capture(self.state)
        symbol = self.state.symbol
        candles = await self.service.get_candles(symbol, self.config.candle_limit, self.config.interval)
        ctx.check(self.state)
        self.live_candles = list(candles)
        if candles:
            self.quotes[symbol] = candles[-1].close

        for other in self.config.symbols:
            if other == symbol:
                continue
            try:
                rows = await self.service.get_candles(other, 1, self.config.interval)
            except ServiceError as e:
                log.debug("No quote for %s: %s", other, e)
                continue
            ctx.check(self.state)
            if rows:
                self.quotes[other] = rows[-1].close

    async def load_snapshots(self, ctx: TickContext | None = None) -> list[EquitySnapshot]:
        """Reload the bounded snapshot window and latch the baseline if unset."""
        ctx = ctx or TickContext.capture(self.state)
        snapshots = await self.service.get_equity_snapshots(
            ctx.account_id, ctx.mode, self.config.snapshot_limit
        )
        ctx.check(self.state)
        data = self.data[ctx.mode]
        data.snapshots = list(snapshots)
        data.baseline.observe(data.snapshots)
        return data.snapshots

    async def capture_snapshot(self, ctx: TickContext | None = None) -> list[EquitySnapshot]:
        """Ask the service to snapshot equity, then reload the window."""
        ctx = ctx or TickContext.capture(self.state)
        await self.service.create_equity_snapshot(ctx.account_id, ctx.mode)
        ctx.check(self.state)
        return await self.load_snapshots(ctx)

    async def activate(self) -> None:
        """
        Load everything for the active mode.

        When the account has no snapshot yet one is captured immediately so
        the baseline reflects the current balance.
        """
        ctx = TickContext.capture(self.state)
        log.info("Activating %s (account %d)", ctx.mode.value, ctx.account_id)
        try:
            await self.refresh(ctx)
            snapshots = await self.load_snapshots(ctx)
            if not snapshots:
                await self.capture_snapshot(ctx)
        except StaleTick as e:
            log.debug("Discarded stale activation: %s", e)
            return
        except ServiceError as e:
            log.error("Failed to load %s data: %s", ctx.mode.value, e)
            await self._report(ctx.mode, e)
            return
        await self._publish(StatusChanged(message=f"{ctx.mode.value} ready"))

    # ------------------------------------------------------------------
    # user actions
    # ------------------------------------------------------------------

    async def select_mode(self, mode: Mode) -> None:
        previous = self.mode
        if mode is previous:
            return
        self.machine.select_mode(mode)
        self.data[mode].clear()
        self.replay.cache.clear()
        await self._publish(ModeChanged(previous=previous, mode=mode))
        await self.activate()

    async def select_symbol(self, symbol: str) -> None:
        symbol = symbol.strip().upper()
        if symbol == self.state.symbol:
            return
        self.machine.select_symbol(symbol)
        self.replay.cache.clear()
        self.live_candles = []
        await self._publish(StatusChanged(message=f"Symbol {symbol}"))
        if self.mode is Mode.TRADING:
            try:
                await self.refresh_market()
            except StaleTick:
                return
            except ServiceError as e:
                log.error("Failed to load candles for %s: %s", symbol, e)
                await self._report(self.mode, e)

    async def configure_replay(self, *, limit: int | None = None, offset: int | None = None) -> None:
        self.machine.configure_replay(limit=limit, offset=offset)
        self.replay.cache.clear()

    async def start(self) -> None:
        """
        Start the active mode's loop.

        TRAINING loads its candle window first; an empty or failed load is
        reported and re-raised and the run is not started.
        """
        mode = self.mode
        if self.state.is_running(mode):
            return
        if mode is Mode.TRAINING:
            try:
                candles = await self.replay.ensure_candles()
            except ReplayError as e:
                log.error("%s", e)
                await self._report(mode, e)
                raise
            if self.mode is not mode:
                return
            await self._publish(StatusChanged(message=f"Training on {len(candles)} candles"))
        self.machine.start(mode)
        await self._publish(StatusChanged(message=f"{mode.value} running"))

    async def pause(self) -> None:
        mode = self.mode
        if not self.state.is_running(mode):
            return
        self.machine.pause(mode)
        await self._publish(StatusChanged(message=f"{mode.value} paused"))

    async def toggle(self) -> None:
        if self.state.is_running(self.mode):
            await self.pause()
        else:
            await self.start()

    async def step_once(self) -> bool:
        """Run a single tick of the active mode outside the loop.

        Returns False when a tick is already in flight.
        """
        mode = self.mode
        if mode is Mode.TRAINING:
            try:
                await self.replay.ensure_candles()
            except ReplayError as e:
                log.error("%s", e)
                await self._report(mode, e)
                return False
            if self.mode is not mode:
                return False
        return await self.orchestrator.run_tick(mode)

    async def reset(self) -> None:
        """
        Reset the active account: stop, clear, re-fetch, re-baseline.

        Failures are reported and re-raised.
        """
        mode = self.mode

        async def refetch() -> None:
            await self.refresh(TickContext.capture(self.state, mode))

        async def snapshot() -> None:
            snapshots = await self.capture_snapshot(TickContext.capture(self.state, mode))
            self.data[mode].baseline.latch(snapshots)

        try:
            await self.replay.reset(clear=self.data[mode].clear, refetch=refetch, snapshot=snapshot)
        except StaleTick as e:
            log.debug("Reset superseded: %s", e)
            return
        except ReplayError as e:
            log.error("%s", e)
            await self._report(mode, e)
            raise
        except ServiceError as e:
            log.error("Reload after reset failed: %s", e)
            await self._report(mode, e)
            raise
        await self._publish(StatusChanged(message=f"{mode.value} account reset"))

    async def close(self) -> None:
        """Stop all loops, wait for in-flight work and close the service."""
        await self.orchestrator.shutdown()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.service.close()

    # ------------------------------------------------------------------
    # ticks
    # ------------------------------------------------------------------

    async def _tick(self, ctx: TickContext) -> None:
        """step → refresh → snapshot → reload, then evaluate ``done``."""
        result = None
        if ctx.mode is Mode.TRAINING:
            result = await self.replay.step(ctx)
        else:
            try:
                status = await self.service.run_live_step(ctx.account_id, self.state.symbol)
            except ServiceError as e:
                raise StepFailure(f"Live step failed: {e}") from e
            ctx.check(self.state)
            await self._publish(StatusChanged(message=status))

        try:
            await self.refresh(ctx)
            await self.capture_snapshot(ctx)
        except ServiceError:
            if result is not None and result.done and ctx.is_current(self.state):
                # the service has finished the replay even though the reload failed
                self.machine.mark_replay_finished()
            raise
        ctx.check(self.state)

        if result is not None:
            if result.done:
                self.machine.finish_replay()
            await self._publish(
                ReplayAdvanced(
                    index=result.next_index,
                    signal=result.signal,
                    trades_executed=result.trades_executed,
                    done=result.done,
                )
            )
            if result.done:
                await self._publish(StatusChanged(message="Training complete"))
        await self._publish(TickCompleted(mode=ctx.mode, account_id=ctx.account_id))

    async def _tick_failed(self, mode: Mode, exc: Exception) -> None:
        await self._report(mode, exc)

