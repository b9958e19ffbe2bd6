"""
Replay driver.

Steps the service's training replay one candle at a time. The replay index
lives on the server: the client sends its cached copy with every request
and adopts whatever ``nextIndex`` comes back, so the two cannot drift.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from replaydesk.marketdata.candle import Candle
from replaydesk.marketdata.candle_cache import CandleCache, CandleWindow
from replaydesk.service.base import ServiceError, TradingService
from replaydesk.session.state import SessionState, SessionStateMachine
from replaydesk.types import Mode, Signal

log = logging.getLogger(__name__)


__all__ = [
    "EmptyDatasetError",
    "ReplayDriver",
    "ReplayError",
    "ResetFailure",
    "StaleTick",
    "StepFailure",
    "StepResult",
    "TickContext",
]


class ReplayError(Exception):
    """Base class for replay control-flow failures."""


class EmptyDatasetError(ReplayError):
    """The training window could not be loaded or came back empty."""


class StepFailure(ReplayError):
    """A replay step request failed or returned an unusable response."""


class ResetFailure(ReplayError):
    """The service refused to reset the account."""


class StaleTick(Exception):
    """Work started under a state that is no longer current."""


@dataclass(frozen=True)
class TickContext:
    """
    Identity of the state a tick was started under.

    A tick may only apply its results while the same mode is active on the
    same account and the mode's epoch has not moved. Pausing, switching mode,
    resetting and changing symbol all bump the epoch.
    """

    mode: Mode
    account_id: int
    epoch: int

    @classmethod
    def capture(cls, state: SessionState, mode: Mode | None = None) -> "TickContext":
        ms = state.mode_state(mode)
        return cls(mode=ms.mode, account_id=ms.account_id, epoch=ms.epoch)

    def is_current(self, state: SessionState) -> bool:
        ms = state.mode_state(self.mode)
        return (
            state.mode is self.mode
            and ms.account_id == self.account_id
            and ms.epoch == self.epoch
        )

    def check(self, state: SessionState) -> None:
        if not self.is_current(state):
            raise StaleTick(f"{self.mode.value} tick for account {self.account_id} is stale")


@dataclass(frozen=True)
class StepResult:
    signal: Signal
    trades_executed: int
    next_index: int
    done: bool

    @classmethod
    def from_payload(cls, payload: Any) -> "StepResult":
        """Validate a replay step response.

        ``nextIndex`` is mandatory: without it the client would have to guess
        where the server is, which is exactly what it must never do.
        """
        if not isinstance(payload, dict):
            raise StepFailure(f"Malformed replay step response: {payload!r}")

        raw_index = payload.get("nextIndex", payload.get("next_index"))
        if isinstance(raw_index, bool) or raw_index is None:
            raise StepFailure("Replay step response has no nextIndex")
        try:
            next_index = int(raw_index)
        except (TypeError, ValueError) as e:
            raise StepFailure(f"Replay step response has invalid nextIndex {raw_index!r}") from e

        try:
            trades = int(payload.get("tradesExecuted", payload.get("trades_executed")) or 0)
        except (TypeError, ValueError):
            trades = 0

        done = payload.get("done")
        if done is None:
            done = False
        elif not isinstance(done, bool):
            raise StepFailure(f"Replay step response has invalid done flag {done!r}")

        try:
            signal = Signal.from_raw(payload.get("signal"))
        except ValueError as e:
            raise StepFailure(f"Malformed replay step response: {e}") from e

        return cls(
            signal=signal,
            trades_executed=trades,
            next_index=next_index,
            done=done,
        )


class ReplayDriver:
    """
    Drives the training replay against the service.

    The driver owns the training candle cache and asks the state machine to
    record every step result; it never writes the replay index itself.
    """

    def __init__(
        self,
        service: TradingService,
        machine: SessionStateMachine,
        cache: CandleCache | None = None,
        *,
        interval: str = "1m",
    ):
        self._service = service
        self._machine = machine
        self.cache = cache if cache is not None else CandleCache()
        self.interval = interval

    def window(self, state: SessionState | None = None) -> CandleWindow:
        state = state or self._machine.state
        return CandleWindow(
            symbol=state.symbol,
            interval=self.interval,
            limit=state.replay.limit,
            offset=state.replay.offset,
        )

    @property
    def candles(self) -> list[Candle]:
        return self.cache.get_candles()

    async def ensure_candles(self, ctx: TickContext | None = None) -> list[Candle]:
        """
        Return the training window, fetching it when nothing usable is cached.

        Raises:
            EmptyDatasetError: The fetch failed or returned no candles.
            StaleTick: The state moved on while the fetch was in flight.
        """
        window = self.window()
        if self.cache.matches(window):
            return self.cache.get_candles()

        log.info(
            "Loading training candles for %s (limit=%d offset=%d)",
            window.symbol,
            window.limit,
            window.offset,
        )
        try:
            candles = await self._service.get_candles(
                window.symbol, window.limit, window.interval, window.offset
            )
        except ServiceError as e:
            raise EmptyDatasetError(f"Failed to load training candles: {e}") from e

        if ctx is not None:
            ctx.check(self._machine.state)
        if not candles:
            raise EmptyDatasetError(f"No training candles for {window.symbol}")

        self.cache.store(window, candles)
        log.info("Cached %d training candles", len(candles))
        return self.cache.get_candles()

    async def step(self, ctx: TickContext | None = None) -> StepResult:
        """
        Ask the service to replay the candle at the current index.

        The reported ``nextIndex`` is applied through the state machine.
        ``done`` is returned to the caller, which finishes the replay once it
        has refreshed the view for this step.
        """
        candles = await self.ensure_candles(ctx)
        state = self._machine.state
        account_id = state.training.account_id
        index = state.replay.index

        log.debug("Replay step index=%d", index)
        try:
            payload = await self._service.run_replay_step(
                account_id,
                state.symbol,
                state.replay.limit,
                index,
                state.replay.offset,
                candles,
            )
        except ServiceError as e:
            raise StepFailure(f"Replay step failed: {e}") from e

        result = StepResult.from_payload(payload)
        if ctx is not None:
            ctx.check(self._machine.state)

        self._machine.apply_step(result.next_index)
        log.debug(
            "Replay step done: signal=%s trades=%d next=%d done=%s",
            result.signal.value,
            result.trades_executed,
            result.next_index,
            result.done,
        )
        return result

    async def reset(
        self,
        *,
        clear: Callable[[], None],
        refetch: Callable[[], Awaitable[None]],
        snapshot: Callable[[], Awaitable[None]],
    ) -> None:
        """
        Reset the active account and rebuild the view from scratch.

        The order is fixed: stop the active loop, reset the service account,
        rewind the replay pointer and clear every local cache, re-fetch
        account data, then capture the new baseline snapshot. When the
        service refuses the reset only the stop has happened; the pointer
        still matches the server account.
        """
        state = self._machine.state
        account_id = state.account_id
        self._machine.pause(state.mode)

        try:
            await self._service.reset_account(account_id)
        except ServiceError as e:
            raise ResetFailure(f"Reset failed: {e}") from e

        self._machine.reset_replay()
        self.cache.clear()
        clear()
        await refetch()
        await snapshot()
        log.info("Account %d reset", account_id)
