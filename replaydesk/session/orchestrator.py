"""
Polling orchestrator.

Owns the two timed loops: live ticking while TRADING runs and replay
ticking while TRAINING runs. Loops follow the state machine: every
transition calls :meth:`PollingOrchestrator.sync`, which starts the loop
for the active running mode and cancels every other loop before the
transition returns.

A tick runs as its own task and the loop waits on it through
``asyncio.shield``. Cancelling a loop therefore never aborts a request that
is already on the wire; the tick finishes its current await, sees that its
:class:`TickContext` is stale and stops without applying anything.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from replaydesk.session.replay import StaleTick, TickContext
from replaydesk.session.state import SessionState, SessionStateMachine
from replaydesk.types import Mode

log = logging.getLogger(__name__)


__all__ = [
    "ErrorHandler",
    "PollingOrchestrator",
    "TickFn",
]


TickFn = Callable[[TickContext], Awaitable[None]]
ErrorHandler = Callable[[Mode, Exception], Awaitable[None]]


class PollingOrchestrator:
    """
    Fixed-rate tick loops, at most one in-flight tick per mode.

    A tick that overruns its period causes the missed fire times to be
    skipped, never queued. Any failure pauses the owning mode (if the tick is
    still current) and is reported through *on_error*; the next scheduled
    tick is the only retry.
    """

    def __init__(
        self,
        machine: SessionStateMachine,
        tick: TickFn,
        periods: dict[Mode, float],
        *,
        on_error: ErrorHandler | None = None,
    ):
        for mode in Mode:
            if periods.get(mode, 0) <= 0:
                raise ValueError(f"{mode.value} period must be > 0")
        self._machine = machine
        self._tick = tick
        self._periods = dict(periods)
        self._on_error = on_error

        self._loops: dict[Mode, asyncio.Task] = {}
        self._loop_epochs: dict[Mode, int] = {}
        self._inflight: dict[Mode, asyncio.Task] = {}
        self._closed = False

    def attach(self) -> None:
        """Follow the state machine from now on."""
        self._machine.on_change(self._on_change)

    def _on_change(self, old: SessionState, new: SessionState) -> None:
        self.sync()

    def is_looping(self, mode: Mode) -> bool:
        task = self._loops.get(mode)
        return task is not None and not task.done()

    def in_flight(self, mode: Mode) -> bool:
        return mode in self._inflight

    # ------------------------------------------------------------------
    # loop management
    # ------------------------------------------------------------------

    def sync(self) -> None:
        """Reconcile loop tasks with the current state."""
        state = self._machine.state
        for mode in Mode:
            ms = state.mode_state(mode)
            wanted = not self._closed and ms.running and state.mode is mode

            task = self._loops.get(mode)
            if task is not None and (not wanted or self._loop_epochs.get(mode) != ms.epoch or task.done()):
                task.cancel()
                del self._loops[mode]
                log.debug("%s loop cancelled", mode.value)
                task = None

            if wanted and task is None:
                self._loops[mode] = asyncio.create_task(
                    self._loop(mode, ms.epoch), name=f"replaydesk-{mode.value.lower()}-loop"
                )
                self._loop_epochs[mode] = ms.epoch
                log.debug("%s loop started (every %.3fs)", mode.value, self._periods[mode])

    async def _loop(self, mode: Mode, epoch: int) -> None:
        period = self._periods[mode]
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + period

        while True:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))

            ctx = TickContext.capture(self._machine.state, mode)
            if ctx.epoch != epoch or not self._machine.state.is_running(mode):
                return

            if mode in self._inflight:
                log.debug("%s tick still in flight; skipping fire", mode.value)
            else:
                await asyncio.shield(self._launch(ctx))

            now = loop.time()
            next_fire += period
            if next_fire <= now:
                missed = int((now - next_fire) // period) + 1
                next_fire += missed * period
                log.debug("%s tick overran; skipped %d fire time(s)", mode.value, missed)

    def _launch(self, ctx: TickContext) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(ctx))
        self._inflight[ctx.mode] = task

        def _done(t: asyncio.Task) -> None:
            if self._inflight.get(ctx.mode) is t:
                del self._inflight[ctx.mode]

        task.add_done_callback(_done)
        return task

    async def _guarded(self, ctx: TickContext) -> None:
        try:
            await self._tick(ctx)
        except StaleTick as e:
            log.debug("Discarded stale tick: %s", e)
        except Exception as e:
            if not ctx.is_current(self._machine.state):
                log.debug("Ignoring failure of stale %s tick: %s", ctx.mode.value, e)
                return
            log.error("%s tick failed: %s", ctx.mode.value, e)
            self._machine.pause(ctx.mode)
            if self._on_error is not None:
                await self._on_error(ctx.mode, e)

    # ------------------------------------------------------------------
    # public
    # ------------------------------------------------------------------

    async def run_tick(self, mode: Mode) -> bool:
        """
        Run one tick for *mode* right now.

        Returns:
            False if a tick for *mode* is already in flight, *mode* is not the
            active mode, or the orchestrator is shut down; True once the tick
            has completed.
        """
        state = self._machine.state
        if self._closed or state.mode is not mode:
            return False
        if mode in self._inflight:
            log.debug("%s tick already in flight", mode.value)
            return False
        await asyncio.shield(self._launch(TickContext.capture(state, mode)))
        return True

    async def shutdown(self) -> None:
        """Cancel every loop and wait for in-flight ticks to settle."""
        self._closed = True
        loops = list(self._loops.values())
        self._loops.clear()
        for task in loops:
            task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)

        inflight = list(self._inflight.values())
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)
        log.debug("Orchestrator shut down")
