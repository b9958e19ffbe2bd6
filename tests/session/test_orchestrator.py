"""Tests for the polling orchestrator."""

import asyncio

import pytest

from replaydesk.session.orchestrator import PollingOrchestrator
from replaydesk.session.state import SessionStateMachine, initial_state
from replaydesk.types import Mode

PERIOD = 0.01


def _machine():
    return SessionStateMachine(
        initial_state(symbol="BTCUSDT", trading_account_id=1, training_account_id=2)
    )


def _orchestrator(machine, tick, on_error=None, period=PERIOD):
    orch = PollingOrchestrator(
        machine, tick, {Mode.TRADING: period, Mode.TRAINING: period}, on_error=on_error
    )
    orch.attach()
    return orch


class TestLoops:

    @pytest.mark.asyncio
    async def test_ticks_while_running_and_stops_on_pause(self):
        machine = _machine()
        ticks = []

        async def tick(ctx):
            ticks.append(ctx.mode)

        orch = _orchestrator(machine, tick)
        machine.start(Mode.TRADING)
        assert orch.is_looping(Mode.TRADING)
        await asyncio.sleep(PERIOD * 6)
        machine.pause(Mode.TRADING)
        assert not orch.is_looping(Mode.TRADING)

        count = len(ticks)
        assert count >= 2
        assert set(ticks) == {Mode.TRADING}
        await asyncio.sleep(PERIOD * 5)
        assert len(ticks) == count
        await orch.shutdown()

    @pytest.mark.asyncio
    async def test_mode_switch_cancels_training_loop(self):
        machine = _machine()
        ticks = []

        async def tick(ctx):
            ticks.append(ctx.mode)

        orch = _orchestrator(machine, tick)
        machine.select_mode(Mode.TRAINING)
        machine.start(Mode.TRAINING)
        await asyncio.sleep(PERIOD * 4)
        machine.select_mode(Mode.TRADING)

        assert not machine.state.training.running
        assert not orch.is_looping(Mode.TRAINING)
        count = len(ticks)
        await asyncio.sleep(PERIOD * 10)
        assert len(ticks) == count
        await orch.shutdown()

    @pytest.mark.asyncio
    async def test_no_overlapping_ticks(self):
        machine = _machine()
        active = 0
        peak = 0
        ticks = 0

        async def slow_tick(ctx):
            nonlocal active, peak, ticks
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(PERIOD * 3)
            active -= 1
            ticks += 1

        orch = _orchestrator(machine, slow_tick)
        machine.start(Mode.TRADING)
        await asyncio.sleep(PERIOD * 15)
        machine.pause(Mode.TRADING)
        await orch.shutdown()

        assert peak == 1
        # overruns skip fire times instead of queueing them
        assert ticks <= 5


class TestStaleAndErrors:

    @pytest.mark.asyncio
    async def test_tick_finishing_after_pause_is_discarded(self):
        machine = _machine()
        applied = []
        errors = []
        started = asyncio.Event()
        release = asyncio.Event()

        async def tick(ctx):
            started.set()
            await release.wait()
            ctx.check(machine.state)
            applied.append(ctx)

        async def on_error(mode, exc):
            errors.append(exc)

        orch = _orchestrator(machine, tick, on_error=on_error)
        machine.start(Mode.TRADING)
        await asyncio.wait_for(started.wait(), 1)
        machine.pause(Mode.TRADING)
        release.set()
        await orch.shutdown()

        assert applied == []
        assert errors == []

    @pytest.mark.asyncio
    async def test_cancel_does_not_abort_in_flight_tick(self):
        machine = _machine()
        finished = []
        started = asyncio.Event()

        async def tick(ctx):
            started.set()
            await asyncio.sleep(PERIOD * 3)
            finished.append(True)

        orch = _orchestrator(machine, tick)
        machine.start(Mode.TRADING)
        await asyncio.wait_for(started.wait(), 1)
        machine.pause(Mode.TRADING)
        assert orch.in_flight(Mode.TRADING)
        await orch.shutdown()
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_failure_pauses_and_reports_once(self):
        machine = _machine()
        errors = []
        calls = 0

        async def tick(ctx):
            nonlocal calls
            calls += 1
            raise RuntimeError("step failed")

        async def on_error(mode, exc):
            errors.append((mode, str(exc)))

        orch = _orchestrator(machine, tick, on_error=on_error)
        machine.start(Mode.TRADING)
        await asyncio.sleep(PERIOD * 8)

        assert not machine.state.trading.running
        assert calls == 1
        assert errors == [(Mode.TRADING, "step failed")]
        await orch.shutdown()


class TestManualTicks:

    @pytest.mark.asyncio
    async def test_run_tick(self):
        machine = _machine()
        ticks = []

        async def tick(ctx):
            ticks.append(ctx)

        orch = _orchestrator(machine, tick)
        assert await orch.run_tick(Mode.TRADING) is True
        assert ticks[0].account_id == 1
        assert await orch.run_tick(Mode.TRAINING) is False
        await orch.shutdown()

    @pytest.mark.asyncio
    async def test_run_tick_refused_while_in_flight(self):
        machine = _machine()
        release = asyncio.Event()

        async def tick(ctx):
            await release.wait()

        orch = _orchestrator(machine, tick)
        first = asyncio.create_task(orch.run_tick(Mode.TRADING))
        await asyncio.sleep(0)
        assert orch.in_flight(Mode.TRADING)
        assert await orch.run_tick(Mode.TRADING) is False
        release.set()
        assert await first is True
        await orch.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self):
        machine = _machine()

        async def tick(ctx):
            pass

        orch = _orchestrator(machine, tick)
        machine.start(Mode.TRADING)
        await orch.shutdown()
        assert not orch.is_looping(Mode.TRADING)
        assert await orch.run_tick(Mode.TRADING) is False
        machine.pause(Mode.TRADING)
        machine.start(Mode.TRADING)
        assert not orch.is_looping(Mode.TRADING)


def test_periods_must_be_positive():
    with pytest.raises(ValueError):
        PollingOrchestrator(_machine(), None, {Mode.TRADING: 1.0, Mode.TRAINING: 0})
