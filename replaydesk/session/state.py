"""Mode/run state machine.

The session state is one immutable, serialisable value. Every change goes
through a named transition function that returns a new state, and
:class:`SessionStateMachine` is the only holder of the current value.

Two operating modes exist, each bound to its own service account and each
with an independent run flag (Idle/Running). Only the active mode may run.
Every cancel point (pause, mode switch, reset, symbol change) bumps the
affected mode's ``epoch``; work started under an older epoch is stale.
"""

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable

from replaydesk.types import Mode

log = logging.getLogger(__name__)


__all__ = [
    "REPLAY_INDEX_FLOOR",
    "InvalidTransition",
    "ModeState",
    "ReplayState",
    "SessionState",
    "SessionStateMachine",
    "apply_step",
    "configure_replay",
    "finish_replay",
    "initial_state",
    "mark_replay_finished",
    "pause",
    "reset_replay",
    "select_mode",
    "select_symbol",
    "start",
]


# The service needs this many candles of history before its first decision.
REPLAY_INDEX_FLOOR = 21


class InvalidTransition(ValueError):
    """Raised when a transition is not allowed from the current state."""


@dataclass(frozen=True)
class ModeState:
    mode: Mode
    account_id: int
    running: bool = False
    epoch: int = 0

    def stopped(self) -> "ModeState":
        """Idle copy with a fresh epoch, invalidating in-flight work."""
        return replace(self, running=False, epoch=self.epoch + 1)


@dataclass(frozen=True)
class ReplayState:
    """Training replay pointer.

    ``index`` is the next candle the service will consume. It is a cache of
    the latest server-reported ``nextIndex`` and is never advanced locally.
    """
    index: int = REPLAY_INDEX_FLOOR
    limit: int = 200
    offset: int = 0
    finished: bool = False

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"replay limit must be >= 1, got {self.limit}")
        if self.offset < 0:
            raise ValueError(f"replay offset must be >= 0, got {self.offset}")
        if self.index < REPLAY_INDEX_FLOOR:
            raise ValueError(f"replay index must be >= {REPLAY_INDEX_FLOOR}, got {self.index}")


@dataclass(frozen=True)
class SessionState:
    mode: Mode
    symbol: str
    trading: ModeState
    training: ModeState
    replay: ReplayState

    def mode_state(self, mode: Mode | None = None) -> ModeState:
        mode = self.mode if mode is None else mode
        return self.trading if mode is Mode.TRADING else self.training

    @property
    def active(self) -> ModeState:
        return self.mode_state(self.mode)

    @property
    def account_id(self) -> int:
        return self.active.account_id

    @property
    def replay_running(self) -> bool:
        """The training run flag (ReplayState's ``running``)."""
        return self.training.running

    def is_running(self, mode: Mode) -> bool:
        return self.mode_state(mode).running

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        data["trading"]["mode"] = Mode.TRADING.value
        data["training"]["mode"] = Mode.TRAINING.value
        return data


def _with_mode_state(state: SessionState, ms: ModeState) -> SessionState:
    if ms.mode is Mode.TRADING:
        return replace(state, trading=ms)
    return replace(state, training=ms)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def initial_state(
    *,
    symbol: str,
    trading_account_id: int,
    training_account_id: int,
    replay_limit: int = 200,
    replay_offset: int = 0,
) -> SessionState:
    """TRADING selected, both modes idle."""
    if trading_account_id == training_account_id:
        raise ValueError("TRADING and TRAINING must use distinct accounts")
    return SessionState(
        mode=Mode.TRADING,
        symbol=symbol,
        trading=ModeState(Mode.TRADING, trading_account_id),
        training=ModeState(Mode.TRAINING, training_account_id),
        replay=ReplayState(limit=replay_limit, offset=replay_offset),
    )


def select_mode(state: SessionState, mode: Mode) -> SessionState:
    """Switch the active mode.

    The previously active mode is forced Idle so no loop keeps driving an
    account the user is not viewing.
    """
    if mode is state.mode:
        return state
    previous = state.active.stopped()
    state = _with_mode_state(state, previous)
    return replace(state, mode=mode)


def start(state: SessionState, mode: Mode) -> SessionState:
    """Idle → Running; only for the active mode."""
    if mode is not state.mode:
        raise InvalidTransition(f"cannot start {mode.value}: active mode is {state.mode.value}")
    ms = state.mode_state(mode)
    if ms.running:
        return state
    state = _with_mode_state(state, replace(ms, running=True))
    if mode is Mode.TRAINING and state.replay.finished:
        # a new run clears the flag; the service reports done again if nothing is left
        state = replace(state, replay=replace(state.replay, finished=False))
    return state


def pause(state: SessionState, mode: Mode) -> SessionState:
    """Running → Idle. Always permitted; a no-op when already idle."""
    ms = state.mode_state(mode)
    if not ms.running:
        return state
    return _with_mode_state(state, ms.stopped())


def apply_step(state: SessionState, next_index: int) -> SessionState:
    """Record the replay index reported by the service for the last step."""
    index = max(REPLAY_INDEX_FLOOR, int(next_index))
    if index > state.replay.limit:
        log.warning("Service reported replay index %d beyond limit %d", index, state.replay.limit)
    return replace(state, replay=replace(state.replay, index=index))


def finish_replay(state: SessionState) -> SessionState:
    """The service reported the replay done.

    Forces TRAINING Idle regardless of its current flag; the session is
    terminal until a reset or a fresh start.
    """
    state = replace(state, replay=replace(state.replay, finished=True))
    return _with_mode_state(state, state.training.stopped())


def mark_replay_finished(state: SessionState) -> SessionState:
    """Record that the service has no more candles to replay.

    Unlike :func:`finish_replay` the run flag and epoch are left alone, so a
    tick that is failing after the final step is still current and is
    reported by whoever owns it.
    """
    return replace(state, replay=replace(state.replay, finished=True))


def reset_replay(state: SessionState) -> SessionState:
    """Stop the active mode and put the replay pointer back to its floor."""
    state = _with_mode_state(state, state.active.stopped())
    return replace(
        state,
        replay=replace(state.replay, index=REPLAY_INDEX_FLOOR, finished=False),
    )


def configure_replay(state: SessionState, *, limit: int | None = None, offset: int | None = None) -> SessionState:
    """Change the training window; rewinds the pointer and stops TRAINING."""
    replay = ReplayState(
        index=REPLAY_INDEX_FLOOR,
        limit=state.replay.limit if limit is None else int(limit),
        offset=state.replay.offset if offset is None else int(offset),
    )
    state = _with_mode_state(state, state.training.stopped())
    return replace(state, replay=replay)


def select_symbol(state: SessionState, symbol: str) -> SessionState:
    """Change the traded symbol; stops both modes and rewinds the replay."""
    if symbol == state.symbol:
        return state
    state = replace(
        state,
        symbol=symbol,
        trading=state.trading.stopped(),
        training=state.training.stopped(),
    )
    return replace(state, replay=replace(state.replay, index=REPLAY_INDEX_FLOOR, finished=False))


# ---------------------------------------------------------------------------
# Holder
# ---------------------------------------------------------------------------


Listener = Callable[[SessionState, SessionState], None]


class SessionStateMachine:
    """
    Owns the current :class:`SessionState`.

    Listeners are called synchronously after every change with
    ``(old, new)``; the polling orchestrator uses this to cancel or start
    its timers before any further mutation can happen.
    """

    def __init__(self, state: SessionState):
        self._state = state
        self._listeners: list[Listener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    def on_change(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def dispatch(self, transition: Callable[..., SessionState], *args: Any, **kwargs: Any) -> SessionState:
        """Apply *transition* to the current state and notify listeners."""
        old = self._state
        new = transition(old, *args, **kwargs)
        if new == old:
            return new

        self._state = new
        log.debug("Transition %s: %s", transition.__name__, new.to_dict())
        for m in Mode:
            if old.is_running(m) != new.is_running(m):
                log.info("%s %s", m.value, "running" if new.is_running(m) else "idle")
        if old.mode is not new.mode:
            log.info("Mode switched %s -> %s", old.mode.value, new.mode.value)

        for listener in list(self._listeners):
            listener(old, new)
        return new

    # named shortcuts
    def select_mode(self, mode: Mode) -> SessionState:
        return self.dispatch(select_mode, mode)

    def start(self, mode: Mode) -> SessionState:
        return self.dispatch(start, mode)

    def pause(self, mode: Mode) -> SessionState:
        return self.dispatch(pause, mode)

    def apply_step(self, next_index: int) -> SessionState:
        return self.dispatch(apply_step, next_index)

    def finish_replay(self) -> SessionState:
        return self.dispatch(finish_replay)

    def mark_replay_finished(self) -> SessionState:
        return self.dispatch(mark_replay_finished)

    def reset_replay(self) -> SessionState:
        return self.dispatch(reset_replay)

    def configure_replay(self, *, limit: int | None = None, offset: int | None = None) -> SessionState:
        return self.dispatch(configure_replay, limit=limit, offset=offset)

    def select_symbol(self, symbol: str) -> SessionState:
        return self.dispatch(select_symbol, symbol)
