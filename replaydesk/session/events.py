from replaydesk.events import DomainEvent, event
from replaydesk.types import Mode, Signal

__all__ = [
    "ErrorRaised",
    "ModeChanged",
    "ReplayAdvanced",
    "RunStateChanged",
    "StatusChanged",
    "TickCompleted",
]


@event
class StatusChanged(DomainEvent):
    """Human-readable status line for the dashboard."""

    message: str


@event
class ErrorRaised(DomainEvent):
    """A control-flow failure that paused a loop or aborted an action."""

    mode: Mode
    kind: str  # exception class name, e.g. "StepFailure"
    message: str


@event
class ModeChanged(DomainEvent):
    previous: Mode
    mode: Mode


@event
class RunStateChanged(DomainEvent):
    mode: Mode
    running: bool


@event
class ReplayAdvanced(DomainEvent):
    index: int
    signal: Signal
    trades_executed: int
    done: bool


@event
class TickCompleted(DomainEvent):
    mode: Mode
    account_id: int
