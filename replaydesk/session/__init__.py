"""
Session engine: mode/run state, replay stepping and polling loops.
"""

from .dashboard import ChartView, Dashboard, ModeData
from .events import (
    ErrorRaised,
    ModeChanged,
    ReplayAdvanced,
    RunStateChanged,
    StatusChanged,
    TickCompleted,
)
from .orchestrator import PollingOrchestrator
from .replay import (
    EmptyDatasetError,
    ReplayDriver,
    ReplayError,
    ResetFailure,
    StaleTick,
    StepFailure,
    StepResult,
    TickContext,
)
from .state import (
    REPLAY_INDEX_FLOOR,
    InvalidTransition,
    ModeState,
    ReplayState,
    SessionState,
    SessionStateMachine,
    initial_state,
)

__all__ = [
    "REPLAY_INDEX_FLOOR",
    "ChartView",
    "Dashboard",
    "EmptyDatasetError",
    "ErrorRaised",
    "InvalidTransition",
    "ModeChanged",
    "ModeData",
    "ModeState",
    "PollingOrchestrator",
    "ReplayAdvanced",
    "ReplayDriver",
    "ReplayError",
    "ReplayState",
    "ResetFailure",
    "RunStateChanged",
    "SessionState",
    "SessionStateMachine",
    "StaleTick",
    "StatusChanged",
    "StepFailure",
    "StepResult",
    "TickCompleted",
    "TickContext",
    "initial_state",
]
