"""Job state machine and payload validation."""

from jobledger.engine.state_machine import (
    SYSTEM_ACTOR,
    CalendarHold,
    JobStateMachine,
    TransitionPlan,
)

__all__ = [
    "SYSTEM_ACTOR",
    "CalendarHold",
    "JobStateMachine",
    "TransitionPlan",
]
