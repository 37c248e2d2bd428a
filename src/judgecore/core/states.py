from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List

from .errors import IllegalTransition
from .models import TerminationReason


class SubmissionState(str, Enum):
    SUBMITTED = "SUBMITTED"
    COMPILING = "COMPILING"
    COMPILE_FAILED = "COMPILE_FAILED"
    COMPILED = "COMPILED"
    RUNNING = "RUNNING"
    TIME_LIMIT_EXCEEDED = "TIME_LIMIT_EXCEEDED"
    MEMORY_LIMIT_EXCEEDED = "MEMORY_LIMIT_EXCEEDED"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    COMPLETED = "COMPLETED"
    SYSTEM_ERROR = "SYSTEM_ERROR"


S = SubmissionState

_TRANSITIONS: Dict[SubmissionState, FrozenSet[SubmissionState]] = {
    S.SUBMITTED: frozenset({S.COMPILING}),
    S.COMPILING: frozenset({S.COMPILE_FAILED, S.COMPILED}),
    S.COMPILED: frozenset({S.RUNNING}),
    S.RUNNING: frozenset({S.TIME_LIMIT_EXCEEDED, S.MEMORY_LIMIT_EXCEEDED, S.RUNTIME_ERROR, S.COMPLETED}),
}

TERMINAL = frozenset({
    S.COMPILE_FAILED, S.TIME_LIMIT_EXCEEDED, S.MEMORY_LIMIT_EXCEEDED,
    S.RUNTIME_ERROR, S.COMPLETED, S.SYSTEM_ERROR,
})

_FROM_TERMINATION = {
    TerminationReason.COMPLETED: S.COMPLETED,
    TerminationReason.TIME_LIMIT_EXCEEDED: S.TIME_LIMIT_EXCEEDED,
    TerminationReason.MEMORY_LIMIT_EXCEEDED: S.MEMORY_LIMIT_EXCEEDED,
    TerminationReason.RUNTIME_ERROR: S.RUNTIME_ERROR,
    TerminationReason.SYSTEM_ERROR: S.SYSTEM_ERROR,
}


def state_for(reason: TerminationReason) -> SubmissionState:
    return _FROM_TERMINATION[reason]


class SubmissionTracker:
    """Per program, per grading attempt. SYSTEM_ERROR is reachable from any
    non-terminal state."""

    def __init__(self, name: str):
        self.name = name
        self.state = S.SUBMITTED
        self.history: List[SubmissionState] = [S.SUBMITTED]

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL

    def advance(self, to: SubmissionState) -> SubmissionState:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if to is S.SYSTEM_ERROR and not self.terminal:
            allowed = allowed | {S.SYSTEM_ERROR}
        if to not in allowed:
            raise IllegalTransition(
                f"{self.name}: {self.state.value} -> {to.value} is not allowed",
                detail={"from": self.state.value, "to": to.value},
            )
        self.state = to
        self.history.append(to)
        return to
