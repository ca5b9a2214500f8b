from dataclasses import dataclass, field
from typing import Dict, Optional

# Job States
IDLE = "idle"
RUNNING = "running"
STOPPING = "stopping"
STOPPED = "stopped"
COMPLETED = "completed"

JOB_STATES = (IDLE, RUNNING, STOPPING, STOPPED, COMPLETED)

# Task outcomes
SUCCESS = "success"
UNPROCESSABLE = "unprocessable"  # this item can never succeed, skip it
FATAL = "fatal"                  # the whole job cannot make progress

# Reasons an execution window ended
END_EMPTY = "empty"
END_BUDGET = "budget"
END_PAUSED = "paused"
END_STOPPED = "stopped"
END_FATAL = "fatal"


@dataclass
class TaskResult:
    outcome: str
    message: Optional[str] = None
    pause: bool = False

    @classmethod
    def ok(cls, message: Optional[str] = None, pause: bool = False) -> "TaskResult":
        return cls(SUCCESS, message, pause)

    @classmethod
    def unprocessable(cls, message: str) -> "TaskResult":
        return cls(UNPROCESSABLE, message)

    @classmethod
    def fatal(cls, message: str) -> "TaskResult":
        return cls(FATAL, message)


@dataclass
class WindowReport:
    action: str
    handled: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    ended_by: Optional[str] = None

    def count(self, outcome: str):
        self.handled += 1
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1


@dataclass
class HelperWindow:
    title: str
    content: str
