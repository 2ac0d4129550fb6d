"""States, triggers and restart events of the child supervisor."""

import time
from dataclasses import dataclass, field
from enum import Enum


class SupervisorState(Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    RUNNING = "running"
    EXITED = "exited"


class Trigger(Enum):
    """What asked for a launch."""
    INITIAL_START = "initial_start"
    EXIT_CALLBACK = "exit_callback"
    SCHEDULED_POLL = "scheduled_poll"
    SPAWN_ERROR = "spawn_error"


class Action(Enum):
    """What a launch request resulted in."""
    RELAUNCHED = "relaunched"
    SKIPPED_ALREADY_RUNNING = "skipped_already_running"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    SKIPPED_SHUTDOWN = "skipped_shutdown"
    RETRY_SCHEDULED = "retry_scheduled"
    FATAL = "fatal"


@dataclass(frozen=True)
class RestartEvent:
    """
    A single launch decision. Ephemeral: only logged and kept in the
    supervisor's bounded history.

    Attributes:
        trigger: The source that requested the launch
        action: The resulting action
        timestamp: Wall-clock time of the decision
    """
    trigger: Trigger
    action: Action
    timestamp: float = field(default_factory=time.time)

    def __str__(self) -> str:
        return f"{self.trigger.value} -> {self.action.value}"
