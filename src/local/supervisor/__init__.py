"""
The Supervisor package.
Keeps a single managed workload alive.

This package contains the ChildSupervisor and its helper modules, which
together handle detecting, launching, relaunching and health-reporting of the
workload, plus the graceful shutdown of the supervisor itself.
"""
from .detection import DetectionStrategy, ExistenceDetector
from .events import Action, RestartEvent, SupervisorState, Trigger
from .guard import ensure_executable
from .health_service import HealthService
from .scheduler import Scheduler
from .shutdown import ShutdownCoordinator
from .supervisor import ChildSupervisor

__all__ = [
    "Action",
    "ChildSupervisor",
    "DetectionStrategy",
    "ExistenceDetector",
    "HealthService",
    "RestartEvent",
    "Scheduler",
    "ShutdownCoordinator",
    "SupervisorState",
    "Trigger",
    "ensure_executable",
]
