import signal
import logging
import threading
from typing import TYPE_CHECKING, Callable, Dict, Optional

if TYPE_CHECKING:
    from .health_service import HealthService
    from .scheduler import Scheduler
    from .supervisor import ChildSupervisor

log = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """
    Turns SIGINT/SIGTERM into a graceful stop of the scheduler, the supervisor
    and the liveness endpoint.

    The managed child is not killed. It runs in the supervisor's foreground
    process group, so a terminal interrupt reaches it directly, and otherwise
    it is left for the OS to reap.
    """

    def __init__(
        self,
        supervisor: "ChildSupervisor",
        health_service: Optional["HealthService"] = None,
        scheduler: Optional["Scheduler"] = None,
    ) -> None:
        self.supervisor = supervisor
        self.health_service = health_service
        self.scheduler = scheduler
        self.received_signal: Optional[int] = None
        self._previous_handlers: Dict[int, Callable] = {}
        self._lock = threading.Lock()
        self._done = False

    def install(self) -> None:
        """Registers the signal handlers. Must run in the main thread."""
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)

    def restore(self) -> None:
        """Puts back the handlers that were active before `install`."""
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def handle_signal(self, signum: int, frame) -> None:
        """
        Signal handler. Only flags the shutdown; the main thread performs it,
        since stopping the HTTP server from inside a handler could deadlock.
        """
        self.received_signal = signum
        log.info(f"Received {signal.Signals(signum).name}. Cleaning up...")
        self.supervisor.request_shutdown()

    def shutdown(self) -> None:
        """
        Stops the scheduler, the supervisor and the liveness endpoint, in that order.
        Runs once; later calls are no-ops.
        """
        with self._lock:
            if self._done:
                return
            self._done = True

        if self.scheduler is not None:
            self.scheduler.stop()
        self.supervisor.stop()
        if self.health_service is not None:
            try:
                self.health_service.stop()
            except OSError as e:
                log.error(f"Error while closing the HTTP server: {e}")
        log.info("Supervisor stopped.")
