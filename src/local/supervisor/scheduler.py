import logging
import threading
from typing import TYPE_CHECKING, Optional

from src.local.supervisor.events import RestartEvent, Trigger

if TYPE_CHECKING:
    from .supervisor import ChildSupervisor

log = logging.getLogger(__name__)


class Scheduler:
    """
    Periodically checks that the workload exists and relaunches it when it does not.

    This is the self-healing path for processes that vanish without an exit
    callback (killed externally, or orphaned from the handle).
    Runs in a dedicated background thread.
    """

    def __init__(self, supervisor: "ChildSupervisor", interval: float) -> None:
        """
        :param supervisor: The ChildSupervisor to drive.
        :param interval: Seconds between checks.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.supervisor = supervisor
        self.interval = interval
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> Optional[RestartEvent]:
        """
        Runs one check.

        :return: The RestartEvent if a launch was requested, else None.
        """
        name = self.supervisor.process_name
        if self.supervisor.detector.exists(name):
            return None
        log.warning(f"{name} process not found, attempting to restart...")
        return self.supervisor.launch(Trigger.SCHEDULED_POLL)

    def _run(self) -> None:
        while not self.stop_event.wait(self.interval):
            try:
                self.tick()
            except Exception as e:
                log.error(f"Scheduled check failed: {e}", exc_info=True)
        log.debug("Scheduler thread has stopped.")

    def start(self) -> None:
        """Starts the periodic check thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self.stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="SchedulerThread")
        self._thread.start()
        log.info(f"Checking for {self.supervisor.process_name} every {self.interval:g}s.")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stops the thread. A tick already running is allowed to finish."""
        self.stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
