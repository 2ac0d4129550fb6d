import logging
import threading
import subprocess
from collections import deque
from typing import TYPE_CHECKING, Callable, Deque, List, Optional

import src.settings as default_settings
from src.local.errors import ExecutableError, FatalSupervisorError
from src.local.supervisor import process_utils
from src.local.supervisor.events import Action, RestartEvent, SupervisorState, Trigger
from src.local.supervisor.process_utils import ManagedProcess

if TYPE_CHECKING:
    from src.local.config import SupervisorConfig
    from src.local.supervisor.detection import ExistenceDetector

log = logging.getLogger(__name__)


class ChildSupervisor:
    """
    Owns the lifecycle of the single managed workload: launch, output capture,
    exit handling and the decision to relaunch.

    Launch requests come from the main thread (initial start), the scheduler
    thread, exit-watcher threads and relaunch timers. Every request goes through
    a single-flight guard held across detect-decide-spawn, so two triggers can
    never produce two children. Requests arriving while a launch is in flight
    are dropped, not queued.
    """

    def __init__(
        self,
        config: "SupervisorConfig",
        detector: "ExistenceDetector",
        spawner: Callable[..., ManagedProcess] = process_utils.spawn_process,
        watcher: Callable[..., object] = process_utils.watch_process,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self.config = config
        self.detector = detector
        self._spawner = spawner
        self._watcher = watcher
        self._timer_factory = timer_factory

        self.state = SupervisorState.IDLE
        self.handle: Optional[ManagedProcess] = None
        self.history: Deque[RestartEvent] = deque(maxlen=default_settings.RESTART_HISTORY_SIZE)
        self.fatal_error: Optional[FatalSupervisorError] = None
        self.shutdown_signal_received = threading.Event()

        # Guards state, handle, history and the pending relaunch.
        self._state_lock = threading.RLock()
        # Single-flight token for the launch sequence.
        self._launch_lock = threading.Lock()
        self._pending_relaunch: Optional[threading.Timer] = None
        self._pending_token: Optional[object] = None

    @property
    def process_name(self) -> str:
        return self.config.process_name

    @property
    def launching(self) -> bool:
        return self._launch_lock.locked()

    @property
    def relaunch_pending(self) -> bool:
        with self._state_lock:
            return self._pending_relaunch is not None

    #* --- Launch ---
    def launch(self, trigger: Trigger = Trigger.INITIAL_START) -> RestartEvent:
        """
        Launches the workload unless it is already running or a launch is in flight.

        :param trigger: What requested the launch.
        :return: The RestartEvent describing the decision.
        """
        if self.shutdown_signal_received.is_set():
            return self._record(trigger, Action.SKIPPED_SHUTDOWN)

        if not self._launch_lock.acquire(blocking=False):
            log.debug(f"Launch of {self.process_name} already in flight, dropping {trigger.value} request.")
            return self._record(trigger, Action.SKIPPED_IN_FLIGHT)

        try:
            return self._launch_locked(trigger)
        finally:
            self._launch_lock.release()

    def _launch_locked(self, trigger: Trigger) -> RestartEvent:
        """Runs detect-decide-spawn while holding the single-flight guard."""
        with self._state_lock:
            if self.shutdown_signal_received.is_set():
                return self._record(trigger, Action.SKIPPED_SHUTDOWN)
            self.state = SupervisorState.LAUNCHING

        if self.detector.exists(self.process_name):
            log.info(f"{self.process_name} process is already running.")
            with self._state_lock:
                self.state = SupervisorState.RUNNING
                self._cancel_pending_relaunch()
            return self._record(trigger, Action.SKIPPED_ALREADY_RUNNING)

        with self._state_lock:
            if self.handle is not None and self.handle.is_alive():
                # Our own child is still up; its exit drives the next decision.
                log.info(f"{self.process_name} is not detectable yet, but PID {self.handle.pid} is still alive.")
                self.state = SupervisorState.RUNNING
                return self._record(trigger, Action.SKIPPED_ALREADY_RUNNING)

        with self._state_lock:
            # Shutdown may have been requested while detection was running.
            if self.shutdown_signal_received.is_set():
                self.state = SupervisorState.IDLE
                return self._record(trigger, Action.SKIPPED_SHUTDOWN)

        launch_path = self.config.launch_path
        log.info(f"Starting {launch_path}...")
        try:
            handle = self._spawner(launch_path, process_utils.build_child_env(self.config.env), self.process_name)
        except PermissionError as e:
            return self._fail(trigger, ExecutableError(
                f"Permission denied launching {launch_path}: {e}",
                remediation=f"chmod +x {launch_path}",
            ))
        except (OSError, subprocess.SubprocessError) as e:
            log.error(f"Error launching {launch_path}: {e}")
            with self._state_lock:
                self.state = SupervisorState.EXITED
            self.schedule_relaunch(Trigger.SPAWN_ERROR)
            return self._record(trigger, Action.RETRY_SCHEDULED)

        with self._state_lock:
            self.handle = handle
            self.state = SupervisorState.RUNNING
            self._cancel_pending_relaunch()
        self._watcher(handle, self._on_exit)
        return self._record(trigger, Action.RELAUNCHED)

    #* --- Exit Handling ---
    def _on_exit(self, handle: ManagedProcess, code: int) -> None:
        """
        Called from the exit-watcher thread once the child has terminated.
        Relaunches only if the workload is genuinely gone: a forking workload
        may outlive the handle under a different PID.
        """
        with self._state_lock:
            if handle is not self.handle:
                log.debug(f"Ignoring stale exit notification from PID {handle.pid}.")
                return
            self.handle = None
            self.state = SupervisorState.EXITED

        log.warning(f"Process exited with code {code}, checking status...")
        if self.shutdown_signal_received.is_set():
            return

        if self.detector.exists(self.process_name):
            log.info(f"{self.process_name} process is still running (possibly restarted externally).")
            return

        log.warning(f"{self.process_name} process not found, restarting...")
        self.schedule_relaunch(Trigger.EXIT_CALLBACK)

    #* --- Delayed Relaunch ---
    def schedule_relaunch(self, trigger: Trigger) -> bool:
        """
        Schedules a launch after the fixed relaunch delay.
        At most one relaunch is pending at a time.

        :param trigger: The trigger recorded when the relaunch fires.
        :return: True if a new relaunch was scheduled.
        """
        with self._state_lock:
            if self.shutdown_signal_received.is_set():
                return False
            if self._pending_relaunch is not None:
                log.debug(f"Relaunch already pending, coalescing {trigger.value} request.")
                return False

            token = object()
            timer = self._timer_factory(self.config.relaunch_delay, self._run_pending_relaunch, args=(token, trigger))
            timer.daemon = True
            self._pending_relaunch = timer
            self._pending_token = token
            timer.start()

        log.info(f"Relaunch of {self.process_name} scheduled in {self.config.relaunch_delay_ms} ms.")
        return True

    def _run_pending_relaunch(self, token: object, trigger: Trigger) -> None:
        with self._state_lock:
            if token is not self._pending_token:
                # Cancelled after the timer had already fired.
                return
            self._pending_relaunch = None
            self._pending_token = None
        self.launch(trigger)

    def _cancel_pending_relaunch(self) -> None:
        """Must be called with the state lock held."""
        if self._pending_relaunch is not None:
            self._pending_relaunch.cancel()
        self._pending_relaunch = None
        self._pending_token = None

    #* --- Fatal Errors & Shutdown ---
    def _fail(self, trigger: Trigger, error: FatalSupervisorError) -> RestartEvent:
        """Records a fatal error and asks the main thread to exit with status 1."""
        with self._state_lock:
            if self.fatal_error is None:
                self.fatal_error = error
            self.state = SupervisorState.EXITED
            self._cancel_pending_relaunch()
        log.debug(f"Fatal error recorded: {error}")
        self.request_shutdown()
        return self._record(trigger, Action.FATAL)

    def request_shutdown(self) -> None:
        """Stops any new launch. Safe to call from a signal handler."""
        self.shutdown_signal_received.set()

    def stop(self) -> None:
        """
        Refuses new launches, cancels a pending relaunch and forgets the handle.
        The child itself is left alone: it shares our process group and is
        reaped by the OS.
        """
        self.request_shutdown()
        with self._state_lock:
            self._cancel_pending_relaunch()
            if self.handle is not None:
                log.info(f"Leaving {self.process_name} (PID {self.handle.pid}) to its own signal handling.")
            self.handle = None
            self.state = SupervisorState.IDLE

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until shutdown is requested. Returns True if it was."""
        return self.shutdown_signal_received.wait(timeout)

    #* --- Observability ---
    def _record(self, trigger: Trigger, action: Action) -> RestartEvent:
        event = RestartEvent(trigger, action)
        with self._state_lock:
            self.history.append(event)
        log.debug(f"Restart event: {event}")
        return event

    def recent_events(self) -> List[RestartEvent]:
        with self._state_lock:
            return list(self.history)
