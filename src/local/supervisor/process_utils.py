import os
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

log = logging.getLogger(__name__)

READER_JOIN_TIMEOUT = 2  # seconds to wait for pipe readers after the child exits


class ManagedProcess:
    """
    The handle of the spawned workload: the Popen object, a psutil view of the
    same PID for liveness checks, and the threads consuming its output.
    """

    def __init__(self, popen: subprocess.Popen, name: str) -> None:
        self.popen = popen
        self.name = name
        self.readers: List[threading.Thread] = []
        try:
            self._proc: Optional[psutil.Process] = psutil.Process(popen.pid)
        except psutil.Error:
            # Already gone; wait() will report the exit code.
            self._proc = None

    @property
    def pid(self) -> int:
        return self.popen.pid

    def is_alive(self) -> bool:
        """True while the child runs. A zombie counts as exited."""
        if self.popen.poll() is not None or self._proc is None:
            return False
        try:
            return self._proc.is_running() and self._proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.Error:
            return True

    def wait(self) -> int:
        """Blocks until the child exits, then lets the readers drain."""
        code = self.popen.wait()
        for reader in self.readers:
            reader.join(timeout=READER_JOIN_TIMEOUT)
        return code

    def __repr__(self) -> str:
        return f"<ManagedProcess {self.name} pid={self.pid}>"


#* --- Output Capture ---
def _read_pipe(pipe, process_name: str, level: int, line_handler: Optional[Callable] = None):
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            if line_handler:
                line_handler(line)
            else:
                proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()


def log_process_output(process: subprocess.Popen, name: str,
                       line_handler: Optional[Callable] = None) -> List[threading.Thread]:
    """Starts background threads to consume and log a process's stdout/stderr."""
    readers = []
    if process.stdout:
        readers.append(threading.Thread(target=_read_pipe, args=(process.stdout, name, logging.INFO, line_handler),
                                        daemon=True, name=f"{name}-stdout"))
    if process.stderr:
        readers.append(threading.Thread(target=_read_pipe, args=(process.stderr, name, logging.ERROR),
                                        daemon=True, name=f"{name}-stderr"))
    for reader in readers:
        reader.start()
    return readers


#* --- Process Creation ---
def build_child_env(extra_env: Mapping[str, str]) -> Dict[str, str]:
    """Returns the supervisor's environment with the configured variables merged on top."""
    env = dict(os.environ)
    env.update({key: str(value) for key, value in extra_env.items()})
    return env


def spawn_process(launch_path: Path, env: Mapping[str, str], name: str) -> ManagedProcess:
    """
    Launches the workload and starts capturing its output.

    The child stays in the supervisor's foreground process group (no new
    session), so terminal signals reach it directly and the OS reaps it
    independently of this supervisor.

    :param launch_path: The workload executable.
    :param env: The complete environment for the child.
    :param name: The logical workload name, used for the output loggers.
    :return: The handle of the new child.
    :raises OSError: If the spawn itself fails (PermissionError included).
    """
    command = str(launch_path)
    if not os.path.isabs(command):
        # A bare name would be looked up on PATH instead of the working directory.
        command = os.path.join(os.curdir, command)
    p = subprocess.Popen([command], stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                         stdin=subprocess.DEVNULL, env=dict(env))
    handle = ManagedProcess(p, name)
    handle.readers = log_process_output(p, name)
    log.info(f"{name} started with PID: {p.pid}")
    return handle


def watch_process(handle: ManagedProcess, on_exit: Callable[[ManagedProcess, int], None]) -> threading.Thread:
    """
    Starts a thread that waits for the child and calls `on_exit(handle, code)`
    once its output has been drained.
    """
    def _wait():
        code = handle.wait()
        on_exit(handle, code)

    watcher = threading.Thread(target=_wait, daemon=True, name=f"{handle.name}-exit-watcher")
    watcher.start()
    return watcher
