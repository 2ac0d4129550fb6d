"""
Process existence detection.

Host environments vary (containers often lack `pgrep`/`pidof`), so existence is
answered by an ordered set of independent strategies. Availability is probed
once when the detector is built, never per call.
"""

import os
import re
import time
import shutil
import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import src.settings as default_settings

log = logging.getLogger(__name__)


class DetectionStrategy:
    """One technique for answering "does a process matching this name exist"."""
    name: str = "base"

    def is_available(self) -> bool:
        """Returns True if the strategy's prerequisites exist on this host."""
        raise NotImplementedError

    def exists(self, process_name: str) -> bool:
        """Returns True if a matching process was found."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class CommandStrategy(DetectionStrategy):
    """A strategy backed by an external command whose exit status 0 means "found"."""
    command: str = ""

    def __init__(self, timeout: float = default_settings.DETECTION_TIMEOUT) -> None:
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def build_args(self, process_name: str) -> List[str]:
        raise NotImplementedError

    def exists(self, process_name: str) -> bool:
        args = self.build_args(process_name)
        try:
            result = subprocess.run(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
                                    stdin=subprocess.DEVNULL, timeout=self.timeout, check=False)
        except subprocess.TimeoutExpired:
            log.debug(f"'{self.command}' timed out after {self.timeout}s, treating as not found.")
            return False
        except (OSError, subprocess.SubprocessError) as e:
            log.debug(f"'{self.command}' failed: {e}")
            return False
        return result.returncode == 0


class PgrepStrategy(CommandStrategy):
    """Pattern lookup on process names. pgrep never reports itself."""
    name = "pgrep"
    command = "pgrep"

    def build_args(self, process_name: str) -> List[str]:
        # pgrep takes a regular expression, the name is a literal.
        return [self.command, "--", re.escape(process_name)]


class PidofStrategy(CommandStrategy):
    """Exact program-name lookup."""
    name = "pidof"
    command = "pidof"

    def build_args(self, process_name: str) -> List[str]:
        return [self.command, process_name]


class ProcessTableStrategy(CommandStrategy):
    """
    Lists every process with `ps` and substring-matches the command lines.

    Slower and more false-positive-prone than the lookups above. The lines of
    the supervisor itself and of the `ps` invocation are excluded so the search
    term never matches its own query.
    """
    name = "ps"
    command = "ps"

    def build_args(self, process_name: str) -> List[str]:
        return [self.command, "-eo", "pid=,args="]

    def exists(self, process_name: str) -> bool:
        try:
            proc = subprocess.Popen(self.build_args(process_name), stdout=subprocess.PIPE,
                                    stderr=subprocess.DEVNULL, stdin=subprocess.DEVNULL)
        except (OSError, subprocess.SubprocessError) as e:
            log.debug(f"'{self.command}' failed to start: {e}")
            return False

        try:
            output, _ = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            log.debug(f"'{self.command}' timed out after {self.timeout}s, treating as not found.")
            return False

        if proc.returncode != 0:
            return False

        excluded = {os.getpid(), proc.pid}
        for pid, args in parse_process_table(output.decode("utf-8", errors="replace")):
            if pid in excluded:
                continue
            if process_name in args:
                return True
        return False


def parse_process_table(output: str) -> Iterable[Tuple[int, str]]:
    """
    Parses `ps -eo pid=,args=` output into (pid, args) pairs.
    Malformed lines are skipped.
    """
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        pid_str, _, args = line.partition(" ")
        try:
            pid = int(pid_str)
        except ValueError:
            continue
        yield pid, args.strip()


class ProcFilesystemStrategy(DetectionStrategy):
    """
    Fallback for hosts without any process-listing tool: scans the numeric
    entries of the proc filesystem and substring-matches each command line.
    """
    name = "procfs"

    def __init__(self, root: Path = default_settings.PROC_ROOT,
                 timeout: float = default_settings.DETECTION_TIMEOUT) -> None:
        self.root = Path(root)
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.R_OK | os.X_OK)

    def exists(self, process_name: str) -> bool:
        needle = process_name.encode("utf-8")
        own_pid = str(os.getpid())
        deadline = time.monotonic() + self.timeout

        try:
            entries = list(self.root.iterdir())
        except OSError as e:
            log.debug(f"Could not list {self.root}: {e}")
            return False

        for entry in entries:
            if time.monotonic() > deadline:
                log.debug(f"Scan of {self.root} exceeded {self.timeout}s, treating as not found.")
                return False
            if not entry.name.isdigit() or entry.name == own_pid:
                continue
            try:
                cmdline = (entry / "cmdline").read_bytes()
            except OSError:
                # Vanished mid-scan or unreadable.
                continue
            if needle in cmdline.replace(b"\0", b" "):
                return True
        return False


class ExistenceDetector:
    """
    Answers whether a process matching a name exists, trying each available
    strategy in priority order and stopping at the first that finds one.
    """

    def __init__(self, strategies: Sequence[DetectionStrategy]) -> None:
        self.strategies: Tuple[DetectionStrategy, ...] = tuple(strategies)

    @classmethod
    def from_host(cls, timeout: float = default_settings.DETECTION_TIMEOUT,
                  proc_root: Path = default_settings.PROC_ROOT) -> "ExistenceDetector":
        """
        Builds a detector from the strategies available on this host.

        :param timeout: Upper bound in seconds for each strategy call.
        :param proc_root: Root of the proc filesystem used by the fallback.
        :return: An ExistenceDetector with the filtered, ordered strategies.
        """
        return cls(available_strategies(timeout, proc_root))

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self.strategies]

    def exists(self, process_name: str) -> bool:
        """
        :param process_name: The literal substring identifying the process.
        :return: True if any strategy reports the process, False otherwise.
        """
        if not process_name or not process_name.strip():
            log.warning("Refusing to detect an empty process name.")
            return False

        for strategy in self.strategies:
            try:
                found = strategy.exists(process_name)
            except (OSError, subprocess.SubprocessError, ValueError) as e:
                log.debug(f"Detection strategy '{strategy.name}' failed: {e}")
                continue
            if found:
                log.debug(f"Process '{process_name}' found by '{strategy.name}'.")
                return True

        log.debug(f"Process '{process_name}' not found by any of {self.strategy_names}.")
        return False


def available_strategies(timeout: float = default_settings.DETECTION_TIMEOUT,
                         proc_root: Path = default_settings.PROC_ROOT,
                         candidates: Optional[Sequence[DetectionStrategy]] = None,
                         fallback: Optional[DetectionStrategy] = None) -> List[DetectionStrategy]:
    """
    Filters the candidate strategies down to those available on this host.
    The proc filesystem scan is only used when no listing tool is available.

    :param timeout: Upper bound in seconds for each strategy call.
    :param proc_root: Root of the proc filesystem used by the fallback.
    :param candidates: Tool-based strategies in priority order.
    :param fallback: The tool-less fallback strategy.
    :return: The ordered list of usable strategies, possibly empty.
    """
    if candidates is None:
        candidates = [PgrepStrategy(timeout), PidofStrategy(timeout), ProcessTableStrategy(timeout)]
    if fallback is None:
        fallback = ProcFilesystemStrategy(proc_root, timeout)

    strategies = [s for s in candidates if s.is_available()]
    if not strategies and fallback.is_available():
        strategies.append(fallback)

    skipped: Set[str] = {s.name for s in candidates} - {s.name for s in strategies}
    if skipped:
        log.debug(f"Detection strategies unavailable on this host: {sorted(skipped)}")
    if strategies:
        log.info(f"Process detection strategies: {[s.name for s in strategies]}")
    else:
        log.warning("No process detection strategy is available. The workload will always be reported as absent.")
    return strategies
