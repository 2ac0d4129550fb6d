import sys
import logging
import setproctitle
from typing import List, Optional

import src.settings as default_settings
from src.log.setup import setup_logging
from src.local.config import SupervisorConfig, load_config
from src.local.errors import FatalSupervisorError
from src.local.health_client import probe_health
from src.local.supervisor import (
    ChildSupervisor,
    ExistenceDetector,
    HealthService,
    Scheduler,
    ShutdownCoordinator,
    Trigger,
    ensure_executable,
)

log = logging.getLogger("supervisor")

USAGE = """Usage: python -m src.main [command] [--verbose]

Commands:
  run      Launch the workload and keep it alive (default).
  probe    Check the liveness endpoint of a running supervisor; exit 0 if it answers.
  help     Show this message.
"""


def report_fatal(error: FatalSupervisorError) -> None:
    """Prints a fatal diagnostic and, when known, the command that fixes it."""
    log.critical(str(error))
    if error.remediation:
        log.critical(error.remediation, extra={"remediation": True})


def run_supervisor(config: SupervisorConfig) -> int:
    """
    Runs the supervisor until SIGINT/SIGTERM or a fatal error.

    :param config: The loaded configuration.
    :return: The process exit status: 0 on graceful shutdown, 1 on a fatal error.
    """
    log.info("Checking file permissions...")
    try:
        ensure_executable(config.launch_path)
        health_service = HealthService(config.host, config.port)
    except FatalSupervisorError as e:
        report_fatal(e)
        return 1

    detector = ExistenceDetector.from_host(config.detection_timeout, config.proc_root)
    supervisor = ChildSupervisor(config, detector)
    scheduler = Scheduler(supervisor, config.poll_interval)
    coordinator = ShutdownCoordinator(supervisor, health_service, scheduler)
    coordinator.install()

    try:
        health_service.start()
        supervisor.launch(Trigger.INITIAL_START)
        scheduler.start()
        # Wake up regularly so signal handlers run promptly in the main thread.
        while not supervisor.wait(default_settings.SHUTDOWN_WAIT_INTERVAL):
            pass
    finally:
        coordinator.shutdown()
        coordinator.restore()

    if supervisor.fatal_error is not None:
        report_fatal(supervisor.fatal_error)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the supervisor."""
    args = list(sys.argv[1:] if argv is None else argv)
    verbose = "--verbose" in args
    if verbose:
        args.remove("--verbose")

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    command = args[0].lower() if args else "run"
    if command == "help":
        print(USAGE)
        return 0
    if command not in ("run", "probe"):
        log.error(f"Unknown command: '{command}'.")
        print(USAGE)
        return 1

    try:
        config = load_config()
    except FatalSupervisorError as e:
        report_fatal(e)
        return 1

    if command == "probe":
        return 0 if probe_health(config.host, config.port) else 1

    setproctitle.setproctitle(default_settings.SUPERVISOR_PROCESS_TITLE)
    return run_supervisor(config)


if __name__ == "__main__":
    sys.exit(main())
