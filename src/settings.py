"""
This module contains the default configuration settings for the supervisor.
It defines the workload identity, launch path, timing constants and the
liveness endpoint settings. Environment variables (and a `.env` file) override
the defaults; `src.local.config.load_config` turns them into a SupervisorConfig.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Managed Workload ---
# Literal substring expected in the workload's process name / command line.
PROCESS_NAME = os.getenv("PROCESS_NAME", "tmpapp")
# Resolved against the current working directory, like the shell would.
LAUNCH_PATH = pathlib.Path(os.getenv("LAUNCH_PATH", "./start.sh"))

#* --- Supervisor Settings ---
DEFAULT_PORT = 4000
POLL_INTERVAL_MS = 30_000
RELAUNCH_DELAY_MS = 1_000
DETECTION_TIMEOUT = 2.0  # seconds per strategy
PROC_ROOT = pathlib.Path("/proc")
RESTART_HISTORY_SIZE = 100
SUPERVISOR_PROCESS_TITLE = os.getenv("SUPERVISOR_PROCESS_TITLE", "Workload Keeper - Supervisor")

#* --- Liveness Endpoint ---
HEALTH_HOST = "0.0.0.0"
HEALTH_RESPONSE_BODY = b"Hello World\n"
HEALTH_PROBE_TIMEOUT = 2  # seconds
SHUTDOWN_WAIT_INTERVAL = 0.5  # seconds between shutdown-event checks in the main thread
