import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import src.settings as default_settings
from src.local.errors import ConfigError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupervisorConfig:
    """
    Immutable supervisor configuration, loaded once at startup.

    Attributes:
        process_name: Substring identifying the workload for detection
        launch_path: Path of the workload executable
        poll_interval_ms: Period of the scheduled existence check
        port: Port of the liveness endpoint, also forwarded to the child as PORT
        env: Extra environment variables merged into the child's environment
    """
    process_name: str
    launch_path: Path
    poll_interval_ms: int = default_settings.POLL_INTERVAL_MS
    port: int = default_settings.DEFAULT_PORT
    env: Mapping[str, str] = field(default_factory=dict)
    host: str = default_settings.HEALTH_HOST
    relaunch_delay_ms: int = default_settings.RELAUNCH_DELAY_MS
    detection_timeout: float = default_settings.DETECTION_TIMEOUT
    proc_root: Path = default_settings.PROC_ROOT

    def __post_init__(self):
        """Validate ranges."""
        if not self.process_name.strip():
            raise ConfigError(
                "Process name cannot be empty.",
                remediation="Set PROCESS_NAME to the workload's process name",
            )
        if not 1 <= self.port <= 65535:
            raise ConfigError(
                f"Port {self.port} is out of range.",
                remediation="Set SERVER_PORT or PORT to a value between 1 and 65535",
            )
        if self.poll_interval_ms <= 0:
            raise ConfigError(
                f"Poll interval must be positive, got {self.poll_interval_ms} ms.",
                remediation="Set POLL_INTERVAL_MS to a positive integer",
            )
        if self.relaunch_delay_ms < 0:
            raise ConfigError(
                f"Relaunch delay cannot be negative, got {self.relaunch_delay_ms} ms.",
                remediation="Set RELAUNCH_DELAY_MS to zero or a positive integer",
            )
        if self.detection_timeout <= 0:
            raise ConfigError(
                f"Detection timeout must be positive, got {self.detection_timeout}s.",
                remediation="Set DETECTION_TIMEOUT to a positive number of seconds",
            )

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def relaunch_delay(self) -> float:
        return self.relaunch_delay_ms / 1000


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"Setting '{key}' must be an integer, got '{raw}'.",
                          remediation=f"Fix or unset {key}") from None


def _get_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"Setting '{key}' must be a number, got '{raw}'.",
                          remediation=f"Fix or unset {key}") from None


def resolve_port(environ: Mapping[str, str]) -> int:
    """
    Resolves the liveness port. SERVER_PORT wins over PORT.

    :param environ: The environment to read from.
    :return: The port number.
    """
    for key in ("SERVER_PORT", "PORT"):
        if environ.get(key, "").strip():
            return _get_int(environ, key, default_settings.DEFAULT_PORT)
    return default_settings.DEFAULT_PORT


def load_config(environ: Optional[Mapping[str, str]] = None) -> SupervisorConfig:
    """
    Builds the SupervisorConfig from the environment on top of `settings.py` defaults.

    :param environ: The environment to read from. Defaults to os.environ.
    :return: The validated configuration.
    """
    if environ is None:
        environ = os.environ

    port = resolve_port(environ)
    # The workload picks its own port from PORT.
    child_env: Dict[str, str] = {"PORT": str(port)}

    config = SupervisorConfig(
        process_name=environ.get("PROCESS_NAME", default_settings.PROCESS_NAME),
        launch_path=Path(environ.get("LAUNCH_PATH", str(default_settings.LAUNCH_PATH))),
        poll_interval_ms=_get_int(environ, "POLL_INTERVAL_MS", default_settings.POLL_INTERVAL_MS),
        port=port,
        env=child_env,
        host=environ.get("HEALTH_HOST", default_settings.HEALTH_HOST),
        relaunch_delay_ms=_get_int(environ, "RELAUNCH_DELAY_MS", default_settings.RELAUNCH_DELAY_MS),
        detection_timeout=_get_float(environ, "DETECTION_TIMEOUT", default_settings.DETECTION_TIMEOUT),
    )
    log.debug(f"Loaded configuration: {config}")
    return config
