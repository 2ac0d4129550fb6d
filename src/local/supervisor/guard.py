import os
import stat
import logging
from pathlib import Path
from typing import Union

from src.local.errors import ExecutableError

log = logging.getLogger(__name__)

EXECUTE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def ensure_executable(path: Union[str, Path]) -> None:
    """
    Verifies the launch executable exists and carries the owner execute bit,
    adding the execute bits (`chmod +x`) when it does not.
    Must complete before the first spawn attempt.

    :param path: The workload executable.
    :raises ExecutableError: If the file is missing or cannot be made executable.
    """
    path = Path(path)
    remediation = f"chmod +x {path}"

    if not path.exists():
        raise ExecutableError(f"{path} does not exist.",
                              remediation=f"Create {path} or point LAUNCH_PATH at the workload executable")
    if not path.is_file():
        raise ExecutableError(f"{path} is not a regular file.",
                              remediation="Point LAUNCH_PATH at the workload executable")

    try:
        mode = path.stat().st_mode
    except OSError as e:
        raise ExecutableError(f"Error checking file permissions of {path}: {e}", remediation=remediation) from e

    if mode & stat.S_IXUSR:
        log.info(f"{path} is already executable.")
        return

    try:
        path.chmod(stat.S_IMODE(mode) | EXECUTE_BITS)
        log.info(f"Successfully set execute permission for {path}.")
        return
    except OSError as e:
        log.debug(f"chmod on {path} failed: {e}")

    # Permission semantics may differ (ACLs, some mounts); trust the kernel's verdict.
    if os.access(path, os.X_OK):
        log.warning(f"Could not set execute permission on {path}, but the file appears to be executable.")
        return

    raise ExecutableError(f"Cannot set execute permission on {path}. Please make it executable manually.",
                          remediation=remediation)
