import time
import logging
import requests

import src.settings as default_settings

log = logging.getLogger(__name__)


def probe_health(host: str, port: int, retries: int = 1, delay: float = 0.5,
                 timeout: float = default_settings.HEALTH_PROBE_TIMEOUT) -> bool:
    """
    Checks the supervisor's liveness endpoint.

    Used by the `probe` command, e.g. as a container HEALTHCHECK.

    :param host: The host of the liveness endpoint.
    :param port: The port of the liveness endpoint.
    :param retries: Number of attempts before giving up.
    :param delay: Delay in seconds between attempts.
    :param timeout: Per-request timeout in seconds.
    :return: True if the endpoint answered 200, False otherwise.
    """
    # A wildcard bind address is reachable through loopback.
    if host in ("0.0.0.0", "", "::"):
        host = "127.0.0.1"
    url = f"http://{host}:{port}/"
    for attempt in range(retries):
        try:
            response = requests.get(url, timeout=timeout)
            if response.status_code == 200:
                log.info(f"Supervisor at '{url}' is alive.")
                return True
            log.warning(f"Supervisor at '{url}' answered with status {response.status_code}.")
        except requests.exceptions.RequestException as e:
            log.debug(f"Could not reach supervisor (attempt {attempt + 1}/{retries}): {e}")
        if attempt + 1 < retries:
            time.sleep(delay)

    log.error(f"Supervisor at '{url}' did not answer after {retries} attempt(s).")
    return False
