import errno
import logging
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Optional, Tuple

import src.settings as default_settings
from src.local.errors import BindError, PortInUseError

log = logging.getLogger(__name__)


class HealthServiceHandler(BaseHTTPRequestHandler):
    """
    Answers every request with the fixed liveness payload.
    It asserts the supervisor is alive, not the workload.
    """
    body: bytes = default_settings.HEALTH_RESPONSE_BODY
    timeout = 5  # seconds before an idle connection is dropped

    def _send_ok(self, include_body: bool = True) -> None:
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        if include_body:
            self.wfile.write(self.body)

    def do_HEAD(self):
        self._send_ok(include_body=False)

    def do_GET(self):
        self._send_ok()

    do_POST = do_PUT = do_PATCH = do_DELETE = do_OPTIONS = do_GET

    def log_message(self, format_str: str, *args) -> None:
        """Override to direct HTTP server logs to our application's logger."""
        log.debug("HealthService: " + (format_str % args))


class _HealthHTTPServer(ThreadingHTTPServer):
    # Request threads are joined on close so in-flight responses complete.
    daemon_threads = False

    def handle_error(self, request, client_address):
        log.error(f"Liveness endpoint error while serving {client_address}", exc_info=True)


class HealthService:
    """
    The liveness endpoint. Binds on construction so a taken port is reported
    before anything else starts.
    """

    def __init__(self, host: str, port: int) -> None:
        """
        :param host: The bind address.
        :param port: The port to listen on (0 picks a free one).
        :raises PortInUseError: If the port is already bound.
        :raises BindError: If the listener cannot be opened for any other reason.
        """
        try:
            self.server = _HealthHTTPServer((host, port), HealthServiceHandler)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                raise PortInUseError(f"Port {port} is already in use.",
                                     remediation=f"Stop the process listening on port {port} or set SERVER_PORT") from e
            raise BindError(f"Could not bind {host}:{port}: {e}",
                            remediation="Check HEALTH_HOST and SERVER_PORT") from e
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.server.server_address[:2]
        return host, port

    def start(self) -> None:
        """Serves requests in a dedicated daemon thread."""
        self._thread = threading.Thread(target=self.server.serve_forever, kwargs={"poll_interval": 0.5},
                                        daemon=True, name="HealthServiceThread")
        self._thread.start()
        log.info(f"HTTP server running on port {self.address[1]}")

    def stop(self) -> None:
        """Stops accepting connections, lets in-flight requests finish and closes the socket."""
        if self._thread is not None:
            self.server.shutdown()
            self._thread.join()
            self._thread = None
        self.server.server_close()
        log.info("HTTP server closed")
