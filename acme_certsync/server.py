"""
HTTP server that answers ACME HTTP-01 challenges from the store.
"""

import logging
import re
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from acme_certsync.exceptions import CertSyncError
from acme_certsync.store import Store

PATH_PREFIX_DEFAULT = ".well-known/acme-challenge"
DEFAULT_LISTEN = "0.0.0.0:8080"

PATH_REGEXP = r"^/{prefix}/([a-zA-Z0-9_-]+)$"


def parse_listen(listen: str) -> tuple[str, int]:
    """
    Split ``host:port`` (or ``:port``) into an address tuple.

    Raises:
        ValueError: If the port is missing or not a number.
    """
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid listen address '{listen}', expected host:port")
    return host.strip("[]"), int(port)


class ChallengeHandler(BaseHTTPRequestHandler):
    server: "ChallengeServer"

    def do_GET(self):
        srv = self.server
        path = self.path.split("?", 1)[0]
        match = srv.valid_path.match(path)
        if match is None:
            srv.logger.warning(f"Invalid challenge URL: {path}")
            self._not_found()
            return

        key = match.group(1)
        try:
            challenge = srv.store.get_challenge(key)
        except CertSyncError as e:
            srv.logger.error(f"Error getting challenge {key}: {e}")
            self._not_found()
            return

        if challenge is None:
            srv.logger.warning(f"Challenge not found: {key}")
            self._not_found()
            return

        body = challenge.value.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)
        srv.logger.info(f"Served challenge {key}")

        # served once; a failed delete only leaves a stale token behind
        try:
            srv.store.delete_challenge(key)
        except CertSyncError as e:
            srv.logger.error(f"Error deleting challenge {key}: {e}")

    def _not_found(self):
        self.send_response(404)
        self.send_header("Content-Type", "text/plain")
        self.end_headers()
        self.wfile.write(b"Not Found")

    def log_message(self, format, *args):
        self.server.logger.debug(f"{self.address_string()} - {format % args}")


class ChallengeServer(ThreadingHTTPServer):
    """Serves ``GET /<path_prefix>/<token>`` with the stored challenge response."""

    daemon_threads = True

    def __init__(
        self,
        store: Store,
        listen: str = DEFAULT_LISTEN,
        path_prefix: str = PATH_PREFIX_DEFAULT,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        prefix = path_prefix.strip("/")
        self.valid_path = re.compile(PATH_REGEXP.format(prefix=re.escape(prefix)))

        self.logger.info(f"Creating challenge server: listen={listen} path-prefix={prefix}")
        super().__init__(parse_listen(listen), ChallengeHandler)

    def listen(self) -> None:
        """Serve until ``shutdown`` is called."""
        host, port = self.server_address[:2]
        self.logger.info(f"Server listening on {host}:{port}")
        try:
            self.serve_forever()
        finally:
            self.server_close()
