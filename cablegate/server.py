"""A small HTTP server with path routing, shared between components by port."""

from __future__ import annotations

import logging
import socket
import ssl
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

_log = logging.getLogger("cablegate.http")

HEALTH_MSG = b"Ah, ha, ha, ha, stayin' alive, stayin' alive."
READ_HEADER_TIMEOUT = 5.0

# Defaults used by for_port().
HOST = "localhost"
SSL: "SSLConfig | None" = None
MAX_CONN = 0

_all_servers: dict[str, "HTTPServer"] = {}
_all_servers_lock = threading.Lock()


@dataclass
class SSLConfig:
    """Paths to a certificate and its private key."""

    cert_path: str = ""
    key_path: str = ""

    def available(self) -> bool:
        """True when both the certificate and the key are set."""
        return bool(self.cert_path) and bool(self.key_path)


@dataclass
class Request:
    """An incoming HTTP request."""

    method: str = "GET"
    path: str = "/"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    query: str = ""
    remote_addr: str = "192.0.2.1:1234"
    host: str = "example.com"
    tls: bool = False

    def header(self, name: str) -> str:
        """Case-insensitive header lookup; empty string when missing."""
        wanted = name.lower()
        return next((v for k, v in self.headers.items() if k.lower() == wanted), "")


@dataclass
class Response:
    """An HTTP response produced by a handler."""

    status: int = 200
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


Handler = Callable[[Request], Response]


def health_handler(request: Request) -> Response:
    """Always respond with 200."""
    return Response(status=200, body=HEALTH_MSG)


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class _Server(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler_class, max_conn: int, ipv6: bool) -> None:
        self._slots = threading.BoundedSemaphore(max_conn) if max_conn > 0 else None
        if ipv6:
            self.address_family = socket.AF_INET6
        super().__init__(address, handler_class)

    def process_request(self, request, client_address):
        if self._slots is not None:
            self._slots.acquire()
        super().process_request(request, client_address)

    def shutdown_request(self, request):
        try:
            super().shutdown_request(request)
        finally:
            if self._slots is not None:
                self._slots.release()


def _make_request_handler(server: "HTTPServer"):
    class _RequestHandler(BaseHTTPRequestHandler):
        timeout = READ_HEADER_TIMEOUT

        def _serve(self) -> None:
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                self.send_error(400)
                return
            body = self.rfile.read(length) if length > 0 else b""
            parts = urlsplit(self.path)
            request = Request(
                method=self.command,
                path=parts.path or "/",
                query=parts.query,
                headers=dict(self.headers.items()),
                body=body,
                remote_addr=_join_host_port(str(self.client_address[0]), str(self.client_address[1])),
                host=self.headers.get("Host", ""),
                tls=server.secured,
            )
            try:
                response = server.dispatch(request)
            except Exception:
                _log.exception("Handler failed for %s %s", self.command, request.path)
                response = Response(status=500, body=b"Internal Server Error\n")

            self.send_response(response.status)
            for name, value in response.headers.items():
                self.send_header(name, value)
            self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(response.body)

        do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = do_HEAD = do_OPTIONS = _serve

        def log_message(self, format, *args):  # noqa: A002
            _log.debug(format, *args)

    return _RequestHandler


class HTTPServer:
    """An HTTP server with a path router, started on demand."""

    def __init__(self, host: str, port: str | int, ssl_config: SSLConfig | None = None, max_conn: int = 0) -> None:
        self.host = host
        self.port = str(port)
        self.addr = _join_host_port(host, self.port)
        self.max_conn = max_conn
        self.secured = ssl_config is not None and ssl_config.available()
        self._ssl_context: ssl.SSLContext | None = None

        if self.secured:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.minimum_version = ssl.TLSVersion.TLSv1_2
            try:
                context.load_cert_chain(ssl_config.cert_path, ssl_config.key_path)
            except (OSError, ssl.SSLError) as err:
                raise RuntimeError(f"Failed to load SSL certificate: {err}.") from err
            self._ssl_context = context

        self._routes: dict[str, Handler] = {}
        self._lock = threading.Lock()
        self._started = False
        self._shutdown = False
        self._httpd: _Server | None = None

    def handle(self, path: str, handler: Handler) -> None:
        """Route requests for path (a subtree when it ends with "/") to handler."""
        if not path:
            raise ValueError("invalid pattern")
        with self._lock:
            if path in self._routes:
                raise ValueError(f"multiple registrations for {path}")
            self._routes[path] = handler

    def _match(self, path: str) -> Handler | None:
        with self._lock:
            candidates = [
                pattern
                for pattern in self._routes
                if pattern == path or (pattern.endswith("/") and path.startswith(pattern))
            ]
            if not candidates:
                return None
            return self._routes[max(candidates, key=len)]

    def dispatch(self, request: Request) -> Response:
        """Pass the request to the matching handler; 404 when none matches."""
        handler = self._match(request.path)
        if handler is None:
            return Response(status=404, body=b"404 page not found\n")
        return handler(request)

    @property
    def bound_address(self) -> tuple[str, int] | None:
        """The address actually listened on, once serving."""
        httpd = self._httpd
        if httpd is None:
            return None
        return httpd.server_address[0], httpd.server_address[1]

    def start(self) -> None:
        """Listen and serve until shut down; no-op when already started."""
        with self._lock:
            if self._started:
                return
            self._started = True

        httpd = _Server(
            (self.host, int(self.port)),
            _make_request_handler(self),
            self.max_conn,
            ipv6=":" in self.host,
        )
        if self._ssl_context is not None:
            httpd.socket = self._ssl_context.wrap_socket(httpd.socket, server_side=True)

        with self._lock:
            if self._shutdown:
                httpd.server_close()
                return
            self._httpd = httpd

        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()

    def start_and_announce(self, name: str) -> None:
        """Log what is being started, then start."""
        with self._lock:
            running = self._started
        if running:
            _log.debug("%s is mounted at %s", name, self.address())
            return
        _log.debug("Starting %s at %s", name, self.address())
        self.start()

    def running(self) -> bool:
        """True once the server has been started."""
        return self._started

    def shutdown(self) -> None:
        """Stop serving; repeated calls do nothing."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            httpd = self._httpd
        if httpd is not None:
            httpd.shutdown()

    def stopped(self) -> bool:
        """True once the server has been shut down."""
        with self._lock:
            return self._shutdown

    def address(self) -> str:
        """scheme://host:port of the server."""
        scheme = "https://" if self.secured else "http://"
        return f"{scheme}{self.addr}"


def for_port(port: str | int) -> HTTPServer:
    """Return the shared server for a port, creating it with module defaults."""
    key = str(port)
    with _all_servers_lock:
        server = _all_servers.get(key)
        if server is None:
            server = HTTPServer(HOST, key, SSL, MAX_CONN)
            _all_servers[key] = server
        return server