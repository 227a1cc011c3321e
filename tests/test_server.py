import threading
import time
import urllib.request

import pytest

from cablegate.server import (
    HEALTH_MSG,
    HTTPServer,
    Request,
    Response,
    SSLConfig,
    for_port,
    health_handler,
)


def test_health_handler():
    res = health_handler(Request(method="GET", path="/health"))
    assert res.status == 200
    assert res.body == b"Ah, ha, ha, ha, stayin' alive, stayin' alive."


def test_ssl_available():
    config = SSLConfig()
    assert config.available() is False
    config.cert_path = "secret.cert"
    assert config.available() is False
    config.key_path = "secret.key"
    assert config.available() is True


def test_missing_certificate_raises(tmp_path):
    config = SSLConfig(cert_path=str(tmp_path / "none.cert"), key_path=str(tmp_path / "none.key"))
    with pytest.raises(RuntimeError, match="Failed to load SSL certificate"):
        HTTPServer("localhost", "8443", config)


def test_address():
    assert HTTPServer("localhost", "8080").address() == "http://localhost:8080"
    assert HTTPServer("::1", "8080").address() == "http://[::1]:8080"


def test_request_header_lookup_is_case_insensitive():
    req = Request(headers={"X-Request-ID": "abc"})
    assert req.header("x-request-id") == "abc"
    assert req.header("missing") == ""


def test_dispatch_routes_exact_and_subtree():
    server = HTTPServer("localhost", "0")
    server.handle("/health", health_handler)
    server.handle("/api/", lambda r: Response(status=201, body=r.path.encode()))
    server.handle("/api/special/", lambda r: Response(status=202))

    assert server.dispatch(Request(path="/health")).status == 200
    assert server.dispatch(Request(path="/health/extra")).status == 404
    assert server.dispatch(Request(path="/api/items")).body == b"/api/items"
    assert server.dispatch(Request(path="/api/special/x")).status == 202
    assert server.dispatch(Request(path="/nothing")).status == 404


def test_duplicate_route_raises():
    server = HTTPServer("localhost", "0")
    server.handle("/health", health_handler)
    with pytest.raises(ValueError):
        server.handle("/health", health_handler)


def test_for_port_returns_shared_server():
    first = for_port("18931")
    second = for_port(18931)
    assert first is second
    assert first is not for_port("18932")


def _wait_bound(server, timeout=5.0):
    deadline = time.monotonic() + timeout
    while server.bound_address is None:
        assert time.monotonic() < deadline
        time.sleep(0.01)
    return server.bound_address


def test_serves_requests_and_shuts_down():
    server = HTTPServer("127.0.0.1", "0")
    server.handle("/health", health_handler)
    server.handle("/echo", lambda r: Response(status=201, body=r.method.encode() + b":" + r.body))

    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    host, port = _wait_bound(server)
    assert server.running() is True

    with urllib.request.urlopen(f"http://{host}:{port}/health", timeout=5) as resp:
        assert resp.status == 200
        assert resp.read() == HEALTH_MSG

    req = urllib.request.Request(f"http://{host}:{port}/echo", data=b"payload", method="POST")
    with urllib.request.urlopen(req, timeout=5) as resp:
        assert resp.status == 201
        assert resp.read() == b"POST:payload"

    server.shutdown()
    thread.join(5)
    assert not thread.is_alive()
    assert server.stopped() is True


def test_shutdown_before_start():
    server = HTTPServer("127.0.0.1", "0")
    assert server.stopped() is False
    server.shutdown()
    server.shutdown()
    server.start()
    assert server.stopped() is True
    assert server.bound_address is None