import json
import queue
import socket
import threading
import time
import urllib.request
from unittest.mock import patch

import pytest
import redis

from cablegate.pubsub import (
    DEFAULT_KEEPALIVE_INTERVAL,
    HTTPConfig,
    HTTPSubscriber,
    RedisConfig,
    RedisSubscriber,
    UnknownAdapterError,
    new_subscriber,
    next_retry,
)
from cablegate.server import Request, for_port


class RecordingNode:
    def __init__(self):
        self.payloads = []
        self.received = threading.Event()

    def handle_pubsub(self, payload):
        self.payloads.append(payload)
        self.received.set()


PAYLOAD = json.dumps({"stream": "any_test", "data": "123_test"}).encode()


@pytest.fixture
def node():
    return RecordingNode()


def test_http_handles_broadcasts(node):
    subscriber = HTTPSubscriber(node, HTTPConfig())
    res = subscriber.handle(Request(method="POST", path="/", body=PAYLOAD))
    assert res.status == 201
    assert node.payloads == [PAYLOAD]


def test_http_rejects_non_post(node):
    subscriber = HTTPSubscriber(node, HTTPConfig())
    res = subscriber.handle(Request(method="GET", path="/", body=PAYLOAD))
    assert res.status == 422
    assert node.payloads == []


def test_http_rejects_missing_authorization(node):
    subscriber = HTTPSubscriber(node, HTTPConfig(secret="secret"))
    res = subscriber.handle(Request(method="POST", path="/", body=PAYLOAD))
    assert res.status == 401
    assert node.payloads == []


def test_http_rejects_wrong_authorization(node):
    subscriber = HTTPSubscriber(node, HTTPConfig(secret="secret"))
    res = subscriber.handle(
        Request(method="POST", path="/", body=PAYLOAD, headers={"Authorization": "Bearer token"})
    )
    assert res.status == 401


def test_http_accepts_valid_authorization(node):
    subscriber = HTTPSubscriber(node, HTTPConfig(secret="secret"))
    res = subscriber.handle(
        Request(method="POST", path="/", body=PAYLOAD, headers={"Authorization": "Bearer secret"})
    )
    assert res.status == 201
    assert node.payloads == [PAYLOAD]


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_http_subscriber_serves_broadcasts(node):
    port = _free_port()
    subscriber = HTTPSubscriber(node, HTTPConfig(port=port, path="/_broadcast", secret="secret"))
    done = queue.Queue()
    subscriber.start(done)
    try:
        server = for_port(port)
        deadline = time.monotonic() + 10
        while server.bound_address is None and time.monotonic() < deadline:
            time.sleep(0.01)

        request = urllib.request.Request(
            f"http://127.0.0.1:{port}/_broadcast",
            data=PAYLOAD,
            method="POST",
            headers={"Authorization": "Bearer secret"},
        )
        with urllib.request.urlopen(request, timeout=10) as response:
            status = response.status
    finally:
        subscriber.shutdown()

    assert status == 201
    assert node.payloads == [PAYLOAD]
    assert done.empty()


def test_redis_config_defaults():
    config = RedisConfig()
    assert config.keepalive_ping_interval == DEFAULT_KEEPALIVE_INTERVAL == 30
    assert config.sentinels == ""


@pytest.mark.parametrize(
    "step, allowed",
    [
        (1, {1, 3, 5, 7}),
        (2, {4 + r * 3 for r in range(8)}),
    ],
)
def test_next_retry_bounds(step, allowed):
    seen = {int(next_retry(step).total_seconds()) for _ in range(200)}
    assert seen <= allowed
    assert min(seen) >= step * step


def test_next_retry_rejects_zero_step():
    with pytest.raises(ValueError):
        next_retry(0)


def test_new_subscriber_redis(node):
    sub = new_subscriber(node, "redis", RedisConfig(url="redis://localhost:6379/5"), HTTPConfig())
    assert isinstance(sub, RedisSubscriber)
    assert sub.url == "redis://localhost:6379/5"


def test_new_subscriber_http(node):
    sub = new_subscriber(node, "http", RedisConfig(), HTTPConfig(port=8090, path="/_broadcast"))
    assert isinstance(sub, HTTPSubscriber)
    assert sub.path == "/_broadcast"


@pytest.mark.parametrize("adapter", ["nats", "kafka", ""])
def test_new_subscriber_unknown(node, adapter):
    with pytest.raises(UnknownAdapterError, match="Unknown adapter type"):
        new_subscriber(node, adapter, RedisConfig(), HTTPConfig())


def test_redis_start_rejects_bad_url(node):
    sub = RedisSubscriber(node, RedisConfig(url="redis://localhost:notaport"))
    with pytest.raises(ValueError):
        sub.start(queue.Queue())


def test_redis_start_rejects_zero_ping_interval(node):
    sub = RedisSubscriber(node, RedisConfig(url="redis://localhost:6379", keepalive_ping_interval=0))
    with pytest.raises(ValueError):
        sub.start(queue.Queue())


class FakePubSub:
    def __init__(self, messages):
        self.messages = list(messages)
        self.subscribed = []
        self.closed = False

    def subscribe(self, channel):
        self.subscribed.append(channel)

    def get_message(self, timeout=0.0):
        if self.messages:
            return self.messages.pop(0)
        raise redis.ConnectionError("connection closed")

    def ping(self):
        return None

    def close(self):
        self.closed = True


class FakeClient:
    def __init__(self, pubsub):
        self._pubsub = pubsub
        self.closed = False

    def pubsub(self):
        return self._pubsub

    def close(self):
        self.closed = True


def test_redis_subscriber_delivers_messages(node):
    pubsubs = []

    def from_url(url, **kwargs):
        ps = FakePubSub(
            [
                {"type": "subscribe", "channel": b"__anycable__", "data": 1},
                {"type": "message", "channel": b"__anycable__", "data": PAYLOAD},
            ]
        )
        pubsubs.append(ps)
        return FakeClient(ps)

    sub = RedisSubscriber(node, RedisConfig(url="redis://localhost:6379/5", channel="__anycable__"))
    done = queue.Queue()
    with patch("redis.Redis.from_url", side_effect=from_url):
        sub.start(done)
        assert node.received.wait(10)
        sub.shutdown()

    assert node.payloads == [PAYLOAD]
    assert pubsubs[0].subscribed == ["__anycable__"]
    assert done.empty()