# cablegate

Building blocks for a real-time WebSocket gateway that speaks the Action Cable
protocol and hands application logic off to a separate RPC backend.

## What is inside

- `cablegate.messages` — session environment, RPC request/response records,
  command and connect results, and the confirmation/rejection messages.
- `cablegate.protocol` — builds connect, command and disconnect payloads and
  turns RPC responses into results, raising `ApplicationError` on errors.
- `cablegate.rpc` — the RPC `Controller`, with a concurrency limit and retries
  with backoff on `RESOURCE_EXHAUSTED` and `UNAVAILABLE` status codes.
- `cablegate.router` — `RouterController`, which sends commands for chosen
  channels to their own controllers and passes everything else to a default one.
- `cablegate.rails` — `TurboController` and `CableReadyController`, which check
  signed stream names without a round trip to the backend.
- `cablegate.verifier` — `MessageVerifier` for HMAC-SHA256 signed messages.
- `cablegate.pubsub` — broadcast subscribers over HTTP or Redis, chosen with
  `new_subscriber`.
- `cablegate.server` — small HTTP servers shared per port, plus `health_handler`.
- `cablegate.ws` — WebSocket connection helpers, origin checks, request
  headers and connection ids.
- `cablegate.gopool` — a worker pool with bounded queueing.
- `cablegate.stats` — latency sample aggregation (min, max, percentiles).
- `cablegate.util` — logging setup, a TTY-aware log handler, JSON helpers.

## Installation

    pip install cablegate

## Examples

Checking a signed Turbo stream name:

```python
from cablegate.verifier import MessageVerifier

verifier = MessageVerifier("secret")
stream = verifier.verified(signed_stream_name)
```

Routing one channel to its own controller:

```python
from cablegate.rails import TurboController
from cablegate.router import RouterController

router = RouterController(rpc_controller)
router.route("Turbo::StreamsChannel", TurboController("secret"))
result = router.subscribe(sid, env, identifiers, channel_identifier)
```

Taking broadcasts over HTTP:

```python
from cablegate.pubsub import HTTPConfig, new_subscriber

config = HTTPConfig(port=8090, path="/_broadcast", secret="secret")
subscriber = new_subscriber(node, "http", None, config)
```

A broadcast request must be a `POST`. When a secret is set, it must carry the
header `Authorization: Bearer <secret>`.

## Running the tests

    pip install -e ".[test]"
    pytest