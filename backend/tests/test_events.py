from __future__ import annotations

import json

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError

from land_importer.services import events as events_module
from land_importer.services.cancellation import RedisCancellationSignals
from land_importer.services.events import (
    CompositeEventSink,
    EventSink,
    RecordingEventSink,
    WebhookEventSink,
)
from land_importer.services.progress_tracker import PROGRESS_CHANNEL, ProgressTracker
from land_importer.services.webhook_dispatch import dispatch_event, sign_payload


class _FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ex=None):
        self.values[key] = value

    def exists(self, key):
        return int(key in self.values)

    def delete(self, key):
        self.values.pop(key, None)

    def publish(self, channel, message):
        self.published.append((channel, message))


class _DownRedis(_FakeRedis):
    def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")

    def exists(self, key):
        raise RedisConnectionError("connection refused")


class _ExplodingSink(EventSink):
    def emit(self, event, payload) -> None:
        raise RuntimeError("subscriber crashed")


class _FakeTask:
    def __init__(self, queued: list) -> None:
        self.queued = queued

    def delay(self, *args) -> None:
        self.queued.append(args)


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def test_dispatch_event_signs_payload() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    payload = {"event": "import.completed", "timestamp": "t", "data": {"job_id": "j"}}
    result = dispatch_event("https://hooks.test/in", payload, "s3cret", transport=httpx.MockTransport(handler))

    assert result["success"] is True
    assert result["status"] == 204
    assert seen["body"] == payload
    assert seen["headers"]["X-Webhook-Signature"] == f"sha256={sign_payload(payload, 's3cret')}"
    assert seen["headers"]["User-Agent"] == "Land-Registry-Importer/1.0"


def test_dispatch_event_reports_failures() -> None:
    failing = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    unreachable = httpx.MockTransport(_refuse)

    server_error = dispatch_event("https://hooks.test/in", {"event": "e"}, transport=failing)
    network_error = dispatch_event("https://hooks.test/in", {"event": "e"}, transport=unreachable)

    assert server_error["success"] is False
    assert server_error["error"] == "HTTP 500: boom"
    assert network_error["status"] == "error"
    assert "refused" in network_error["error"]


def test_webhook_sink_skips_progress_events(monkeypatch) -> None:
    sent = []
    monkeypatch.setattr(
        events_module,
        "dispatch_event",
        lambda url, body, secret=None: sent.append((url, body, secret)) or {"success": True},
    )
    sink = WebhookEventSink("https://hooks.test/in", secret="k")

    sink.publish("import.progress", {"job_id": "j", "processed_rows": 10})
    sink.publish("import.completed", {"job_id": "j"})

    assert len(sent) == 1
    url, body, secret = sent[0]
    assert body["event"] == "import.completed"
    assert body["data"] == {"job_id": "j"}
    assert secret == "k"


def test_webhook_sink_can_enqueue_delivery(monkeypatch) -> None:
    queued = []
    monkeypatch.setattr(events_module, "dispatch_webhook_async", _FakeTask(queued))
    sink = WebhookEventSink("https://hooks.test/in", async_dispatch=True)

    sink.publish("import.failed", {"job_id": "j", "error": "boom"})

    assert queued[0][0] == "https://hooks.test/in"
    assert queued[0][1]["event"] == "import.failed"


def test_composite_sink_isolates_failing_subscribers() -> None:
    recorder = RecordingEventSink()
    composite = CompositeEventSink([_ExplodingSink(), recorder])

    composite.publish("import.deleted", {"job_id": "j"})

    assert recorder.events == [("import.deleted", {"job_id": "j"})]


def test_progress_tracker_merges_snapshots() -> None:
    client = _FakeRedis()
    tracker = ProgressTracker(client)

    tracker.publish("import.progress", {"job_id": "j", "processed_rows": 100, "total_rows": 250})
    tracker.publish("import.completed", {"job_id": "j", "processed_rows": 250})

    snapshot = tracker.fetch("j")
    assert snapshot == {"job_id": "j", "processed_rows": 250, "total_rows": 250, "event": "import.completed"}
    assert [channel for channel, _ in client.published] == [PROGRESS_CHANNEL, PROGRESS_CHANNEL]
    tracker.clear("j")
    assert tracker.fetch("j") == {}


def test_redis_cancellation_signals() -> None:
    signals = RedisCancellationSignals(_FakeRedis())

    signals.request("j")
    assert signals.is_requested("j")
    signals.clear("j")
    assert not signals.is_requested("j")

    down = RedisCancellationSignals(_DownRedis())
    down.request("j")
    assert down.is_requested("j") is False
