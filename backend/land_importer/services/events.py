"""Outbound event port for import lifecycle notifications.

The pipeline calls ``publish(event, payload)`` and never waits on or fails
because of a subscriber. Event names: ``import.uploaded``,
``import.validated``, ``import.progress``, ``import.completed``,
``import.failed``, ``import.cancelled``, ``import.deleted``.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from land_importer.domain.models import utcnow
from land_importer.services.progress_tracker import ProgressTracker
from land_importer.services.webhook_dispatch import dispatch_event
from land_importer.workers.tasks.webhook_dispatch_async import dispatch_webhook_async

logger = logging.getLogger(__name__)

PROGRESS_EVENT = "import.progress"


class EventSink(ABC):
    def publish(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self.emit(event, payload)
        except Exception as e:
            logger.error(f"{type(self).__name__} failed to publish {event}: {e}", exc_info=True)

    @abstractmethod
    def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class LoggingEventSink(EventSink):
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        level = logging.DEBUG if event == PROGRESS_EVENT else logging.INFO
        logger.log(level, f"{event} {payload}")


class RecordingEventSink(EventSink):
    """Keep every event in memory, in publication order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event, dict(payload)))

    def named(self, event: str) -> list[dict[str, Any]]:
        with self._lock:
            return [payload for name, payload in self.events if name == event]


class RedisProgressSink(EventSink):
    def __init__(self, tracker: ProgressTracker) -> None:
        self.tracker = tracker

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.tracker.publish(event, payload)


class WebhookEventSink(EventSink):
    """POST lifecycle events (not per-batch progress) to one configured URL."""

    def __init__(self, url: str, secret: str | None = None, async_dispatch: bool = False) -> None:
        self.url = url
        self.secret = secret
        self.async_dispatch = async_dispatch

    @staticmethod
    def envelope(event: str, payload: dict[str, Any]) -> dict[str, Any]:
        return {"event": event, "timestamp": utcnow().isoformat(), "data": payload}

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        if event == PROGRESS_EVENT:
            return
        body = self.envelope(event, payload)
        if self.async_dispatch:
            dispatch_webhook_async.delay(self.url, body, self.secret)
            logger.debug(f"Enqueued async webhook for event {event}")
            return
        result = dispatch_event(self.url, body, self.secret)
        if not result.get("success"):
            logger.warning(f"Webhook delivery for {event} failed: {result.get('error')}")


class CompositeEventSink(EventSink):
    def __init__(self, sinks: list[EventSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        # publish() on each sink logs and swallows its own failures
        for sink in self.sinks:
            sink.publish(event, payload)
