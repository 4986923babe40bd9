from __future__ import annotations

import threading
from typing import Any, Callable

from fleetgate_core.logging import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[str, str, dict[str, Any]], None]


def device_topic(device_id: str) -> str:
    return f"device:{device_id}"


class LocalPubSub:
    """In-process topic broker. Fire and forget, no acknowledgements."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = {}

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(topic, None)

        return _unsubscribe

    def publish(self, topic: str, event: str, payload: dict[str, Any]) -> int:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, ()))
        delivered = 0
        for callback in callbacks:
            try:
                callback(topic, event, payload)
            except Exception:
                logger.exception(
                    "Notification subscriber failed",
                    extra={"topic": topic},
                )
                continue
            delivered += 1
        return delivered
