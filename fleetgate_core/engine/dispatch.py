from __future__ import annotations

import time
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime

from fleetgate_core.engine.ledger import record_update_sent
from fleetgate_core.engine.resolver import resolve_update
from fleetgate_core.fleet.eligibility import eligible_deployments
from fleetgate_core.fleet.types import (
    NOT_AVAILABLE,
    Deployment,
    Device,
    UpdatePayload,
    payload_to_dict,
)
from fleetgate_core.logging import get_logger
from fleetgate_core.notifications.pubsub import device_topic
from fleetgate_core.stores.registry import StoreBundle

logger = get_logger(__name__)

UPDATE_EVENT = "update"
DEFAULT_TIMEOUT_S = 15.0


def send_update_message(
    device: Device,
    deployment: Deployment,
    *,
    stores: StoreBundle,
    now: datetime | None = None,
) -> UpdatePayload:
    """Resolves an update and, when one exists, publishes it on the device topic."""
    payload = resolve_update(device, deployment, stores=stores, now=now)
    if payload.update_available:
        topic = device_topic(device.id)
        stores.notifications.publish(topic, UPDATE_EVENT, payload_to_dict(payload))
        record_update_sent(stores.audit, device, deployment, source="broadcast", now=now)
        logger.info(
            "Update published",
            extra={
                "device_id": device.id,
                "deployment_id": deployment.id,
                "firmware_uuid": deployment.firmware.uuid,
                "topic": topic,
            },
        )
    return payload


class UpdateDispatcher:
    """Re-evaluates a device after its record changed and pushes any update.

    ``dispatch`` waits at most ``timeout_s`` for the background task. On
    expiry the caller moves on and the task is left to finish on its own.
    """

    def __init__(
        self,
        stores: StoreBundle,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        workers: int = 4,
        executor: Executor | None = None,
    ) -> None:
        self._stores = stores
        self._timeout_s = timeout_s
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, workers),
            thread_name_prefix="fleetgate-dispatch",
        )

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    def _evaluate(self, device: Device, now: datetime | None) -> UpdatePayload:
        candidates = self._stores.fleet.load_deployments(org_id=device.org_id)
        deployments = eligible_deployments(device, candidates)
        if not deployments:
            return NOT_AVAILABLE
        return send_update_message(device, deployments[0], stores=self._stores, now=now)

    def dispatch(self, device: Device, *, now: datetime | None = None) -> UpdatePayload | None:
        """Returns the payload, or None if the task failed or outlived the timeout."""
        started = time.monotonic()
        future = self._executor.submit(self._evaluate, device, now)
        try:
            return future.result(timeout=self._timeout_s)
        except FutureTimeoutError:
            logger.warning(
                "Update dispatch timed out; continuing without it",
                extra={"device_id": device.id, "timeout_s": self._timeout_s},
            )
            return None
        except Exception as exc:
            logger.warning(
                "Update dispatch failed",
                extra={
                    "device_id": device.id,
                    "error_message": str(exc),
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )
            return None

    def shutdown(self, *, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
