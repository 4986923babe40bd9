from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pytest

from fleetgate_core.config import get_config
from fleetgate_core.engine import create_deployment, create_device, create_firmware
from fleetgate_core.fleet.types import Deployment, Device, Firmware
from fleetgate_core.stores.registry import StoreBundle, get_store_bundle

FIRMWARE_URL_BASE = "https://fw.example.com"


@pytest.fixture(autouse=True)
def _fleetgate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STATE_ROOT", (tmp_path / "state").as_posix())
    monkeypatch.setenv("CONTROL_PLANE_STORE", "json")
    monkeypatch.setenv("FIRMWARE_URL_BASE", FIRMWARE_URL_BASE)
    monkeypatch.delenv("FIRMWARE_URL_SECRET", raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def stores(_fleetgate_env) -> StoreBundle:
    config = get_config()
    return get_store_bundle(config.state_root_uri(), config)


class FleetFactory:
    def __init__(self, stores: StoreBundle) -> None:
        self.stores = stores

    def firmware(
        self,
        *,
        uuid: str = "fw-a",
        version: str = "1.0.0",
        org_id: str = "org-1",
        product_id: str = "product-1",
        product: str = "widget",
        platform: str = "rpi4",
        architecture: str = "arm",
    ) -> Firmware:
        return create_firmware(
            stores=self.stores,
            uuid=uuid,
            org_id=org_id,
            product_id=product_id,
            product=product,
            version=version,
            platform=platform,
            architecture=architecture,
        )

    def deployment(
        self,
        firmware: Firmware,
        *,
        version: str = ">= 1.0.0",
        tags: Iterable[str] = ("prod",),
        **kwargs: object,
    ) -> Deployment:
        return create_deployment(
            stores=self.stores,
            name=f"rollout-{firmware.uuid}",
            org_id=firmware.org_id,
            product_id=firmware.product_id,
            firmware_id=firmware.id,
            version=version,
            tags=list(tags),
            **kwargs,
        )

    def device(
        self,
        *,
        identifier: str = "device-1",
        firmware: Firmware | None = None,
        tags: Iterable[str] = ("prod",),
        fwup_version: str | None = None,
        org_id: str = "org-1",
        product_id: str = "product-1",
    ) -> Device:
        metadata = None
        if firmware is not None:
            metadata = {
                "uuid": firmware.uuid,
                "version": firmware.version,
                "platform": firmware.platform,
                "architecture": firmware.architecture,
                "product": firmware.product,
                "fwup_version": fwup_version,
            }
        return create_device(
            stores=self.stores,
            identifier=identifier,
            org_id=org_id,
            product_id=product_id,
            tags=list(tags),
            firmware_metadata=metadata,
        )


@pytest.fixture
def fleet(stores: StoreBundle) -> FleetFactory:
    return FleetFactory(stores)
