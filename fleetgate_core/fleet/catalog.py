from __future__ import annotations

import hashlib
import hmac
import time
from typing import Callable
from urllib.parse import urlencode

from fleetgate_core.errors import CatalogError
from fleetgate_core.fleet import store as fleet_store
from fleetgate_core.fleet.types import Firmware, FirmwareMetadata
from fleetgate_core.fleet.versions import InvalidRequirement, parse_version


def metadata_from_firmware(firmware: Firmware) -> FirmwareMetadata:
    return FirmwareMetadata(
        uuid=firmware.uuid,
        version=firmware.version,
        platform=firmware.platform,
        architecture=firmware.architecture,
        product=firmware.product,
        author=firmware.author,
        description=firmware.description,
        vcs_identifier=firmware.vcs_identifier,
        misc=firmware.misc,
    )


def sign_path(secret: str, path: str, expires: int) -> str:
    message = f"{expires}.{path}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def supports_delta(fwup_version: str | None, minimum: str) -> bool:
    if not fwup_version:
        return False
    try:
        return parse_version(fwup_version) >= parse_version(minimum)
    except InvalidRequirement:
        return False


class LocalFirmwareCatalog:
    """Firmware lookups against the fleet registry plus URL minting.

    Full images live at ``/firmware/<uuid>.fw``; deltas between two known
    builds at ``/firmware/<source>/<target>.delta.fw``.
    """

    def __init__(
        self,
        base_uri: str,
        *,
        url_base: str,
        secret: str | None = None,
        ttl_seconds: int = 3600,
        delta_min_fwup_version: str = "1.6.0",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_uri = base_uri
        self._url_base = url_base.rstrip("/")
        self._secret = secret
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._delta_min = delta_min_fwup_version
        self._clock = clock

    def lookup_by_product_and_uuid(self, product_id: str, uuid: str) -> Firmware | None:
        return next(
            (
                firmware
                for firmware in fleet_store.load_firmware(
                    self._base_uri, product_id=product_id
                )
                if firmware.uuid == uuid
            ),
            None,
        )

    def build_delivery_url(
        self,
        source: Firmware | None,
        target: Firmware,
        fwup_version: str | None,
        product_id: str,
    ) -> str:
        if target.product_id != product_id:
            raise CatalogError(
                f"Firmware {target.uuid} does not belong to product {product_id}"
            )
        if (
            source is not None
            and source.uuid != target.uuid
            and supports_delta(fwup_version, self._delta_min)
        ):
            path = f"/firmware/{source.uuid}/{target.uuid}.delta.fw"
        else:
            path = f"/firmware/{target.uuid}.fw"
        if not self._secret:
            return f"{self._url_base}{path}"
        # Expiry is bucketed so repeated resolutions hand out the same URL.
        now = int(self._clock())
        expires = (now // self._ttl_seconds + 2) * self._ttl_seconds
        signature = sign_path(self._secret, path, expires)
        query = urlencode({"expires": expires, "signature": signature})
        return f"{self._url_base}{path}?{query}"

    def public_metadata(self, firmware: Firmware) -> FirmwareMetadata:
        return metadata_from_firmware(firmware)
