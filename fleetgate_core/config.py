import os
from dataclasses import dataclass
from functools import lru_cache

from fleetgate_core.storage.paths import (
    backend_scheme,
    has_uri_scheme,
    normalize_bucket_uri,
    state_root,
)


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    storage_backend: str
    local_state_root: str | None
    state_bucket: str
    state_prefix: str
    dispatch_timeout_s: float
    dispatch_workers: int
    firmware_url_base: str
    firmware_url_secret: str | None
    firmware_url_ttl_seconds: int
    delta_min_fwup_version: str

    def state_root_uri(self) -> str:
        if self.storage_backend == "local":
            if not self.local_state_root:
                raise ValueError("LOCAL_STATE_ROOT is required for local storage")
            return self.local_state_root
        return state_root(self.bucket_uri(self.state_bucket), self.state_prefix)

    def storage_scheme(self) -> str | None:
        return backend_scheme(self.storage_backend)

    def bucket_uri(self, bucket: str) -> str:
        scheme = self.storage_scheme()
        if self.storage_backend != "local" and scheme is None and not has_uri_scheme(
            bucket
        ):
            raise ValueError(
                "Bucket must include a URI scheme when STORAGE_BACKEND="
                f"{self.storage_backend} (example: s3://bucket)"
            )
        return normalize_bucket_uri(bucket, scheme=scheme)

    @classmethod
    def from_env(cls) -> "Config":
        missing: list[str] = []

        def require(name: str) -> str:
            value = os.getenv(name)
            if value is None or value == "":
                missing.append(name)
                return ""
            return value

        storage_backend = os.getenv("STORAGE_BACKEND", "local").strip().lower()
        allowed_backends = {"local", "gcs", "gs", "s3", "remote", "azure"}
        if storage_backend not in allowed_backends:
            allowed = ", ".join(sorted(allowed_backends))
            raise ValueError(f"STORAGE_BACKEND must be one of: {allowed}")

        remote_required = storage_backend != "local"
        state_bucket = require("STATE_BUCKET") if remote_required else os.getenv(
            "STATE_BUCKET", ""
        )
        state_prefix = require("STATE_PREFIX") if remote_required else os.getenv(
            "STATE_PREFIX", ""
        )
        local_state_root = os.getenv("LOCAL_STATE_ROOT")
        if storage_backend == "local" and not local_state_root:
            missing.append("LOCAL_STATE_ROOT")
        env = require("ENV")
        log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()

        dispatch_timeout_s = _parse_float(
            "DISPATCH_TIMEOUT_S", os.getenv("DISPATCH_TIMEOUT_S", "15")
        )
        dispatch_workers = _parse_int(
            "DISPATCH_WORKERS", os.getenv("DISPATCH_WORKERS", "4")
        )
        firmware_url_base = os.getenv(
            "FIRMWARE_URL_BASE", "http://localhost:8080"
        ).rstrip("/")
        firmware_url_secret = os.getenv("FIRMWARE_URL_SECRET") or None
        firmware_url_ttl_seconds = _parse_int(
            "FIRMWARE_URL_TTL_SECONDS", os.getenv("FIRMWARE_URL_TTL_SECONDS", "3600")
        )
        if firmware_url_ttl_seconds <= 0:
            raise ValueError("FIRMWARE_URL_TTL_SECONDS must be positive")
        delta_min_fwup_version = os.getenv("DELTA_MIN_FWUP_VERSION", "1.6.0").strip()

        if remote_required and backend_scheme(storage_backend) is None:
            if state_bucket and not has_uri_scheme(state_bucket):
                raise ValueError(
                    "STATE_BUCKET must include a URI scheme when STORAGE_BACKEND="
                    f"{storage_backend} (example: s3://bucket)"
                )

        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing required env vars: {missing_str}")

        return cls(
            env=env,
            log_level=log_level,
            storage_backend=storage_backend,
            local_state_root=local_state_root,
            state_bucket=state_bucket,
            state_prefix=state_prefix,
            dispatch_timeout_s=dispatch_timeout_s,
            dispatch_workers=max(1, dispatch_workers),
            firmware_url_base=firmware_url_base,
            firmware_url_secret=firmware_url_secret,
            firmware_url_ttl_seconds=firmware_url_ttl_seconds,
            delta_min_fwup_version=delta_min_fwup_version,
        )


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
