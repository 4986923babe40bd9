from __future__ import annotations

import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fleetgate_core.errors import ConflictError, ValidationError
from fleetgate_core.logging import get_logger

logger = get_logger(__name__)

_DEV_ENVS = {"dev", "local", "test"}


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    commit: str
    timestamp: str


def build_health_response(service_name: str) -> HealthResponse:
    return HealthResponse(
        status="ok",
        service=service_name,
        version=os.getenv("FLEETGATE_VERSION", "dev"),
        commit=os.getenv("GIT_COMMIT", "unknown"),
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    )


def cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    if os.getenv("ENV", "dev").lower() in _DEV_ENVS:
        return ["*"]
    return []


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


def install_error_handlers(app: FastAPI) -> None:
    """Maps domain errors onto HTTP answers.

    Validation failures name the offending field; revision conflicts tell the
    caller to reload and retry.
    """

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"field": exc.field, "reason": exc.reason},
        )

    @app.exception_handler(ConflictError)
    async def _conflict_error(request: Request, exc: ConflictError) -> JSONResponse:
        logger.warning(
            "Write conflict",
            extra={
                "correlation_id": _correlation_id(request),
                "error_message": str(exc),
            },
        )
        return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_service_app(service_name: str) -> FastAPI:
    app = FastAPI(title=service_name)

    origins = cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def _correlation(request: Request, call_next):
        corr = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = corr
        response = await call_next(request)
        response.headers["x-correlation-id"] = corr
        return response

    install_error_handlers(app)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return build_health_response(service_name)

    return app
