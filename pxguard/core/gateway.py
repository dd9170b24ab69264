"""FastAPI app entry and enforcement middleware."""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.loader import load_config
from pxguard.config.settings import settings
from pxguard.core.enforcer import Enforcer
from pxguard.core.models import ResponseDescriptor
from pxguard.util.logger import logger

_UNENFORCED_PATHS = frozenset({"/health"})


def to_response(descriptor: ResponseDescriptor) -> Response:
    headers = {key: value for key, value in descriptor.headers.items() if key.lower() != "content-length"}
    if isinstance(descriptor.body, (dict, list)):
        headers.pop("content-type", None)
        return JSONResponse(status_code=descriptor.status_code, content=descriptor.body, headers=headers)
    body = descriptor.body if isinstance(descriptor.body, bytes) else str(descriptor.body or "")
    return Response(status_code=descriptor.status_code, content=body, headers=headers)


def install_enforcer(app: FastAPI, enforcer: Enforcer) -> None:
    @app.middleware("http")
    async def enforcement_middleware(request: Request, call_next):
        if request.url.path in _UNENFORCED_PATHS:
            return await call_next(request)
        outcome = await enforcer.enforce(request)
        if outcome.response is None:
            return await call_next(request)
        logger.info(
            "enforcement response path=%s status=%s action=%s reason=%s",
            request.url.path,
            outcome.response.status_code,
            outcome.action.value,
            outcome.reason.value if outcome.reason else "",
        )
        return to_response(outcome.response)


def create_app(params: Mapping[str, Any] | EnforcementConfig | None = None, enforcer: Enforcer | None = None) -> FastAPI:
    if enforcer is None:
        config = EnforcementConfig.from_params(params) if params is not None else load_config()
        enforcer = Enforcer(config)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await enforcer.aclose()
        logger.info("enforcer closed")

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.enforcer = enforcer
    install_enforcer(app, enforcer)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
