"""FastAPI application exposing the form endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from threading import Lock
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from formgate.core import AppSettings, ConfigurationError, load_app_settings
from formgate.core.container import ServiceContainer
from formgate.core.models import InboundRequest, UploadedPart
from formgate.service import FormSubmissionService, build_container

from .security import apply_security_headers, client_address

LOGGER = logging.getLogger(__name__)

DEFAULT_ENDPOINT_PATH = "/submit"
_ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _json(status_code: int, body: dict, **headers: str) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code, content=body, headers=headers or None
    )
    return apply_security_headers(response)


async def _read_part(value: UploadFile) -> UploadedPart:
    filename = value.filename or ""
    try:
        content = await value.read()
    except OSError as exc:
        LOGGER.warning("Could not read uploaded part %r: %s", filename, exc)
        return UploadedPart(filename=filename, content=b"", error=str(exc))
    finally:
        await value.close()
    return UploadedPart(
        filename=filename, content=content, content_type=value.content_type
    )


async def build_inbound(request: Request) -> InboundRequest:
    """Convert a Starlette request into the service's request view."""
    inbound = InboundRequest(
        method=request.method,
        client_ip=client_address(request),
        host=request.headers.get("host"),
        origin=request.headers.get("origin"),
        referer=request.headers.get("referer"),
        user_agent=request.headers.get("user-agent"),
    )
    if request.method.upper() != "POST":
        return inbound

    form = await request.form()
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            inbound.files.append(await _read_part(value))
        else:
            inbound.fields.setdefault(key, value)
    return inbound


def create_app(
    settings: AppSettings | None = None,
    *,
    env_file: Path | str | None = None,
    container_factory: Callable[[AppSettings], ServiceContainer] = build_container,
) -> FastAPI:
    """Create the application.

    With explicit ``settings`` the configuration is fixed for the app's
    lifetime. Otherwise it is loaded from ``env_file`` through the cached
    loader on each request, so clearing the loader cache reloads it. A missing
    recipient is left to the service so the failure is audited.
    """

    def current_settings() -> AppSettings:
        if settings is not None:
            return settings
        return load_app_settings(env_file, require_recipients=False)

    endpoint_path = DEFAULT_ENDPOINT_PATH
    try:
        endpoint_path = current_settings().server.endpoint_path
    except ConfigurationError as exc:
        LOGGER.error(
            "Configuration unavailable at startup (%s): %s", exc.code, exc.detail
        )

    app = FastAPI(title="formgate", docs_url=None, redoc_url=None, openapi_url=None)

    wiring_lock = Lock()
    wiring: dict[str, Any] = {"settings": None, "container": None}

    def resolve_service() -> FormSubmissionService:
        active = current_settings()
        with wiring_lock:
            if wiring["settings"] is not active:
                LOGGER.info("Wiring services for a new configuration snapshot")
                wiring["container"] = container_factory(active)
                wiring["settings"] = active
            return wiring["container"].resolve("service")

    app.state.resolve_service = resolve_service

    @app.get("/healthz")
    async def healthz() -> JSONResponse:
        return _json(200, {"ok": True})

    @app.api_route(endpoint_path, methods=_ROUTED_METHODS)
    async def submit(request: Request) -> JSONResponse:
        try:
            service = resolve_service()
        except ConfigurationError as exc:
            LOGGER.error(
                "Rejecting request, configuration error %s: %s", exc.code, exc.detail
            )
            return _json(exc.status, {"ok": False, "error": exc.code})

        try:
            inbound = await build_inbound(request)
        except StarletteHTTPException as exc:
            LOGGER.info(
                "Unparseable form body from %s: %s",
                client_address(request),
                exc.detail,
            )
            return _json(400, {"ok": False, "error": "malformed_request"})

        result = await asyncio.to_thread(service.handle, inbound)
        if result.status == 405:
            return _json(result.status, result.body, Allow="POST")
        return _json(result.status, result.body)

    return app


__all__ = ["create_app", "build_inbound"]
