from __future__ import annotations

import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from streamhub.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    streamhub_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from streamhub.apps.api.response import API_VERSION, REQUEST_ID_HEADER, clean_request_id
from streamhub.apps.api.routes.config import router as config_router
from streamhub.apps.api.routes.health import router as health_router
from streamhub.apps.api.routes.hooks import router as hooks_router
from streamhub.apps.api.routes.license import router as license_router
from streamhub.apps.api.routes.videos import router as videos_router
from streamhub.apps.api.routes.webhooks import router as webhooks_router
from streamhub.core.errors import StreamHubError
from streamhub.core.logging import configure_logging
from streamhub.services.telemetry import increment_counter


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="streamhub API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = clean_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        increment_counter(f"http_requests_total.{response.status_code // 100}xx")
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time-Ms"] = f"{latency_ms:.1f}"
        return response

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StreamHubError, streamhub_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    prefix = f"/{API_VERSION}"
    for router in (
        health_router,
        webhooks_router,
        videos_router,
        config_router,
        license_router,
        hooks_router,
    ):
        app.include_router(router, prefix=prefix)
    return app


app = create_app()
