from __future__ import annotations

import re
from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"
# Caller-supplied ids end up in logs and audit rows.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

T = TypeVar("T")


class ResponseMeta(BaseModel):
    # Every /v1 body carries the id the middleware echoes in the response header.
    request_id: str
    api_version: str = Field(default=API_VERSION)


class ErrorDetail(BaseModel):
    # ``code`` comes from the error policy table; details are optional context.
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def clean_request_id(value: str | None) -> str:
    # Accept a well-formed inbound id, otherwise mint one.
    if value and _REQUEST_ID_RE.match(value):
        return value
    return str(uuid4())


def get_request_id(request: Request) -> str:
    # Middleware normally sets the id; handlers reached without it get one here.
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = clean_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
    return request_id


def is_versioned_request(request: Request) -> bool:
    # Only /v1 routes are wrapped; anything else returns bare payloads.
    return request.url.path.startswith(f"/{API_VERSION}")


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    # Wrap ``data`` for /v1 routes.
    if not is_versioned_request(request):
        return data
    meta = ResponseMeta(request_id=get_request_id(request))
    return {"data": data, "meta": meta.model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Error body shared by every exception handler.
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}
