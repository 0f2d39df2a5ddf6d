from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from streamhub.apps.api.deps import require_admin
from streamhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from streamhub.apps.api.response import SuccessEnvelope, success_response
from streamhub.services import telemetry

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok")
    return success_response(request=request, data=payload.model_dump())


@router.get("/ops/metrics", dependencies=[Depends(require_admin)])
async def ops_metrics(request: Request) -> dict:
    # Breaker states, retry counters and provider latency for operators.
    return success_response(request=request, data=telemetry.snapshot())
