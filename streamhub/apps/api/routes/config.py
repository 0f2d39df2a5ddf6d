from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from streamhub.apps.api.deps import get_config_service, require_admin
from streamhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from streamhub.apps.api.response import success_response
from streamhub.services.provider_config import StreamConfigService, get_provider_spec


router = APIRouter(
    prefix="/config",
    tags=["config"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)

ProviderName = Literal["cloudflare", "bunny", "cloudflare_stream", "bunny_stream"]


class ConnectionTestRequest(BaseModel):
    provider: ProviderName
    # Unsaved credentials from an admin form; saved credentials are used when omitted.
    credentials: dict[str, Any] | None = None


class ProviderSaveRequest(BaseModel):
    credentials: dict[str, Any] = Field(default_factory=dict)
    test_connection: bool = False
    make_active: bool = False


class SettingsUpdateRequest(BaseModel):
    provider: ProviderName | None = None
    upload: dict[str, Any] | None = None
    comment_video: dict[str, Any] | None = None


@router.get("")
async def get_config(request: Request, service: StreamConfigService = Depends(get_config_service)) -> dict:
    return success_response(request=request, data=await service.get_public())


@router.patch("")
async def update_settings(
    payload: SettingsUpdateRequest,
    request: Request,
    service: StreamConfigService = Depends(get_config_service),
) -> dict:
    # Provider credentials are not accepted here; they go through POST /config/{provider}.
    await service.update_settings(payload.model_dump(exclude_none=True))
    return success_response(request=request, data=await service.get_public())


@router.post("/test")
async def test_connection(
    payload: ConnectionTestRequest,
    request: Request,
    service: StreamConfigService = Depends(get_config_service),
) -> dict:
    result = await service.test_connection(payload.provider, payload.credentials)
    return success_response(request=request, data={"status": result.status, "message": result.message})


@router.post("/{provider}")
async def save_provider(
    provider: ProviderName,
    payload: ProviderSaveRequest,
    request: Request,
    service: StreamConfigService = Depends(get_config_service),
) -> dict:
    # Blank secret fields keep the stored value.
    result = await service.save_provider(
        provider,
        payload.credentials,
        test_connection=payload.test_connection,
        make_active=payload.make_active,
    )
    if not result.saved:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "CONFIG_INVALID", "message": "Configuration was not saved", "errors": result.errors},
        )
    section = get_provider_spec(provider).section
    data: dict[str, Any] = {"provider": section, "config": (await service.get_public())[section]}
    if result.test is not None:
        data["test"] = {"status": result.test.status, "message": result.test.message}
    return success_response(request=request, data=data)
