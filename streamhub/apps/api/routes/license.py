from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from streamhub.apps.api.deps import get_license_gate, require_admin
from streamhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from streamhub.apps.api.response import success_response
from streamhub.services.license.gate import LicenseGate, LicenseResult


router = APIRouter(
    prefix="/license",
    tags=["license"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class ActivateRequest(BaseModel):
    license_key: str
    site_url: str | None = None


def _result_or_error(result: LicenseResult) -> dict:
    # Failed results surface as 400 with the license server code upper-cased.
    if result.ok:
        return result.as_dict()
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "code": (result.code or "license_error").upper(),
            "message": result.message,
            "state": result.state.value,
        },
    )


@router.get("")
async def license_status(request: Request, gate: LicenseGate = Depends(get_license_gate)) -> dict:
    return success_response(request=request, data=await gate.status())


@router.post("/activate")
async def activate(
    payload: ActivateRequest,
    request: Request,
    gate: LicenseGate = Depends(get_license_gate),
) -> dict:
    result = await gate.activate(payload.license_key, payload.site_url)
    return success_response(request=request, data=_result_or_error(result))


@router.post("/validate")
async def validate(request: Request, gate: LicenseGate = Depends(get_license_gate)) -> dict:
    # Grace-period results are ok=True; only expiry or a missing license is an error.
    result = await gate.validate(force=True)
    return success_response(request=request, data=_result_or_error(result))


@router.post("/deactivate")
async def deactivate(request: Request, gate: LicenseGate = Depends(get_license_gate)) -> dict:
    result = await gate.deactivate()
    return success_response(request=request, data=_result_or_error(result))
