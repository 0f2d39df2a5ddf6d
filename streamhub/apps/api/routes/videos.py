from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from streamhub.apps.api.deps import get_status_reconciler, require_active_license
from streamhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from streamhub.apps.api.response import success_response
from streamhub.services.license.gate import LicenseGate
from streamhub.services.status import StatusReconciler


router = APIRouter(tags=["videos"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/video-status/{video_id}")
async def video_status(
    video_id: str,
    request: Request,
    provider: str | None = Query(default=None),
    gate: LicenseGate = Depends(require_active_license),
    reconciler: StatusReconciler = Depends(get_status_reconciler),
) -> dict:
    report = await reconciler.check_status(video_id, provider)
    await gate.record_usage()
    return success_response(request=request, data=report.as_dict())
