from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from streamhub.apps.api.deps import get_status_reconciler, require_active_license
from streamhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from streamhub.apps.api.response import success_response
from streamhub.services.audit import get_request_context
from streamhub.services.status import StatusReconciler


router = APIRouter(tags=["webhooks"], responses=DEFAULT_ERROR_RESPONSES)


@router.post("/webhook/{provider}", dependencies=[Depends(require_active_license)])
async def receive_webhook(
    provider: str,
    request: Request,
    reconciler: StatusReconciler = Depends(get_status_reconciler),
) -> dict:
    # Signatures cover the exact bytes received, so the raw body is passed through unparsed.
    body = await request.body()
    outcome = await reconciler.handle_webhook(
        provider,
        request.headers,
        body,
        request.query_params,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=outcome.as_dict())
