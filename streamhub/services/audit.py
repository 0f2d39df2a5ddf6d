from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import Request

from streamhub.domain.models import AuditEvent


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "signature", "license_key"]
_REDACTED_VALUE = "[REDACTED]"

# Signature shared by record_event partials handed to services.
AuditRecorder = Callable[..., Awaitable[None]]


def _is_sensitive_key(key: str) -> bool:
    # Substring match so api_token, webhook_secret and license_key all redact.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Walk nested dicts and lists; only values under sensitive keys are replaced.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Background callers pass None and get an all-None context.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def build_event(
    *,
    event_type: str,
    outcome: str,
    actor_type: str = "system",
    actor_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    occurred_at: datetime | None = None,
) -> AuditEvent:
    return AuditEvent(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_id,
        ip_address=ip_address,
        user_agent=user_agent,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )


async def record_event(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    event_type: str,
    outcome: str,
    best_effort: bool = True,
    **fields: Any,
) -> None:
    # Audit writes never fail the caller's flow; failures are logged instead.
    event = build_event(event_type=event_type, outcome=outcome, **fields)
    async with session_factory() as session:
        try:
            session.add(event)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            level = logger.warning if best_effort else logger.error
            level(
                "audit_event_write_failed event_type=%s request_id=%s",
                event_type,
                fields.get("request_id"),
                exc_info=exc,
            )
