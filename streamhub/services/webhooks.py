from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Mapping

from streamhub.core.errors import PayloadError, WebhookSignatureError
from streamhub.domain.video import ProviderVideo
from streamhub.providers.video import bunny, cloudflare


CLOUDFLARE_SIGNATURE_HEADER = "webhook-signature"
BUNNY_SIGNATURE_HEADER = "x-bunny-signature"
BUNNY_TOKEN_PARAM = "token"


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # Starlette headers are case-insensitive; plain dicts from direct callers may not be.
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
    return value


def build_cloudflare_signature(secret: str, timestamp: int, body: bytes) -> str:
    # HMAC-SHA256 over "<time>.<raw body>", hex encoded.
    message = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_cloudflare_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: str,
    *,
    now: float,
    tolerance_s: int,
) -> None:
    """Check ``Webhook-Signature: time=<unix>,sig1=<hex>`` against the raw body."""
    header = _header(headers, CLOUDFLARE_SIGNATURE_HEADER)
    if not header:
        raise WebhookSignatureError("missing signature header")
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key] = value
    timestamp_raw, signature = parts.get("time"), parts.get("sig1")
    if not timestamp_raw or not signature:
        raise WebhookSignatureError("malformed signature header")
    try:
        timestamp = int(timestamp_raw)
    except ValueError as exc:
        raise WebhookSignatureError("malformed signature timestamp") from exc
    if abs(now - timestamp) > tolerance_s:
        raise WebhookSignatureError("signature timestamp outside tolerance")
    expected = build_cloudflare_signature(secret, timestamp, body)
    if not hmac.compare_digest(expected, signature.lower()):
        raise WebhookSignatureError("signature mismatch")


def build_bunny_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_bunny_signature(
    headers: Mapping[str, str],
    query: Mapping[str, str],
    body: bytes,
    secret: str,
) -> None:
    # Either an HMAC header over the body or a shared token embedded in the webhook URL.
    signature = _header(headers, BUNNY_SIGNATURE_HEADER)
    if signature:
        if hmac.compare_digest(build_bunny_signature(secret, body), signature.strip().lower()):
            return
        raise WebhookSignatureError("signature mismatch")
    token = query.get(BUNNY_TOKEN_PARAM)
    if token:
        if hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
            return
        raise WebhookSignatureError("token mismatch")
    raise WebhookSignatureError("missing signature")


def load_payload(body: bytes) -> dict[str, Any]:
    # Parse only after the signature check has passed.
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise PayloadError("webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise PayloadError("webhook body must be a JSON object")
    return payload


def parse_cloudflare_webhook(payload: dict[str, Any]) -> ProviderVideo:
    video = cloudflare.parse_video(payload)
    if not video.video_id:
        raise PayloadError("webhook body has no uid")
    return video


def parse_bunny_webhook(payload: dict[str, Any]) -> ProviderVideo:
    # Bunny webhooks carry no progress; Finished implies a complete encode.
    video_id = str(payload.get("VideoGuid") or "")
    if not video_id:
        raise PayloadError("webhook body has no VideoGuid")
    status = payload.get("Status")
    finished = status == bunny.WEBHOOK_STATUS_FINISHED
    failed = status in bunny.WEBHOOK_STATUS_FAILED
    library_id = payload.get("VideoLibraryId")
    return ProviderVideo(
        video_id=video_id,
        ready_to_stream=finished,
        pct_complete=100.0 if finished else 0.0,
        state="error" if failed else ("ready" if finished else "inprogress"),
        library_id=str(library_id) if library_id is not None else None,
        error_code=f"bunny_webhook_status_{status}" if failed else None,
    )
