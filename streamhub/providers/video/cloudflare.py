from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Any

import httpx

from streamhub.core.config import get_settings
from streamhub.core.errors import ConfigError, DefinitiveProviderError, ProviderError
from streamhub.domain.video import Provider, ProviderVideo
from streamhub.providers.video.base import ConnectionTestResult
from streamhub.providers.video.transport import ProviderHttp
from streamhub.services.resilience import CircuitBreaker


logger = logging.getLogger(__name__)

_CUSTOMER_SUBDOMAIN_RE = re.compile(r"https?://(customer-[a-z0-9]+)\.cloudflarestream\.com")


def customer_subdomain_from_url(url: str | None) -> str | None:
    if not url:
        return None
    match = _CUSTOMER_SUBDOMAIN_RE.match(url)
    return match.group(1) if match else None


def normalize_customer_subdomain(value: str) -> str:
    # Accept a bare code, "customer-<code>" or a full playback URL.
    value = (value or "").strip().lower()
    if not value:
        return ""
    parsed = customer_subdomain_from_url(value)
    if parsed:
        return parsed
    value = value.removeprefix("https://").removeprefix("http://")
    value = value.split("/", 1)[0].removesuffix(".cloudflarestream.com")
    if not value.startswith("customer-"):
        value = f"customer-{value}"
    return value


def player_url(customer_subdomain: str, video_id: str) -> str:
    return f"https://{customer_subdomain}.cloudflarestream.com/{video_id}/iframe"


def thumbnail_url(customer_subdomain: str, video_id: str) -> str:
    return f"https://{customer_subdomain}.cloudflarestream.com/{video_id}/thumbnails/thumbnail.jpg"


def parse_video(result: dict[str, Any], *, fallback_subdomain: str | None = None) -> ProviderVideo:
    """Build a descriptor from a Cloudflare video object (API result or webhook body).

    ``readyToStream`` alone is not enough: manifests 404 until pctComplete hits
    100 and an HLS URL is published, so both are folded into ready_to_stream and
    pct_complete here and the caller applies the readiness rule.
    """
    status = result.get("status") or {}
    playback = result.get("playback") or {}
    hls = playback.get("hls") or ""
    try:
        pct_complete = float(status.get("pctComplete") or 0)
    except (TypeError, ValueError):
        pct_complete = 0.0
    subdomain = customer_subdomain_from_url(hls) or fallback_subdomain
    video_id = str(result.get("uid") or "")
    thumb = result.get("thumbnail") or (thumbnail_url(subdomain, video_id) if subdomain and video_id else None)
    duration = result.get("duration")
    return ProviderVideo(
        video_id=video_id,
        exists=True,
        ready_to_stream=bool(result.get("readyToStream")) and bool(hls),
        pct_complete=pct_complete,
        state=status.get("state"),
        thumbnail_url=thumb,
        customer_subdomain=subdomain,
        duration_s=float(duration) if isinstance(duration, (int, float)) and duration >= 0 else None,
        error_code=status.get("errorReasonCode") or status.get("errReasonCode") or None,
        error_text=status.get("errorReasonText") or status.get("errReasonText") or None,
    )


class CloudflareGateway:
    provider = Provider.CLOUDFLARE

    def __init__(
        self,
        *,
        account_id: str,
        api_token: str,
        customer_subdomain: str = "",
        client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        if not account_id or not api_token:
            raise ConfigError("Cloudflare account_id and api_token are required")
        settings = get_settings()
        self._account_id = account_id
        self._customer_subdomain = normalize_customer_subdomain(customer_subdomain) or None
        self._page_size = settings.cloudflare_page_size
        self._http = ProviderHttp(
            provider=self.provider,
            integration="video.cloudflare",
            base_url=settings.cloudflare_api_base,
            headers={"Authorization": f"Bearer {api_token}"},
            client=client,
            breaker=breaker,
        )

    def _stream_path(self, video_id: str | None = None) -> str:
        path = f"/accounts/{self._account_id}/stream"
        return f"{path}/{video_id}" if video_id else path

    async def get_video(self, video_id: str) -> ProviderVideo:
        response = await self._http.request("GET", self._stream_path(video_id))
        payload = self._http.parse_json(response)
        result = payload.get("result") or {}
        fallback = self._customer_subdomain or f"customer-{self._account_id}"
        video = parse_video(result, fallback_subdomain=fallback)
        if not video.video_id:
            video = replace(video, video_id=video_id)
        return video

    async def delete_video(self, video_id: str) -> bool:
        try:
            await self._http.request("DELETE", self._stream_path(video_id))
        except DefinitiveProviderError:
            logger.info("cloudflare_video_already_deleted video_id=%s", video_id)
            return True
        except (ProviderError, ConfigError) as exc:
            logger.warning("cloudflare_video_delete_failed video_id=%s error=%s", video_id, exc)
            return False
        logger.info("cloudflare_video_deleted video_id=%s", video_id)
        return True

    async def list_collections(self) -> list[dict[str, Any]]:
        # Cloudflare Stream has no collections; list the account's videos page by page.
        videos: list[dict[str, Any]] = []
        params: dict[str, Any] = {"per_page": self._page_size, "asc": "true"}
        while True:
            response = await self._http.request("GET", self._stream_path(), params=params)
            payload = self._http.parse_json(response)
            batch = payload.get("result") or []
            videos.extend(
                {
                    "id": item.get("uid"),
                    "name": (item.get("meta") or {}).get("name"),
                    "ready": bool(item.get("readyToStream")),
                    "created": item.get("created"),
                }
                for item in batch
            )
            last_created = batch[-1].get("created") if batch else None
            if len(batch) < self._page_size or not last_created:
                return videos
            # Keyset pagination on creation time.
            params = {**params, "after": last_created}

    async def test_connection(self) -> ConnectionTestResult:
        try:
            response = await self._http.request("GET", self._stream_path(), params={"per_page": 1})
            payload = self._http.parse_json(response)
        except DefinitiveProviderError:
            return ConnectionTestResult(False, "Cloudflare account not found; check the account ID.")
        except ConfigError:
            return ConnectionTestResult(False, "Cloudflare rejected the API token.")
        except ProviderError as exc:
            return ConnectionTestResult(False, f"Cloudflare request failed: {exc}")
        if payload.get("success") is False:
            errors = payload.get("errors") or []
            message = errors[0].get("message") if errors and isinstance(errors[0], dict) else "unknown error"
            return ConnectionTestResult(False, f"Cloudflare API error: {message}")
        return ConnectionTestResult(True, "Connected to Cloudflare Stream.")

    async def aclose(self) -> None:
        await self._http.aclose()
