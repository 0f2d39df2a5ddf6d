from __future__ import annotations

import logging
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

# Video object "status" values from the Stream API.
API_STATUS_FINISHED = 4
API_STATUS_FAILED = {5, 6}
# Webhook "Status" values differ from the API's.
WEBHOOK_STATUS_FINISHED = 3
WEBHOOK_STATUS_FAILED = {5, 8}


def player_url(library_id: str, video_id: str) -> str:
    return f"https://iframe.mediadelivery.net/embed/{library_id}/{video_id}"


def parse_video(result: dict[str, Any], *, library_id: str, cdn_hostname: str = "") -> ProviderVideo:
    video_id = str(result.get("guid") or "")
    status = result.get("status")
    try:
        pct_complete = float(result.get("encodeProgress") or 0)
    except (TypeError, ValueError):
        pct_complete = 0.0
    thumbnail = None
    if cdn_hostname and video_id:
        thumbnail = f"https://{cdn_hostname}/{video_id}/{result.get('thumbnailFileName') or 'thumbnail.jpg'}"
    failed = status in API_STATUS_FAILED
    length = result.get("length")
    return ProviderVideo(
        video_id=video_id,
        exists=True,
        ready_to_stream=status == API_STATUS_FINISHED,
        pct_complete=pct_complete,
        state="error" if failed else ("ready" if status == API_STATUS_FINISHED else "inprogress"),
        thumbnail_url=thumbnail,
        library_id=str(library_id),
        duration_s=float(length) if isinstance(length, (int, float)) else None,
        error_code=f"bunny_status_{status}" if failed else None,
    )


class BunnyGateway:
    provider = Provider.BUNNY

    def __init__(
        self,
        *,
        library_id: str,
        api_key: str,
        cdn_hostname: str = "",
        client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        if not library_id or not api_key:
            raise ConfigError("Bunny library_id and api_key are required")
        self._library_id = str(library_id)
        self._cdn_hostname = cdn_hostname.strip().removeprefix("https://").rstrip("/")
        self._http = ProviderHttp(
            provider=self.provider,
            integration="video.bunny",
            base_url=get_settings().bunny_stream_api_base,
            headers={"AccessKey": api_key, "Accept": "application/json"},
            client=client,
            breaker=breaker,
        )

    async def get_video(self, video_id: str) -> ProviderVideo:
        response = await self._http.request("GET", f"/library/{self._library_id}/videos/{video_id}")
        result = self._http.parse_json(response)
        video = parse_video(result, library_id=self._library_id, cdn_hostname=self._cdn_hostname)
        if not video.video_id:
            return replace(video, video_id=video_id)
        return video

    async def delete_video(self, video_id: str) -> bool:
        try:
            await self._http.request("DELETE", f"/library/{self._library_id}/videos/{video_id}")
        except DefinitiveProviderError:
            logger.info("bunny_video_already_deleted video_id=%s", video_id)
            return True
        except (ProviderError, ConfigError) as exc:
            logger.warning("bunny_video_delete_failed video_id=%s error=%s", video_id, exc)
            return False
        logger.info("bunny_video_deleted video_id=%s", video_id)
        return True

    async def list_collections(self) -> list[dict[str, Any]]:
        response = await self._http.request(
            "GET",
            f"/library/{self._library_id}/collections",
            params={"page": 1, "itemsPerPage": 100, "orderBy": "date"},
        )
        payload = self._http.parse_json(response)
        return [
            {
                "id": item.get("guid"),
                "name": item.get("name"),
                "video_count": item.get("videoCount", 0),
            }
            for item in payload.get("items") or []
        ]

    async def test_connection(self) -> ConnectionTestResult:
        try:
            response = await self._http.request("GET", f"/library/{self._library_id}/videos", params={"itemsPerPage": 1})
            self._http.parse_json(response)
        except DefinitiveProviderError:
            return ConnectionTestResult(False, "Bunny library not found; check the library ID.")
        except ConfigError:
            return ConnectionTestResult(False, "Bunny rejected the API key.")
        except ProviderError as exc:
            return ConnectionTestResult(False, f"Bunny request failed: {exc}")
        return ConnectionTestResult(True, "Connected to Bunny Stream.")

    async def aclose(self) -> None:
        await self._http.aclose()
