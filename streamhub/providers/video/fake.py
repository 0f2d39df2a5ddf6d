from __future__ import annotations

from typing import Any

from streamhub.core.errors import DefinitiveProviderError, TransientProviderError
from streamhub.domain.video import Provider, ProviderVideo
from streamhub.providers.video.base import ConnectionTestResult


class FakeVideoGateway:
    """In-memory gateway that records every call."""

    def __init__(self, provider: Provider = Provider.CLOUDFLARE, videos: dict[str, ProviderVideo] | None = None) -> None:
        self.provider = provider
        self.videos: dict[str, ProviderVideo] = dict(videos or {})
        self.get_calls: list[str] = []
        self.delete_calls: list[str] = []
        # video_id -> exception raised by get/delete for that id.
        self.failures: dict[str, Exception] = {}
        self.connection = ConnectionTestResult(True, "Connected to fake provider.")

    def put(self, video: ProviderVideo) -> None:
        self.videos[video.video_id] = video

    async def get_video(self, video_id: str) -> ProviderVideo:
        self.get_calls.append(video_id)
        if video_id in self.failures:
            raise self.failures[video_id]
        video = self.videos.get(video_id)
        if video is None:
            raise DefinitiveProviderError(f"video {video_id} not found", status_code=404, provider=self.provider.value)
        return video

    async def delete_video(self, video_id: str) -> bool:
        self.delete_calls.append(video_id)
        failure = self.failures.get(video_id)
        if isinstance(failure, TransientProviderError):
            return False
        self.videos.pop(video_id, None)
        return True

    async def list_collections(self) -> list[dict[str, Any]]:
        return [{"id": video.video_id, "ready": video.ready_to_stream} for video in self.videos.values()]

    async def test_connection(self) -> ConnectionTestResult:
        return self.connection

    async def aclose(self) -> None:
        return None
