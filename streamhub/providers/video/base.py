from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from streamhub.domain.video import Provider, ProviderVideo


@dataclass(frozen=True)
class ConnectionTestResult:
    ok: bool
    message: str

    @property
    def status(self) -> str:
        return "success" if self.ok else "error"


class VideoGateway(Protocol):
    provider: Provider

    async def get_video(self, video_id: str) -> ProviderVideo:
        """Return the provider's view of a video.

        Raises DefinitiveProviderError when the provider confirms the video is
        gone and TransientProviderError when the answer is unknown.
        """
        ...

    async def delete_video(self, video_id: str) -> bool:
        """Delete a video; already-absent counts as success. Never raises."""
        ...

    async def list_collections(self) -> list[dict[str, Any]]:
        ...

    async def test_connection(self) -> ConnectionTestResult:
        ...

    async def aclose(self) -> None:
        ...
