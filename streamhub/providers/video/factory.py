from __future__ import annotations

from typing import Any

import httpx

from streamhub.core.errors import ConfigError
from streamhub.domain.video import Provider
from streamhub.providers.video.base import VideoGateway
from streamhub.providers.video.bunny import BunnyGateway
from streamhub.providers.video.cloudflare import CloudflareGateway


def build_gateway(
    provider: Provider,
    credentials: dict[str, Any],
    *,
    client: httpx.AsyncClient | None = None,
) -> VideoGateway:
    """Build a gateway from *decrypted* provider credentials."""
    if provider is Provider.CLOUDFLARE:
        return CloudflareGateway(
            account_id=str(credentials.get("account_id") or ""),
            api_token=str(credentials.get("api_token") or ""),
            customer_subdomain=str(credentials.get("customer_subdomain") or ""),
            client=client,
        )
    if provider is Provider.BUNNY:
        return BunnyGateway(
            library_id=str(credentials.get("library_id") or ""),
            api_key=str(credentials.get("api_key") or ""),
            cdn_hostname=str(credentials.get("cdn_hostname") or ""),
            client=client,
        )
    raise ConfigError(f"Unsupported video provider: {provider}")
