from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from streamhub.core.config import get_settings
from streamhub.core.errors import PayloadError, ProviderError, SecurityError
from streamhub.domain.video import ContentEntity, Provider, ProviderVideo, VideoAsset, VideoStatus
from streamhub.persistence.stores import MetadataStore
from streamhub.services import webhooks
from streamhub.services.audit import AuditRecorder
from streamhub.services.policy import assumes_exists, policy_for
from streamhub.services.provider_config import StreamConfigService
from streamhub.services.rendering import render_hints
from streamhub.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def resolve_status(ready_to_stream: bool, pct_complete: float) -> VideoStatus:
    """READY only when the provider both flags the stream and reports a complete encode."""
    if ready_to_stream and pct_complete >= 100:
        return VideoStatus.READY
    return VideoStatus.PENDING


def apply_observation(asset: VideoAsset, video: ProviderVideo) -> VideoAsset:
    """Fold a provider observation into a stored asset.

    READY is terminal: no later observation moves an asset out of it.
    FAILED is only reachable from PENDING.
    """
    if asset.status is VideoStatus.READY:
        return asset
    observed = resolve_status(video.ready_to_stream, video.pct_complete)
    changes: dict[str, Any] = {}
    if observed is VideoStatus.READY:
        changes.update(status=VideoStatus.READY, error_code=None, error_text=None)
    elif video.failed and asset.status is VideoStatus.PENDING:
        changes.update(
            status=VideoStatus.FAILED,
            error_code=video.error_code or "encode_failed",
            error_text=video.error_text,
        )
    if video.thumbnail_url and video.thumbnail_url != asset.thumbnail_url:
        changes["thumbnail_url"] = video.thumbnail_url
    if video.customer_subdomain and not asset.customer_subdomain:
        changes["customer_subdomain"] = video.customer_subdomain
    if video.library_id and not asset.library_id:
        changes["library_id"] = video.library_id
    return asset.evolve(**changes) if changes else asset


def accept_incoming_asset(stored: VideoAsset | None, incoming: VideoAsset | None) -> VideoAsset | None:
    """Strip engine-owned fields from host-supplied metadata.

    Status, error and thumbnail data for a known video come from the stored
    asset; a video the engine has not seen yet always starts PENDING.
    """
    if incoming is None:
        return None
    if stored is not None and stored.ref == incoming.ref:
        return incoming.evolve(
            status=stored.status,
            error_code=stored.error_code,
            error_text=stored.error_text,
            thumbnail_url=stored.thumbnail_url or incoming.thumbnail_url,
            customer_subdomain=stored.customer_subdomain or incoming.customer_subdomain,
            library_id=stored.library_id or incoming.library_id,
        )
    return incoming.evolve(status=VideoStatus.PENDING, error_code=None, error_text=None)


@dataclass(frozen=True)
class StatusReport:
    video_id: str
    provider: Provider
    status: VideoStatus
    exists: bool
    # "cache": stored READY answer, "provider": fresh lookup, "unavailable": provider unreachable.
    source: str
    render: dict[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return {
            "video_id": self.video_id,
            "provider": self.provider.value,
            "status": self.status.value,
            "exists": self.exists,
            "source": self.source,
            "render": self.render,
        }


@dataclass(frozen=True)
class WebhookOutcome:
    provider: Provider
    video_id: str
    status: VideoStatus | None
    updated: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "video_id": self.video_id,
            "status": self.status.value if self.status else None,
            "updated": self.updated,
        }


class StatusReconciler:
    """Keeps stored video status in step with the provider.

    Webhooks are the primary path; ``check_status`` is the poll fallback a
    client calls while a video renders as pending.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        config: StreamConfigService,
        *,
        audit: AuditRecorder | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._metadata = metadata
        self._config = config
        self._audit = audit
        self._clock = clock or time.time

    async def record_observation(self, provider: Provider, video: ProviderVideo) -> list[ContentEntity]:
        """Apply ``video`` to every entity carrying it; returns the entities that changed."""
        def observe(current: VideoAsset) -> VideoAsset:
            return apply_observation(current, video) if current.provider is provider else current

        changed: list[ContentEntity] = []
        for found in await self._metadata.find_by_video_id(video.video_id):
            if found.asset is None or found.asset.provider is not provider:
                continue
            applied = await self._metadata.update_asset(found.entity_type, found.entity_id, video.video_id, observe)
            if applied is None:
                logger.info(
                    "video_status_skipped_moved provider=%s video_id=%s entity=%s:%s",
                    provider.value,
                    video.video_id,
                    found.entity_type,
                    found.entity_id,
                )
                continue
            asset, entity = applied
            updated = entity.asset
            if updated is None or updated == asset:
                continue
            changed.append(entity)
            if updated.status is not asset.status:
                increment_counter(f"video_status_transitions_total.{updated.status.value}")
                logger.info(
                    "video_status_changed provider=%s video_id=%s entity=%s:%s from=%s to=%s",
                    provider.value,
                    video.video_id,
                    entity.entity_type,
                    entity.entity_id,
                    asset.status.value,
                    updated.status.value,
                )
        return changed

    async def handle_webhook(
        self,
        provider_name: str,
        headers: Mapping[str, str],
        body: bytes,
        query: Mapping[str, str] | None = None,
        *,
        request_context: dict[str, str | None] | None = None,
    ) -> WebhookOutcome:
        provider = Provider.parse(provider_name)
        if provider is None:
            raise PayloadError(f"unknown provider {provider_name}")
        # ConfigError here: with no secret there is nothing to verify against.
        secret = await self._config.get_webhook_secret(provider)
        try:
            if provider is Provider.CLOUDFLARE:
                webhooks.verify_cloudflare_signature(
                    headers,
                    body,
                    secret,
                    now=self._clock(),
                    tolerance_s=get_settings().webhook_signature_tolerance_s,
                )
            else:
                webhooks.verify_bunny_signature(headers, query or {}, body, secret)
        except SecurityError as exc:
            increment_counter(f"webhook_rejected_total.{provider.value}")
            logger.warning("webhook_rejected provider=%s reason=%s", provider.value, exc)
            await self._audit_rejection(provider, exc, request_context)
            raise

        payload = webhooks.load_payload(body)
        if provider is Provider.CLOUDFLARE:
            video = webhooks.parse_cloudflare_webhook(payload)
        else:
            video = webhooks.parse_bunny_webhook(payload)
        changed = await self.record_observation(provider, video)
        observed = resolve_status(video.ready_to_stream, video.pct_complete)
        if observed is VideoStatus.PENDING and video.failed:
            observed = VideoStatus.FAILED
        logger.info(
            "webhook_processed provider=%s video_id=%s observed=%s updated=%s",
            provider.value,
            video.video_id,
            observed.value,
            len(changed),
        )
        return WebhookOutcome(provider=provider, video_id=video.video_id, status=observed, updated=len(changed))

    async def _audit_rejection(
        self,
        provider: Provider,
        exc: SecurityError,
        request_context: dict[str, str | None] | None,
    ) -> None:
        if self._audit is None:
            return
        context = request_context or {}
        await self._audit(
            event_type="webhook.signature_rejected",
            outcome="failure",
            actor_type="provider",
            actor_id=provider.value,
            resource_type="webhook",
            resource_id=provider.value,
            request_id=context.get("request_id"),
            ip_address=context.get("ip_address"),
            user_agent=context.get("user_agent"),
            metadata={"reason": str(exc)},
            error_code=policy_for(exc).code,
        )

    async def check_status(self, video_id: str, provider: Provider | str | None = None) -> StatusReport:
        entities = await self._metadata.find_by_video_id(video_id)
        cached = next((entity.asset for entity in entities if entity.asset is not None), None)
        resolved = Provider.parse(provider) or (cached.provider if cached else None)
        if resolved is None:
            resolved = await self._config.active_provider()

        if cached is not None and cached.status is VideoStatus.READY:
            return StatusReport(video_id, resolved, cached.status, True, "cache", render_hints(cached))

        fallback = cached or VideoAsset(provider=resolved, video_id=video_id)
        gateway = await self._config.build_gateway(resolved)
        try:
            video = await gateway.get_video(video_id)
        except ProviderError as exc:
            exists = assumes_exists(exc)
            logger.info(
                "video_status_lookup_failed provider=%s video_id=%s error=%s assume_exists=%s",
                resolved.value,
                video_id,
                type(exc).__name__,
                exists,
            )
            return StatusReport(
                video_id,
                resolved,
                fallback.status,
                exists,
                "unavailable",
                render_hints(fallback),
            )
        finally:
            await gateway.aclose()

        await self.record_observation(resolved, video)
        observed = apply_observation(fallback, video)
        return StatusReport(video_id, resolved, observed.status, True, "provider", render_hints(observed))
