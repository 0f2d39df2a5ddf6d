from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from streamhub.core.config import get_settings
from streamhub.core.errors import (
    LicenseApiError,
    LicenseGraceError,
    LicenseKeyFormatError,
    LicenseNotConfiguredError,
)
from streamhub.domain.license import LicenseRecord, LicenseState
from streamhub.services.license.client import LicenseApiClient
from streamhub.services.license.storage import LicenseStorage
from streamhub.services.vault import mask_secret


logger = logging.getLogger(__name__)


def key_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}-[A-Z]+-[A-Z0-9]{{4}}-[A-Z0-9]{{4}}-[A-Z0-9]{{4}}$")


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _license_fields(response: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    # Some products return features nested under license.features, others flat on license.
    license_data = response.get("license") or {}
    if not isinstance(license_data, dict):
        license_data = {}
    features = license_data.get("features", license_data)
    return license_data, features if isinstance(features, dict) else {}


@dataclass(frozen=True)
class LicenseResult:
    ok: bool
    state: LicenseState
    message: str = ""
    code: str | None = None
    record: LicenseRecord | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": self.ok,
            "state": self.state.value,
            "message": self.message,
            "code": self.code,
        }
        if self.record is not None:
            payload["license"] = public_record(self.record)
        return payload


def public_record(record: LicenseRecord) -> dict[str, Any]:
    return {
        "key": mask_secret(record.key, 4),
        "plan": record.plan,
        "features": record.features,
        "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        "activated_at": record.activated_at.isoformat(),
        "last_validated_at": record.last_validated_at.isoformat() if record.last_validated_at else None,
        "state": record.state.value,
    }


class LicenseGate:
    """Activation, periodic validation and the offline grace window.

    ``is_active`` and ``state`` only read the cached record. The license
    server is contacted by ``activate``, ``validate``, ``deactivate`` and by
    ``record_usage`` when a validation is due.
    """

    def __init__(
        self,
        storage: LicenseStorage,
        client: LicenseApiClient,
        *,
        product: str | None = None,
        site_url: str | None = None,
        clock: Callable[[], datetime] | None = None,
        validation_interval: timedelta | None = None,
        usage_threshold: int | None = None,
        grace_period: timedelta | None = None,
        enforced: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._storage = storage
        self._client = client
        self._product = product or settings.license_product
        self._site_url = site_url or settings.site_url or settings.app_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._interval = validation_interval or timedelta(seconds=settings.license_validation_interval_s)
        self._usage_threshold = usage_threshold or settings.license_usage_threshold
        self._grace = grace_period or timedelta(seconds=settings.license_grace_period_s)
        self._enforced = settings.license_enforced if enforced is None else enforced
        self._key_re = key_pattern(settings.license_key_prefix)

    def _params(self, key: str, site_url: str | None = None) -> dict[str, Any]:
        return {"license_key": key, "site_url": site_url or self._site_url, "product": self._product}

    def evaluate(self, record: LicenseRecord | None) -> LicenseState:
        """Gate state from a cached record and the clock alone."""
        if record is None:
            return LicenseState.UNACTIVATED
        now = self._clock()
        if record.state is LicenseState.EXPIRED:
            return LicenseState.EXPIRED
        if record.expires_at is not None and record.expires_at <= now:
            return LicenseState.EXPIRED
        if record.state is LicenseState.GRACE_PERIOD:
            if record.last_validated_at is None or now - record.last_validated_at > self._grace:
                return LicenseState.EXPIRED
            return LicenseState.GRACE_PERIOD
        return LicenseState.ACTIVE

    async def state(self) -> LicenseState:
        return self.evaluate(await self._storage.get())

    async def is_active(self) -> bool:
        if not self._enforced:
            return True
        return await self.state() in {LicenseState.ACTIVE, LicenseState.GRACE_PERIOD}

    def check_key_format(self, key: str) -> None:
        if not self._key_re.match(key):
            raise LicenseKeyFormatError("Invalid license key format.")

    async def activate(self, key: str, site_url: str | None = None) -> LicenseResult:
        key = (key or "").strip().upper()
        try:
            self.check_key_format(key)
        except LicenseKeyFormatError as exc:
            logger.info("license_activation_rejected reason=format")
            return LicenseResult(False, await self.state(), str(exc), "invalid_license_key")

        try:
            response = await self._client.activate(self._params(key, site_url))
        except LicenseApiError as exc:
            logger.warning("license_activation_failed code=%s", exc.code)
            return LicenseResult(False, await self.state(), str(exc), exc.code)

        now = self._clock()
        license_data, features = _license_fields(response)
        record = LicenseRecord(
            key=key,
            plan=license_data.get("plan") or None,
            features=features,
            expires_at=_parse_datetime(license_data.get("expires_at")),
            activated_at=now,
            last_validated_at=now,
            state=LicenseState.ACTIVE,
        )
        await self._storage.save(record)
        await self._storage.mark_validated(now)
        logger.info("license_activated plan=%s", record.plan)
        return LicenseResult(True, LicenseState.ACTIVE, "License activated.", record=record)

    async def should_validate(self) -> bool:
        usage = await self._storage.get_usage()
        if usage.count >= self._usage_threshold:
            return True
        if usage.last_validation is None:
            return True
        return self._clock() - usage.last_validation >= self._interval

    async def validate(self, *, force: bool = False) -> LicenseResult:
        record = await self._storage.get()
        if record is None:
            exc = LicenseNotConfiguredError("License not configured.", code="no_license")
            return LicenseResult(False, LicenseState.UNACTIVATED, str(exc), exc.code)
        if not force and not await self.should_validate():
            return LicenseResult(True, self.evaluate(record), "Validation not due.", record=record)

        try:
            response = await self._client.validate(self._params(record.key))
        except LicenseApiError as exc:
            return await self._validation_failed(record, exc)

        now = self._clock()
        license_data, features = _license_fields(response)
        updated = record.model_copy(
            update={
                "features": features or record.features,
                "plan": license_data.get("plan") or record.plan,
                "expires_at": _parse_datetime(license_data.get("expires_at")) or record.expires_at,
                "last_validated_at": now,
                "state": LicenseState.ACTIVE,
                "last_error": None,
            }
        )
        await self._storage.save(updated)
        await self._storage.mark_validated(now)
        logger.info("license_validated plan=%s", updated.plan)
        return LicenseResult(True, self.evaluate(updated), "License valid.", record=updated)

    async def _validation_failed(self, record: LicenseRecord, exc: LicenseApiError) -> LicenseResult:
        now = self._clock()
        last_ok = record.last_validated_at
        within_grace = last_ok is not None and now - last_ok <= self._grace
        if within_grace:
            grace = LicenseGraceError(f"License validation failed; grace period active: {exc}", code="grace_period")
            logger.warning(
                "license_validation_grace code=%s transient=%s last_validated_at=%s", exc.code, exc.transient, last_ok
            )
            updated = record.model_copy(update={"state": LicenseState.GRACE_PERIOD, "last_error": exc.code})
            await self._storage.save(updated)
            return LicenseResult(True, LicenseState.GRACE_PERIOD, str(grace), grace.code, record=updated)

        logger.warning("license_validation_expired code=%s transient=%s", exc.code, exc.transient)
        updated = record.model_copy(update={"state": LicenseState.EXPIRED, "last_error": exc.code})
        await self._storage.save(updated)
        return LicenseResult(False, LicenseState.EXPIRED, str(exc), exc.code, record=updated)

    async def record_usage(self) -> None:
        await self._storage.increment_usage()
        if await self._storage.get() is None:
            return
        if await self.should_validate():
            await self.validate(force=True)

    async def deactivate(self) -> LicenseResult:
        record = await self._storage.get()
        if record is None:
            return LicenseResult(False, LicenseState.UNACTIVATED, "License not configured.", "no_license")
        try:
            await self._client.deactivate(self._params(record.key))
        except LicenseApiError as exc:
            logger.warning("license_deactivation_failed code=%s", exc.code)
            return LicenseResult(False, self.evaluate(record), str(exc), exc.code, record=record)
        await self._storage.clear()
        logger.info("license_deactivated")
        return LicenseResult(True, LicenseState.UNACTIVATED, "License deactivated.")

    async def features(self) -> dict[str, Any]:
        record = await self._storage.get()
        return dict(record.features) if record else {}

    async def is_feature_enabled(self, name: str) -> bool:
        if not await self.is_active():
            return False
        if not self._enforced:
            return True
        return bool((await self.features()).get(name, False))

    async def status(self) -> dict[str, Any]:
        record = await self._storage.get()
        usage = await self._storage.get_usage()
        return {
            "state": self.evaluate(record).value,
            "active": await self.is_active(),
            "license": public_record(record) if record else None,
            "usage_count": usage.count,
            "last_validation": usage.last_validation.isoformat() if usage.last_validation else None,
        }
