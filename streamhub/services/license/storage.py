from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError

from streamhub.core.errors import ConcurrentUpdateError, VaultError
from streamhub.domain.license import LicenseRecord
from streamhub.persistence.stores import SettingsStore
from streamhub.services.vault import CredentialVault


logger = logging.getLogger(__name__)

LICENSE_NAMESPACE = "license"
RECORD_KEY = "record"
USAGE_KEY = "usage"


@dataclass(frozen=True)
class UsageState:
    count: int = 0
    last_validation: datetime | None = None


class LicenseStorage:
    """Encrypted license cache plus the validator's usage counters."""

    def __init__(self, store: SettingsStore, vault: CredentialVault) -> None:
        self._store = store
        self._vault = vault

    async def get(self) -> LicenseRecord | None:
        stored = await self._store.get(LICENSE_NAMESPACE, RECORD_KEY)
        if stored is None or not stored.value:
            return None
        try:
            raw = self._vault.open_blob(str(stored.value))
            return LicenseRecord.model_validate(json.loads(raw))
        except (VaultError, ValueError, ValidationError):
            # Unreadable cache reads as "not activated".
            logger.warning("license_cache_unreadable")
            return None

    async def save(self, record: LicenseRecord) -> None:
        sealed = self._vault.seal_blob(record.model_dump_json())
        await self._store.put(LICENSE_NAMESPACE, RECORD_KEY, sealed)

    async def clear(self) -> None:
        await self._store.delete(LICENSE_NAMESPACE, RECORD_KEY)
        await self._store.delete(LICENSE_NAMESPACE, USAGE_KEY)

    async def get_usage(self) -> UsageState:
        stored = await self._store.get(LICENSE_NAMESPACE, USAGE_KEY)
        if stored is None or not isinstance(stored.value, dict):
            return UsageState()
        last = stored.value.get("last_validation")
        return UsageState(
            count=int(stored.value.get("count") or 0),
            last_validation=datetime.fromisoformat(last) if last else None,
        )

    async def increment_usage(self, attempts: int = 3) -> UsageState:
        for _ in range(attempts):
            stored = await self._store.get(LICENSE_NAMESPACE, USAGE_KEY)
            value = dict(stored.value) if stored is not None and isinstance(stored.value, dict) else {}
            value["count"] = int(value.get("count") or 0) + 1
            try:
                await self._store.put(
                    LICENSE_NAMESPACE,
                    USAGE_KEY,
                    value,
                    expected_version=stored.version if stored is not None else 0,
                )
            except ConcurrentUpdateError:
                continue
            return await self.get_usage()
        # Counter contention only delays the next usage-triggered validation.
        logger.info("license_usage_increment_contended")
        return await self.get_usage()

    async def mark_validated(self, when: datetime) -> None:
        await self._store.put(LICENSE_NAMESPACE, USAGE_KEY, {"count": 0, "last_validation": when.isoformat()})
