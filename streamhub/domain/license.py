from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LicenseState(str, Enum):
    UNACTIVATED = "unactivated"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    EXPIRED = "expired"


class LicenseRecord(BaseModel):
    """Cached activation, stored encrypted."""

    model_config = ConfigDict(extra="ignore")

    key: str
    plan: str | None = None
    features: dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime | None = None
    activated_at: datetime
    last_validated_at: datetime | None = None
    # Last known gate state; EXPIRED once a failed validation outlives the grace window.
    state: LicenseState = LicenseState.ACTIVE
    last_error: str | None = None
