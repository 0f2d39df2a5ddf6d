from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from streamhub.core.errors import (
    ConcurrentUpdateError,
    ConfigError,
    DefinitiveProviderError,
    LicenseError,
    LicenseGraceError,
    PayloadError,
    ProviderError,
    ProviderRequestError,
    SecurityError,
    StreamHubError,
    TransientProviderError,
    VaultError,
)


class Assumption(str, Enum):
    # What the engine believes about the remote asset after the error.
    ASSUME_EXISTS = "assume_exists"
    ASSUME_GONE = "assume_gone"
    NOT_APPLICABLE = "not_applicable"


class Surface(str, Enum):
    # How the error leaves the engine.
    SWALLOW = "swallow"
    RESULT = "result"
    REJECT = "reject"
    RAISE = "raise"


@dataclass(frozen=True)
class ErrorPolicy:
    error: type[StreamHubError]
    code: str
    http_status: int
    assumption: Assumption
    surface: Surface
    audited: bool = False


# Ordered most specific first; policy_for() returns the first isinstance match.
ERROR_POLICIES: tuple[ErrorPolicy, ...] = (
    ErrorPolicy(DefinitiveProviderError, "PROVIDER_NOT_FOUND", 404, Assumption.ASSUME_GONE, Surface.SWALLOW),
    ErrorPolicy(TransientProviderError, "PROVIDER_UNAVAILABLE", 503, Assumption.ASSUME_EXISTS, Surface.SWALLOW),
    ErrorPolicy(ProviderRequestError, "PROVIDER_REJECTED", 502, Assumption.ASSUME_EXISTS, Surface.SWALLOW),
    ErrorPolicy(ProviderError, "PROVIDER_ERROR", 502, Assumption.ASSUME_EXISTS, Surface.SWALLOW),
    ErrorPolicy(SecurityError, "SECURITY_REJECTED", 401, Assumption.NOT_APPLICABLE, Surface.REJECT, audited=True),
    ErrorPolicy(LicenseGraceError, "LICENSE_GRACE", 200, Assumption.NOT_APPLICABLE, Surface.RESULT),
    ErrorPolicy(LicenseError, "LICENSE_ERROR", 403, Assumption.NOT_APPLICABLE, Surface.RESULT),
    ErrorPolicy(VaultError, "VAULT_ERROR", 500, Assumption.NOT_APPLICABLE, Surface.RAISE),
    ErrorPolicy(ConfigError, "CONFIG_ERROR", 500, Assumption.NOT_APPLICABLE, Surface.RESULT),
    ErrorPolicy(PayloadError, "BAD_REQUEST", 400, Assumption.NOT_APPLICABLE, Surface.REJECT),
    ErrorPolicy(ConcurrentUpdateError, "CONFLICT", 409, Assumption.NOT_APPLICABLE, Surface.RAISE),
    ErrorPolicy(StreamHubError, "INTERNAL_ERROR", 500, Assumption.NOT_APPLICABLE, Surface.RAISE),
)


def policy_for(exc: BaseException) -> ErrorPolicy:
    for policy in ERROR_POLICIES:
        if isinstance(exc, policy.error):
            return policy
    return ERROR_POLICIES[-1]


def assumes_exists(exc: BaseException) -> bool:
    return policy_for(exc).assumption is Assumption.ASSUME_EXISTS
