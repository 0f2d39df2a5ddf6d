from __future__ import annotations

import pytest

from streamhub.core.errors import (
    ConcurrentUpdateError,
    ConfigError,
    DefinitiveProviderError,
    IntegrationUnavailableError,
    LicenseApiError,
    LicenseGraceError,
    LicenseKeyFormatError,
    PayloadError,
    ProviderError,
    ProviderRequestError,
    StreamHubError,
    TransientProviderError,
    VaultError,
    WebhookSignatureError,
)
from streamhub.services.policy import Assumption, Surface, assumes_exists, policy_for


@pytest.mark.parametrize(
    ("error", "code", "status", "assumption"),
    [
        (DefinitiveProviderError("gone"), "PROVIDER_NOT_FOUND", 404, Assumption.ASSUME_GONE),
        (TransientProviderError("timeout"), "PROVIDER_UNAVAILABLE", 503, Assumption.ASSUME_EXISTS),
        (IntegrationUnavailableError("open"), "PROVIDER_UNAVAILABLE", 503, Assumption.ASSUME_EXISTS),
        (ProviderRequestError("400"), "PROVIDER_REJECTED", 502, Assumption.ASSUME_EXISTS),
        (ProviderError("other"), "PROVIDER_ERROR", 502, Assumption.ASSUME_EXISTS),
        (WebhookSignatureError("bad"), "SECURITY_REJECTED", 401, Assumption.NOT_APPLICABLE),
        (LicenseKeyFormatError("bad"), "SECURITY_REJECTED", 401, Assumption.NOT_APPLICABLE),
        (LicenseGraceError("grace"), "LICENSE_GRACE", 200, Assumption.NOT_APPLICABLE),
        (LicenseApiError("nope"), "LICENSE_ERROR", 403, Assumption.NOT_APPLICABLE),
        (VaultError("bad"), "VAULT_ERROR", 500, Assumption.NOT_APPLICABLE),
        (ConfigError("missing"), "CONFIG_ERROR", 500, Assumption.NOT_APPLICABLE),
        (PayloadError("junk"), "BAD_REQUEST", 400, Assumption.NOT_APPLICABLE),
        (ConcurrentUpdateError("race"), "CONFLICT", 409, Assumption.NOT_APPLICABLE),
        (StreamHubError("other"), "INTERNAL_ERROR", 500, Assumption.NOT_APPLICABLE),
    ],
)
def test_policy_table(error: Exception, code: str, status: int, assumption: Assumption) -> None:
    policy = policy_for(error)
    assert policy.code == code
    assert policy.http_status == status
    assert policy.assumption is assumption


def test_only_security_rejections_are_audited() -> None:
    assert policy_for(WebhookSignatureError("bad")).audited is True
    assert policy_for(WebhookSignatureError("bad")).surface is Surface.REJECT
    assert policy_for(TransientProviderError("x")).audited is False


def test_unknown_errors_fall_back_to_internal() -> None:
    assert policy_for(RuntimeError("boom")).code == "INTERNAL_ERROR"
    assert assumes_exists(RuntimeError("boom")) is False


def test_existence_assumption() -> None:
    assert assumes_exists(TransientProviderError("timeout")) is True
    assert assumes_exists(DefinitiveProviderError("gone")) is False
