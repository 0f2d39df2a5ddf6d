from __future__ import annotations


class StreamHubError(Exception):
    """Base error for streamhub."""


class ConfigError(StreamHubError):
    """Missing or invalid provider/service configuration."""


class ConcurrentUpdateError(StreamHubError):
    """A stored record changed between read and write."""


class VaultError(StreamHubError):
    """Encryption or decryption failed; callers must not fall back to plaintext."""


class ProviderError(StreamHubError):
    """Remote video provider call failed."""

    def __init__(self, message: str, *, status_code: int | None = None, provider: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class TransientProviderError(ProviderError):
    """Network failure, timeout or 5xx; the asset is assumed to still exist."""


class IntegrationUnavailableError(TransientProviderError):
    """Circuit breaker is open for an integration."""


class DefinitiveProviderError(ProviderError):
    """Provider confirmed the asset does not exist."""


class ProviderRequestError(ProviderError):
    """Provider rejected the request (non-404 4xx)."""


class SecurityError(StreamHubError):
    """Untrusted input failed verification."""


class WebhookSignatureError(SecurityError):
    """Webhook signature missing, malformed, stale or mismatched."""


class LicenseKeyFormatError(SecurityError):
    """License key does not match the expected shape."""


class LicenseError(StreamHubError):
    """License operation failed."""

    def __init__(self, message: str, *, code: str = "license_error") -> None:
        super().__init__(message)
        self.code = code


class LicenseApiError(LicenseError):
    """License server returned an error or could not be reached."""

    def __init__(self, message: str, *, code: str = "api_error", transient: bool = False) -> None:
        super().__init__(message, code=code)
        self.transient = transient


class LicenseGraceError(LicenseError):
    """Validation failed but the cached license is still inside the grace window."""


class LicenseNotConfiguredError(LicenseError):
    """No license has been activated."""


class PayloadError(StreamHubError):
    """Inbound payload is not usable (malformed JSON, missing ids)."""
