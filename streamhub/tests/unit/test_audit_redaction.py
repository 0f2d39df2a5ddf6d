from __future__ import annotations

from streamhub.services.audit import build_event, sanitize_metadata


def test_audit_redacts_credentials_and_signatures() -> None:
    # Provider credentials and webhook signatures never reach the audit table.
    payload = {
        "api_token": "cf-token",
        "api_key": "bunny-key",
        "webhook_secret": "whsec",
        "license_key": "FCHUB-PRO-AB12-CD34-EF56",
        "nested": {"signature": "sig1=abc", "items": [{"authorization": "Bearer abc"}]},
        "reason": "signature mismatch",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["api_token"] == "[REDACTED]"
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["webhook_secret"] == "[REDACTED]"
    assert sanitized["license_key"] == "[REDACTED]"
    assert sanitized["nested"]["signature"] == "[REDACTED]"
    assert sanitized["nested"]["items"][0]["authorization"] == "[REDACTED]"
    assert sanitized["reason"] == "signature mismatch"


def test_build_event_sanitizes_metadata() -> None:
    event = build_event(
        event_type="webhook.signature_rejected",
        outcome="failure",
        actor_type="provider",
        metadata={"secret": "x", "reason": "stale"},
    )
    assert event.metadata_json == {"secret": "[REDACTED]", "reason": "stale"}
    assert event.occurred_at is not None
