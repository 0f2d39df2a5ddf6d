from __future__ import annotations

from streamhub.domain.stream_config import CONFIG_VERSION, StreamConfig, migrate_config


def test_empty_record_yields_defaults() -> None:
    config = migrate_config(None)
    assert config == StreamConfig()
    assert config.version == CONFIG_VERSION
    assert config.provider == "cloudflare"
    assert config.upload.allowed_formats == ["mp4", "mov", "webm"]
    assert config.comment_video.enabled is True


def test_unversioned_record_is_migrated_from_v1() -> None:
    raw = {
        "provider": "bunny_stream",
        "bunny": {"stream_library_id": 77, "api_key": "cipher"},
        "max_duration": 120,
        "legacy_flag": True,
    }
    config = migrate_config(raw)
    assert config.version == 2
    assert config.provider == "bunny"
    assert config.bunny.library_id == "77"
    assert config.bunny.api_key == "cipher"
    assert config.upload.max_duration_s == 120
    # Untouched defaults survive the merge.
    assert config.upload.max_file_size_mb == 500
    assert config.comment_video.max_duration_s == 60


def test_current_record_merges_over_defaults() -> None:
    raw = {"version": 2, "cloudflare": {"account_id": "acct"}, "upload": {"max_file_size_mb": 50}}
    config = migrate_config(raw)
    assert config.cloudflare.account_id == "acct"
    assert config.cloudflare.enabled is False
    assert config.upload.max_file_size_mb == 50
    assert config.upload.max_duration_s == 3600


def test_section_lookup() -> None:
    config = StreamConfig()
    assert config.section("cloudflare") is config.cloudflare
    assert config.section("bunny") is config.bunny
