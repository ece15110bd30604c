"""Tests for config loading."""

import pytest

from listing_guard.config import ModerationConfig, load_config


def test_defaults():
    config = load_config(env={})
    assert config.max_images == 5
    assert config.image_fetch_concurrency == 3
    assert config.image_fetch_attempts == 2
    assert config.cache_ttl == 7200
    assert config.idempotency_ttl == 86400
    assert config.auto_flag_threshold == 3
    assert config.api_key == ""
    assert not config.smtp_configured


def test_yaml_then_env(tmp_path):
    path = tmp_path / "guard.yaml"
    path.write_text("max_images: 3\ncache_ttl: 60\nsmtp_host: smtp.example.com\n")

    config = load_config(path, env={"LISTING_GUARD_CACHE_TTL": "120", "ANTHROPIC_API_KEY": "sk-test"})
    assert config.max_images == 3
    assert config.cache_ttl == 120.0
    assert config.smtp_host == "smtp.example.com"
    assert config.api_key == "sk-test"


def test_explicit_api_key_wins(tmp_path):
    config = load_config(env={"LISTING_GUARD_API_KEY": "sk-own", "ANTHROPIC_API_KEY": "sk-shared"})
    assert config.api_key == "sk-own"


def test_unknown_key_rejected(tmp_path):
    path = tmp_path / "guard.yaml"
    path.write_text("max_imgs: 3\n")
    with pytest.raises(ValueError, match="max_imgs"):
        load_config(path, env={})


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "guard.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(path, env={})


def test_non_positive_values_fall_back():
    config = ModerationConfig(max_images=0, image_fetch_timeout=-1, auto_flag_threshold=0)
    assert config.max_images == 5
    assert config.image_fetch_timeout == 5.0
    assert config.auto_flag_threshold == 3


def test_env_non_positive_falls_back():
    config = load_config(env={"LISTING_GUARD_IMAGE_FETCH_CONCURRENCY": "0"})
    assert config.image_fetch_concurrency == 3


def test_publish_limits_from_env():
    config = load_config(env={"LISTING_GUARD_PUBLISH_USER_LIMIT": "4", "LISTING_GUARD_PUBLISH_WINDOW": "30"})
    assert config.publish_user_limit == 4
    assert config.publish_ip_limit == 30
    assert config.publish_window == 30.0

    fallback = ModerationConfig(publish_ip_limit=0, publish_window=-5)
    assert fallback.publish_ip_limit == 30
    assert fallback.publish_window == 60.0
