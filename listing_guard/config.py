"""Configuration for the moderation pipeline.

Values come from built-in defaults, then an optional YAML file, then
``LISTING_GUARD_*`` environment variables (``ANTHROPIC_API_KEY`` for the key).
Durations are expressed in seconds.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from listing_guard.llm.client import DEFAULT_MODEL

ENV_PREFIX = "LISTING_GUARD_"


@dataclass
class ModerationConfig:
    """Tunables for image fetch, classifier, cache, idempotency, escalation and publish limits."""

    model: str = DEFAULT_MODEL
    api_key: str = ""
    classifier_timeout: float = 20.0
    max_images: int = 5
    max_image_mb: int = 8
    image_fetch_concurrency: int = 3
    image_fetch_timeout: float = 5.0
    image_fetch_attempts: int = 2
    cache_ttl: float = 2 * 60 * 60
    idempotency_ttl: float = 24 * 60 * 60
    auto_flag_threshold: int = 3
    publish_user_limit: int = 10
    publish_ip_limit: int = 30
    publish_window: float = 60.0
    data_dir: str = str(Path.home() / ".listing_guard")
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = ""

    def __post_init__(self) -> None:
        # Non-positive tunables fall back to their defaults.
        defaults = ModerationConfig.__dataclass_fields__
        for name in (
            "classifier_timeout",
            "max_images",
            "max_image_mb",
            "image_fetch_concurrency",
            "image_fetch_timeout",
            "image_fetch_attempts",
            "cache_ttl",
            "idempotency_ttl",
            "auto_flag_threshold",
            "publish_user_limit",
            "publish_ip_limit",
            "publish_window",
        ):
            if getattr(self, name) <= 0:
                setattr(self, name, defaults[name].default)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from)


def _coerce(name: str, raw: Any) -> Any:
    field_type = ModerationConfig.__dataclass_fields__[name].type
    if field_type == "int":
        return int(raw)
    if field_type == "float":
        return float(raw)
    return str(raw)


def load_config(path: str | Path | None = None, env: Optional[dict[str, str]] = None) -> ModerationConfig:
    """Build a :class:`ModerationConfig` from defaults, YAML and the environment."""
    env = os.environ if env is None else env
    known = {f.name for f in fields(ModerationConfig)}
    values: dict[str, Any] = {}

    if path is not None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        for name, raw in data.items():
            values[name] = _coerce(name, raw)

    for name in known:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = _coerce(name, raw)

    if not values.get("api_key"):
        values["api_key"] = env.get("ANTHROPIC_API_KEY", "")

    return ModerationConfig(**values)
