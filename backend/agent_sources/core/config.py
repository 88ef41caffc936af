"""Settings for link issuance, citation recording and prefetch.

Values come from three layers, later ones winning: field defaults, a YAML file
(`AGS_CONFIG` or ~/.config/agent-sources/config.yaml) and `AGS_*` environment
variables named after the flat field, e.g. `AGS_PREFETCH_THRESHOLD=0.3`.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "AGS_"
DEFAULT_CONFIG_PATH = Path("~/.config/agent-sources/config.yaml")
DEFAULT_SIGNING_SECRET = "change-me"

# YAML section -> {key in section: Settings field}
YAML_SECTIONS: Mapping[str, Mapping[str, str]] = {
    "storage": {
        "db_path": "db_path",
        "default_strategy": "default_storage_strategy",
        "object_store_endpoint": "object_store_endpoint",
        "signing_secret": "signing_secret",
        "root": "storage_root",
    },
    "links": {
        "expiry_minutes": "signed_url_expiry_minutes",
        "sign_timeout_seconds": "sign_timeout_seconds",
        "public_base_url": "public_base_url",
        "batch_limit": "batch_url_limit",
        "batch_concurrency": "batch_concurrency",
    },
    "citations": {
        "max_file_search_results": "max_file_search_results",
        "retention_days": "citation_retention_days",
    },
    "audit": {"retention_days": "audit_retention_days"},
    "prefetch": {
        "enabled": "prefetch_enabled",
        "max_concurrent": "max_concurrent_prefetch",
        "threshold": "prefetch_threshold",
        "cache_ttl_seconds": "prefetch_cache_ttl_seconds",
        "cache_max_entries": "prefetch_cache_max_entries",
        "error_cooldown_seconds": "prefetch_error_cooldown_seconds",
        "sweep_interval_seconds": "prefetch_sweep_interval_seconds",
        "behavior_idle_seconds": "prefetch_behavior_idle_seconds",
    },
}


class Settings(BaseModel):
    db_path: Path = Field(default=Path.home() / ".agent-sources" / "sources.db")
    default_storage_strategy: str | None = None
    object_store_endpoint: str = "http://127.0.0.1:9000"
    signing_secret: str = DEFAULT_SIGNING_SECRET
    # Locally stored files must resolve inside this directory to be registered or served.
    storage_root: Path = Field(default=Path.home() / ".agent-sources" / "files")

    signed_url_expiry_minutes: int = Field(default=5, ge=1, le=7 * 24 * 60)
    sign_timeout_seconds: float = Field(default=5.0, gt=0)
    public_base_url: str | None = None
    batch_url_limit: int = Field(default=20, ge=1)
    batch_concurrency: int = Field(default=3, ge=1)

    max_file_search_results: int = Field(default=10, ge=1)
    citation_retention_days: int = Field(default=30, ge=1)
    audit_retention_days: int = Field(default=90, ge=1)

    prefetch_enabled: bool = True
    max_concurrent_prefetch: int = Field(default=3, ge=1)
    prefetch_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    prefetch_cache_ttl_seconds: int = Field(default=5 * 60, ge=1)
    prefetch_cache_max_entries: int = Field(default=500, ge=1)
    prefetch_error_cooldown_seconds: int = Field(default=60, ge=0)
    prefetch_sweep_interval_seconds: int = Field(default=60, ge=1)
    prefetch_behavior_idle_seconds: int = Field(default=6 * 60 * 60, ge=1)

    model_config = {"validate_assignment": True, "extra": "ignore"}

    @field_validator("db_path", "storage_root", mode="before")
    @classmethod
    def _as_path(cls, value: Any) -> Path:
        if not isinstance(value, (str, Path)):
            raise TypeError("paths must be a path or string")
        return Path(value).expanduser()

    @property
    def uses_default_signing_secret(self) -> bool:
        return self.signing_secret == DEFAULT_SIGNING_SECRET

    @field_validator("public_base_url", "object_store_endpoint", mode="before")
    @classmethod
    def _no_trailing_slash(cls, value: Any) -> Any:
        return (value.rstrip("/") or None) if isinstance(value, str) else value

    @property
    def signed_url_expiry_seconds(self) -> int:
        return self.signed_url_expiry_minutes * 60

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        data: dict[str, Any] = {}
        config_path = path.expanduser() if path is not None else config_file_path()
        if config_path is not None and config_path.exists():
            data.update(settings_from_document(yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}))
        data.update(settings_from_env(os.environ))
        return cls(**data)


def config_file_path() -> Path | None:
    explicit = os.environ.get(f"{ENV_PREFIX}CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    default = DEFAULT_CONFIG_PATH.expanduser()
    return default if default.exists() else None


def settings_from_document(document: Mapping[str, Any]) -> dict[str, Any]:
    """Top-level keys may name a field directly; sections go through YAML_SECTIONS."""
    values: dict[str, Any] = {}
    for name, value in document.items():
        section = YAML_SECTIONS.get(name)
        if section is not None and isinstance(value, Mapping):
            values.update((section[key], item) for key, item in value.items() if key in section)
        elif name in Settings.model_fields:
            values[name] = value
    return values


def settings_from_env(environ: Mapping[str, str]) -> dict[str, str]:
    fields = Settings.model_fields
    return {
        key[len(ENV_PREFIX) :].lower(): value
        for key, value in environ.items()
        if key.startswith(ENV_PREFIX) and key[len(ENV_PREFIX) :].lower() in fields
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings", "settings_from_document", "settings_from_env"]
