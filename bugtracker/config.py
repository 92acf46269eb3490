"""Configuration management for the bug tracker service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import resolve_database_path
from .identity import DEFAULT_MIN_PASSWORD_LENGTH
from .tokens import DEFAULT_TOKEN_TTL

_KNOWN_KEYS = {"database_path", "token_secret", "token_ttl_days", "password_min_length", "log_level"}

_ENV_KEYS = {
    "database_path": "BUGTRACKER_DB_PATH",
    "token_secret": "BUGTRACKER_TOKEN_SECRET",
    "token_ttl_days": "BUGTRACKER_TOKEN_TTL_DAYS",
    "password_min_length": "BUGTRACKER_PASSWORD_MIN_LENGTH",
    "log_level": "BUGTRACKER_LOG_LEVEL",
}


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    database_path: Path
    token_secret: str
    token_ttl: timedelta = DEFAULT_TOKEN_TTL
    password_min_length: int = DEFAULT_MIN_PASSWORD_LENGTH
    log_level: str = "INFO"

    @staticmethod
    def from_dict(data: Mapping[str, object], *, require_secret: bool = True) -> "Settings":
        """Create :class:`Settings` from merged raw values.

        Database maintenance commands never sign tokens, so they may pass
        ``require_secret=False`` and receive an empty ``token_secret``.
        """

        unknown = set(data) - _KNOWN_KEYS
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        secret = data.get("token_secret") or ""
        if require_secret and not str(secret).strip():
            raise ValueError(
                "A token secret is required. Set BUGTRACKER_TOKEN_SECRET or token_secret in the config file."
            )

        raw_path = data.get("database_path")
        ttl_days = int(data.get("token_ttl_days", DEFAULT_TOKEN_TTL.days))
        if ttl_days < 1:
            raise ValueError("token_ttl_days must be at least 1")
        min_length = int(data.get("password_min_length", DEFAULT_MIN_PASSWORD_LENGTH))
        if min_length < 1:
            raise ValueError("password_min_length must be at least 1")
        log_level = str(data.get("log_level", "INFO")).upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"Unknown log level '{log_level}'")

        return Settings(
            database_path=resolve_database_path(str(raw_path) if raw_path else None),
            token_secret=str(secret).strip(),
            token_ttl=timedelta(days=ttl_days),
            password_min_length=min_length,
            log_level=log_level,
        )


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "bugtracker.yaml").resolve(strict=False)


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load raw settings from a YAML file; a missing file yields no settings."""
    if not config_path.exists():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    *,
    require_secret: bool = True,
) -> Settings:
    """Merge defaults, the YAML file and ``BUGTRACKER_*`` environment variables."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("BUGTRACKER_CONFIG"))
    data: Dict[str, object] = dict(load_config_file(path))
    for key, env_name in _ENV_KEYS.items():
        value = env.get(env_name)
        if value is not None and value.strip():
            data[key] = value.strip()
    return Settings.from_dict(data, require_secret=require_secret)


__all__ = ["Settings", "load_config_file", "load_settings", "resolve_config_path"]
