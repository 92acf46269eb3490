from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from bugtracker.config import load_settings


def _write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "bugtracker.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_with_secret_from_environment(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "missing.yaml", environ={"BUGTRACKER_TOKEN_SECRET": "s3cret"})

    assert settings.token_secret == "s3cret"
    assert settings.token_ttl == timedelta(days=30)
    assert settings.password_min_length == 8
    assert settings.log_level == "INFO"
    assert settings.database_path.name == "bugtracker.sqlite3"


def test_yaml_values_are_loaded(tmp_path: Path) -> None:
    config = _write_config(
        tmp_path,
        f"""
database_path: {tmp_path / 'custom.sqlite3'}
token_secret: from-file
token_ttl_days: 7
password_min_length: 12
log_level: debug
""",
    )

    settings = load_settings(config, environ={})

    assert settings.database_path == (tmp_path / "custom.sqlite3").resolve()
    assert settings.token_secret == "from-file"
    assert settings.token_ttl == timedelta(days=7)
    assert settings.password_min_length == 12
    assert settings.log_level == "DEBUG"


def test_environment_overrides_file(tmp_path: Path) -> None:
    config = _write_config(tmp_path, "token_secret: from-file\ntoken_ttl_days: 7\n")

    settings = load_settings(
        config,
        environ={"BUGTRACKER_TOKEN_SECRET": "from-env", "BUGTRACKER_TOKEN_TTL_DAYS": "2"},
    )

    assert settings.token_secret == "from-env"
    assert settings.token_ttl == timedelta(days=2)


def test_config_path_from_environment(tmp_path: Path) -> None:
    config = _write_config(tmp_path, "token_secret: pointed-at\n")
    settings = load_settings(environ={"BUGTRACKER_CONFIG": str(config)})
    assert settings.token_secret == "pointed-at"


def test_missing_secret_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_settings(tmp_path / "missing.yaml", environ={})


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    config = _write_config(tmp_path, "token_secret: x\nmongodb_uri: mongodb://localhost\n")
    with pytest.raises(ValueError):
        load_settings(config, environ={})


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    config = _write_config(tmp_path, "- just\n- a list\n")
    with pytest.raises(ValueError):
        load_settings(config, environ={})


def test_secret_may_be_omitted_when_not_required(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "missing.yaml", environ={}, require_secret=False)
    assert settings.token_secret == ""
