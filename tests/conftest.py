from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bugtracker.config import Settings
from bugtracker.database import Database


@pytest.fixture()
def database(tmp_path: Path):
    db = Database(tmp_path / "bugtracker.sqlite3")
    db.initialize()
    yield db
    db.close()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(database_path=tmp_path / "bugtracker.sqlite3", token_secret="tests-secret-key")
