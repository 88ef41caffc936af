"""Test fixtures for Agent Sources."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("AGS_DB_PATH", str(tmp_path / "sources.db"))
    monkeypatch.setenv("AGS_STORAGE_ROOT", str(tmp_path))
    monkeypatch.setenv("AGS_SIGNING_SECRET", "test-secret")
    monkeypatch.delenv("AGS_CONFIG", raising=False)
    monkeypatch.delenv("AGS_PUBLIC_BASE_URL", raising=False)
    monkeypatch.delenv("AGS_DEFAULT_STORAGE_STRATEGY", raising=False)

    from agent_sources.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture
def settings(tmp_path: Path):
    from agent_sources.core.config import Settings

    return Settings(db_path=tmp_path / "unit.db", signing_secret="test-secret")


@pytest.fixture
def db(tmp_path: Path):
    from agent_sources.db.sqlite import SQLiteDatabase

    database = SQLiteDatabase(tmp_path / "unit.db")
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture(scope="session")
def search_output() -> str:
    return (
        "File: report_1c6af286_20250616_105837.pdf\n"
        "File_ID: file-report\n"
        "Relevance: 0.9\n"
        "Page: 2\n"
        "Content: Quarterly revenue grew.\n"
        "\n"
        "File: report_1c6af286_20250616_105837.pdf\n"
        "File_ID: file-report\n"
        "Relevance: 0.6\n"
        "Page: 5\n"
        "Content: Outlook for next year.\n"
        "\n"
        "File: notes.txt\n"
        "File_ID: file-notes\n"
        "Relevance: 0.8\n"
        "Page: 1\n"
        "Content: Meeting notes."
    )
