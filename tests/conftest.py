"""Shared test fixtures."""

import json
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from core import db
from core.models import Entry
from pipeline.models import ScriptLine

LONG_CONTENT = "This is a long enough article content that should pass validation. " * 50


@pytest.fixture
def database():
    """In-memory SQLite database swapped in for the configured one."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with patch.object(db, "_engine", engine), patch.object(db, "_session_factory", None):
        db.init_db()
        yield engine
    engine.dispose()


@pytest.fixture
def file_database(tmp_path):
    """File-backed SQLite database for tests that need separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    with patch.object(db, "_engine", engine), patch.object(db, "_session_factory", None):
        db.init_db()
        yield engine
    engine.dispose()


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "temp"
    path.mkdir()
    return path


@pytest.fixture
def pricing_file(tmp_path):
    path = tmp_path / "pricing.json"
    path.write_text(
        json.dumps(
            {
                "openai": {
                    "gpt-4o": {"input_per_1m": 2.5, "output_per_1m": 10.0},
                    "gpt-4o-mini-tts": {"chars_per_1m": 15.0},
                },
                "anthropic": {
                    "claude-sonnet-4-5": {"input_per_1m": 3.0, "output_per_1m": 15.0},
                },
            }
        )
    )
    return path


@pytest.fixture
def sample_script() -> tuple[ScriptLine, ...]:
    return (
        ScriptLine(speaker="NARRATOR", text="Welcome to the podcast", instruction="Clear and engaging"),
        ScriptLine(speaker="NARRATOR", text="This is the main content", instruction="Clear and engaging"),
    )


@pytest.fixture
def update_entry(database):
    """Set stored columns on an entry directly."""

    def _update(entry_id: str, **values) -> Entry:
        with db.get_session() as session:
            entry = session.get(Entry, entry_id)
            for key, value in values.items():
                setattr(entry, key, value)
            session.commit()
            return entry

    return _update
