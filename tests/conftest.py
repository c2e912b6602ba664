"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import pytest_asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import get_settings  # noqa: E402
from helix.core.state import DistractorLevel, PositionEntry, TubeState, UserProgressState  # noqa: E402
from helix.persistence import database  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (local SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def fixed_clock():
    """Clock returning a constant time."""
    moment = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return lambda: moment


@pytest.fixture
def make_tube():
    """Build a TubeState from (position, stitch_id, skip, level, order) tuples."""

    def _make(thread_id, *entries):
        return TubeState(
            thread_id=thread_id,
            positions={
                position: PositionEntry(
                    stitch_id=stitch_id,
                    skip_number=skip,
                    distractor_level=DistractorLevel(level),
                    order=order,
                )
                for position, stitch_id, skip, level, order in entries
            },
        )

    return _make


@pytest.fixture
def three_tube_state(make_tube, fixed_clock):
    """Three tubes of five stitches each, tube 1 active."""
    tubes = {
        number: make_tube(
            f"thread-T{number}-001",
            *[
                (index, f"stitch-T{number}-001-{index + 1:02d}", 1, "L1", index + 1)
                for index in range(5)
            ],
        )
        for number in (1, 2, 3)
    }
    return UserProgressState(user_id="user-1", tubes=tubes, active_tube_number=1, last_updated=fixed_clock())


@pytest.fixture
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a temporary database and local store."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}")
    monkeypatch.setenv("LOCAL_STORAGE_PATH", str(tmp_path / "local_storage.db"))
    monkeypatch.setenv("CONTENT_API_URL", "http://127.0.0.1:9")
    monkeypatch.setenv("PROGRESS_API_URL", "http://127.0.0.1:9")
    monkeypatch.setenv("SESSION_SECRET", "test-secret")
    get_settings.cache_clear()
    database.reset_engine()

    yield get_settings()

    get_settings.cache_clear()
    database.reset_engine()


@pytest_asyncio.fixture
async def db_scope(tmp_path):
    """Transactional session scope over a fresh SQLite database."""
    engine = database.create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await database.init_db(engine)

    yield database.make_session_scope(database.create_session_factory(engine))

    await engine.dispose()
