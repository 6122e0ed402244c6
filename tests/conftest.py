"""
Pytest configuration and shared fixtures for PhoneBridge tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that boot the FastAPI app through TestClient

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not slow"        # Skip app-level tests
- pytest                      # All tests
"""
import pytest

from tests.reset_singletons import reset_lightweight_singletons


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (TestClient app startup)")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    """Keep singletons (health registry, store, caches) from leaking between tests."""
    yield
    reset_lightweight_singletons()


@pytest.fixture
def test_data_path(tmp_path):
    """Temporary data directory for the directory database."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def directory_store(test_data_path):
    """DirectoryStore backed by a throwaway SQLite file."""
    from api.services.directory_store import DirectoryStore
    return DirectoryStore(db_path=str(test_data_path / "directory.db"))


@pytest.fixture
def empty_overrides():
    from config.override_config import DirectOverrideTable
    return DirectOverrideTable()


@pytest.fixture(scope="function")
def mock_settings(test_data_path, monkeypatch):
    """
    Mock settings for testing.

    Uses temporary paths to avoid affecting real data.
    """
    from config.settings import Settings

    mock = Settings(
        PHONEBRIDGE_DATA_PATH=test_data_path,
        FALLBACK_CONTACT_ID="fallback-001",
        SALESNEXUS_API_KEY="test-key-for-testing",
    )

    # Patch the global settings
    monkeypatch.setattr("config.settings.settings", mock)
    monkeypatch.setattr("api.utils.db_paths.settings", mock)
    monkeypatch.setattr("api.routes.mappings.settings", mock)
    monkeypatch.setattr("api.main.settings", mock)
    return mock
