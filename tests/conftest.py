import pytest

from reporting_api.main import app
from reporting_api import dependencies
from reporting_api.adapters.memory_store.stores import MemoryKeyValueStore, MemoryObjectStore
from reporting_api.core.rate_limiter import MemoryRateLimitStorage
from reporting_api.settings import Settings

TEST_ADMIN_SECRET = "test-admin-secret"
TEST_SIGNING_SECRET = "test-signing-secret"
TEST_PEPPER = "test-pepper"


class FakeClock:
    """Manually advanced clock returning Unix seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clear_overrides():
    """Automatically clear FastAPI dependency overrides and cached stores before each test."""
    app.dependency_overrides = {}
    dependencies.reset_dependencies()
    yield
    app.dependency_overrides = {}
    dependencies.reset_dependencies()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        mode="dev",
        admin_secret=TEST_ADMIN_SECRET,
        pdf_signing_secret=TEST_SIGNING_SECRET,
        api_key_pepper=TEST_PEPPER,
        base_url="http://testserver",
        idempotency_wait_timeout_seconds=1.0,
        idempotency_poll_interval_seconds=0.01,
    )


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def object_store():
    return MemoryObjectStore()


@pytest.fixture
def rate_storage():
    return MemoryRateLimitStorage()
