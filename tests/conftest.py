import pytest

from tools.web.cache import ResultCache
from utils.kv_store import InMemoryKVStore


class FakeClock:
    """Millisecond clock whose sleep() advances time instead of waiting."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += int(seconds * 1000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryKVStore(clock=clock)


@pytest.fixture
def cache(store):
    return ResultCache(store, key_prefix="test")


@pytest.fixture
def mock_env(monkeypatch):
    """Fixture to mock environment variables for testing."""
    env_vars = {
        "LLM_PROVIDER": "openai",
        "OPENAI_API_KEY": "test-openai-key",
        "SEARCH_PROVIDER": "serper",
        "SERPER_API_KEY": "test-serper-key",
        "API_KEYS": "test-key-1,test-key-2",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars
