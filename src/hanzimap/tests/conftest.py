"""Test configuration."""
import os
from pathlib import Path
from typing import Any, Dict, List

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Load test environment variables
test_env_path = Path(__file__).resolve().parents[3] / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy.orm import sessionmaker

from hanzimap.config import ensure_directories
from hanzimap.errors import TransientNetworkError
from hanzimap.models.base import create_db_engine, init_db
from hanzimap.services.local_store import SqlLocalStore

# 2026-03-10 12:00:00 UTC
NOW = 1773144000000


class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRemoteAPI:
    """Records calls and fails the next ``fail_times`` of them."""

    def __init__(self, fail_times: int = 0, progress: Any = None):
        self.fail_times = fail_times
        self.progress = progress
        self.calls: List[tuple] = []

    async def _call(self, name: str, *args: Any) -> Dict[str, Any]:
        self.calls.append((name,) + args)
        if self.fail_times:
            self.fail_times -= 1
            raise TransientNetworkError(f"{name} failed")
        return {"success": True}

    async def save_progress(self, data):
        return await self._call("save_progress", data)

    async def log_quiz_attempt(self, record):
        return await self._call("log_quiz_attempt", record)

    async def add_custom_word(self, word, pinyin, meanings):
        return await self._call("add_custom_word", word, pinyin, meanings)

    async def delete_custom_word(self, word_id):
        return await self._call("delete_custom_word", word_id)

    async def add_sentence(self, chinese, pinyin, english):
        return await self._call("add_sentence", chinese, pinyin, english)

    async def delete_sentence(self, sentence_id):
        return await self._call("delete_sentence", sentence_id)

    async def save_word_edit(self, word, word_type, meanings):
        return await self._call("save_word_edit", word, word_type, meanings)

    async def get_progress(self):
        if self.progress is None:
            raise TransientNetworkError("offline")
        return self.progress

    async def check_health(self) -> bool:
        return self.fail_times == 0


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    ensure_directories()
    yield


@pytest.fixture
def session_factory() -> sessionmaker:
    """Session factory bound to a fresh in-memory database."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def store(session_factory: sessionmaker) -> SqlLocalStore:
    """Create a local store on the in-memory database."""
    return SqlLocalStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    """Create a clock fixed at NOW."""
    return FakeClock()


@pytest.fixture
def api() -> FakeRemoteAPI:
    """Create a remote API that always succeeds."""
    return FakeRemoteAPI()
