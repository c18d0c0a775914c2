"""
Pytest configuration for streamsync tests.

Provides settings isolation plus record, codec and in-memory log fixtures.
"""

import asyncio
import os
from collections.abc import Callable
from pathlib import Path

import pytest
from dotenv import load_dotenv

from streamsync.codec.codec import RecordCodec
from streamsync.core.config import ENV_PREFIX, Settings, reset_settings
from streamsync.core.types import Record
from streamsync.remote.memory import InMemoryRemoteLog

# Load .env file for environment variables (integration runs against a live remote)
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


BASE_MS = 1_700_000_000_000


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """
    Keep every test away from the developer's environment and config files.

    Strips STREAMSYNC_* variables, points HOME and the working directory at
    a temp dir, and clears the settings cache before and after the test.
    """
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def codec(settings) -> RecordCodec:
    """Codec for the default earthquake schema."""
    return RecordCodec.from_settings(settings)


@pytest.fixture
def make_record() -> Callable[..., Record]:
    """Factory for earthquake records; ``n`` orders timestamps."""

    def _make(
        n: int,
        magnitude: float = 3.0,
        timestamp: int | None = None,
        record_id: str | None = None,
        location: str = "Test Region",
    ) -> Record:
        return Record(
            id=record_id or f"eq-{n}",
            timestamp=timestamp if timestamp is not None else BASE_MS + n * 1000,
            attributes={
                "location": location,
                "magnitude": magnitude,
                "depth": 10.5,
                "latitude": -33.45,
                "longitude": -70.66,
                "url": f"https://quakes.example.org/event/eq-{n}",
            },
        )

    return _make


@pytest.fixture
def make_log(codec, make_record) -> Callable[..., InMemoryRemoteLog]:
    """Build an in-memory log holding records 0..count-1, encoded with the schema layout."""

    def _make(count: int, magnitude: float = 3.0) -> InMemoryRemoteLog:
        return InMemoryRemoteLog(codec.encode(make_record(i, magnitude)) for i in range(count))

    return _make


@pytest.fixture
def eventually():
    """Await until ``predicate()`` holds, failing after ``timeout`` seconds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait
