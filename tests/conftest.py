"""Shared pytest fixtures for the upload pipeline test suite.

Scheduler tests use ``fast_settings``: no inter-task delay and zero retry
backoff, while the delayed trigger passes (enqueue, retry, cooldowns) are
pushed far into the future so tests drive ``process_queue`` explicitly.
"""

import dataclasses

import pytest
import pytest_asyncio

from upload_pipeline.config import UploadSettings
from tests.support.fakes import FakeFileReader, FakeFunctions, FakeStorage, InMemoryKeyValueStore
from tests.support.harness import UploadHarness

NEVER = 3600.0


@pytest.fixture
def fast_settings() -> UploadSettings:
    """UploadSettings with zeroed timing for deterministic scheduler tests."""
    return dataclasses.replace(
        UploadSettings(),
        inter_task_delay=0.0,
        backoff_base=0.0,
        backoff_max=0.0,
        enqueue_delay=NEVER,
        retry_delay=NEVER,
        resume_delay=NEVER,
        reload_delay=NEVER,
        completion_cooldown=NEVER,
        failure_cooldown=NEVER,
        progress_throttle=0.0,
        progress_tick_interval=0.01,
    )


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fake_functions() -> FakeFunctions:
    return FakeFunctions()


@pytest.fixture
def file_reader() -> FakeFileReader:
    return FakeFileReader()


@pytest_asyncio.fixture
async def harness(fast_settings):
    """UploadHarness whose schedulers are destroyed after the test."""
    upload_harness = UploadHarness(fast_settings)
    yield upload_harness
    await upload_harness.close()


# Import additional fixtures from fixtures/ package
from tests.fixtures.database import (  # noqa: F401, E402
    async_test_engine,
    mock_session_factory,
    sql_kv_store,
    test_session_factory,
)
