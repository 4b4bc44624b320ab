"""Shared fixtures for the redproxy test suite."""

import pytest

from redproxy.config import Config, RetryConfig
from tests.fakes import FakeSession, FakeSessionManager


@pytest.fixture
def config():
    """Configuration with a fast, deterministic retry policy."""
    cfg = Config()
    cfg.identity.device_id = "6b1e7f0c-3b8a-4c57-9d7e-2f0a1b2c3d4e"
    cfg.retry = RetryConfig(max_retries=3, initial_backoff=0.001, max_backoff=0.001, jitter=0.0)
    return cfg


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def session_manager(session):
    return FakeSessionManager(session)
