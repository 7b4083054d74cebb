"""Shared pytest fixtures."""

import pytest

from mortgagepro import (
    ActivityLogger,
    MemoryBackend,
    MemoryStorage,
    QueryClient,
    Session,
    Toaster,
)


@pytest.fixture
def client() -> QueryClient:
    """Create a fresh QueryClient for each test."""
    return QueryClient(default_stale_time="5m")


@pytest.fixture
def backend() -> MemoryBackend:
    """Create a MemoryBackend that enforces unique person emails."""
    return MemoryBackend(unique={"people": ["email_primary"]})


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def session() -> Session:
    return Session(user_id="user-1", email="broker@example.com")


@pytest.fixture
def toaster() -> Toaster:
    return Toaster()


@pytest.fixture
def activity(backend: MemoryBackend) -> ActivityLogger:
    return ActivityLogger(backend)


@pytest.fixture
def make_service(client, backend, session, activity, toaster):
    """Build any entity service against the shared fixtures."""

    def build(service_cls, filters=None, **kwargs):
        return service_cls(client, backend, session, activity, toaster, filters=filters, **kwargs)

    return build
