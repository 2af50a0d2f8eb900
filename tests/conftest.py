"""Pytest fixtures and configuration for the test suite."""

import pytest
from fastmcp import FastMCP

from habitrack.config import ServerConfig
from habitrack.core.repository import HabitRepository
from habitrack.store.memory import InMemoryDocumentStore
from tests.factories import TEST_USER_ID, FixedClock, GatedDocumentStore


@pytest.fixture
def default_config() -> ServerConfig:
    """Provide a default ServerConfig instance for testing.

    Returns:
        ServerConfig: A configured ServerConfig using the in-memory store.
    """
    return ServerConfig(user_id=TEST_USER_ID, log_level="INFO", config_file=None)


@pytest.fixture
def mcp() -> FastMCP:
    """Provide a FastMCP instance for testing."""
    return FastMCP("test-server")


@pytest.fixture
def clock() -> FixedClock:
    """Provide a clock frozen at the shared test instant."""
    return FixedClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Provide an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def gated_store() -> GatedDocumentStore:
    """Provide an in-memory store whose writes can be held open."""
    return GatedDocumentStore()


@pytest.fixture
def repository(store: InMemoryDocumentStore, clock: FixedClock) -> HabitRepository:
    """Provide a HabitRepository backed by the in-memory store."""
    return HabitRepository(store, TEST_USER_ID, clock=clock)


@pytest.fixture
def gated_repository(gated_store: GatedDocumentStore, clock: FixedClock) -> HabitRepository:
    """Provide a HabitRepository backed by the gated store."""
    return HabitRepository(gated_store, TEST_USER_ID, clock=clock)
