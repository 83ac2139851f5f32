"""Pytest configuration for dqlite-init tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from dqlitewire.constants import ValueType
from dqlitewire.messages import (
    DbResponse,
    LeaderResponse,
    ResultResponse,
    RowsResponse,
    WelcomeResponse,
)


@pytest.fixture
def mock_reader() -> AsyncMock:
    """Create a mock StreamReader."""
    reader = AsyncMock()
    return reader


@pytest.fixture
def mock_writer() -> MagicMock:
    """Create a mock StreamWriter."""
    writer = MagicMock()
    writer.write = MagicMock()
    writer.drain = AsyncMock()
    writer.close = MagicMock()
    writer.wait_closed = AsyncMock()
    return writer


@pytest.fixture
def welcome_response() -> bytes:
    """Create encoded WelcomeResponse."""
    return WelcomeResponse(heartbeat_timeout=15000).encode()


@pytest.fixture
def leader_response() -> bytes:
    """Create encoded LeaderResponse naming a live leader."""
    return LeaderResponse(node_id=1, address="10.0.0.2:9001").encode()


@pytest.fixture
def no_leader_response() -> bytes:
    """Create encoded LeaderResponse for a node that knows no leader."""
    return LeaderResponse(node_id=0, address="").encode()


@pytest.fixture
def db_response() -> bytes:
    """Create encoded DbResponse."""
    return DbResponse(db_id=1).encode()


@pytest.fixture
def result_response() -> bytes:
    """Create encoded ResultResponse."""
    return ResultResponse(last_insert_id=1, rows_affected=1).encode()


@pytest.fixture
def select_one_response() -> bytes:
    """Create encoded RowsResponse for SELECT 1."""
    return RowsResponse(
        column_names=["1"],
        column_types=[ValueType.INTEGER],
        rows=[[1]],
        has_more=False,
    ).encode()


@pytest.fixture
def engine_yaml() -> str:
    """Minimal valid configuration file contents."""
    return (
        "engine:\n"
        "  command: [dqlite-node, --dir, /var/lib/dqlite]\n"
        "  bootstrap_args: [--bootstrap]\n"
    )
