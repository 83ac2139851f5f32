"""Integration test fixtures.

These tests require a running dqlite cluster, for example:
    docker compose -f dqlite-test-cluster/docker-compose.yml up -d
"""

import asyncio
import os

import pytest

from dqliteinit.connection import NodeConnection

DQLITE_TEST_CLUSTER = os.environ.get(
    "DQLITE_TEST_CLUSTER", "localhost:9001,localhost:9002,localhost:9003"
)


@pytest.fixture
def cluster_addresses() -> list[str]:
    """Get all test cluster addresses."""
    return [address.strip() for address in DQLITE_TEST_CLUSTER.split(",") if address.strip()]


@pytest.fixture
async def cluster_address(cluster_addresses: list[str]) -> str:
    """First cluster address, skipping the test when it is down."""
    address = cluster_addresses[0]
    try:
        async with asyncio.timeout(2):
            async with NodeConnection(address, timeout=2) as conn:
                await conn.leader()
    except Exception as e:
        pytest.skip(f"dqlite cluster not available at {address}: {e}")
    return address
