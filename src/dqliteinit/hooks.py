"""Seeding and post-start SQL collaborators.

Both run once the local node is reachable and must be idempotent: they may
run again on every start. Writes are only served by the cluster leader, so
each run first asks the local node which node leads and connects there.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from dqliteinit.config import NodeConfig, SeedDatabase
from dqliteinit.connection import NodeConnection, find_leader

logger = logging.getLogger(__name__)


class Seeder(ABC):
    """Creates preconfigured databases."""

    @abstractmethod
    async def needs_seed(self) -> bool:
        ...

    @abstractmethod
    async def seed(self) -> None:
        ...


class PostStartHook(ABC):
    """Runs SQL after the engine becomes reachable."""

    @abstractmethod
    async def run_post_start_sql(self) -> None:
        ...


class DatabaseSeeder(Seeder):
    """Opens each configured database and applies its schema statements."""

    def __init__(
        self, node: NodeConfig, databases: Sequence[SeedDatabase], *, timeout: float = 10.0
    ) -> None:
        self._address = node.address
        self._databases = tuple(databases)
        self._timeout = timeout

    async def needs_seed(self) -> bool:
        if not self._databases:
            logger.info("No preseeded databases specified, skipping seeding")
            return False
        return True

    async def seed(self) -> None:
        """Create the databases and apply their schema."""
        leader = await find_leader(self._address, timeout=self._timeout)
        logger.info("Preseeding %d databases through leader %s", len(self._databases), leader)
        for database in self._databases:
            async with NodeConnection(
                leader, database=database.name, timeout=self._timeout
            ) as conn:
                for statement in database.schema:
                    await conn.execute(statement)
            logger.info("Seeded database %s", database.name)


class SqlFileRunner(PostStartHook):
    """Executes SQL files against the node's default database."""

    def __init__(self, node: NodeConfig, files: Sequence[str], *, timeout: float = 10.0) -> None:
        self._node = node
        self._files = tuple(files)
        self._timeout = timeout

    async def run_post_start_sql(self) -> None:
        """Run each file in order.

        Unreadable files are logged and skipped; a failing statement raises.
        """
        if not self._files:
            return

        leader = await find_leader(self._node.address, timeout=self._timeout)
        logger.info("Running post-start SQL through leader %s", leader)
        async with NodeConnection(
            leader, database=self._node.database, timeout=self._timeout
        ) as conn:
            for file in self._files:
                try:
                    sql = await asyncio.to_thread(Path(file).read_text, encoding="utf-8")
                except OSError as e:
                    logger.error("Error reading post-start SQL file %s: %s", file, e)
                    continue
                await conn.execute(sql)
                logger.info("Applied %s", file)
