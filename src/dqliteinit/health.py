"""Quorum health checks against the configured peers."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from dqliteinit.connection import NodeConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthSnapshot:
    """Result of one health check."""

    healthy_count: int
    total: int
    checked_at: datetime
    healthy_peers: tuple[str, ...] = ()

    @property
    def any_healthy(self) -> bool:
        return self.healthy_count > 0


class QuorumHealthChecker:
    """Probes every peer concurrently and counts the healthy ones.

    A peer is healthy when it completes the handshake and reports a leader,
    which means it is a live member of a cluster with a working quorum.
    Timeouts, refused connections and protocol errors all count as
    unhealthy. A single check never retries.
    """

    def __init__(
        self,
        peers: Sequence[str],
        *,
        probe_timeout: float = 3.0,
        check_timeout: float = 10.0,
        max_concurrency: int = 8,
    ) -> None:
        """Initialize health checker.

        Args:
            peers: Peer addresses in "host:port" format, excluding this node
            probe_timeout: Per-peer timeout in seconds
            check_timeout: Ceiling for the whole check in seconds
            max_concurrency: Maximum number of probes in flight
        """
        self._peers = tuple(peers)
        self._probe_timeout = probe_timeout
        self._check_timeout = check_timeout
        self._max_concurrency = max(1, max_concurrency)

    @property
    def peers(self) -> tuple[str, ...]:
        return self._peers

    async def check_peers(self) -> HealthSnapshot:
        """Probe all peers and return a snapshot of their health."""
        results: dict[str, bool] = {}
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run_probe(address: str) -> None:
            async with semaphore:
                results[address] = await self._probe(address)

        if self._peers:
            try:
                async with asyncio.timeout(self._check_timeout):
                    async with asyncio.TaskGroup() as tg:
                        for address in self._peers:
                            tg.create_task(run_probe(address))
            except TimeoutError:
                pending = [address for address in self._peers if address not in results]
                logger.warning(
                    "Health check ceiling of %.1fs reached, counting %s as unhealthy",
                    self._check_timeout,
                    ", ".join(pending),
                )

        healthy = tuple(address for address in self._peers if results.get(address))
        snapshot = HealthSnapshot(
            healthy_count=len(healthy),
            total=len(self._peers),
            checked_at=datetime.now(UTC),
            healthy_peers=healthy,
        )
        logger.info("%d of %d peers healthy", snapshot.healthy_count, snapshot.total)
        return snapshot

    async def _probe(self, address: str) -> bool:
        """Probe one peer. Never raises."""
        try:
            async with asyncio.timeout(self._probe_timeout):
                async with NodeConnection(address, timeout=self._probe_timeout) as conn:
                    node_id, leader_address = await conn.leader()
        except Exception as e:
            logger.debug("Peer %s unhealthy: %s", address, e)
            return False

        if node_id == 0:
            logger.debug("Peer %s is up but knows no leader", address)
            return False

        logger.debug("Peer %s healthy, leader is %s (%s)", address, node_id, leader_address)
        return True
