"""Short-lived connections to a single dqlite node."""

import asyncio
from typing import Any

from dqliteinit.exceptions import ConnectionError
from dqliteinit.protocol import DqliteProtocol


def split_address(address: str) -> tuple[str, int]:
    """Split a "host:port" or "[v6]:port" address into its parts."""
    host, sep, port_str = address.rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not sep or not host or not port_str.isdigit():
        raise ValueError(f"Invalid address {address!r}; expected host:port")
    port = int(port_str)
    if not 1 <= port <= 65535:
        raise ValueError(f"Invalid port in address {address!r}")
    return host, port


class NodeConnection:
    """Async connection to one node, optionally bound to a database."""

    def __init__(
        self,
        address: str,
        *,
        database: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize connection (does not connect yet).

        Args:
            address: Node address in "host:port" format
            database: Database to open after the handshake, if any
            timeout: Connection timeout in seconds
        """
        self._address = address
        self._database = database
        self._timeout = timeout
        self._protocol: DqliteProtocol | None = None
        self._db_id: int | None = None

    @property
    def address(self) -> str:
        """Get the connection address."""
        return self._address

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._protocol is not None

    async def connect(self) -> None:
        """Connect, handshake and open the database if one was given."""
        if self._protocol is not None:
            return

        host, port = split_address(self._address)

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise ConnectionError(f"Connection to {self._address} timed out") from e
        except OSError as e:
            raise ConnectionError(f"Failed to connect to {self._address}: {e}") from e

        self._protocol = DqliteProtocol(reader, writer)

        try:
            await self._protocol.handshake()
            if self._database is not None:
                self._db_id = await self._protocol.open_database(self._database)
        except BaseException:
            self._protocol.close()
            self._protocol = None
            raise

    async def close(self) -> None:
        """Close the connection."""
        if self._protocol is not None:
            self._protocol.close()
            await self._protocol.wait_closed()
            self._protocol = None
            self._db_id = None

    async def __aenter__(self) -> "NodeConnection":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _ensure_protocol(self) -> DqliteProtocol:
        if self._protocol is None:
            raise ConnectionError("Not connected")
        return self._protocol

    def _ensure_database(self) -> tuple[DqliteProtocol, int]:
        protocol = self._ensure_protocol()
        if self._db_id is None:
            raise ConnectionError("No database open")
        return protocol, self._db_id

    async def open_database(self, name: str) -> None:
        """Open (creating if needed) a database on an established connection."""
        self._db_id = await self._ensure_protocol().open_database(name)
        self._database = name

    async def leader(self) -> tuple[int, str]:
        """Ask the node which leader it currently follows."""
        return await self._ensure_protocol().get_leader()

    async def execute(self, sql: str, params: list[Any] | None = None) -> tuple[int, int]:
        """Execute a SQL statement.

        Returns (last_insert_id, rows_affected).
        """
        protocol, db_id = self._ensure_database()
        return await protocol.exec_sql(db_id, sql, params)

    async def fetchval(self, sql: str, params: list[Any] | None = None) -> Any:
        """Execute a query and return the first column of the first row."""
        protocol, db_id = self._ensure_database()
        _, rows = await protocol.query_sql(db_id, sql, params)
        if rows and rows[0]:
            return rows[0][0]
        return None


async def find_leader(address: str, *, timeout: float = 10.0) -> str:
    """Ask the node at ``address`` which node currently leads the cluster.

    Returns the leader address. Raises ConnectionError when the node is
    unreachable or knows no leader.
    """
    async with NodeConnection(address, timeout=timeout) as conn:
        node_id, leader_address = await conn.leader()

    if node_id == 0:
        raise ConnectionError(f"{address} knows no leader")
    # An empty address means the node itself is the leader
    return leader_address or address
