"""Low-level protocol handler for dqlite."""

import asyncio
from typing import Any

from dqliteinit.exceptions import ConnectionError, OperationalError, ProtocolError
from dqlitewire import MessageDecoder, MessageEncoder
from dqlitewire.messages import (
    ClientRequest,
    DbResponse,
    ExecSqlRequest,
    FailureResponse,
    LeaderRequest,
    LeaderResponse,
    OpenRequest,
    QuerySqlRequest,
    ResultResponse,
    RowsResponse,
    WelcomeResponse,
)
from dqlitewire.messages.base import Message


class DqliteProtocol:
    """Low-level protocol handler for a single dqlite connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._encoder = MessageEncoder()
        self._decoder = MessageDecoder(is_request=False)

    async def handshake(self, client_id: int = 0) -> int:
        """Perform protocol handshake.

        Returns the heartbeat timeout from server.
        """
        self._writer.write(self._encoder.encode_handshake())
        await self._writer.drain()

        response = await self._request(ClientRequest(client_id=client_id))

        if isinstance(response, FailureResponse):
            raise ProtocolError(f"Handshake failed: {response.message}")

        if not isinstance(response, WelcomeResponse):
            raise ProtocolError(f"Expected WelcomeResponse, got {type(response).__name__}")

        return response.heartbeat_timeout

    async def get_leader(self) -> tuple[int, str]:
        """Request leader information.

        Returns (node_id, address). A node_id of 0 means no leader is known.
        """
        response = await self._request(LeaderRequest())
        self._check_failure(response)

        if not isinstance(response, LeaderResponse):
            raise ProtocolError(f"Expected LeaderResponse, got {type(response).__name__}")

        return response.node_id, response.address

    async def open_database(self, name: str, flags: int = 0, vfs: str = "") -> int:
        """Open a database, creating it if needed.

        Returns the database ID.
        """
        response = await self._request(OpenRequest(name=name, flags=flags, vfs=vfs))
        self._check_failure(response)

        if not isinstance(response, DbResponse):
            raise ProtocolError(f"Expected DbResponse, got {type(response).__name__}")

        return response.db_id

    async def exec_sql(
        self, db_id: int, sql: str, params: list[Any] | None = None
    ) -> tuple[int, int]:
        """Execute SQL directly.

        Returns (last_insert_id, rows_affected).
        """
        response = await self._request(ExecSqlRequest(db_id=db_id, sql=sql, params=params or []))
        self._check_failure(response)

        if not isinstance(response, ResultResponse):
            raise ProtocolError(f"Expected ResultResponse, got {type(response).__name__}")

        return response.last_insert_id, response.rows_affected

    async def query_sql(
        self, db_id: int, sql: str, params: list[Any] | None = None
    ) -> tuple[list[str], list[list[Any]]]:
        """Execute a single-frame query directly.

        Returns (column_names, rows).
        """
        response = await self._request(QuerySqlRequest(db_id=db_id, sql=sql, params=params or []))
        self._check_failure(response)

        if not isinstance(response, RowsResponse):
            raise ProtocolError(f"Expected RowsResponse, got {type(response).__name__}")

        # Probes and hooks only issue small queries
        if response.has_more:
            raise ProtocolError("Multi-frame result sets are not supported")

        return list(response.column_names), [list(row) for row in response.rows]

    async def _request(self, request: Message) -> Message:
        """Send a request and wait for its response."""
        self._writer.write(self._encoder.encode(request))
        await self._writer.drain()
        return await self._read_response()

    def _check_failure(self, response: Message) -> None:
        if isinstance(response, FailureResponse):
            raise OperationalError(response.code, response.message)

    async def _read_response(self) -> Message:
        """Read and decode the next response message."""
        while not self._decoder.has_message():
            data = await self._reader.read(4096)
            if not data:
                raise ConnectionError("Connection closed by server")
            self._decoder.feed(data)

        message = self._decoder.decode()
        if message is None:
            raise ProtocolError("Failed to decode message")

        return message

    def close(self) -> None:
        """Close the connection."""
        self._writer.close()

    async def wait_closed(self) -> None:
        """Wait for the connection to close."""
        await self._writer.wait_closed()
