"""Control of the database engine process."""

import asyncio
import logging
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import IO

from dqliteinit.config import EngineConfig, NodeConfig
from dqliteinit.connection import NodeConnection
from dqliteinit.exceptions import EngineError, ShutdownError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command run to completion."""

    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Thin wrapper over asyncio subprocesses."""

    async def run(self, argv: Sequence[str], *, timeout: float | None = None) -> CommandResult:
        """Run a command to completion, capturing stdout and stderr together.

        Raises TimeoutError if it does not finish within ``timeout``. A command
        that times out or is cancelled is killed and reaped.
        """
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        try:
            async with asyncio.timeout(timeout):
                stdout, _ = await proc.communicate()
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        return CommandResult(proc.returncode or 0, stdout.decode(errors="replace"))

    async def start(
        self, argv: Sequence[str], *, log_file: str | None = None
    ) -> asyncio.subprocess.Process:
        """Spawn a long-running command, appending its output to ``log_file``."""
        output: IO[bytes] | None = None
        if log_file:
            output = open(log_file, "ab")
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
            )
        finally:
            if output is not None:
                # The child keeps its own copy of the descriptor
                output.close()


class EngineHandle:
    """Read-only view of a running engine child process."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status."""
        return await self._process.wait()


class ProcessController(ABC):
    """Contract for starting, stopping and probing the engine."""

    @abstractmethod
    async def start_standalone(self) -> None:
        """Start the engine with replication disabled, for maintenance."""
        ...

    @abstractmethod
    async def start_join(self) -> EngineHandle:
        """Start the engine so that it joins the existing cluster."""
        ...

    @abstractmethod
    async def start_bootstrap(self) -> EngineHandle:
        """Start the engine as the seed of a new cluster."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Shut the engine down gracefully, raising ShutdownError on failure."""
        ...

    @abstractmethod
    async def is_reachable(self) -> bool:
        """Check whether the engine answers queries."""
        ...

    @abstractmethod
    async def is_running(self) -> bool:
        """Check whether the engine process is alive."""
        ...


class EngineProcessController(ProcessController):
    """Drives the engine through its configured command lines."""

    def __init__(
        self,
        engine: EngineConfig,
        node: NodeConfig,
        *,
        runner: CommandRunner | None = None,
        probe_timeout: float = 3.0,
    ) -> None:
        """Initialize controller.

        Args:
            engine: Engine command lines and shutdown policy
            node: Local node address and database used for reachability
            runner: Command runner, replaceable in tests
            probe_timeout: Timeout for one reachability probe in seconds
        """
        self._engine = engine
        self._node = node
        self._runner = runner or CommandRunner()
        self._probe_timeout = probe_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._standalone = False
        self._lock = asyncio.Lock()

    async def start_standalone(self) -> None:
        """Run the stand-alone start command; the engine daemonizes itself."""
        async with self._lock:
            self._ensure_idle()
            if not (self._engine.shutdown_command and self._engine.status_command):
                raise EngineError(
                    "Stand-alone start needs engine.shutdown_command and engine.status_command"
                )
            argv = [*self._engine.command, *self._engine.standalone_args]
            logger.info("Starting engine in stand-alone mode")
            try:
                result = await self._runner.run(argv)
            except OSError as e:
                raise EngineError(f"Could not run stand-alone start: {e}") from e
            if not result.ok:
                raise EngineError(
                    f"Stand-alone start exited with status {result.returncode}: "
                    f"{result.output.strip()}"
                )
            self._standalone = True

    async def start_join(self) -> EngineHandle:
        """Spawn the engine with the join arguments."""
        logger.info("Starting engine with 'join'")
        return await self._spawn(self._engine.join_args)

    async def start_bootstrap(self) -> EngineHandle:
        """Spawn the engine with the bootstrap arguments."""
        logger.info("Starting engine with 'bootstrap'")
        return await self._spawn(self._engine.bootstrap_args)

    async def _spawn(self, mode_args: Sequence[str]) -> EngineHandle:
        async with self._lock:
            self._ensure_idle()
            argv = [*self._engine.command, *mode_args]
            try:
                self._process = await self._runner.start(argv, log_file=self._engine.log_file)
            except OSError as e:
                raise EngineError(f"Could not spawn engine: {e}") from e
            logger.info("Engine started with pid %d", self._process.pid)
            return EngineHandle(self._process)

    def _ensure_idle(self) -> None:
        if self._standalone or (self._process is not None and self._process.returncode is None):
            raise EngineError("Engine already started by this controller")
        self._process = None

    async def stop(self) -> None:
        """Issue a graceful shutdown and wait for the engine to exit.

        The engine is never killed; a shutdown that does not complete within
        the stop timeout raises ShutdownError.
        """
        async with self._lock:
            logger.info("Stopping engine")
            timeout = self._engine.stop_timeout
            try:
                async with asyncio.timeout(timeout):
                    await self._request_shutdown()
                    await self._wait_stopped()
            except TimeoutError as e:
                raise ShutdownError(f"Engine did not stop within {timeout:.0f}s") from e

            self._process = None
            self._standalone = False
            logger.info("Engine stopped")

    async def _request_shutdown(self) -> None:
        if self._engine.shutdown_command:
            try:
                result = await self._runner.run(self._engine.shutdown_command)
            except OSError as e:
                raise ShutdownError(f"Could not run shutdown command: {e}") from e
            if not result.ok:
                raise ShutdownError(
                    f"Shutdown command exited with status {result.returncode}: "
                    f"{result.output.strip()}"
                )
        elif self._process is not None and self._process.returncode is None:
            self._process.terminate()

    async def _wait_stopped(self) -> None:
        if self._process is not None:
            status = await self._process.wait()
            logger.info("Engine exited with status %d", status)
            return

        # Without a status command the completed shutdown command is all we have
        if not self._engine.status_command:
            return
        while await self.is_running():
            await asyncio.sleep(0.5)

    async def is_reachable(self) -> bool:
        """Check that the local node is a member of a cluster with a leader.

        Only the leader serves queries, so a follower that reports a known
        leader counts as reachable. When the local node is the leader it
        must also open the configured database and answer ``SELECT 1``.
        """
        address = self._node.address
        try:
            async with asyncio.timeout(self._probe_timeout):
                async with NodeConnection(address, timeout=self._probe_timeout) as conn:
                    node_id, leader_address = await conn.leader()
                    if node_id == 0:
                        logger.debug("Engine is up but knows no leader")
                        return False
                    if leader_address and leader_address != address:
                        logger.debug("Engine follows leader %s", leader_address)
                        return True
                    await conn.open_database(self._node.database)
                    await conn.fetchval("SELECT 1")
        except Exception as e:
            logger.debug("Engine not reachable: %s", e)
            return False
        return True

    async def is_running(self) -> bool:
        """Check process liveness through the status command or the child."""
        if self._engine.status_command:
            try:
                result = await self._runner.run(self._engine.status_command)
            except OSError as e:
                logger.debug("Status command failed: %s", e)
                return False
            return result.ok

        return self._process is not None and self._process.returncode is None
