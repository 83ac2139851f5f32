"""Start/stop state machine for one cluster node.

On every start the orchestrator decides whether this node bootstraps a new
cluster, joins the existing one, or runs stand-alone for maintenance. The
decision combines the persisted role with a fresh quorum health check:

* a healthy peer means a cluster exists, so the node always joins
* a node that never joined a cluster and sees no healthy peer bootstraps
* a node that was clustered and sees no healthy peer refuses to start
  unless an operator forces a bootstrap, because it cannot tell "all peers
  are down" from "the others formed a cluster without me"

States run strictly one after another:

    INIT -> DECIDING_MODE -> [UPGRADING] -> LAUNCHING -> WAITING_REACHABLE
         -> POST_START -> RUNNING -> SHUTTING_DOWN -> STOPPED

with FAILED reachable from any of them. There is no internal retry of a
failed start; restarting is left to the service manager.
"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import StrEnum
from typing import assert_never

from dqliteinit.exceptions import (
    ClusterStateError,
    EngineError,
    ReachabilityTimeoutError,
    StageError,
)
from dqliteinit.health import HealthSnapshot, QuorumHealthChecker
from dqliteinit.hooks import PostStartHook, Seeder
from dqliteinit.node_state import NodeRole, StateStore
from dqliteinit.process import EngineHandle, ProcessController
from dqliteinit.retry import poll_until, wait_for_event
from dqliteinit.upgrade import UpgradeCoordinator

logger = logging.getLogger(__name__)


class OrchestratorState(StrEnum):
    INIT = "init"
    DECIDING_MODE = "deciding_mode"
    UPGRADING = "upgrading"
    LAUNCHING = "launching"
    WAITING_REACHABLE = "waiting_reachable"
    POST_START = "post_start"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    FAILED = "failed"


class StartMode(StrEnum):
    BOOTSTRAP = "bootstrap"
    JOIN = "join"
    STANDALONE = "standalone"


@dataclass(frozen=True)
class StartDecision:
    """Chosen start mode and why."""

    mode: StartMode
    rationale: str


def decide_start_mode(
    role: NodeRole,
    snapshot: HealthSnapshot,
    *,
    standalone: bool = False,
    force_bootstrap: bool = False,
) -> StartDecision:
    """Pick a start mode from the persisted role and peer health.

    Raises ClusterStateError when bootstrapping could split the cluster and
    no operator override was given.
    """
    if standalone:
        return StartDecision(StartMode.STANDALONE, "stand-alone maintenance mode requested")

    if snapshot.healthy_count > 0:
        return StartDecision(
            StartMode.JOIN,
            f"{snapshot.healthy_count} of {snapshot.total} peers healthy, joining existing cluster",
        )

    if role is NodeRole.NEEDS_BOOTSTRAP:
        return StartDecision(
            StartMode.BOOTSTRAP, "first boot and no healthy peers, bootstrapping new cluster"
        )

    if role is NodeRole.SINGLE_NODE and snapshot.total == 0:
        return StartDecision(StartMode.BOOTSTRAP, "single-node deployment, bootstrapping")

    if force_bootstrap:
        logger.warning(
            "Forcing bootstrap with role %s and 0 of %d peers healthy", role, snapshot.total
        )
        return StartDecision(
            StartMode.BOOTSTRAP, f"operator forced bootstrap with role {role} and no healthy peers"
        )

    raise ClusterStateError(
        f"Role is {role} but 0 of {snapshot.total} peers are healthy; refusing to bootstrap. "
        "If every node is down, bootstrap exactly one node with --force-bootstrap."
    )


def resolved_role(mode: StartMode) -> NodeRole:
    """Role committed once the engine started in ``mode`` is reachable."""
    match mode:
        case StartMode.BOOTSTRAP | StartMode.JOIN:
            return NodeRole.CLUSTERED
        case StartMode.STANDALONE:
            return NodeRole.SINGLE_NODE
        case _:
            assert_never(mode)


class StartOrchestrator:
    """Drives one start/run/stop cycle of the local engine."""

    def __init__(
        self,
        controller: ProcessController,
        health_checker: QuorumHealthChecker,
        state_store: StateStore,
        *,
        upgrader: UpgradeCoordinator | None = None,
        seeder: Seeder | None = None,
        post_start: PostStartHook | None = None,
        startup_timeout: float = 150.0,
        poll_interval: float = 1.0,
        force_bootstrap: bool = False,
        standalone: bool = False,
    ) -> None:
        """Initialize orchestrator.

        Args:
            controller: Engine process controller
            health_checker: Peer health checker
            state_store: Persisted node role
            upgrader: Runs pending schema upgrades before launch
            seeder: Seeds databases once the engine is reachable
            post_start: Runs post-start SQL once the engine is reachable
            startup_timeout: Deadline for the engine to become reachable
            poll_interval: Delay between reachability and liveness probes
            force_bootstrap: Operator override for an ambiguous quorum
            standalone: Start in stand-alone maintenance mode
        """
        self._controller = controller
        self._health = health_checker
        self._store = state_store
        self._upgrader = upgrader
        self._seeder = seeder
        self._post_start = post_start
        self._startup_timeout = startup_timeout
        self._poll_interval = poll_interval
        self._force_bootstrap = force_bootstrap
        self._standalone = standalone

        self._state = OrchestratorState.INIT
        self._history: list[OrchestratorState] = [OrchestratorState.INIT]
        self._shutdown = asyncio.Event()
        self._decision: StartDecision | None = None
        self._handle: EngineHandle | None = None
        self._engine_started = False
        self._post_start_errors: list[Exception] = []

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def history(self) -> tuple[OrchestratorState, ...]:
        """States visited so far, in order."""
        return tuple(self._history)

    @property
    def decision(self) -> StartDecision | None:
        return self._decision

    @property
    def post_start_errors(self) -> tuple[Exception, ...]:
        return tuple(self._post_start_errors)

    def shutdown(self) -> None:
        """Request a graceful stop. Safe to call from a signal handler."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
            self._shutdown.set()

    async def execute(self) -> OrchestratorState:
        """Start the engine and supervise it until shutdown.

        Returns STOPPED after a clean stop. Raises StageError, with the
        failing stage, after moving to FAILED.
        """
        if self._state is not OrchestratorState.INIT:
            raise RuntimeError("execute() can only be called once")

        try:
            await self._run()
        except StageError as e:
            logger.error("Failed during %s: %s", e.stage, e.error)
            if e.stage != OrchestratorState.SHUTTING_DOWN:
                await self._stop_after_failure()
            self._transition(OrchestratorState.FAILED)
            raise

        return self._state

    async def _run(self) -> None:
        self._transition(OrchestratorState.DECIDING_MODE)
        decision = await self._stage(OrchestratorState.DECIDING_MODE, self._decide())
        if self._shutdown_requested():
            await self._stop()
            return

        if self._upgrader is not None:
            stale = await self._stage(OrchestratorState.DECIDING_MODE, self._upgrader.needs_upgrade())
            if stale:
                self._transition(OrchestratorState.UPGRADING)
                await self._stage(OrchestratorState.UPGRADING, self._upgrade(self._upgrader))
                if self._shutdown_requested():
                    await self._stop()
                    return

        self._transition(OrchestratorState.LAUNCHING)
        self._handle = await self._stage(OrchestratorState.LAUNCHING, self._launch(decision.mode))
        self._engine_started = True
        if self._shutdown_requested():
            await self._stop()
            return

        self._transition(OrchestratorState.WAITING_REACHABLE)
        reachable = await self._stage(OrchestratorState.WAITING_REACHABLE, self._wait_reachable())
        if not reachable:
            await self._stop()
            return
        role = resolved_role(decision.mode)
        await self._stage(OrchestratorState.WAITING_REACHABLE, self._store.save(role))

        self._transition(OrchestratorState.POST_START)
        await self._run_post_start()

        self._transition(OrchestratorState.RUNNING)
        await self._stage(OrchestratorState.RUNNING, self._supervise())

        await self._stop()

    async def _decide(self) -> StartDecision:
        role = await self._store.load()
        logger.info("Persisted role is %s", role)
        snapshot = await self._health.check_peers()
        try:
            decision = decide_start_mode(
                role,
                snapshot,
                standalone=self._standalone,
                force_bootstrap=self._force_bootstrap,
            )
        except ClusterStateError:
            logger.error("Ambiguous cluster state, operator intervention required")
            raise
        logger.info("Start mode %s: %s", decision.mode, decision.rationale)
        self._decision = decision
        return decision

    async def _upgrade(self, upgrader: UpgradeCoordinator) -> None:
        """Apply the upgrade inside a stand-alone start/stop cycle."""
        await self._controller.start_standalone()
        self._engine_started = True

        if not await self._poll_reachable():
            if self._shutdown.is_set():
                return
            raise ReachabilityTimeoutError(
                f"Engine not reachable in stand-alone mode within {self._startup_timeout:.0f}s"
            )

        output = await upgrader.run_upgrade()
        if output:
            logger.info("Upgrade output:\n%s", output.rstrip())

        await self._controller.stop()
        self._engine_started = False

    async def _launch(self, mode: StartMode) -> EngineHandle | None:
        match mode:
            case StartMode.BOOTSTRAP:
                return await self._controller.start_bootstrap()
            case StartMode.JOIN:
                return await self._controller.start_join()
            case StartMode.STANDALONE:
                await self._controller.start_standalone()
                return None
            case _:
                assert_never(mode)

    async def _wait_reachable(self) -> bool:
        """Wait for the engine to answer queries.

        Returns False if shutdown was requested first.
        """
        if await self._poll_reachable():
            logger.info("Engine is reachable")
            return True
        if self._shutdown.is_set():
            logger.info("Shutdown requested while waiting for the engine")
            return False
        raise ReachabilityTimeoutError(
            f"Engine not reachable within {self._startup_timeout:.0f}s"
        )

    async def _poll_reachable(self) -> bool:
        handle = self._handle

        async def check() -> bool:
            if handle is not None and handle.returncode is not None:
                raise EngineError(
                    f"Engine exited with status {handle.returncode} before becoming reachable"
                )
            return await self._controller.is_reachable()

        return await poll_until(
            check,
            timeout=self._startup_timeout,
            interval=self._poll_interval,
            cancel=self._shutdown,
        )

    async def _run_post_start(self) -> None:
        """Run seeding and post-start SQL; failures are reported, not fatal."""
        if self._seeder is not None:
            try:
                if await self._seeder.needs_seed():
                    await self._seeder.seed()
            except Exception as e:
                logger.exception("Seeding failed during post_start")
                self._post_start_errors.append(e)

        if self._post_start is not None:
            try:
                await self._post_start.run_post_start_sql()
            except Exception as e:
                logger.exception("Post-start SQL failed during post_start")
                self._post_start_errors.append(e)

    async def _supervise(self) -> None:
        """Block until shutdown is requested or the engine dies."""
        if self._handle is not None:
            await self._supervise_child(self._handle)
            return

        while not await wait_for_event(self._shutdown, self._poll_interval):
            if not await self._controller.is_running():
                self._engine_started = False
                raise EngineError("Engine stopped unexpectedly")

    async def _supervise_child(self, handle: EngineHandle) -> None:
        exit_task = asyncio.create_task(handle.wait())
        shutdown_task = asyncio.create_task(self._shutdown.wait())
        try:
            await asyncio.wait({exit_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (exit_task, shutdown_task):
                task.cancel()

        if not self._shutdown.is_set():
            self._engine_started = False
            raise EngineError(f"Engine exited unexpectedly with status {handle.returncode}")

    async def _stop(self) -> None:
        self._transition(OrchestratorState.SHUTTING_DOWN)
        if self._engine_started:
            await self._stage(OrchestratorState.SHUTTING_DOWN, self._controller.stop())
            self._engine_started = False
        self._transition(OrchestratorState.STOPPED)

    async def _stop_after_failure(self) -> None:
        if not self._engine_started:
            return
        try:
            await self._controller.stop()
        except Exception:
            logger.exception("Could not stop engine after failure")
        else:
            self._engine_started = False

    async def _stage[T](self, stage: OrchestratorState, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except Exception as e:
            raise StageError(stage.value, e) from e

    def _shutdown_requested(self) -> bool:
        if self._shutdown.is_set():
            logger.info("Shutdown requested during %s", self._state)
            return True
        return False

    def _transition(self, state: OrchestratorState) -> None:
        logger.info("state: %s -> %s", self._state, state)
        self._state = state
        self._history.append(state)
