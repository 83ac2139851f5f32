"""Start manager for dqlite cluster nodes."""

from dqliteinit.config import Config, load_config
from dqliteinit.exceptions import (
    ClusterStateError,
    ConfigError,
    ConnectionError,
    DqliteInitError,
    EngineError,
    OperationalError,
    ProtocolError,
    ReachabilityTimeoutError,
    ShutdownError,
    StageError,
    UpgradeError,
)
from dqliteinit.health import HealthSnapshot, QuorumHealthChecker
from dqliteinit.hooks import DatabaseSeeder, PostStartHook, Seeder, SqlFileRunner
from dqliteinit.node_state import FileStateStore, MemoryStateStore, NodeRole, StateStore
from dqliteinit.orchestrator import (
    OrchestratorState,
    StartDecision,
    StartMode,
    StartOrchestrator,
    decide_start_mode,
)
from dqliteinit.process import EngineHandle, EngineProcessController, ProcessController
from dqliteinit.upgrade import UpgradeCoordinator

__all__ = [
    "create_orchestrator",
    "Config",
    "load_config",
    "StartOrchestrator",
    "OrchestratorState",
    "StartMode",
    "StartDecision",
    "decide_start_mode",
    "QuorumHealthChecker",
    "HealthSnapshot",
    "NodeRole",
    "StateStore",
    "FileStateStore",
    "MemoryStateStore",
    "ProcessController",
    "EngineProcessController",
    "EngineHandle",
    "UpgradeCoordinator",
    "Seeder",
    "PostStartHook",
    "DatabaseSeeder",
    "SqlFileRunner",
    "DqliteInitError",
    "ConfigError",
    "ConnectionError",
    "ProtocolError",
    "OperationalError",
    "ClusterStateError",
    "EngineError",
    "UpgradeError",
    "ReachabilityTimeoutError",
    "ShutdownError",
    "StageError",
]

__version__ = "0.1.0"


def create_orchestrator(config: Config) -> StartOrchestrator:
    """Wire an orchestrator and its collaborators from configuration.

    Args:
        config: Validated node configuration

    Returns:
        A StartOrchestrator ready to execute
    """
    health = config.health
    controller = EngineProcessController(
        config.engine,
        config.node,
        probe_timeout=health.probe_timeout,
    )
    checker = QuorumHealthChecker(
        config.manager.peers,
        probe_timeout=health.probe_timeout,
        check_timeout=health.check_timeout,
        max_concurrency=health.max_concurrency,
    )
    upgrader = UpgradeCoordinator(config.upgrade) if config.upgrade is not None else None

    return StartOrchestrator(
        controller,
        checker,
        FileStateStore(config.manager.state_file),
        upgrader=upgrader,
        seeder=DatabaseSeeder(config.node, config.seed.databases),
        post_start=SqlFileRunner(config.node, config.seed.post_start_sql_files),
        startup_timeout=config.manager.startup_timeout,
        poll_interval=config.manager.poll_interval,
        force_bootstrap=config.manager.force_bootstrap,
        standalone=config.manager.standalone,
    )
