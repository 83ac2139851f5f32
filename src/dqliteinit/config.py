"""Configuration model for dqlite-init.

The configuration is read once per process from a YAML file and is
immutable afterwards. Sections:

* ``node``: local node address and the database used by probes and hooks
* ``manager``: persisted state location, peer list and startup policy
* ``health``: peer probe timeouts and fan-out
* ``engine``: argv of the engine and its per-mode flags
* ``upgrade``: optional schema upgrade command and version marker
* ``seed``: databases to seed and SQL files to run after start
* ``logging``: log level
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from dqliteinit.connection import split_address
from dqliteinit.exceptions import ConfigError

DEFAULT_CONFIG_PATH = "/etc/dqlite-init/config.yml"
DEFAULT_STOP_TIMEOUT = 60.0
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True, slots=True)
class NodeConfig:
    """Local node endpoint."""

    address: str = "127.0.0.1:9001"
    database: str = "default"


@dataclass(frozen=True, slots=True)
class ManagerConfig:
    """Start policy and persisted state location."""

    state_file: str = "/var/lib/dqlite-init/state.json"
    peers: tuple[str, ...] = ()
    startup_timeout: float = 150.0
    poll_interval: float = 1.0
    force_bootstrap: bool = False
    standalone: bool = False


@dataclass(frozen=True, slots=True)
class HealthConfig:
    """Peer probe tuning."""

    probe_timeout: float = 3.0
    check_timeout: float = 10.0
    max_concurrency: int = 8


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Engine control surface, expressed as argv lists."""

    command: tuple[str, ...]
    standalone_args: tuple[str, ...] = ()
    join_args: tuple[str, ...] = ()
    bootstrap_args: tuple[str, ...] = ()
    shutdown_command: tuple[str, ...] = ()
    status_command: tuple[str, ...] = ()
    log_file: str | None = None
    stop_timeout: float = DEFAULT_STOP_TIMEOUT


@dataclass(frozen=True, slots=True)
class UpgradeConfig:
    """External upgrade tool and the marker recording the applied version."""

    command: tuple[str, ...]
    version_file: str
    expected_version: str


@dataclass(frozen=True, slots=True)
class SeedDatabase:
    """A database to create on first start, with idempotent schema statements."""

    name: str
    schema: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SeedConfig:
    """Post-start collaborators."""

    databases: tuple[SeedDatabase, ...] = ()
    post_start_sql_files: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Config:
    """Complete configuration of one node."""

    engine: EngineConfig
    node: NodeConfig = field(default_factory=NodeConfig)
    manager: ManagerConfig = field(default_factory=ManagerConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    upgrade: UpgradeConfig | None = None
    seed: SeedConfig = field(default_factory=SeedConfig)
    log_level: str = "INFO"

    def with_overrides(
        self,
        *,
        force_bootstrap: bool | None = None,
        standalone: bool | None = None,
        log_level: str | None = None,
    ) -> "Config":
        """Return a copy with command-line overrides applied."""
        manager = self.manager
        if force_bootstrap is not None:
            manager = replace(manager, force_bootstrap=force_bootstrap)
        if standalone is not None:
            manager = replace(manager, standalone=standalone)
        _check_standalone_control(self.engine, manager.standalone, self.upgrade)
        return replace(
            self,
            manager=manager,
            log_level=log_level if log_level is not None else self.log_level,
        )


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> Config:
    """Read and validate a YAML configuration file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    return parse_config(data if data is not None else {})


def parse_config(data: Any) -> Config:
    """Build a validated Config from decoded YAML."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    node_data = _section(data, "node")
    manager_data = _section(data, "manager")
    health_data = _section(data, "health")
    engine_data = _section(data, "engine")
    seed_data = _section(data, "seed")
    logging_data = _section(data, "logging")

    node_defaults = NodeConfig()
    manager_defaults = ManagerConfig()
    health_defaults = HealthConfig()

    node = NodeConfig(
        address=str(node_data.get("address", node_defaults.address)),
        database=str(node_data.get("database", node_defaults.database)),
    )
    _check_address(node.address, "node.address")

    peers = _strings(manager_data.get("peers", []), "manager.peers")
    for peer in peers:
        _check_address(peer, "manager.peers")
    if node.address in peers:
        raise ConfigError(f"manager.peers must not contain the local address {node.address}")

    manager = ManagerConfig(
        state_file=str(manager_data.get("state_file", manager_defaults.state_file)),
        peers=peers,
        startup_timeout=_positive(manager_data, "startup_timeout", manager_defaults.startup_timeout),
        poll_interval=_positive(manager_data, "poll_interval", manager_defaults.poll_interval),
        force_bootstrap=bool(manager_data.get("force_bootstrap", False)),
        standalone=bool(manager_data.get("standalone", False)),
    )

    health = HealthConfig(
        probe_timeout=_positive(health_data, "probe_timeout", health_defaults.probe_timeout),
        check_timeout=_positive(health_data, "check_timeout", health_defaults.check_timeout),
        max_concurrency=int(
            _positive(health_data, "max_concurrency", health_defaults.max_concurrency)
        ),
    )

    command = _strings(engine_data.get("command", []), "engine.command")
    if not command:
        raise ConfigError("engine.command is required")
    log_file = engine_data.get("log_file")
    engine = EngineConfig(
        command=command,
        standalone_args=_strings(engine_data.get("standalone_args", []), "engine.standalone_args"),
        join_args=_strings(engine_data.get("join_args", []), "engine.join_args"),
        bootstrap_args=_strings(engine_data.get("bootstrap_args", []), "engine.bootstrap_args"),
        shutdown_command=_strings(
            engine_data.get("shutdown_command", []), "engine.shutdown_command"
        ),
        status_command=_strings(engine_data.get("status_command", []), "engine.status_command"),
        log_file=str(log_file) if log_file else None,
        stop_timeout=_positive(engine_data, "stop_timeout", DEFAULT_STOP_TIMEOUT),
    )

    upgrade: UpgradeConfig | None = None
    if data.get("upgrade") is not None:
        upgrade_data = _section(data, "upgrade")
        missing = [
            key for key in ("command", "version_file", "expected_version") if not upgrade_data.get(key)
        ]
        if missing:
            raise ConfigError(f"upgrade section is missing: {', '.join(missing)}")
        upgrade = UpgradeConfig(
            command=_strings(upgrade_data["command"], "upgrade.command"),
            version_file=str(upgrade_data["version_file"]),
            expected_version=str(upgrade_data["expected_version"]),
        )

    databases: list[SeedDatabase] = []
    for entry in seed_data.get("databases", None) or []:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigError("Each seed.databases entry needs a name")
        databases.append(
            SeedDatabase(
                name=str(entry["name"]),
                schema=_strings(entry.get("schema", []), "seed.databases.schema"),
            )
        )
    seed = SeedConfig(
        databases=tuple(databases),
        post_start_sql_files=_strings(
            seed_data.get("post_start_sql_files", []), "seed.post_start_sql_files"
        ),
    )

    _check_standalone_control(engine, manager.standalone, upgrade)

    log_level = str(logging_data.get("level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")

    return Config(
        engine=engine,
        node=node,
        manager=manager,
        health=health,
        upgrade=upgrade,
        seed=seed,
        log_level=log_level,
    )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping")
    return value


def _strings(value: Any, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, list):
        raise ConfigError(f"{name} must be a list of strings")
    return tuple(str(item) for item in value)


def _positive(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{key} must be positive, got {value!r}")
    return number


def _check_standalone_control(
    engine: EngineConfig, standalone: bool, upgrade: UpgradeConfig | None
) -> None:
    # A stand-alone engine daemonizes, so it is only controllable through commands
    if not (standalone or upgrade is not None):
        return
    missing = [
        name
        for name, value in (
            ("engine.shutdown_command", engine.shutdown_command),
            ("engine.status_command", engine.status_command),
        )
        if not value
    ]
    if missing:
        reason = "manager.standalone" if standalone else "the upgrade section"
        raise ConfigError(f"{reason} requires {' and '.join(missing)}")


def _check_address(address: str, name: str) -> None:
    try:
        split_address(address)
    except ValueError as e:
        raise ConfigError(f"{name}: {e}") from e
