"""Exceptions for dqlite-init."""


class DqliteInitError(Exception):
    """Base exception for dqlite-init errors."""

    pass


class ConfigError(DqliteInitError):
    """Invalid or unreadable configuration."""

    pass


class ConnectionError(DqliteInitError):
    """Error establishing or maintaining a connection to a node."""

    pass


class ProtocolError(DqliteInitError):
    """Protocol-level error."""

    pass


class OperationalError(DqliteInitError):
    """Failure response returned by a node."""

    code: int
    message: str

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class ClusterStateError(DqliteInitError):
    """Quorum state is ambiguous and needs an operator to resolve it."""

    pass


class EngineError(DqliteInitError):
    """The database engine could not be started."""

    pass


class UpgradeError(DqliteInitError):
    """The upgrade command failed."""

    output: str

    def __init__(self, message: str, output: str = "") -> None:
        self.output = output
        super().__init__(message)


class ReachabilityTimeoutError(DqliteInitError):
    """The engine did not become reachable before the deadline."""

    pass


class ShutdownError(DqliteInitError):
    """The engine did not stop cleanly."""

    pass


class StageError(DqliteInitError):
    """Fatal failure tagged with the orchestration stage it happened in."""

    stage: str

    def __init__(self, stage: str, error: BaseException) -> None:
        self.stage = stage
        self.error = error
        super().__init__(f"{stage}: {error}")
