"""Persisted cluster role of this node.

The role is the only state that survives restarts. It is stored as a small
JSON document and replaced atomically: the new record is written to
``<state_file>.tmp``, flushed and fsynced, then renamed over the old one,
so a reader only ever sees the previous record or the complete new one.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)


class NodeRole(StrEnum):
    """This node's belief about its cluster membership."""

    NEEDS_BOOTSTRAP = "NEEDS_BOOTSTRAP"
    SINGLE_NODE = "SINGLE_NODE"
    CLUSTERED = "CLUSTERED"


@dataclass(frozen=True)
class PersistedState:
    """Record stored on disk."""

    role: NodeRole
    updated_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "updated_at": self.updated_at.isoformat()}

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "PersistedState":
        return cls(
            role=NodeRole(payload["role"]),
            updated_at=datetime.fromisoformat(str(payload["updated_at"])),
        )


class StateStore(ABC):
    """Abstract interface for the persisted node role."""

    @abstractmethod
    async def load(self) -> NodeRole:
        """Return the last committed role, NEEDS_BOOTSTRAP when there is none."""
        ...

    @abstractmethod
    async def save(self, role: NodeRole) -> None:
        """Commit a new role."""
        ...


class MemoryStateStore(StateStore):
    """In-memory state store."""

    def __init__(self, role: NodeRole | None = None) -> None:
        self._state: PersistedState | None = None
        if role is not None:
            self._state = PersistedState(role=role, updated_at=datetime.now(UTC))

    @property
    def state(self) -> PersistedState | None:
        return self._state

    async def load(self) -> NodeRole:
        """Return the stored role."""
        if self._state is None:
            return NodeRole.NEEDS_BOOTSTRAP
        return self._state.role

    async def save(self, role: NodeRole) -> None:
        """Replace the stored role."""
        self._state = PersistedState(role=role, updated_at=datetime.now(UTC))


class FileStateStore(StateStore):
    """State store backed by a single JSON file."""

    def __init__(self, path: str | Path, *, fsync: bool = True) -> None:
        """Initialize file store.

        Args:
            path: Location of the state file
            fsync: Force file data and the directory entry to disk on save
        """
        self._path = Path(path).expanduser()
        self._fsync = fsync

    @property
    def temp_path(self) -> Path:
        return self._path.with_name(f"{self._path.name}.tmp")

    async def load(self) -> NodeRole:
        """Read the stored role.

        A missing, unreadable or corrupt record yields NEEDS_BOOTSTRAP.
        """
        state = await asyncio.to_thread(self.read)
        if state is None:
            return NodeRole.NEEDS_BOOTSTRAP
        return state.role

    async def save(self, role: NodeRole) -> None:
        """Atomically replace the stored role."""
        state = PersistedState(role=role, updated_at=datetime.now(UTC))
        await asyncio.to_thread(self.write, state)
        logger.info("Persisted node role %s to %s", role, self._path)

    def read(self) -> PersistedState | None:
        """Read the full record, or None when absent or unusable."""
        try:
            with self._path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except FileNotFoundError:
            logger.info("No state file at %s, assuming first boot", self._path)
            return None
        except (OSError, ValueError) as e:
            logger.warning("Unreadable state file %s: %s", self._path, e)
            return None

        try:
            return PersistedState.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Corrupt state file %s: %s", self._path, e)
            return None

    def write(self, state: PersistedState) -> None:
        """Write the record to a temporary file and rename it into place."""
        parent = self._path.parent
        parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.temp_path

        with temp_path.open("w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, separators=(",", ":"), sort_keys=True)
            f.flush()
            if self._fsync:
                os.fsync(f.fileno())
        os.replace(temp_path, self._path)

        if self._fsync:
            dir_fd = os.open(parent, os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
