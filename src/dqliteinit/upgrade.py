"""Schema upgrades of the engine's data directory."""

import asyncio
import logging
import os
from pathlib import Path

from dqliteinit.config import UpgradeConfig
from dqliteinit.exceptions import UpgradeError
from dqliteinit.process import CommandRunner

logger = logging.getLogger(__name__)


class UpgradeCoordinator:
    """Runs the upgrade tool when the recorded version is stale.

    The applied version is kept in a marker file next to the data. Callers
    must run the upgrade while the engine is stopped or in stand-alone mode.
    """

    def __init__(self, config: UpgradeConfig, *, runner: CommandRunner | None = None) -> None:
        self._config = config
        self._runner = runner or CommandRunner()
        self._version_file = Path(config.version_file).expanduser()

    def installed_version(self) -> str | None:
        """Return the version recorded by the last successful upgrade."""
        try:
            return self._version_file.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    async def needs_upgrade(self) -> bool:
        """Compare the recorded version with the expected one."""
        installed = await asyncio.to_thread(self.installed_version)
        expected = self._config.expected_version
        if installed == expected:
            logger.info("Schema version %s is current", installed)
            return False
        logger.info("Schema version %s is stale, expected %s", installed, expected)
        return True

    async def run_upgrade(self) -> str:
        """Run the upgrade tool and record the new version.

        Returns the tool's output.
        """
        logger.info("Running upgrade: %s", " ".join(self._config.command))
        try:
            result = await self._runner.run(self._config.command)
        except OSError as e:
            raise UpgradeError(f"Could not run upgrade command: {e}") from e

        if not result.ok:
            raise UpgradeError(
                f"Upgrade exited with status {result.returncode}", output=result.output
            )

        await asyncio.to_thread(self._record_version)
        logger.info("Upgrade to %s complete", self._config.expected_version)
        return result.output

    def _record_version(self) -> None:
        path = self._version_file
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f"{path.name}.tmp")
        with temp_path.open("w", encoding="utf-8") as f:
            f.write(f"{self._config.expected_version}\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
