"""Command-line entry point."""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence

from dqliteinit import create_orchestrator
from dqliteinit.config import DEFAULT_CONFIG_PATH, LOG_LEVELS, Config, load_config
from dqliteinit.exceptions import (
    ClusterStateError,
    ConfigError,
    ShutdownError,
    StageError,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_CLUSTER_STATE = 3
EXIT_SHUTDOWN = 4

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="dqlite-init",
        description="Start a dqlite node, choosing between bootstrap, join and stand-alone",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the YAML configuration (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--force-bootstrap",
        action="store_true",
        default=None,
        help="Bootstrap even though this node was clustered and no peer is healthy",
    )
    parser.add_argument(
        "--standalone",
        action="store_true",
        default=None,
        help="Start with replication disabled for maintenance",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="Override the configured log level",
    )
    return parser


def exit_code_for(error: BaseException) -> int:
    """Map a fatal error to the process exit status."""
    if isinstance(error, StageError):
        error = error.error
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, ClusterStateError):
        return EXIT_CLUSTER_STATE
    if isinstance(error, ShutdownError):
        return EXIT_SHUTDOWN
    return EXIT_FAILURE


async def run(config: Config) -> int:
    """Execute one orchestration and translate its outcome to an exit status."""
    orchestrator = create_orchestrator(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, orchestrator.shutdown)

    try:
        state = await orchestrator.execute()
    except StageError as e:
        logger.error("Fatal error during %s: %s", e.stage, e.error)
        return exit_code_for(e)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    logger.info("Process exited without error, final state %s", state)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config).with_overrides(
            force_bootstrap=args.force_bootstrap,
            standalone=args.standalone,
            log_level=args.log_level,
        )
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error("Error loading config: %s", e)
        return EXIT_CONFIG

    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    return asyncio.run(run(config))


if __name__ == "__main__":
    sys.exit(main())
