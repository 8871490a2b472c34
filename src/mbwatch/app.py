# =============================================================================
# mbwatch Main Application
# =============================================================================
# Command-line entry point. Wires the pieces together:
#   - Parse arguments and set up logging
#   - Load the mbsync config and decide what to watch
#   - Run the supervisor until every watcher stops (or Ctrl-C)
#
# Exit codes:
#   0   every watcher stopped cleanly (e.g. no server supports IDLE)
#   1   bad config, or at least one watcher failed
#   130 interrupted
# =============================================================================

import argparse
import asyncio
import logging
import os
import shlex
import sys
from pathlib import Path

from mbwatch import __version__, __app_name__
from mbwatch.config import Config, ConfigError, default_config_path
from mbwatch.imap.idle import WatcherState
from mbwatch.supervisor import Supervisor, build_targets
from mbwatch.sync import DEFAULT_SYNC_COMMAND, SyncFailurePolicy, SyncRunner

logger = logging.getLogger(__name__)

# Environment variable for the default log level
LOG_LEVEL_ENV = "MBWATCH_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="Watch IMAP mailboxes with IDLE and run mbsync when they change",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--paths",
        action="store_true",
        help="Print the config file path and exit",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to the mbsync config file (default: ~/.mbsyncrc)",
    )

    parser.add_argument(
        "--group",
        help="Watch the channel:mailbox pairs of this Group instead of every channel's INBOX",
    )

    parser.add_argument(
        "--sync-command",
        default=" ".join(DEFAULT_SYNC_COMMAND),
        help="Command used to sync a channel (default: %(default)s)",
    )

    parser.add_argument(
        "--on-sync-failure",
        choices=[policy.value for policy in SyncFailurePolicy],
        default=SyncFailurePolicy.CONTINUE.value,
        help="What to do when the sync command exits non-zero (default: %(default)s)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging)",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """
    Configure the root logger.

    --debug wins; otherwise $MBWATCH_LOG_LEVEL is used, defaulting to INFO.
    """
    if debug:
        level = logging.DEBUG
    else:
        name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for mbwatch.

    This function:
        1. Parses command-line arguments
        2. Handles special commands (--paths, --version)
        3. Loads configuration and builds the watch list
        4. Runs the watchers until they all stop

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_args(argv)
    setup_logging(args.debug)

    try:
        config_path = args.config or default_config_path()

        if args.paths:
            print(f"Config file:  {config_path}")
            return 0

        config = Config.load(config_path)
        targets = build_targets(config, group=args.group)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    sync_command = tuple(shlex.split(args.sync_command))
    if not sync_command:
        print("Config error: --sync-command must not be empty", file=sys.stderr)
        return 1

    sync_runner = SyncRunner(
        command=sync_command,
        policy=SyncFailurePolicy(args.on_sync_failure),
    )
    supervisor = Supervisor(targets, sync_runner)

    try:
        results = asyncio.run(supervisor.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 130

    failed = [spec for spec, state in results.items() if state is WatcherState.FAILED]
    if failed:
        logger.error(f"Watchers failed: {', '.join(failed)}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
