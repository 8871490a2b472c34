# =============================================================================
# Sync Runner
# =============================================================================
# Runs the external sync command (mbsync by default) for one channel and
# mailbox:
#
#   mbsync --all <channel>:<mailbox>
#
# The command runs as an asyncio subprocess, so a long sync only holds up the
# watcher that asked for it. What happens when the command exits non-zero is
# decided by SyncFailurePolicy: log and carry on, or fail the watcher.
# =============================================================================

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_SYNC_COMMAND = ("mbsync",)

# Lines of stderr to include when reporting a failed sync
STDERR_TAIL_LINES = 5


class SyncFailurePolicy(Enum):
    """What to do when the sync command exits with a non-zero status."""
    CONTINUE = "continue"       # Log a warning and keep watching
    ESCALATE = "escalate"       # Raise SyncCommandError, failing the watcher


@dataclass
class SyncResult:
    """Outcome of one sync command run."""
    spec: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class SyncRunner:
    """
    Invokes the sync command for a "<channel>:<mailbox>" spec.

    Usage:
        >>> runner = SyncRunner()
        >>> result = await runner.run("work:INBOX")

    Attributes:
        command: Program and leading arguments, e.g. ("mbsync",) or
                 ("mbsync", "-c", "/path/to/rc").
        policy: How to treat a non-zero exit status.
    """

    def __init__(
        self,
        command: tuple[str, ...] = DEFAULT_SYNC_COMMAND,
        policy: SyncFailurePolicy = SyncFailurePolicy.CONTINUE,
    ) -> None:
        self.command = tuple(command)
        self.policy = policy

    def argv(self, spec: str) -> list[str]:
        """Full argument list for syncing `spec`."""
        return [*self.command, "--all", spec]

    async def run(self, spec: str) -> SyncResult:
        """
        Run the sync command and wait for it to exit.

        Args:
            spec: "<channel>:<mailbox>" to sync.

        Returns:
            The command's result.

        Raises:
            SyncCommandError: If the command can't be started, or if it exits
                              non-zero under the ESCALATE policy.
        """
        argv = self.argv(spec)
        logger.debug(f"Running {' '.join(argv)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SyncCommandError(f"Unable to sync mail for {spec}: {e}") from e

        _stdout, stderr = await process.communicate()
        result = SyncResult(spec=spec, returncode=process.returncode)

        if result.ok:
            logger.info(f"Finished syncing {spec}")
            return result

        tail = _tail(stderr)
        message = f"Sync of {spec} exited with status {result.returncode}: {tail}"
        if self.policy is SyncFailurePolicy.ESCALATE:
            raise SyncCommandError(message)

        logger.warning(message)
        return result


def _tail(output: bytes | None) -> str:
    if not output:
        return ""
    lines = output.decode("utf-8", errors="replace").strip().splitlines()
    return " | ".join(lines[-STDERR_TAIL_LINES:])


# =============================================================================
# Exceptions
# =============================================================================

class SyncCommandError(Exception):
    """Raised when the sync command can't run, or fails under ESCALATE."""
    pass
