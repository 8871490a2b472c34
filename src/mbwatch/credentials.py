# =============================================================================
# Credential Resolution
# =============================================================================
# Works out the password for a store, the same way mbsync does:
#   - "Pass" gives the password literally
#   - "PassCmd" gives a shell command whose output is the password
#
# Passwords are resolved on every connection attempt and never cached, so a
# rotated password (or a re-unlocked password manager) is picked up on the
# next reconnect. The command runs as an asyncio subprocess so that a slow
# password manager prompt doesn't stall the other watchers.
# =============================================================================

import asyncio
import logging

from mbwatch.core import MailStore

logger = logging.getLogger(__name__)


async def resolve_password(store: MailStore) -> str:
    """
    Resolve the password for a store.

    A literal password wins over a password command. A store with neither
    resolves to an empty string.

    Args:
        store: The store to resolve the password for.

    Returns:
        The password, with surrounding whitespace removed if it came from a
        command.

    Raises:
        ResolutionError: If the password command can't be run or exits with
                         a non-zero status.
    """
    if store.password is not None:
        return store.password

    if store.password_command is not None:
        return await _run_password_command(store)

    return ""


async def _run_password_command(store: MailStore) -> str:
    logger.debug(f"Running password command for {store.name}")

    try:
        process = await asyncio.create_subprocess_shell(
            store.password_command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        raise ResolutionError(
            f"Failed to execute password command for {store.name}: {e}"
        ) from e

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise ResolutionError(
            f"Password command for {store.name} exited with status "
            f"{process.returncode}: {detail}"
        )

    return stdout.decode("utf-8", errors="replace").strip()


# =============================================================================
# Exceptions
# =============================================================================

class ResolutionError(Exception):
    """Raised when a store's password command fails."""
    pass
