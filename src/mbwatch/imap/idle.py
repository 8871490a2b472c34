# =============================================================================
# Channel Watcher
# =============================================================================
# Per-channel IDLE loop: wait for the server to report a change, run the sync
# command, and go back to waiting.
#
# States:
#
#   CONNECTING --> IDLING --> SYNCING --+
#       ^            |  ^               |
#       |            |  +---------------+
#       +--(error)---+
#
#   CONNECTING --> UNSUPPORTED   (server has no IDLE; terminal)
#   CONNECTING --> FAILED        (first connection failed; terminal)
#   SYNCING    --> FAILED        (sync command couldn't run; terminal)
#
# Design notes:
#   - Each watcher owns its session; nothing is shared between watchers
#   - Only the very first connection may fail the watcher. Once it has been
#     connected, connection failures are retried forever after a fixed delay
#   - Syncs for a channel never overlap: the next IDLE starts only after the
#     sync command has exited
# =============================================================================

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Awaitable, Callable

from mbwatch.core import MailStore
from mbwatch.credentials import ResolutionError
from mbwatch.imap.client import IMAPError, NotificationWaitError, Session, connect
from mbwatch.sync import SyncCommandError, SyncRunner

logger = logging.getLogger(__name__)

# Type of the connect function, replaceable for testing
Connector = Callable[[MailStore, str], Awaitable[Session | None]]


class WatcherState(Enum):
    """Where a ChannelWatcher is in its loop."""
    CONNECTING = auto()
    IDLING = auto()
    SYNCING = auto()
    UNSUPPORTED = auto()    # Terminal: server doesn't support IDLE
    FAILED = auto()         # Terminal: unrecoverable error

    @property
    def is_terminal(self) -> bool:
        return self in (WatcherState.UNSUPPORTED, WatcherState.FAILED)


@dataclass(frozen=True)
class WatchTarget:
    """
    What a watcher watches: one mailbox of one channel's far store.

    Attributes:
        channel: Channel name.
        mailbox: Mailbox on the far store, e.g. "INBOX".
        store: The channel's far store (an owned copy).
    """
    channel: str
    mailbox: str
    store: MailStore

    @property
    def spec(self) -> str:
        """The "<channel>:<mailbox>" argument for the sync command."""
        return f"{self.channel}:{self.mailbox}"


@dataclass
class IdleEvent:
    """A change reported by the server while idling."""
    spec: str
    event_type: str  # "new_mail", "expunge", "flags", "unknown"
    message_count: int | None = None  # For EXISTS events


def parse_notification(spec: str, notification: str) -> IdleEvent:
    """
    Classify an untagged IDLE response.

    Common notifications (aioimaplib strips the leading *):
        - "N EXISTS" - N messages now exist
        - "N EXPUNGE" - Message N was deleted
        - "N FETCH (FLAGS ...)" - Flags changed on message N
    """
    notification = notification.strip()
    if notification.startswith("*"):
        notification = notification[1:].strip()

    match = re.match(r"(\d+)\s+EXISTS", notification, re.IGNORECASE)
    if match:
        return IdleEvent(spec, "new_mail", message_count=int(match.group(1)))

    if re.match(r"\d+\s+EXPUNGE", notification, re.IGNORECASE):
        return IdleEvent(spec, "expunge")

    if "FETCH" in notification.upper():
        return IdleEvent(spec, "flags")

    return IdleEvent(spec, "unknown")


class ChannelWatcher:
    """
    Watches one channel's mailbox and syncs it whenever it changes.

    Usage:
        >>> watcher = ChannelWatcher(target, SyncRunner())
        >>> final_state = await watcher.run()

    The watcher runs until it reaches a terminal state (UNSUPPORTED or
    FAILED) or its task is cancelled.
    """

    # How long to wait before reconnecting after an error
    RECONNECT_DELAY = 10  # seconds

    def __init__(
        self,
        target: WatchTarget,
        sync_runner: SyncRunner,
        connector: Connector = connect,
        reconnect_delay: float | None = None,
    ) -> None:
        self.target = target
        self.state = WatcherState.CONNECTING
        self.sync_count = 0  # Completed sync runs
        self._sync_runner = sync_runner
        self._connector = connector
        self._reconnect_delay = (
            self.RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        )
        self._session: Session | None = None

    async def run(self) -> WatcherState:
        """
        Run the watch loop.

        Returns:
            The terminal state the watcher stopped in.
        """
        spec = self.target.spec
        try:
            self.state = WatcherState.CONNECTING
            try:
                self._session = await self._connector(self.target.store, self.target.mailbox)
            except (IMAPError, ResolutionError) as e:
                logger.error(f"Unable to connect to channel {spec}: {e}")
                return self._stop(WatcherState.FAILED)

            if self._session is None:
                logger.error(f"Unable to watch channel {spec}, IDLE is not available")
                return self._stop(WatcherState.UNSUPPORTED)

            logger.info(f"Watching for messages on channel {spec}")

            while True:
                self.state = WatcherState.IDLING
                try:
                    changes = await self._session.wait_for_change()
                except NotificationWaitError as e:
                    logger.error(f"Error while idling on {spec}: {e}")
                    await self._close_session()
                    self._session = await self._reconnect()
                    if self._session is None:
                        logger.error(f"Channel {spec} no longer supports IDLE, giving up")
                        return self._stop(WatcherState.UNSUPPORTED)
                    continue

                self.state = WatcherState.SYNCING
                self._log_changes(changes)
                logger.info(f"Syncing changes for {spec}")
                try:
                    await self._sync_runner.run(spec)
                except SyncCommandError as e:
                    logger.error(f"Stopping watcher for {spec}: {e}")
                    return self._stop(WatcherState.FAILED)
                self.sync_count += 1
        finally:
            await self._close_session()

    async def _reconnect(self) -> Session | None:
        """
        Reconnect after the fixed delay, retrying until it works.

        Returns:
            A new session, or None if the server stopped offering IDLE.
        """
        spec = self.target.spec
        attempt = 0
        while True:
            attempt += 1
            logger.info(f"Reconnecting {spec} in {self._reconnect_delay}s (attempt {attempt})")
            await asyncio.sleep(self._reconnect_delay)

            self.state = WatcherState.CONNECTING
            try:
                return await self._connector(self.target.store, self.target.mailbox)
            except (IMAPError, ResolutionError) as e:
                logger.error(f"Reconnect failed for {spec}: {e}")

    async def _close_session(self) -> None:
        if self._session is not None:
            session, self._session = self._session, None
            await session.close()

    def _stop(self, state: WatcherState) -> WatcherState:
        self.state = state
        logger.info(f"Watcher for {self.target.spec} stopped ({state.name})")
        return state

    def _log_changes(self, changes: list[str]) -> None:
        for line in changes:
            event = parse_notification(self.target.spec, line)
            if event.event_type == "new_mail":
                logger.info(f"IDLE: {event.spec} now has {event.message_count} messages")
            else:
                logger.debug(f"IDLE: {event.spec} {event.event_type}: {line}")
