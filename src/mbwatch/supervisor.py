# =============================================================================
# Watcher Supervisor
# =============================================================================
# Turns the config into a list of watch targets and runs one ChannelWatcher
# per target, concurrently, until every one of them has stopped.
#
# Two ways of choosing what to watch:
#   - Default: every Channel, watching INBOX on its far store
#   - --group NAME: every (channel, mailbox) pair listed in that Group
#
# Watchers are independent asyncio tasks. One watcher stopping, or crashing,
# never cancels the others; the supervisor only returns once all of them are
# done. In normal operation that is never, and the process runs until it is
# interrupted.
# =============================================================================

import asyncio
import logging

from mbwatch.config import Config, ConfigError
from mbwatch.imap.client import connect
from mbwatch.imap.idle import ChannelWatcher, Connector, WatcherState, WatchTarget
from mbwatch.sync import SyncRunner

logger = logging.getLogger(__name__)

# Mailbox watched when no group is given
DEFAULT_MAILBOX = "INBOX"


def build_targets(config: Config, group: str | None = None) -> list[WatchTarget]:
    """
    Work out which mailboxes to watch.

    Args:
        config: The loaded config.
        group: Name of a Group to watch, or None to watch INBOX on every
               channel.

    Returns:
        One WatchTarget per mailbox to watch, in config order.

    Raises:
        ConfigError: If the group, a channel or a far store can't be found,
                     a group entry has no mailbox, or the same
                     channel:mailbox is listed twice.
    """
    if group is None:
        return _unique([
            _target(config, channel.name, channel.far, DEFAULT_MAILBOX)
            for channel in config.channels
        ])

    group_config = config.find_group(group)
    if group_config is None:
        raise ConfigError(f"Unable to find group {group}")

    targets = []
    for channel_name, mailbox in group_config.channels:
        channel = config.find_channel(channel_name)
        if channel is None:
            raise ConfigError(f"Group {group} refers to unknown channel {channel_name}")
        if not mailbox:
            raise ConfigError(
                f"Group {group} has no mailbox for channel {channel_name} "
                f"(expected {channel_name}:<mailbox>)"
            )
        targets.append(_target(config, channel.name, channel.far, mailbox))
    return _unique(targets)


def _target(config: Config, channel: str, far: str, mailbox: str) -> WatchTarget:
    store = config.find_imap_store(far)
    if store is None:
        raise ConfigError(f"Unable to find store {far} for channel {channel}")
    return WatchTarget(channel=channel, mailbox=mailbox, store=store)


def _unique(targets: list[WatchTarget]) -> list[WatchTarget]:
    """Reject targets that would watch and sync the same mailbox twice."""
    seen = set()
    for target in targets:
        if target.spec in seen:
            raise ConfigError(f"{target.spec} is listed more than once")
        seen.add(target.spec)
    return targets


class Supervisor:
    """
    Runs a ChannelWatcher for each target and waits for all of them.

    Usage:
        >>> supervisor = Supervisor(build_targets(config), SyncRunner())
        >>> results = await supervisor.run()
        >>> results["work:INBOX"]
        <WatcherState.UNSUPPORTED: 4>
    """

    def __init__(
        self,
        targets: list[WatchTarget],
        sync_runner: SyncRunner,
        connector: Connector = connect,
        reconnect_delay: float | None = None,
    ) -> None:
        self.watchers = [
            ChannelWatcher(
                target,
                sync_runner,
                connector=connector,
                reconnect_delay=reconnect_delay,
            )
            for target in targets
        ]

    async def run(self) -> dict[str, WatcherState]:
        """
        Start every watcher and wait until all have stopped.

        Returns:
            Mapping of "<channel>:<mailbox>" to the state each watcher
            stopped in. A watcher that raised unexpectedly counts as FAILED.
        """
        if not self.watchers:
            logger.warning("No channels to watch")
            return {}

        logger.info(f"Starting {len(self.watchers)} watchers")

        tasks = [
            asyncio.create_task(watcher.run(), name=f"watch-{watcher.target.spec}")
            for watcher in self.watchers
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: dict[str, WatcherState] = {}
        for watcher, outcome in zip(self.watchers, outcomes):
            spec = watcher.target.spec
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(f"Watcher for {spec} crashed: {outcome!r}")
                watcher.state = WatcherState.FAILED
                outcome = WatcherState.FAILED
            results[spec] = outcome

        logger.info("All watchers have stopped")
        return results
