# =============================================================================
# IMAP Module
# =============================================================================
# Everything that talks to the IMAP server:
#   - Connecting with TLS/STARTTLS and logging in
#   - Checking for and using IMAP IDLE push notifications
#   - The per-channel watch loop built on top of those
#
# This module uses aioimaplib, so every watcher is an asyncio task and a
# blocked IDLE wait never holds up the others.
# =============================================================================

from mbwatch.imap.client import (
    Session,
    IMAPError,
    ConnectError,
    NotificationWaitError,
    connect,
)
from mbwatch.imap.idle import (
    ChannelWatcher,
    IdleEvent,
    WatcherState,
    WatchTarget,
)

__all__ = [
    # Client
    "Session",
    "IMAPError",
    "ConnectError",
    "NotificationWaitError",
    "connect",
    # IDLE
    "ChannelWatcher",
    "IdleEvent",
    "WatcherState",
    "WatchTarget",
]
