# =============================================================================
# mbwatch: IMAP IDLE Watcher for mbsync
# =============================================================================
#
# mbwatch reads your mbsync config, opens an IMAP IDLE connection for every
# channel's remote store, and runs mbsync for that channel the moment the
# server reports new mail.
#
# Features:
#   - Reads ~/.mbsyncrc directly (IMAPStore, IMAPAccount, Channel, Group)
#   - Pass / PassCmd credentials, re-read on every reconnect
#   - Watch every channel's INBOX, or the mailboxes listed in a Group
#   - Automatic reconnection when a connection drops
#
# =============================================================================

__version__ = "0.1.0"
__app_name__ = "mbwatch"

# Main entry point - this is what gets called by the 'mbwatch' command
from mbwatch.app import main

__all__ = ["main", "__version__", "__app_name__"]
