# =============================================================================
# mbwatch Core Module
# =============================================================================
# Core domain models for mbwatch. These are plain Python dataclasses with no
# external dependencies, mirroring the sections of an mbsync config file:
#   - MailStore: a remote IMAP store (IMAPStore section)
#   - ImapAccount: shared connection settings (IMAPAccount section)
#   - Channel: a near/far pairing of stores (Channel section)
#   - Group: a named set of channel/mailbox pairs (Group section)
# =============================================================================

from mbwatch.core.store import DEFAULT_IMAP_PORT, ImapAccount, MailStore
from mbwatch.core.channel import Channel, Group, parse_store_ref

__all__ = [
    "DEFAULT_IMAP_PORT",
    "ImapAccount",
    "MailStore",
    "Channel",
    "Group",
    "parse_store_ref",
]
