# =============================================================================
# Channel and Group Models
# =============================================================================
# A Channel pairs a near (local) store with a far (remote) store. Only the far
# store is watched; the near side is whatever mbsync syncs into.
#
# A Group selects channels and, for each one, the mailbox to watch:
#
#   Group work
#   Channels work-mail:INBOX,work-mail:Archive
#
# Store references use mbsync's ":store:" syntax, optionally followed by a
# mailbox path (":remote:Archive").
# =============================================================================

from dataclasses import dataclass, field


def parse_store_ref(ref: str) -> tuple[str, str] | None:
    """
    Split a store reference into store name and mailbox path.

    Args:
        ref: Reference as written in a Channel section, e.g. ":remote:" or
             ":remote:Archive".

    Returns:
        (store_name, path) tuple, or None if `ref` is not of the ":name:" form.

    Example:
        >>> parse_store_ref(":remote:Archive")
        ('remote', 'Archive')
        >>> parse_store_ref("remote") is None
        True
    """
    if not ref.startswith(":"):
        return None
    end = ref.find(":", 1)
    if end <= 1:
        return None
    return ref[1:end], ref[end + 1:]


@dataclass
class Channel:
    """
    A sync relationship between two stores.

    Attributes:
        name: Channel name, passed to the sync command as "<name>:<mailbox>".
        near: Reference to the local store (":local:").
        far: Reference to the remote store (":remote:").
    """
    name: str
    near: str = ""
    far: str = ""


@dataclass
class Group:
    """
    A named, ordered list of (channel, mailbox) pairs.

    An entry written without a colon has an empty mailbox name.
    """
    name: str
    channels: list[tuple[str, str]] = field(default_factory=list)

    @staticmethod
    def parse_channels(value: str) -> list[tuple[str, str]]:
        """
        Parse a "Channels" value into (channel, mailbox) pairs.

        Example:
            >>> Group.parse_channels("a:INBOX, b:Archive, c")
            [('a', 'INBOX'), ('b', 'Archive'), ('c', '')]
        """
        pairs = []
        for entry in value.split(","):
            entry = entry.strip()
            if not entry:
                continue
            parts = entry.split(":")
            channel = parts[0]
            mailbox = parts[1] if len(parts) > 1 else ""
            pairs.append((channel, mailbox))
        return pairs
