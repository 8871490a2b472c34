# =============================================================================
# Configuration Management
# =============================================================================
# Loads and parses the mbsync configuration file that mbwatch shares with
# mbsync itself.
#
# Locations (first match wins):
#   - --config PATH on the command line
#   - $HOME/.mbsyncrc
#   - $XDG_CONFIG_HOME/isyncrc  (default: ~/.config/isyncrc)
#
# Grammar:
#   - One "Keyword value" per line; blank lines and "#" comments are skipped
#   - Section keywords (IMAPStore, IMAPAccount, Channel, Group, MaildirStore)
#     open a block; field keywords apply to the currently open block
#   - Values wrapped in double quotes have the quotes removed
#
# Only the parts mbwatch needs are modeled. Other mbsync keywords are accepted
# and ignored so that a real-world config file loads unchanged.
# =============================================================================

import copy
import logging
import os
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path

from mbwatch.core import Channel, Group, ImapAccount, MailStore, parse_store_ref

logger = logging.getLogger(__name__)


# =============================================================================
# Config File Location
# =============================================================================

CONFIG_FILE_NAME = ".mbsyncrc"
XDG_CONFIG_FILE_NAME = "isyncrc"


def get_home() -> Path:
    """
    Returns the user's home directory from $HOME.

    Raises:
        ConfigError: If $HOME is not set.
    """
    home = os.environ.get("HOME")
    if not home:
        raise ConfigError("No HOME env var. This is required to find your config file")
    return Path(home)


def get_xdg_config_home() -> Path:
    """
    Returns the XDG config directory.

    Respects $XDG_CONFIG_HOME if set, otherwise uses ~/.config/
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config)
    return get_home() / ".config"


def default_config_path() -> Path:
    """
    Returns the config file mbsync itself would read.

    ~/.mbsyncrc is preferred; $XDG_CONFIG_HOME/isyncrc is used only when
    ~/.mbsyncrc does not exist and the XDG file does.
    """
    legacy = get_home() / CONFIG_FILE_NAME
    if legacy.exists():
        return legacy

    xdg = get_xdg_config_home() / XDG_CONFIG_FILE_NAME
    if xdg.exists():
        return xdg

    return legacy


# =============================================================================
# Config Model
# =============================================================================

@dataclass
class Config:
    """
    Parsed contents of an mbsync config file.

    Lookups return deep copies, so callers (one per watcher) can keep what
    they get without sharing state with the Config or with each other.

    Usage:
        >>> config = Config.load()
        >>> store = config.find_imap_store(":remote:")
    """
    imap_stores: list[MailStore] = field(default_factory=list)
    imap_accounts: list[ImapAccount] = field(default_factory=list)
    channels: list[Channel] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """
        Load and parse a config file.

        Args:
            path: File to read. Defaults to default_config_path().

        Raises:
            ConfigError: If the file can't be read or is malformed.
        """
        if path is None:
            path = default_config_path()

        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Unable to read config file {path}: {e}") from e

        logger.debug(f"Loading config from {path}")
        return cls.parse(text)

    @classmethod
    def parse(cls, text: str) -> "Config":
        """Parse config file contents. See ConfigParser."""
        return ConfigParser().parse(text)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_imap_store(self, ref: str) -> MailStore | None:
        """
        Find a store by reference (":name:" optionally followed by a path).

        If the store names an IMAPAccount, the account's settings fill in
        any fields the store leaves unset.

        Returns:
            A copy of the matching store, or None.
        """
        parsed = parse_store_ref(ref)
        if parsed is None:
            return None
        name, _path = parsed

        for store in self.imap_stores:
            if store.name == name:
                store = copy.deepcopy(store)
                if store.account:
                    account = self.find_imap_account(store.account)
                    if account is not None:
                        store = store.with_account(account)
                return store
        return None

    def find_imap_account(self, name: str) -> ImapAccount | None:
        return _find_by_name(self.imap_accounts, name)

    def find_channel(self, name: str) -> Channel | None:
        return _find_by_name(self.channels, name)

    def find_group(self, name: str) -> Group | None:
        return _find_by_name(self.groups, name)


def _find_by_name(items, name):
    for item in items:
        if item.name == name:
            return copy.deepcopy(item)
    return None


# =============================================================================
# Parser
# =============================================================================

class Section(Enum):
    """Kinds of block a config line can belong to."""
    IMAP_STORE = auto()
    IMAP_ACCOUNT = auto()
    CHANNEL = auto()
    GROUP = auto()
    MAILDIR_STORE = auto()      # Local store, not modeled


@dataclass
class Cursor:
    """The currently open block: its kind and index into its collection."""
    section: Section
    index: int


# Keywords that open a new block
SECTION_KEYWORDS = {
    "IMAPStore": Section.IMAP_STORE,
    "IMAPAccount": Section.IMAP_ACCOUNT,
    "Channel": Section.CHANNEL,
    "Group": Section.GROUP,
    "MaildirStore": Section.MAILDIR_STORE,
}

# Connection fields shared by IMAPStore and IMAPAccount: keyword -> attribute
CONNECTION_FIELDS = {
    "Host": "host",
    "Port": "port",
    "User": "user",
    "Pass": "password",
    "PassCmd": "password_command",
    "CertificateFile": "cert_file",
}

# Channel fields; Master/Slave are the pre-1.4 names for Far/Near
CHANNEL_FIELDS = {
    "Near": "near",
    "Far": "far",
    "Slave": "near",
    "Master": "far",
}

# mbsync keywords that don't affect watching
IGNORED_KEYWORDS = frozenset({
    "Path", "Inbox", "SubFolders", "Flatten", "InfoDelimiter", "AltMap",
    "Trash", "TrashNewOnly", "TrashRemoteNew", "MaxSize", "MapInbox",
    "Tunnel", "AuthMechs", "SSLType", "SSLVersions", "TLSType", "TLSVersions",
    "SystemCertificates", "ClientCertificate", "ClientKey", "CipherString",
    "PipelineDepth", "DisableExtensions", "Timeout", "UseNamespace",
    "PathDelimiter", "UseKeychain", "LoginAutoBinding",
    "Patterns", "Pattern", "MaxMessages", "ExpireUnread", "Sync", "Create",
    "Remove", "Expunge", "ExpungeSolo", "CopyArrivalDate", "SyncState",
    "FSync", "FieldDelimiter", "BufferLimit",
})


class ConfigParser:
    """
    Line-by-line parser for mbsync config text.

    The parser tracks the open block with an explicit Cursor. Field keywords
    only ever touch the open block, and only if it is of the right kind: a
    "Host" line inside a Channel section is an error rather than a silent
    update to some earlier store.
    """

    def __init__(self) -> None:
        self.config = Config()
        self.cursor: Cursor | None = None
        self.line_number = 0

    def parse(self, text: str) -> Config:
        for line in text.splitlines():
            self.line_number += 1
            self._parse_line(line)
        return self.config

    def _parse_line(self, line: str) -> None:
        line = line.strip()
        if not line or line.startswith("#"):
            return

        keyword, value = _split_keyword(line)
        value = _remove_quotes(value)

        if keyword in SECTION_KEYWORDS:
            self._open(SECTION_KEYWORDS[keyword], value)
        elif keyword == "Account":
            self._open_entity(Section.IMAP_STORE, keyword).account = value
        elif keyword in CONNECTION_FIELDS:
            self._set_connection_field(keyword, value)
        elif keyword in CHANNEL_FIELDS:
            setattr(self._open_entity(Section.CHANNEL, keyword), CHANNEL_FIELDS[keyword], value)
        elif keyword == "Channels":
            self._open_entity(Section.GROUP, keyword).channels = Group.parse_channels(value)
        elif keyword in IGNORED_KEYWORDS:
            logger.debug(f"Ignoring config line {self.line_number}: {keyword}")
        elif value == "":
            # A bare unknown word marks the end of what we care about
            return
        else:
            raise self._error(f"Unrecognized keyword {keyword!r}")

    def _open(self, section: Section, name: str) -> None:
        """Start a new block and point the cursor at it."""
        if section is Section.MAILDIR_STORE:
            self.cursor = Cursor(section, -1)
            return

        collection, factory = self._collection(section)
        collection.append(factory(name=name))
        self.cursor = Cursor(section, len(collection) - 1)

    def _collection(self, section: Section):
        if section is Section.IMAP_STORE:
            return self.config.imap_stores, MailStore
        if section is Section.IMAP_ACCOUNT:
            return self.config.imap_accounts, ImapAccount
        if section is Section.CHANNEL:
            return self.config.channels, Channel
        if section is Section.GROUP:
            return self.config.groups, Group
        raise ValueError(f"{section.name} blocks are not modeled")

    def _open_entity(self, section: Section, keyword: str, *alternatives: Section):
        """Return the entity under the cursor if it is one of the given kinds."""
        allowed = (section, *alternatives)
        if self.cursor is None or self.cursor.section not in allowed:
            kinds = " or ".join(s.name for s in allowed)
            raise self._error(f"{keyword} must appear inside a {kinds} section")
        collection, _ = self._collection(self.cursor.section)
        return collection[self.cursor.index]

    def _set_connection_field(self, keyword: str, value: str) -> None:
        if self.cursor is not None and self.cursor.section is Section.MAILDIR_STORE:
            # mbsync allows Path/Inbox etc. here; connection fields make no sense
            raise self._error(f"{keyword} is not valid in a MaildirStore section")

        entity = self._open_entity(Section.IMAP_STORE, keyword, Section.IMAP_ACCOUNT)

        if keyword == "Port":
            setattr(entity, "port", self._parse_port(value))
        else:
            setattr(entity, CONNECTION_FIELDS[keyword], value)

    def _parse_port(self, value: str) -> int:
        try:
            port = int(value)
        except ValueError as e:
            raise self._error(f"Invalid port {value!r}") from e
        if not 0 < port < 65536:
            raise self._error(f"Port {port} out of range")
        return port

    def _error(self, message: str) -> "ConfigError":
        return ConfigError(f"line {self.line_number}: {message}")


def _split_keyword(line: str) -> tuple[str, str]:
    """Split a line at the first whitespace into (keyword, rest)."""
    parts = line.split(None, 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1].strip()


def _remove_quotes(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(Exception):
    """Raised when the config file is missing, malformed or inconsistent."""
    pass
