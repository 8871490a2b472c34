# =============================================================================
# Store Models
# =============================================================================
# Represents the remote side of a sync relationship: an IMAP server, the user
# to log in as, and how to obtain the password.
#
# mbsync lets connection settings live either directly in an IMAPStore section
# or in a separate IMAPAccount section that the store references with
# "Account <name>". Both shapes are supported here; the account's settings are
# folded into the store when it is looked up (see Config.find_imap_store).
# =============================================================================

from dataclasses import dataclass, fields, replace

# Standard IMAPS port; also selects implicit TLS in the connector
DEFAULT_IMAP_PORT = 993

# Fields holding the password; inherited from an account all or nothing
CREDENTIAL_FIELDS = ("password", "password_command")


@dataclass
class ImapAccount:
    """
    Connection settings shared by one or more IMAPStore sections.

    Attributes:
        name: Account name as written after "IMAPAccount".
        host: IMAP server hostname.
        port: Server port, or None to use the default (993).
        user: Login name.
        password: Literal password ("Pass").
        password_command: Shell command printing the password ("PassCmd").
        cert_file: Custom certificate file ("CertificateFile").
    """
    name: str
    host: str = ""
    port: int | None = None
    user: str = ""
    password: str | None = None
    password_command: str | None = None
    cert_file: str | None = None


@dataclass
class MailStore:
    """
    A remote IMAP store that can be watched for changes.

    Attributes:
        name: Unique store name as written after "IMAPStore". Channels refer
              to it as ":name:".
        host: IMAP server hostname.
        port: Server port, or None to use the default. Read through
              `effective_port` rather than directly.
        user: Login name.
        password: Literal password. Takes precedence over password_command.
        password_command: Shell command whose trimmed output is the password.
        cert_file: Custom certificate file. When set, certificate
                   verification is switched off for this store.
        account: Name of an IMAPAccount providing any unset fields.

    Example:
        >>> store = MailStore(name="work", host="imap.example.com", user="me")
        >>> store.effective_port
        993
    """

    name: str
    host: str = ""
    port: int | None = None
    user: str = ""

    # Credentials (at most one is used, literal first)
    password: str | None = None
    password_command: str | None = None

    # TLS override
    cert_file: str | None = None

    # mbsync "Account" reference
    account: str | None = None

    @property
    def effective_port(self) -> int:
        """Returns the configured port, falling back to 993."""
        if self.port is not None:
            return self.port
        return DEFAULT_IMAP_PORT

    @property
    def skip_tls_verify(self) -> bool:
        """Whether certificate verification is disabled for this store."""
        return self.cert_file is not None

    def with_account(self, account: ImapAccount) -> "MailStore":
        """
        Return a copy of this store with unset fields taken from `account`.

        Fields the store sets itself always win over the account's values.
        Pass and PassCmd count as one credential: a store that sets either
        takes neither from the account.
        """
        own_credential = self.password is not None or self.password_command is not None

        inherited = {}
        for f in fields(ImapAccount):
            if f.name == "name":
                continue
            if f.name in CREDENTIAL_FIELDS and own_credential:
                continue
            own = getattr(self, f.name)
            if own is None or own == "":
                inherited[f.name] = getattr(account, f.name)
        return replace(self, **inherited)

    def __str__(self) -> str:
        return f"{self.name} ({self.user}@{self.host}:{self.effective_port})"
