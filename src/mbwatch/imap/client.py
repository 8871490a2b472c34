# =============================================================================
# IMAP Session
# =============================================================================
# Opens an IDLE-capable session on one mailbox, on top of aioimaplib.
#
# Key responsibilities:
#   - Transport security (implicit TLS on 993, mandatory STARTTLS otherwise)
#   - Authentication with the store's resolved password
#   - Checking the server advertises IDLE (RFC 2177)
#   - Blocking until the server pushes a change to the selected mailbox
#
# Design notes:
#   - A session watches exactly one mailbox and is owned by one watcher
#   - IDLE is re-issued every 29 minutes, as the RFC recommends, without
#     returning to the caller; only a real push or a failure ends the wait
#   - aioimaplib does not fail a pending IDLE when the socket closes; the
#     session hooks connection_lost and turns it into a failed wait
#   - Stores with a CertificateFile skip certificate verification entirely
#     (the certificate is not loaded); install it in the system trust store
#     if verification matters
# =============================================================================

import asyncio
import logging
import ssl

from aioimaplib import aioimaplib

from mbwatch.core import DEFAULT_IMAP_PORT, MailStore
from mbwatch.credentials import ResolutionError, resolve_password

logger = logging.getLogger(__name__)

# Errors aioimaplib and the transport can raise mid-conversation
PROTOCOL_ERRORS = (aioimaplib.Error, aioimaplib.CommandTimeout, asyncio.TimeoutError, OSError)

# Put on the IDLE push queue when the server drops the connection
CONNECTION_LOST = [b"connection_lost"]


def _decode_lines(lines) -> list[str]:
    """Decode a list of response lines (bytes or str) to strings."""
    decoded = []
    for line in lines or []:
        if isinstance(line, (bytes, bytearray)):
            line = line.decode("utf-8", errors="replace")
        decoded.append(str(line))
    return decoded


def create_ssl_context(store: MailStore) -> ssl.SSLContext:
    """
    Build the TLS context for a store.

    Uses the system trust store, unless the store names a CertificateFile, in
    which case verification is disabled and a warning is logged.
    """
    context = ssl.create_default_context()
    if store.skip_tls_verify:
        logger.warning(f"Skipping tls verification for {store.host}")
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def connect(store: MailStore, mailbox: str) -> "Session | None":
    """
    Open a session on `mailbox` ready for IDLE.

    Steps:
        1. Connect (implicit TLS on port 993, STARTTLS on any other port)
        2. Log in with the store's user and resolved password
        3. Check for the IDLE capability
        4. Select the mailbox

    Args:
        store: Connection settings for the server.
        mailbox: Mailbox to select, e.g. "INBOX".

    Returns:
        A connected Session, or None if the server doesn't support IDLE.

    Raises:
        ConnectError: If connecting, logging in or selecting fails.
        ResolutionError: If the store's password command fails.
    """
    host, port = store.host, store.effective_port
    logger.info(f"Connecting to {host}:{port}")

    ssl_context = create_ssl_context(store)

    try:
        if port == DEFAULT_IMAP_PORT:
            client = aioimaplib.IMAP4_SSL(
                host=host,
                port=port,
                timeout=Session.TIMEOUT,
                ssl_context=ssl_context,
            )
        else:
            client = aioimaplib.IMAP4(host=host, port=port, timeout=Session.TIMEOUT)

        await client.wait_hello_from_server()
    except PROTOCOL_ERRORS as e:
        raise ConnectError(f"Could not connect to {host}:{port}: {e}") from e

    session = Session(client, store, mailbox)
    try:
        if port != DEFAULT_IMAP_PORT:
            await session.starttls(ssl_context)

        await session.login()

        if not await session.supports_idle():
            logger.info(f"Skipping connection, {host} does not support idle connections")
            await session.close()
            return None

        await session.select()
    except (ConnectError, ResolutionError):
        await session.close()
        raise
    except PROTOCOL_ERRORS as e:
        await session.close()
        raise ConnectError(f"Connection to {host}:{port} failed: {e}") from e

    return session


class Session:
    """
    An authenticated IMAP session with one mailbox selected.

    Usage:
        >>> session = await connect(store, "INBOX")
        >>> changes = await session.wait_for_change()
        >>> await session.close()

    Attributes:
        store: The store this session is connected to.
        mailbox: The selected mailbox.
    """

    # Timeout for ordinary IMAP commands (seconds)
    TIMEOUT = 30

    # Re-issue IDLE this often (RFC 2177 recommends less than 30 minutes)
    IDLE_REFRESH = 29 * 60

    # How long to wait for the server to acknowledge DONE
    IDLE_DONE_TIMEOUT = 10

    def __init__(self, client, store: MailStore, mailbox: str) -> None:
        self._client = client
        self.store = store
        self.mailbox = mailbox
        # aioimaplib only reports a dropped socket through this callback
        client.protocol.conn_lost_cb = self._on_connection_lost

    # =========================================================================
    # Setup
    # =========================================================================

    async def starttls(self, ssl_context: ssl.SSLContext) -> None:
        """
        Upgrade a plain connection to TLS.

        aioimaplib has no STARTTLS support of its own, so the command is sent
        through the protocol and the transport is upgraded with the event
        loop's start_tls().

        Raises:
            ConnectError: If the server doesn't offer STARTTLS or refuses it.
        """
        if not self._client.has_capability("STARTTLS"):
            raise ConnectError(f"{self.store.host} does not support STARTTLS")

        logger.debug(f"Upgrading connection to {self.store.host} via STARTTLS")
        protocol = self._client.protocol
        loop = asyncio.get_running_loop()

        command = aioimaplib.Command("STARTTLS", protocol.new_tag(), loop=loop)
        response = await asyncio.wait_for(protocol.execute(command), timeout=self.TIMEOUT)
        if response.result != "OK":
            raise ConnectError(
                f"STARTTLS failed on {self.store.host}: {_decode_lines(response.lines)}"
            )

        protocol.transport = await loop.start_tls(
            protocol.transport,
            protocol,
            ssl_context,
            server_hostname=self.store.host,
        )

        # Capabilities seen before the upgrade must be discarded (RFC 3501 6.2.1)
        await self._refresh_capabilities()

    async def login(self) -> None:
        """
        Authenticate with the store's credentials.

        Raises:
            ConnectError: If the server rejects the login.
            ResolutionError: If the password command fails.
        """
        password = await resolve_password(self.store)

        logger.debug(f"Authenticating as {self.store.user}")
        response = await self._client.login(self.store.user, password)

        if response.result != "OK":
            raise ConnectError(
                f"Unable to login to {self.store.host} as {self.store.user}, "
                f"please ensure your credentials are correct: {_decode_lines(response.lines)}"
            )

    async def supports_idle(self) -> bool:
        """Refresh the capability list and check for IDLE."""
        # Servers often advertise more capabilities once authenticated
        await self._refresh_capabilities()
        return self._client.has_capability("IDLE")

    async def _refresh_capabilities(self) -> None:
        await asyncio.wait_for(self._client.protocol.capability(), timeout=self.TIMEOUT)

    async def select(self) -> None:
        """
        Select the session's mailbox.

        Raises:
            ConnectError: If the mailbox can't be selected.
        """
        response = await self._client.select(self.mailbox)
        if response.result != "OK":
            raise ConnectError(
                f"Unable to select {self.mailbox} on {self.store.host}: "
                f"{_decode_lines(response.lines)}"
            )

    # =========================================================================
    # IDLE
    # =========================================================================

    async def wait_for_change(self) -> list[str]:
        """
        Block until the server reports a change to the mailbox.

        Enters IDLE and waits for an untagged response such as "3 EXISTS" or
        "2 EXPUNGE". The periodic IDLE refresh happens inside this call and
        does not return.

        Returns:
            The pushed response lines, including any that arrived while DONE
            was being acknowledged.

        Raises:
            NotificationWaitError: If the connection drops, the server says
                                   BYE, or IDLE fails.
        """
        while True:
            if self._transport_closed():
                raise NotificationWaitError(f"Connection to {self.store.host} is closed")

            try:
                idle_task = await asyncio.wait_for(
                    self._client.idle_start(timeout=self.IDLE_REFRESH),
                    timeout=self.TIMEOUT,
                )
                push = await self._client.wait_server_push(
                    timeout=self.IDLE_REFRESH + self.IDLE_DONE_TIMEOUT
                )
                if push is CONNECTION_LOST:
                    idle_task.cancel()
                    raise NotificationWaitError(f"Lost connection to {self.store.host}")
                self._client.idle_done()
                response = await asyncio.wait_for(idle_task, timeout=self.IDLE_DONE_TIMEOUT)
            except PROTOCOL_ERRORS as e:
                raise NotificationWaitError(
                    f"IDLE failed on {self.store.host}: {e!r}"
                ) from e

            if response is not None and response.result != "OK":
                raise NotificationWaitError(
                    f"IDLE rejected by {self.store.host}: {_decode_lines(response.lines)}"
                )

            lines = [] if push == aioimaplib.STOP_WAIT_SERVER_PUSH else list(push)
            lines.extend(self._drain_pushes())

            changes = [
                line for line in _decode_lines(lines)
                if line and not line.startswith("+")
            ]

            if any(line.upper().startswith("BYE") for line in changes):
                raise NotificationWaitError(f"{self.store.host} closed the connection: {changes}")

            if changes:
                logger.debug(f"IDLE notifications from {self.store.host}: {changes}")
                return changes

            logger.debug(f"IDLE refresh for {self.store.host}/{self.mailbox}")

    def _drain_pushes(self) -> list:
        """
        Empty the push queue once IDLE has ended.

        Lines the server sent between the first push and the DONE
        acknowledgement are returned so they are covered by the same sync.
        A connection-lost marker stays queued for the next wait.
        """
        queue = self._client.protocol.idle_queue
        lines = []
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return lines
            if item is CONNECTION_LOST:
                queue.put_nowait(item)
                return lines
            if item != aioimaplib.STOP_WAIT_SERVER_PUSH:
                lines.extend(item)

    def _on_connection_lost(self, exc: Exception | None) -> None:
        logger.debug(f"Connection to {self.store.host} lost: {exc!r}")
        self._client.protocol.idle_queue.put_nowait(CONNECTION_LOST)

    def _transport_closed(self) -> bool:
        transport = self._client.protocol.transport
        return transport is not None and transport.is_closing()

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close(self) -> None:
        """Log out, ignoring errors from an already dead connection."""
        if self._transport_closed():
            logger.debug(f"Connection to {self.store.host} already closed, not logging out")
            return
        try:
            await asyncio.wait_for(self._client.logout(), timeout=self.IDLE_DONE_TIMEOUT)
        except Exception as e:
            logger.warning(f"Error during logout from {self.store.host}: {e!r}")


# =============================================================================
# Exceptions
# =============================================================================

class IMAPError(Exception):
    """Base exception for IMAP operations."""
    pass


class ConnectError(IMAPError):
    """Raised when a session can't be established (transport, login, select)."""
    pass


class NotificationWaitError(IMAPError):
    """Raised when waiting for an IDLE push fails."""
    pass
