# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the mbwatch test suite.
#
# The IMAP server and the sync command are replaced with scripted fakes so
# the watcher state machine can be driven step by step.
# =============================================================================

import asyncio
import tempfile
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from aioimaplib import aioimaplib

from mbwatch.core import MailStore
from mbwatch.imap.idle import WatchTarget
from mbwatch.sync import SyncRunner


SAMPLE_CONFIG = """\
# Remote accounts
IMAPStore personal-remote
Host imap.example.com
User me@example.com
Pass "s3cret"

IMAPStore work-remote
Host mail.work.example
Port 143
User me
PassCmd "echo 123"
CertificateFile /etc/ssl/work.pem

MaildirStore personal-local
Path ~/Mail/personal/
Inbox ~/Mail/personal/INBOX

Channel personal
Far :personal-remote:
Near :personal-local:
Patterns *
Create Both

Channel work
Far :work-remote:
Near :work-local:

Group everything
Channels personal:INBOX,work:Archive
"""


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config_text():
    """A small but realistic mbsync config."""
    return SAMPLE_CONFIG


@pytest.fixture
def sample_store():
    """Create a sample MailStore for testing."""
    return MailStore(
        name="remote",
        host="imap.example.com",
        user="test@example.com",
        password="hunter2",
    )


@pytest.fixture
def sample_target(sample_store):
    """A watch target for the sample store's INBOX."""
    return WatchTarget(channel="mail", mailbox="INBOX", store=sample_store)


class FakeSession:
    """
    Session stand-in whose wait_for_change() follows a script.

    Each script item is either a list of notification lines (returned) or an
    exception (raised). Once the script runs out the wait blocks forever,
    like a quiet mailbox.
    """

    def __init__(self, script=()):
        self.script = list(script)
        self.closed = False

    async def wait_for_change(self):
        if not self.script:
            await asyncio.Event().wait()
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


class FakeConnector:
    """
    Connector stand-in returning scripted results.

    Each item is a FakeSession, None (no IDLE support) or an exception.
    """

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def __call__(self, store, mailbox):
        self.calls.append((store.name, mailbox))
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingSyncRunner(SyncRunner):
    """SyncRunner that records specs instead of running a command."""

    def __init__(self, error=None):
        super().__init__()
        self.specs = []
        self.error = error

    async def run(self, spec):
        self.specs.append(spec)
        if self.error is not None:
            raise self.error


@pytest.fixture
def sync_runner():
    return RecordingSyncRunner()


# =============================================================================
# aioimaplib Doubles
# =============================================================================

def imap_response(result="OK", lines=()):
    return SimpleNamespace(result=result, lines=list(lines))


def finished(result):
    """An already-completed future, standing in for aioimaplib's idle task."""
    future = asyncio.get_running_loop().create_future()
    future.set_result(result)
    return future


def make_protocol():
    """IMAP4ClientProtocol double with an open transport and an empty push queue."""
    protocol = MagicMock(spec=aioimaplib.IMAP4ClientProtocol)
    protocol.transport = MagicMock(spec=asyncio.Transport)
    protocol.transport.is_closing.return_value = False
    protocol.idle_queue = asyncio.Queue()
    protocol.conn_lost_cb = None
    protocol.new_tag.return_value = "A001"
    protocol.execute = AsyncMock(return_value=imap_response())
    protocol.capability = AsyncMock()
    return protocol


def make_client(capabilities=("IMAP4REV1", "IDLE"), login="OK", select="OK"):
    """
    IMAP4 double limited to aioimaplib's real interface.

    Calling a method IMAP4 doesn't have raises AttributeError, as it would
    against the library.
    """
    client = MagicMock(spec=aioimaplib.IMAP4)
    client.protocol = make_protocol()
    client.wait_hello_from_server = AsyncMock()
    client.login = AsyncMock(return_value=imap_response(login, [b"LOGIN done"]))
    client.has_capability = MagicMock(side_effect=lambda name: name in capabilities)
    client.select = AsyncMock(return_value=imap_response(select))
    client.logout = AsyncMock(return_value=imap_response())
    client.idle_start = AsyncMock(side_effect=lambda timeout: finished(imap_response()))
    client.wait_server_push = AsyncMock()
    client.idle_done = MagicMock()
    return client
