"""Shared fixtures and helpers for beanwire tests.

Most tests run against MockStream, an in-memory stand-in for the
socket stream: it replays canned server bytes and records everything the
client writes, so exact wire traffic can be asserted without a server.

The tests in test_live.py talk to a real beanstalkd and are skipped
unless a host is given:

    pytest tests/ --host 127.0.0.1 --port 11300 -v

Host and port can also be set via BEANWIRE_HOST and BEANWIRE_PORT
environment variables.
"""

import io
import os
import sys

import pytest

# Add the client library to the path so tests can import beanwire
_client_dir = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "client",
)
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from beanwire import Connection


# ---------------------------------------------------------------------------
# In-memory transport
# ---------------------------------------------------------------------------

class MockStream:
    """Stream that reads from canned *reply* bytes and records writes.

    If *fail_write* is set, every write raises BrokenPipeError.
    """

    def __init__(self, reply=b"", fail_write=False):
        if isinstance(reply, str):
            reply = reply.encode("iso-8859-1")
        self._reader = io.BytesIO(reply)
        self._writer = io.BytesIO()
        self.fail_write = fail_write
        self.closed = False

    def write(self, data):
        if self.fail_write:
            raise BrokenPipeError(32, "Broken pipe")
        return self._writer.write(data)

    def flush(self):
        pass

    def readline(self):
        return self._reader.readline()

    def read(self, n):
        return self._reader.read(n)

    def close(self):
        self.closed = True

    @property
    def written(self):
        """Everything the client has written so far."""
        return self._writer.getvalue()

    @property
    def unread(self):
        """Canned reply bytes the client has not consumed."""
        return self._reader.getvalue()[self._reader.tell():]


def make_conn(reply=b"", fail_write=False):
    """Return (Connection, MockStream) with *reply* queued as server output."""
    stream = MockStream(reply, fail_write=fail_write)
    return Connection(stream), stream


# ---------------------------------------------------------------------------
# Command-line options
# ---------------------------------------------------------------------------

def pytest_addoption(parser):
    parser.addoption(
        "--host",
        default=os.environ.get("BEANWIRE_HOST"),
        help="Address of a beanstalkd for live tests "
             "(default: BEANWIRE_HOST env; live tests skipped if unset)",
    )
    parser.addoption(
        "--port",
        type=int,
        default=int(os.environ.get("BEANWIRE_PORT", "11300")),
        help="TCP port of beanstalkd "
             "(default: BEANWIRE_PORT env or 11300)",
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def beanstalkd_address(request):
    """Return (host, port) of the live server, or skip the test."""
    host = request.config.getoption("--host")
    if not host:
        pytest.skip("no beanstalkd configured (use --host)")
    return host, request.config.getoption("--port")


@pytest.fixture
def live_conn(beanstalkd_address):
    """Open a Connection to the live server; closed on teardown."""
    host, port = beanstalkd_address
    conn = Connection.dial(host, port, io_timeout=10)
    yield conn
    conn.close()
