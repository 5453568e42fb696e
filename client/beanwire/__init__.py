"""beanwire -- Python client library for beanstalkd.

Provides Connection for talking to a beanstalkd work queue server, Tube
and TubeSet for per-tube producing and consuming, plus an exception
hierarchy mapping the server's error words to Python exceptions.

Usage::

    with Connection.dial("127.0.0.1") as conn:
        jobs = Tube(conn, "jobs")
        job_id = jobs.put(b"hello", ttr=60)

        job_id, body = TubeSet(conn, "jobs").reserve(timeout=5)
        conn.delete(job_id)
"""

import logging
import socket
from typing import AbstractSet, List, NamedTuple, Optional, Tuple

from .names import MAX_NAME_LENGTH, NAME_CHARS, check_name
from .protocol import (
    ENCODING, USING, WATCHING, BadFormatError, BadNameCharError,
    BeanwireError, BuriedError, ConnError, DeadlineSoonError, DrainingError,
    EmptyNameError, ExpectedCRLFError, InternalError, InvalidNameError,
    JobTooBigError, NameTooLongError, NotFoundError, NotIgnoredError,
    OutOfMemoryError, ResponseError, ServerError, TimedOutError,
    TransportError, UnknownCommandError, UnknownResponseError,
    format_command, parse_list, parse_size, read_exact, read_line, scan,
    to_seconds,
)
from .session import DEFAULT_TUBE, SessionState
from .stats import (
    JobStats, Stats, TubeStats, decode_job_stats, decode_stats,
    decode_tube_stats,
)


__all__ = [
    "Connection",
    "Tube",
    "TubeSet",
    "Request",
    "Stats",
    "JobStats",
    "TubeStats",
    "DEFAULT_PORT",
    "DEFAULT_TUBE",
    "NAME_CHARS",
    "MAX_NAME_LENGTH",
    "check_name",
    "BeanwireError",
    "InvalidNameError",
    "EmptyNameError",
    "NameTooLongError",
    "BadNameCharError",
    "ConnError",
    "TransportError",
    "ResponseError",
    "UnknownResponseError",
    "ServerError",
    "BadFormatError",
    "BuriedError",
    "DeadlineSoonError",
    "DrainingError",
    "InternalError",
    "JobTooBigError",
    "ExpectedCRLFError",
    "NotFoundError",
    "NotIgnoredError",
    "OutOfMemoryError",
    "TimedOutError",
    "UnknownCommandError",
]

logger = logging.getLogger(__name__)

DEFAULT_PORT = 11300

# Time to wait for the TCP connection to be established.
DEFAULT_DIAL_TIMEOUT = 10.0


class Request(NamedTuple):
    """A command that has been written and whose reply is still unread."""

    op: str


# ---------------------------------------------------------------------------
# Connection class
# ---------------------------------------------------------------------------

class Connection:
    """A connection to a beanstalkd server.

    Wraps a buffered binary stream (``socket.makefile("rwb")`` or any
    object with write/flush/readline/read/close).  Only one command may
    be in flight at a time; a Connection is not safe to share between
    threads.  Use one connection per thread instead.

    The connection remembers which tube it uses and which tubes it
    watches.  Commands issued through a Tube or TubeSet first send the
    use/watch/ignore commands needed to select those tubes; their
    USING/WATCHING acknowledgements are skipped when the reply is read.

    The default tube and tube set are available as ``conn.tube`` and
    ``conn.tube_set``, and their commands are mirrored on the connection::

        with Connection.dial("127.0.0.1") as conn:
            job_id = conn.put(b"hello")
            job_id, body = conn.reserve(timeout=5)
            conn.delete(job_id)
    """

    def __init__(self, stream, sock: Optional[socket.socket] = None) -> None:
        self._stream = stream
        self._sock = sock
        self._session = SessionState()
        self.tube = Tube(self, DEFAULT_TUBE)
        self.tube_set = TubeSet(self, DEFAULT_TUBE)

    @classmethod
    def dial(cls, host: str, port: int = DEFAULT_PORT,
             timeout: float = DEFAULT_DIAL_TIMEOUT,
             io_timeout: Optional[float] = None) -> "Connection":
        """Open a TCP connection to beanstalkd with keepalive enabled.

        *timeout* bounds connection setup only.  *io_timeout* bounds each
        socket read/write afterwards; the default None blocks, which lets
        reserve wait as long as the server does.
        """
        sock = socket.create_connection((host, port), timeout=timeout)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            sock.settimeout(io_timeout)
            stream = sock.makefile("rwb")
        except Exception:
            sock.close()
            raise
        logger.debug("connected to %s:%d", host, port)
        return cls(stream, sock=sock)

    # -- Context manager ---------------------------------------------------

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.close()
        return None

    def __repr__(self) -> str:
        state = "open" if self._stream is not None else "closed"
        return "Connection(used={!r}, watched={!r}, {})".format(
            self.used, sorted(self.watched), state)

    # -- Connection lifecycle ----------------------------------------------

    def close(self) -> None:
        """Close the underlying stream.

        Any command still in flight is abandoned; nothing is flushed or
        acknowledged.
        """
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.close()
        finally:
            if self._sock is not None:
                self._sock.close()
                self._sock = None

    @property
    def used(self) -> str:
        """The tube the server currently has selected for put."""
        return self._session.used

    @property
    def watched(self) -> AbstractSet[str]:
        """The tubes the server currently has selected for reserve."""
        return self._session.watched

    # -- Protocol engine ---------------------------------------------------

    def send(self, op: str, *args: int, name: Optional[str] = None,
             body: Optional[bytes] = None, tube: "Optional[Tube]" = None,
             tube_set: "Optional[TubeSet]" = None) -> Request:
        """Write one command and return the Request for its reply.

        *args* are unsigned integers appended after *op* (and after
        *name*, a tube name argument, when given).  *body* is sent as
        the job body with its length.  When *tube* or *tube_set* is
        given, the use/watch/ignore commands needed to select them are
        written first.

        Raises InvalidNameError before anything is written if a tube
        name is invalid, and TransportError if the write fails.
        """
        if self._stream is None:
            raise TransportError("not connected", op=op, conn=self)
        if name is not None:
            check_name(name)
        used = tube.name if tube is not None else None
        watched = tube_set.names if tube_set is not None else None
        lines = self._session.plan(used=used, watched=watched)
        command = format_command(op, name=name, args=args, body=body)

        for line in lines:
            logger.debug("-> %s", line.rstrip().decode(ENCODING))
        logger.debug("-> %s", command.split(b"\r\n", 1)[0].decode(ENCODING))
        try:
            self._stream.write(b"".join(lines) + command)
            self._stream.flush()
        except OSError as e:
            logger.debug("%s: write failed: %s", op, e)
            raise TransportError("write failed: {}".format(e), op=op,
                                 conn=self)
        self._session.commit(used=used, watched=watched)
        return Request(op)

    def receive_raw(self, req: Request,
                    body: bool = False) -> Tuple[str, Optional[bytes]]:
        """Read the reply to *req* without matching its header.

        Skips USING/WATCHING acknowledgements.  With *body*, the trailing
        length is split off the header and exactly that many bytes (plus
        CR LF) are read.  Returns (header, body-or-None).
        """
        if self._stream is None:
            raise TransportError("not connected", op=req.op, conn=self)
        line = read_line(self._stream, op=req.op, conn=self)
        while line.startswith(USING) or line.startswith(WATCHING):
            logger.debug("<- %s (skipped)", line)
            line = read_line(self._stream, op=req.op, conn=self)
        logger.debug("<- %s", line)
        if not body:
            return line, None
        header, size = parse_size(line, op=req.op, conn=self)
        data = read_exact(self._stream, size + 2, op=req.op, conn=self)
        return header, data[:size]

    def receive(self, req: Request, word: str, count: int = 0,
                body: bool = False) -> Tuple[List[int], Optional[bytes]]:
        """Read the reply to *req* and match it against ``word[ n]*``.

        Returns (integers, body-or-None).  The body, when declared, is
        read in full before the header is checked so the stream stays
        aligned for the next command.  Raises the classified
        ServerError, UnknownResponseError or TransportError.
        """
        header, data = self.receive_raw(req, body=body)
        return scan(header, word, count, op=req.op, conn=self), data

    def _read_stats(self, req: Request, decode, *args):
        _, body = self.receive(req, "OK", body=True)
        try:
            return decode(body, *args)
        except UnknownResponseError as e:
            e.op, e.conn = req.op, self
            raise

    def _read_list(self, req: Request) -> List[str]:
        _, body = self.receive(req, "OK", body=True)
        return parse_list(body)

    # -- Job commands ------------------------------------------------------

    def delete(self, job_id: int) -> None:
        """Delete the given job."""
        req = self.send("delete", job_id)
        self.receive(req, "DELETED")

    def release(self, job_id: int, pri: int = 0, delay=0) -> None:
        """Release a reserved job back to the ready queue.

        The job gets priority *pri* and becomes ready after *delay*
        seconds.
        """
        req = self.send("release", job_id, pri, to_seconds(delay))
        self.receive(req, "RELEASED")

    def bury(self, job_id: int, pri: int = 0) -> None:
        """Bury a reserved job with priority *pri*.

        It will not be reserved again until it is kicked.
        """
        req = self.send("bury", job_id, pri)
        self.receive(req, "BURIED")

    def kick_job(self, job_id: int) -> None:
        """Move one buried or delayed job to the ready queue of its tube."""
        req = self.send("kick-job", job_id)
        self.receive(req, "KICKED")

    def touch(self, job_id: int) -> None:
        """Reset the TTR timer of a job reserved by this connection."""
        req = self.send("touch", job_id)
        self.receive(req, "TOUCHED")

    def peek(self, job_id: int) -> bytes:
        """Return a copy of the body of the given job."""
        req = self.send("peek", job_id)
        _, body = self.receive(req, "FOUND", 1, body=True)
        return body

    def reserve_job(self, job_id: int) -> bytes:
        """Reserve a specific job by id and return its body."""
        req = self.send("reserve-job", job_id)
        _, body = self.receive(req, "RESERVED", 1, body=True)
        return body

    # -- Server queries ----------------------------------------------------

    def stats(self) -> Stats:
        """Return server-wide statistics."""
        req = self.send("stats")
        return self._read_stats(req, decode_stats)

    def stats_job(self, job_id: int) -> JobStats:
        """Return statistics about the given job."""
        req = self.send("stats-job", job_id)
        return self._read_stats(req, decode_job_stats)

    def list_tubes(self) -> List[str]:
        """Return the names of all tubes that exist on the server."""
        return self._read_list(self.send("list-tubes"))

    def list_tubes_watched(self) -> List[str]:
        """Return the tubes the server reports this connection watching."""
        return self._read_list(self.send("list-tubes-watched"))

    # -- Default tube shortcuts --------------------------------------------

    def put(self, body: bytes, pri: int = 0, delay=0, ttr=0) -> int:
        """Tube.put on the default tube."""
        return self.tube.put(body, pri=pri, delay=delay, ttr=ttr)

    def peek_ready(self) -> Tuple[int, bytes]:
        """Tube.peek_ready on the default tube."""
        return self.tube.peek_ready()

    def peek_delayed(self) -> Tuple[int, bytes]:
        """Tube.peek_delayed on the default tube."""
        return self.tube.peek_delayed()

    def peek_buried(self) -> Tuple[int, bytes]:
        """Tube.peek_buried on the default tube."""
        return self.tube.peek_buried()

    def kick(self, bound: int) -> int:
        """Tube.kick on the default tube."""
        return self.tube.kick(bound)

    def pause(self, delay) -> None:
        """Tube.pause on the default tube."""
        self.tube.pause(delay)

    def reserve(self, timeout) -> Tuple[int, bytes]:
        """TubeSet.reserve on the default tube set."""
        return self.tube_set.reserve(timeout)


# ---------------------------------------------------------------------------
# Tubes
# ---------------------------------------------------------------------------

class Tube:
    """Tube *name* on the server reached through *conn*.

    Commands that produce into or inspect a single tube.  The name is
    validated when a command is sent, not here.
    """

    def __init__(self, conn: Connection, name: str) -> None:
        self.conn = conn
        self.name = name

    def __repr__(self) -> str:
        return "Tube({!r})".format(self.name)

    def put(self, body: bytes, pri: int = 0, delay=0, ttr=0) -> int:
        """Put a job into this tube and return its id.

        *pri* is the priority (lower is more urgent), *delay* the number
        of seconds before the job becomes ready, *ttr* the number of
        seconds a worker may hold it.  If the server buries the job
        because it is out of memory, BuriedError is raised with the new
        job's id in ``job_id``.
        """
        req = self.conn.send("put", pri, to_seconds(delay), to_seconds(ttr),
                             body=body, tube=self)
        header, _ = self.conn.receive_raw(req)
        if header.startswith("BURIED "):
            (job_id,) = scan(header, "BURIED", 1, op=req.op, conn=self.conn)
            raise BuriedError(op=req.op, conn=self.conn, job_id=job_id)
        (job_id,) = scan(header, "INSERTED", 1, op=req.op, conn=self.conn)
        return job_id

    def _peek(self, op: str) -> Tuple[int, bytes]:
        req = self.conn.send(op, tube=self)
        (job_id,), body = self.conn.receive(req, "FOUND", 1, body=True)
        return job_id, body

    def peek_ready(self) -> Tuple[int, bytes]:
        """Return (id, body) of the job at the front of the ready queue."""
        return self._peek("peek-ready")

    def peek_delayed(self) -> Tuple[int, bytes]:
        """Return (id, body) of the delayed job that becomes ready next."""
        return self._peek("peek-delayed")

    def peek_buried(self) -> Tuple[int, bytes]:
        """Return (id, body) of the buried job that would be kicked next."""
        return self._peek("peek-buried")

    def kick(self, bound: int) -> int:
        """Move up to *bound* buried (or else delayed) jobs to ready.

        Returns the number of jobs actually kicked.
        """
        req = self.conn.send("kick", bound, tube=self)
        (count,), _ = self.conn.receive(req, "KICKED", 1)
        return count

    def stats(self) -> TubeStats:
        """Return statistics about this tube."""
        req = self.conn.send("stats-tube", name=self.name)
        return self.conn._read_stats(req, decode_tube_stats, self.name)

    def pause(self, delay) -> None:
        """Stop reservations from this tube for *delay* seconds."""
        req = self.conn.send("pause-tube", to_seconds(delay), name=self.name)
        self.conn.receive(req, "PAUSED")


class TubeSet:
    """A set of tubes to reserve jobs from, on the server behind *conn*."""

    def __init__(self, conn: Connection, *names: str) -> None:
        if not names:
            raise ValueError("a tube set needs at least one tube name")
        self.conn = conn
        self.names = frozenset(names)

    def __repr__(self) -> str:
        return "TubeSet({})".format(", ".join(
            repr(name) for name in sorted(self.names)))

    def reserve(self, timeout) -> Tuple[int, bytes]:
        """Reserve a job from any tube in the set and return (id, body).

        Waits up to *timeout* seconds on the server side.  Raises
        TimedOutError if no job arrived in time, and DeadlineSoonError
        if a job already reserved by this connection is about to time
        out.
        """
        req = self.conn.send("reserve-with-timeout", to_seconds(timeout),
                             tube_set=self)
        (job_id,), body = self.conn.receive(req, "RESERVED", 1, body=True)
        return job_id, body
