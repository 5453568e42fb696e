"""Wire protocol helpers for the beanwire client.

Handles line reading, exact-length body reads, command formatting,
status-line parsing, server error classification, and decoding of the
YAML-like stats and list blocks per the beanstalk protocol.  Every
command line and response header ends in CR LF; job bodies are raw
bytes framed by a declared length.  Header text uses ISO-8859-1 so that
any byte sequence decodes losslessly.
"""

import datetime
import re
import socket
import sys
from typing import (
    Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type,
)

ENCODING = "iso-8859-1"

CRLF = b"\r\n"
YAML_HEAD = b"---\n"

# Acknowledgement lines produced by use/watch/ignore.  The read path skips
# them; they are never the reply to the command the caller issued.
USING = "USING "
WATCHING = "WATCHING "

MAX_UINT64 = 2 ** 64 - 1

_DIGITS = re.compile(r"[0-9]+")


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class BeanwireError(Exception):
    """Base exception for everything raised by beanwire."""


class InvalidNameError(BeanwireError, ValueError):
    """Raised when a tube name cannot be sent to the server.

    Raised before any bytes are written, so the connection and its
    session state are left untouched.

    Attributes:
        name: The offending name.
    """

    reason = "invalid name"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__("{}: {!r}".format(self.reason, name))


class EmptyNameError(InvalidNameError):
    reason = "name is empty"


class NameTooLongError(InvalidNameError):
    reason = "name is too long"


class BadNameCharError(InvalidNameError):
    reason = "name has bad char"


class ConnError(BeanwireError):
    """An error raised while running one command on a connection.

    Attributes:
        op: The command word that triggered the error (e.g. "put").
        conn: The Connection the command was issued on, if known.
        message: Description of the failure, without the op prefix.
    """

    def __init__(self, message: str, op: Optional[str] = None,
                 conn: object = None) -> None:
        self.message = message
        self.op = op
        self.conn = conn
        super().__init__(message)

    def __str__(self) -> str:
        if self.op:
            return "{}: {}".format(self.op, self.message)
        return self.message


class TransportError(ConnError):
    """Raised on I/O failures: EOF, timeouts, socket errors.

    After a TransportError the stream framing is unknown; close the
    connection instead of issuing further commands.
    """


class ResponseError(ConnError):
    """Raised when the server's reply is not the expected success."""


class UnknownResponseError(ResponseError):
    """Raised for a reply that matches neither the expected success shape
    nor any reserved error word.

    Attributes:
        line: The offending text, verbatim.
    """

    def __init__(self, line: str, op: Optional[str] = None,
                 conn: object = None) -> None:
        self.line = line
        super().__init__("unknown response: {}".format(line), op=op,
                         conn=conn)


class ServerError(ResponseError):
    """Base class for the reserved error words sent by the server.

    Attributes:
        word: The exact status word (e.g. "NOT_FOUND").
    """

    word = ""
    description = "server error"

    def __init__(self, op: Optional[str] = None, conn: object = None) -> None:
        super().__init__(self.description, op=op, conn=conn)


class BadFormatError(ServerError):
    """BAD_FORMAT -- the server could not parse the command line."""
    word = "BAD_FORMAT"
    description = "bad command format"


class BuriedError(ServerError):
    """BURIED -- the job was placed in the buried state.

    Attributes:
        job_id: Id of the buried job when the reply carried one (put),
            otherwise None.
    """
    word = "BURIED"
    description = "buried"

    def __init__(self, op: Optional[str] = None, conn: object = None,
                 job_id: Optional[int] = None) -> None:
        self.job_id = job_id
        super().__init__(op=op, conn=conn)


class DeadlineSoonError(ServerError):
    """DEADLINE_SOON -- a reserved job's TTR is about to expire."""
    word = "DEADLINE_SOON"
    description = "deadline soon"


class DrainingError(ServerError):
    """DRAINING -- the server no longer accepts new jobs."""
    word = "DRAINING"
    description = "draining"


class InternalError(ServerError):
    word = "INTERNAL_ERROR"
    description = "internal error"


class JobTooBigError(ServerError):
    """JOB_TOO_BIG -- the body exceeds the server's max-job-size."""
    word = "JOB_TOO_BIG"
    description = "job too big"


class ExpectedCRLFError(ServerError):
    word = "EXPECTED_CRLF"
    description = "expected CR LF"


class NotFoundError(ServerError):
    """NOT_FOUND -- no such job, or the job is not in a usable state."""
    word = "NOT_FOUND"
    description = "not found"


class NotIgnoredError(ServerError):
    """NOT_IGNORED -- refused to ignore the last watched tube."""
    word = "NOT_IGNORED"
    description = "not ignored"


class OutOfMemoryError(ServerError):
    word = "OUT_OF_MEMORY"
    description = "server is out of memory"


class TimedOutError(ServerError):
    """TIMED_OUT -- reserve-with-timeout expired without a job."""
    word = "TIMED_OUT"
    description = "timeout"


class UnknownCommandError(ServerError):
    word = "UNKNOWN_COMMAND"
    description = "unknown command"


# Map reserved status words to exception classes.  Matching is exact and
# case-sensitive; anything else is an UnknownResponseError.
_ERROR_MAP = {
    cls.word: cls for cls in (
        BadFormatError,
        BuriedError,
        DeadlineSoonError,
        DrainingError,
        InternalError,
        JobTooBigError,
        ExpectedCRLFError,
        NotFoundError,
        NotIgnoredError,
        OutOfMemoryError,
        TimedOutError,
        UnknownCommandError,
    )
}  # type: Dict[str, Type[ServerError]]


def find_response_error(line: str, op: Optional[str] = None,
                        conn: object = None) -> ResponseError:
    """Classify a reply line that did not match the expected success.

    Returns (does not raise) a ServerError subclass instance when *line*
    is exactly one of the reserved error words, otherwise an
    UnknownResponseError carrying *line* verbatim.
    """
    exc_class = _ERROR_MAP.get(line)
    if exc_class is not None:
        return exc_class(op=op, conn=conn)
    return UnknownResponseError(line, op=op, conn=conn)


# ---------------------------------------------------------------------------
# Status-line parsing
# ---------------------------------------------------------------------------

def parse_uint(token: str) -> Optional[int]:
    """Parse an unsigned 64-bit decimal, or return None.

    Only ASCII digits are accepted: no sign, no whitespace, no
    underscores.
    """
    if not _DIGITS.fullmatch(token):
        return None
    value = int(token)
    if value > MAX_UINT64:
        return None
    return value


def scan(line: str, word: str, count: int = 0, op: Optional[str] = None,
         conn: object = None) -> List[int]:
    """Match *line* against ``word[ n]*`` and return the integers.

    *count* is the exact number of space-separated unsigned integers that
    must follow *word*.  If *line* does not start with *word*, the
    classified server error is raised (see find_response_error).  If the
    prefix matches but the rest is malformed, UnknownResponseError is
    raised.

    Examples:
      scan("INSERTED 12", "INSERTED", 1) -> [12]
      scan("DELETED", "DELETED")         -> []
      scan("NOT_FOUND", "DELETED")       -> raises NotFoundError
    """
    if not line.startswith(word):
        raise find_response_error(line, op=op, conn=conn)
    rest = line[len(word):]
    if count == 0:
        if rest:
            raise UnknownResponseError(line, op=op, conn=conn)
        return []
    if not rest.startswith(" "):
        raise UnknownResponseError(line, op=op, conn=conn)
    tokens = rest[1:].split(" ")
    if len(tokens) != count:
        raise UnknownResponseError(line, op=op, conn=conn)
    values = []
    for token in tokens:
        value = parse_uint(token)
        if value is None:
            raise UnknownResponseError(line, op=op, conn=conn)
        values.append(value)
    return values


def parse_size(line: str, op: Optional[str] = None,
               conn: object = None) -> Tuple[str, int]:
    """Split the trailing body length off a body-declaring reply.

    Returns (header, size), e.g. "FOUND 3 11" -> ("FOUND 3", 11).

    A line with no space carries no length and is classified as a
    server error (e.g. "NOT_FOUND").  A trailing token that is not a
    decimal integer, or too large to allocate, is an
    UnknownResponseError.
    """
    i = line.rfind(" ")
    if i == -1:
        raise find_response_error(line, op=op, conn=conn)
    size = parse_uint(line[i + 1:])
    if size is None or size > sys.maxsize:
        raise UnknownResponseError(line, op=op, conn=conn)
    return line[:i], size


# ---------------------------------------------------------------------------
# Stats and list blocks
# ---------------------------------------------------------------------------

def parse_stats(data: bytes, numeric: Mapping[str, str],
                handler: Optional[Callable[[str, str], None]] = None,
                ) -> Dict[str, int]:
    """Decode a ``---`` stats block into numeric fields.

    *numeric* maps wire field names (e.g. "current-jobs-ready") to the
    keys used in the returned dict.  Values of those fields must be
    unsigned 64-bit decimals.  Every other field is passed to
    *handler(name, value)* if given, or dropped.

    Raises UnknownResponseError for a line without ": ", a last line
    with no terminating LF, or a numeric field that does not parse.
    """
    if data.startswith(YAML_HEAD):
        data = data[len(YAML_HEAD):]
    lines = data.decode(ENCODING)
    values = {}  # type: Dict[str, int]
    while lines:
        eol = lines.find("\n")
        if eol == -1:
            raise UnknownResponseError(lines)
        line, lines = lines[:eol], lines[eol + 1:]
        name, sep, value = line.partition(": ")
        if not sep:
            raise UnknownResponseError(line)
        key = numeric.get(name)
        if key is not None:
            number = parse_uint(value)
            if number is None:
                raise UnknownResponseError(line)
            values[key] = number
        elif handler is not None:
            handler(name, value)
    return values


def parse_list(data: Optional[bytes]) -> Optional[List[str]]:
    """Decode a ``---`` list block into its entries.

    None (nothing was read) stays None, so callers can tell "not
    queried" from "queried, found nothing"; an empty block gives [].

    Example:
      parse_list(b"---\\n- default\\n- jobs\\n") -> ["default", "jobs"]
    """
    if data is None:
        return None
    if data.startswith(YAML_HEAD):
        data = data[len(YAML_HEAD):]
    lines = data.decode(ENCODING).split("\n")
    lines = [line[2:] if line.startswith("- ") else line for line in lines]
    if lines and not lines[-1]:
        lines.pop()
    return lines


# ---------------------------------------------------------------------------
# Command encoding
# ---------------------------------------------------------------------------

def to_seconds(value) -> int:
    """Convert a delay/TTR/timeout to whole seconds for the wire.

    Accepts a number of seconds or a datetime.timedelta; fractions are
    truncated.  Negative values raise ValueError.
    """
    if isinstance(value, datetime.timedelta):
        value = value.total_seconds()
    seconds = int(value)
    if seconds < 0:
        raise ValueError("duration must not be negative: {!r}".format(value))
    return seconds


def format_command(op: str, name: Optional[str] = None,
                   args: Sequence[int] = (),
                   body: Optional[bytes] = None) -> bytes:
    """Encode one command, terminated, with its body if present.

    Layout: ``op[ name][ arg]*[ len]\\r\\n[body\\r\\n]``.
    """
    parts = [op]
    if name is not None:
        parts.append(name)
    for arg in args:
        if not isinstance(arg, int):
            raise TypeError(
                "{}: argument must be an int: {!r}".format(op, arg))
        if arg < 0:
            raise ValueError(
                "{}: argument must not be negative: {}".format(op, arg))
        parts.append(str(int(arg)))
    if body is not None:
        parts.append(str(len(body)))
    data = " ".join(parts).encode(ENCODING) + CRLF
    if body is not None:
        data += bytes(body) + CRLF
    return data


# ---------------------------------------------------------------------------
# Stream I/O
# ---------------------------------------------------------------------------

def read_line(stream, op: Optional[str] = None, conn: object = None) -> str:
    """Read one response line from the stream.

    Strips the trailing CR LF (or a bare LF).  Raises TransportError on
    EOF (connection closed before LF), socket timeout, or socket error.
    """
    try:
        raw = stream.readline()
    except socket.timeout:
        raise TransportError("timed out waiting for data from server",
                             op=op, conn=conn)
    except OSError as e:
        raise TransportError("socket error: {}".format(e), op=op, conn=conn)

    if not raw:
        raise TransportError("connection closed by server", op=op, conn=conn)
    if not raw.endswith(b"\n"):
        raise TransportError(
            "connection closed mid-line (partial data: {!r})".format(raw),
            op=op, conn=conn)

    line = raw[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line.decode(ENCODING)


def read_exact(stream, nbytes: int, op: Optional[str] = None,
               conn: object = None) -> bytes:
    """Read exactly nbytes from the stream.

    Raises TransportError on EOF, socket timeout, or socket error.
    """
    buf = bytearray()
    while len(buf) < nbytes:
        try:
            chunk = stream.read(nbytes - len(buf))
        except socket.timeout:
            raise TransportError(
                "timed out reading {} bytes".format(nbytes), op=op, conn=conn)
        except OSError as e:
            raise TransportError("socket error: {}".format(e), op=op,
                                 conn=conn)
        if not chunk:
            raise TransportError(
                "connection closed after {}/{} bytes".format(
                    len(buf), nbytes), op=op, conn=conn)
        buf.extend(chunk)
    return bytes(buf)
