"""Per-connection tube selection state.

A beanstalk connection has one "used" tube (where put sends jobs) and a
non-empty set of "watched" tubes (where reserve takes jobs from).  Tube
and TubeSet objects describe what the caller wants; before each command
the connection asks its SessionState for the use/watch/ignore lines that
bring the server in line, sends them ahead of the command, and commits
the new state once the bytes are flushed.
"""

from typing import AbstractSet, FrozenSet, List, Optional

from .names import check_name
from .protocol import format_command

DEFAULT_TUBE = "default"


class SessionState:
    """The used tube and watched set as last sent to the server."""

    def __init__(self, used: str = DEFAULT_TUBE,
                 watched: AbstractSet[str] = frozenset([DEFAULT_TUBE])
                 ) -> None:
        self._used = used
        self._watched = set(watched)

    def __repr__(self) -> str:
        return "SessionState(used={!r}, watched={!r})".format(
            self._used, sorted(self._watched))

    @property
    def used(self) -> str:
        return self._used

    @property
    def watched(self) -> FrozenSet[str]:
        return frozenset(self._watched)

    def plan(self, used: Optional[str] = None,
             watched: Optional[AbstractSet[str]] = None) -> List[bytes]:
        """Return the command lines needed to reach the wanted state.

        *used* is the tube the next command must be produced into, or
        None if the command does not care.  *watched* is the exact set
        of tubes the next command must consume from, or None.

        Watches are emitted before ignores so the server-side set never
        passes through empty.  Names are emitted in sorted order.  The
        state itself is not modified; see commit().  Raises
        InvalidNameError (before anything is sent) for a bad tube name
        and ValueError for an empty watch set.
        """
        lines = []
        if used is not None and used != self._used:
            check_name(used)
            lines.append(format_command("use", name=used))
        if watched is not None:
            if not watched:
                raise ValueError("watched tube set must not be empty")
            for name in sorted(set(watched) - self._watched):
                check_name(name)
                lines.append(format_command("watch", name=name))
            for name in sorted(self._watched - set(watched)):
                lines.append(format_command("ignore", name=name))
        return lines

    def commit(self, used: Optional[str] = None,
               watched: Optional[AbstractSet[str]] = None) -> None:
        """Record that the lines returned by plan() have been sent."""
        if used is not None:
            self._used = used
        if watched is not None:
            self._watched = set(watched)
