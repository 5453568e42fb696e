"""Tube name validation."""

import string

from .protocol import BadNameCharError, EmptyNameError, NameTooLongError

# Characters allowed in a tube name by the beanstalk protocol.
NAME_CHARS = "-+/;.$_()" + string.digits + string.ascii_letters

# Names must be strictly shorter than this many bytes.
MAX_NAME_LENGTH = 200

_ALLOWED = frozenset(NAME_CHARS)


def check_name(name: str) -> None:
    """Raise an InvalidNameError subclass unless *name* is a valid tube."""
    if not name:
        raise EmptyNameError(name)
    if len(name.encode("utf-8")) >= MAX_NAME_LENGTH:
        raise NameTooLongError(name)
    if not _ALLOWED.issuperset(name):
        raise BadNameCharError(name)
