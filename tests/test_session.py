"""Unit tests for tube name validation and session reconciliation."""

import pytest

from beanwire.names import MAX_NAME_LENGTH, NAME_CHARS, check_name
from beanwire.protocol import (
    BadNameCharError, EmptyNameError, InvalidNameError, NameTooLongError,
)
from beanwire.session import SessionState


class TestCheckName:

    @pytest.mark.parametrize("name", [
        "default", "a", "jobs.high-pri", "x+y/z;$_()", NAME_CHARS,
        "a" * (MAX_NAME_LENGTH - 1),
    ])
    def test_valid(self, name):
        check_name(name)

    def test_empty(self):
        with pytest.raises(EmptyNameError):
            check_name("")

    def test_too_long(self):
        with pytest.raises(NameTooLongError):
            check_name("a" * MAX_NAME_LENGTH)

    def test_length_counted_before_chars(self):
        with pytest.raises(NameTooLongError):
            check_name("\x00" * 201)

    @pytest.mark.parametrize("name", ["*", "a b", "tab\t", "caf\xe9", "a\\b"])
    def test_bad_char(self, name):
        with pytest.raises(BadNameCharError) as excinfo:
            check_name(name)
        assert excinfo.value.name == name

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            check_name("")


class TestSessionState:
    """Tests for SessionState.plan() and commit()."""

    def test_defaults(self):
        state = SessionState()
        assert state.used == "default"
        assert state.watched == frozenset(["default"])

    def test_no_intent_no_commands(self):
        assert SessionState().plan() == []

    def test_same_used_no_commands(self):
        assert SessionState().plan(used="default") == []

    def test_use(self):
        state = SessionState()
        assert state.plan(used="foo") == [b"use foo\r\n"]
        # plan() alone does not change anything
        assert state.used == "default"
        state.commit(used="foo")
        assert state.used == "foo"

    def test_watch_then_ignore(self):
        state = SessionState()
        assert state.plan(watched={"foo"}) == [
            b"watch foo\r\n",
            b"ignore default\r\n",
        ]

    def test_minimal_diff(self):
        state = SessionState(watched={"A", "B"})
        lines = state.plan(watched={"B", "C"})
        assert lines == [b"watch C\r\n", b"ignore A\r\n"]

    def test_sorted_order(self):
        state = SessionState()
        lines = state.plan(watched={"default", "zeta", "alpha"})
        assert lines == [b"watch alpha\r\n", b"watch zeta\r\n"]

    def test_idempotent_after_commit(self):
        state = SessionState()
        intent = {"used": "foo", "watched": {"foo", "bar"}}
        assert state.plan(**intent)
        state.commit(**intent)
        assert state.plan(**intent) == []

    def test_invalid_used_name_leaves_state(self):
        state = SessionState()
        with pytest.raises(InvalidNameError):
            state.plan(used="bad name")
        assert state.used == "default"

    def test_invalid_watch_name_leaves_state(self):
        state = SessionState()
        with pytest.raises(BadNameCharError):
            state.plan(used="ok", watched={"good", "*"})
        assert state.used == "default"
        assert state.watched == frozenset(["default"])

    def test_ignored_names_not_validated(self):
        # A name already on the server side was valid when it was watched.
        state = SessionState(watched={"default", "legacy"})
        assert state.plan(watched={"default"}) == [b"ignore legacy\r\n"]

    def test_empty_watch_set(self):
        with pytest.raises(ValueError):
            SessionState().plan(watched=set())

    def test_watched_is_a_copy(self):
        state = SessionState()
        watched = state.watched
        state.commit(watched={"x"})
        assert watched == frozenset(["default"])
