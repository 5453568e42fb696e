"""Integration tests against a running beanstalkd.

Skipped unless a server is configured with --host (or BEANWIRE_HOST).
Every test works in its own freshly named tube so runs do not interfere
with each other or with other users of the server.
"""

import uuid

import pytest

from beanwire import NotFoundError, TimedOutError, Tube, TubeSet


@pytest.fixture
def tube_name():
    return "beanwire-test-{}".format(uuid.uuid4().hex[:12])


class TestRoundTrip:

    def test_put_reserve_delete(self, live_conn, tube_name):
        body = b"\x00binary\r\nbody\xff"
        job_id = Tube(live_conn, tube_name).put(body, ttr=30)
        assert live_conn.used == tube_name

        got_id, got_body = TubeSet(live_conn, tube_name).reserve(5)
        assert (got_id, got_body) == (job_id, body)
        assert live_conn.list_tubes_watched() == [tube_name]

        live_conn.delete(job_id)
        with pytest.raises(NotFoundError):
            live_conn.peek(job_id)

    def test_reserve_times_out(self, live_conn, tube_name):
        with pytest.raises(TimedOutError):
            TubeSet(live_conn, tube_name).reserve(0)

    def test_bury_kick(self, live_conn, tube_name):
        tube = Tube(live_conn, tube_name)
        job_id = tube.put(b"x", ttr=30)
        TubeSet(live_conn, tube_name).reserve(5)
        live_conn.bury(job_id)
        assert tube.peek_buried() == (job_id, b"x")
        assert live_conn.stats_job(job_id).state == "buried"
        assert tube.kick(10) == 1
        assert tube.peek_ready() == (job_id, b"x")
        live_conn.delete(job_id)


class TestQueries:

    def test_stats(self, live_conn):
        stats = live_conn.stats()
        assert stats.pid > 0
        assert stats.version

    def test_tube_stats(self, live_conn, tube_name):
        tube = Tube(live_conn, tube_name)
        job_id = tube.put(b"abc", delay=60)
        stats = tube.stats()
        assert stats.name == tube_name
        assert stats.current_jobs_delayed == 1
        assert tube_name in live_conn.list_tubes()
        live_conn.delete(job_id)
