"""Typed results for the stats, stats-job and stats-tube commands."""

from dataclasses import dataclass
from typing import Dict, Iterable, Type, TypeVar

from .protocol import parse_stats

T = TypeVar("T")


def _fields(names: Iterable[str]) -> Dict[str, str]:
    """Map wire field names to attribute names ("cmd-put" -> "cmd_put")."""
    return {name: name.replace("-", "_") for name in names}


@dataclass(frozen=True)
class Stats:
    """Server-wide statistics returned by ``stats``."""

    current_jobs_urgent: int = 0
    current_jobs_ready: int = 0
    current_jobs_reserved: int = 0
    current_jobs_delayed: int = 0
    current_jobs_buried: int = 0
    cmd_put: int = 0
    cmd_peek: int = 0
    cmd_peek_ready: int = 0
    cmd_peek_delayed: int = 0
    cmd_peek_buried: int = 0
    cmd_reserve: int = 0
    cmd_reserve_with_timeout: int = 0
    cmd_delete: int = 0
    cmd_release: int = 0
    cmd_use: int = 0
    cmd_watch: int = 0
    cmd_ignore: int = 0
    cmd_bury: int = 0
    cmd_kick: int = 0
    cmd_touch: int = 0
    cmd_stats: int = 0
    cmd_stats_job: int = 0
    cmd_stats_tube: int = 0
    cmd_list_tubes: int = 0
    cmd_list_tube_used: int = 0
    cmd_list_tubes_watched: int = 0
    cmd_pause_tube: int = 0
    job_timeouts: int = 0
    total_jobs: int = 0
    max_job_size: int = 0
    current_tubes: int = 0
    current_connections: int = 0
    current_producers: int = 0
    current_workers: int = 0
    current_waiting: int = 0
    total_connections: int = 0
    pid: int = 0
    version: str = ""
    rusage_utime: str = ""
    rusage_stime: str = ""
    uptime: int = 0
    binlog_oldest_index: int = 0
    binlog_current_index: int = 0
    binlog_records_migrated: int = 0
    binlog_records_written: int = 0
    binlog_max_size: int = 0
    id: str = ""
    hostname: str = ""


@dataclass(frozen=True)
class JobStats:
    """Per-job statistics returned by ``stats-job``."""

    id: int = 0
    tube: str = ""
    state: str = ""
    pri: int = 0
    age: int = 0
    delay: int = 0
    ttr: int = 0
    time_left: int = 0
    file: int = 0
    reserves: int = 0
    timeouts: int = 0
    releases: int = 0
    buries: int = 0
    kicks: int = 0


@dataclass(frozen=True)
class TubeStats:
    """Per-tube statistics returned by ``stats-tube``."""

    name: str = ""
    current_jobs_urgent: int = 0
    current_jobs_ready: int = 0
    current_jobs_reserved: int = 0
    current_jobs_delayed: int = 0
    current_jobs_buried: int = 0
    total_jobs: int = 0
    current_using: int = 0
    current_waiting: int = 0
    current_watching: int = 0
    cmd_delete: int = 0
    cmd_pause_tube: int = 0
    pause: int = 0
    pause_time_left: int = 0


_STATS_NUMERIC = _fields((
    "current-jobs-urgent", "current-jobs-ready", "current-jobs-reserved",
    "current-jobs-delayed", "current-jobs-buried",
    "cmd-put", "cmd-peek", "cmd-peek-ready", "cmd-peek-delayed",
    "cmd-peek-buried", "cmd-reserve", "cmd-reserve-with-timeout",
    "cmd-delete", "cmd-release", "cmd-use", "cmd-watch", "cmd-ignore",
    "cmd-bury", "cmd-kick", "cmd-touch", "cmd-stats", "cmd-stats-job",
    "cmd-stats-tube", "cmd-list-tubes", "cmd-list-tube-used",
    "cmd-list-tubes-watched", "cmd-pause-tube",
    "job-timeouts", "total-jobs", "max-job-size", "current-tubes",
    "current-connections", "current-producers", "current-workers",
    "current-waiting", "total-connections", "pid", "uptime",
    "binlog-oldest-index", "binlog-current-index",
    "binlog-records-migrated", "binlog-records-written", "binlog-max-size",
))
_STATS_STRINGS = _fields((
    "version", "rusage-utime", "rusage-stime", "id", "hostname",
))

_JOB_NUMERIC = _fields((
    "id", "pri", "age", "delay", "ttr", "time-left", "file", "reserves",
    "timeouts", "releases", "buries", "kicks",
))
_JOB_STRINGS = _fields(("tube", "state"))

_TUBE_NUMERIC = _fields((
    "current-jobs-urgent", "current-jobs-ready", "current-jobs-reserved",
    "current-jobs-delayed", "current-jobs-buried", "total-jobs",
    "current-using", "current-waiting", "current-watching", "cmd-delete",
    "cmd-pause-tube", "pause", "pause-time-left",
))
_TUBE_STRINGS = _fields(("name",))


def _decode(cls: Type[T], data: bytes, numeric: Dict[str, str],
            strings: Dict[str, str], **defaults) -> T:
    values = dict(defaults)

    def on_string(name, value):
        attr = strings.get(name)
        if attr is not None:
            values[attr] = value

    values.update(parse_stats(data, numeric, on_string))
    return cls(**values)


def decode_stats(data: bytes) -> Stats:
    return _decode(Stats, data, _STATS_NUMERIC, _STATS_STRINGS)


def decode_job_stats(data: bytes) -> JobStats:
    return _decode(JobStats, data, _JOB_NUMERIC, _JOB_STRINGS)


def decode_tube_stats(data: bytes, name: str = "") -> TubeStats:
    """Decode a stats-tube block; *name* is used if the block omits it."""
    return _decode(TubeStats, data, _TUBE_NUMERIC, _TUBE_STRINGS, name=name)
