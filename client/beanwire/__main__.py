"""CLI entry point for the beanwire client.

Usage::

    beanwire --host 127.0.0.1 put --tube jobs "hello"
    beanwire reserve --tube jobs --wait 5 --delete
    beanwire stats-tube jobs
"""

import argparse
import configparser
import dataclasses
import logging
import os
import sys

from . import (
    DEFAULT_PORT, BeanwireError, Connection, Tube, TubeSet,
)
from .session import DEFAULT_TUBE


def _print_job(job_id, body):
    print(job_id)
    sys.stdout.flush()
    sys.stdout.buffer.write(body)
    if body and not body.endswith(b"\n"):
        sys.stdout.buffer.write(b"\n")


def _print_record(record):
    for key, value in dataclasses.asdict(record).items():
        print("{}={}".format(key.replace("_", "-"), value))


def cmd_put(conn, args):
    """Handle the 'put' subcommand."""
    if args.body is not None:
        body = args.body.encode("utf-8")
    else:
        body = sys.stdin.buffer.read()
    tube = Tube(conn, args.tube)
    print(tube.put(body, pri=args.pri, delay=args.delay, ttr=args.ttr))


def cmd_peek(conn, args):
    """Handle the 'peek' subcommand."""
    _print_job(args.id, conn.peek(args.id))


def cmd_peek_state(conn, args):
    """Handle the 'peek-ready', 'peek-delayed' and 'peek-buried'
    subcommands."""
    tube = Tube(conn, args.tube)
    peek = {
        "peek-ready": tube.peek_ready,
        "peek-delayed": tube.peek_delayed,
        "peek-buried": tube.peek_buried,
    }[args.command]
    _print_job(*peek())


def cmd_delete(conn, args):
    """Handle the 'delete' subcommand."""
    conn.delete(args.id)
    print("Deleted")


def cmd_kick(conn, args):
    """Handle the 'kick' subcommand."""
    print(Tube(conn, args.tube).kick(args.bound))


def cmd_kick_job(conn, args):
    """Handle the 'kick-job' subcommand."""
    conn.kick_job(args.id)
    print("Kicked")


def cmd_reserve(conn, args):
    """Handle the 'reserve' subcommand."""
    tubes = TubeSet(conn, *(args.tube or [DEFAULT_TUBE]))
    job_id, body = tubes.reserve(args.wait)
    _print_job(job_id, body)
    if args.delete:
        conn.delete(job_id)


def cmd_stats(conn, args):
    """Handle the 'stats' subcommand."""
    _print_record(conn.stats())


def cmd_stats_job(conn, args):
    """Handle the 'stats-job' subcommand."""
    _print_record(conn.stats_job(args.id))


def cmd_stats_tube(conn, args):
    """Handle the 'stats-tube' subcommand."""
    _print_record(Tube(conn, args.tube).stats())


def cmd_list_tubes(conn, args):
    """Handle the 'list-tubes' subcommand."""
    for name in conn.list_tubes():
        print(name)


def cmd_pause(conn, args):
    """Handle the 'pause' subcommand."""
    Tube(conn, args.tube).pause(args.delay)
    print("Paused")


def _default_config_path():
    """Return the path to config.ini in the user's config directory."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(
        os.path.expanduser("~"), ".config")
    return os.path.join(base, "beanwire", "config.ini")


def _fail(message):
    print("Error: {}".format(message), file=sys.stderr)
    sys.exit(1)


def _load_config(path, explicit):
    """Load settings from a config file.

    Args:
        path: File path to read.
        explicit: True if the user passed --config (errors are fatal).

    Returns a dict with keys 'host', 'port', 'timeout' (any may be None).
    """
    if not os.path.exists(path):
        if explicit:
            _fail("config file not found: {}".format(path))
        return {}

    config = configparser.ConfigParser()
    try:
        config.read(path)
    except configparser.Error as e:
        if explicit:
            _fail("failed to parse config file: {}".format(e))
        print("Warning: failed to parse config file: {}".format(e),
              file=sys.stderr)
        return {}

    result = {}

    host = config.get("connection", "host", fallback=None)
    if host is not None:
        host = host.strip() or None
    result["host"] = host

    for key, getter in (("port", config.getint),
                        ("timeout", config.getfloat)):
        try:
            result[key] = getter("connection", key, fallback=None)
        except ValueError as e:
            if explicit:
                _fail("invalid {} in config file: {}".format(key, e))
            print("Warning: invalid {} in config file: {}".format(key, e),
                  file=sys.stderr)
            result[key] = None

    return result


def build_parser(default_host, default_port):
    """Build the argument parser; defaults are only used in help text."""
    parser = argparse.ArgumentParser(
        prog="beanwire",
        description="beanstalkd work queue client",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Server hostname or IP (default: {})".format(default_host),
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Server port (default: {})".format(default_port),
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Connect timeout in seconds (default: 10)",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Path to config file (default: {})".format(
            _default_config_path()),
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log protocol traffic to stderr",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    p_put = subparsers.add_parser("put", help="Put a job into a tube")
    p_put.add_argument("body", nargs="?", default=None,
                       help="Job body (default: read from stdin)")
    p_put.add_argument("-t", "--tube", default=DEFAULT_TUBE,
                       help="Tube to put into (default: default)")
    p_put.add_argument("--pri", type=int, default=0,
                       help="Priority, lower is more urgent (default: 0)")
    p_put.add_argument("--delay", type=int, default=0,
                       help="Seconds before the job is ready (default: 0)")
    p_put.add_argument("--ttr", type=int, default=60,
                       help="Seconds a worker may hold the job "
                            "(default: 60)")

    p_peek = subparsers.add_parser("peek", help="Show a job by id")
    p_peek.add_argument("id", type=int, help="Job id")

    for state in ("ready", "delayed", "buried"):
        p_state = subparsers.add_parser(
            "peek-" + state, help="Show the next {} job in a tube".format(
                state))
        p_state.add_argument("-t", "--tube", default=DEFAULT_TUBE,
                             help="Tube to inspect (default: default)")

    p_delete = subparsers.add_parser("delete", help="Delete a job")
    p_delete.add_argument("id", type=int, help="Job id")

    p_kick = subparsers.add_parser(
        "kick", help="Kick buried or delayed jobs back to ready")
    p_kick.add_argument("bound", type=int, help="Maximum jobs to kick")
    p_kick.add_argument("-t", "--tube", default=DEFAULT_TUBE,
                        help="Tube to kick in (default: default)")

    p_kick_job = subparsers.add_parser("kick-job", help="Kick one job")
    p_kick_job.add_argument("id", type=int, help="Job id")

    p_reserve = subparsers.add_parser("reserve", help="Reserve a job")
    p_reserve.add_argument("-t", "--tube", action="append",
                           help="Tube to watch (repeatable, "
                                "default: default)")
    p_reserve.add_argument("--wait", type=int, default=0,
                           help="Seconds to wait for a job (default: 0)")
    p_reserve.add_argument("--delete", action="store_true",
                           help="Delete the job after printing it")

    subparsers.add_parser("stats", help="Show server statistics")

    p_stats_job = subparsers.add_parser("stats-job",
                                        help="Show job statistics")
    p_stats_job.add_argument("id", type=int, help="Job id")

    p_stats_tube = subparsers.add_parser("stats-tube",
                                         help="Show tube statistics")
    p_stats_tube.add_argument("tube", help="Tube name")

    subparsers.add_parser("list-tubes", help="List existing tubes")

    p_pause = subparsers.add_parser("pause",
                                    help="Pause reservations from a tube")
    p_pause.add_argument("tube", help="Tube name")
    p_pause.add_argument("delay", type=int, help="Seconds to pause")

    return parser


DISPATCH = {
    "delete": cmd_delete,
    "kick": cmd_kick,
    "kick-job": cmd_kick_job,
    "list-tubes": cmd_list_tubes,
    "pause": cmd_pause,
    "peek": cmd_peek,
    "peek-buried": cmd_peek_state,
    "peek-delayed": cmd_peek_state,
    "peek-ready": cmd_peek_state,
    "put": cmd_put,
    "reserve": cmd_reserve,
    "stats": cmd_stats,
    "stats-job": cmd_stats_job,
    "stats-tube": cmd_stats_tube,
}


def main(argv=None) -> None:
    """Parse arguments and dispatch to the appropriate subcommand."""
    DEFAULT_HOST = "127.0.0.1"
    DEFAULT_TIMEOUT = 10.0

    # --- Pre-parse: resolve env vars for help string defaults ---
    env_host = os.environ.get("BEANWIRE_HOST") or None
    env_port_str = os.environ.get("BEANWIRE_PORT")
    env_port = None
    if env_port_str:
        try:
            env_port = int(env_port_str)
        except ValueError:
            _fail("BEANWIRE_PORT must be an integer, got: {!r}".format(
                env_port_str))

    parser = build_parser(
        env_host if env_host is not None else DEFAULT_HOST,
        env_port if env_port is not None else DEFAULT_PORT,
    )
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )

    # --- Load config file ---
    explicit_config = bool(args.config)
    config_path = args.config if explicit_config else _default_config_path()
    cfg = _load_config(config_path, explicit_config)

    # --- Resolve settings (CLI > env > config > default) ---
    host = next(v for v in (args.host, env_host, cfg.get("host"),
                            DEFAULT_HOST) if v is not None)
    port = next(v for v in (args.port, env_port, cfg.get("port"),
                            DEFAULT_PORT) if v is not None)
    timeout = next(v for v in (args.timeout, cfg.get("timeout"),
                               DEFAULT_TIMEOUT) if v is not None)

    try:
        with Connection.dial(host, port, timeout=timeout) as conn:
            DISPATCH[args.command](conn, args)
    except ConnectionRefusedError:
        _fail("could not connect to {}:{}".format(host, port))
    except OSError as e:
        _fail(e)
    except BeanwireError as e:
        _fail(e)
    except ValueError as e:
        _fail(e)


if __name__ == "__main__":
    main()
