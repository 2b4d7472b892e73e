"""
Command-line entry point.

    ptywatch [-w DIR] [-q DURATION] [--grace DURATION] [-c CONFIG] [--] command [args...]

Everything after the options is the command to run. The command is started
once, then restarted whenever something below the watched directory changes.
Ctrl-C goes to the command; quit the tool with Ctrl-\\ (SIGQUIT) or SIGTERM.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from . import __version__
from .config import Config, find_config_file
from .exceptions import ConfigError, MonitorError
from .log import LogConfig, LoggerFactory
from .monitor import ChangeMonitor
from .process.supervisor import Supervisor
from .runner import Runner
from .shutdown import ShutdownManager


def _version_string() -> str:
    try:
        from . import _build_info
    except ImportError:
        return f"ptywatch {__version__}"
    return f"ptywatch {__version__} ({_build_info.COMMIT_SHORT})"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ptywatch",
        description="Re-run an interactive command whenever a directory changes.",
        epilog="Ctrl-C is delivered to the command. Quit with Ctrl-\\ or SIGTERM.",
    )
    parser.add_argument("-w", "--watch", metavar="DIR", help="directory to watch (default: .)")
    parser.add_argument(
        "-q",
        "--quiet",
        metavar="DURATION",
        help="quiet period that ends a burst of changes (default: 100ms)",
    )
    parser.add_argument(
        "--grace",
        metavar="DURATION",
        help="time the command gets to exit after hang-up (default: 2s)",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="YAML configuration file (default: ./.ptywatch.yaml if present)",
    )
    parser.add_argument("--log-level", metavar="LEVEL", help="trace, debug, info, ... or false")
    parser.add_argument("--version", action="version", version=_version_string())
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command and arguments")
    return parser


def load_config(args: argparse.Namespace) -> Config:
    """
    Build the effective configuration: defaults, file, env, then flags.

    Raises:
        ConfigError: If any layer holds an invalid value
    """
    config = Config(args.config or find_config_file())
    if args.watch is not None:
        config.watch.root = args.watch
    if args.quiet is not None:
        config.watch.quiet = args.quiet
    if args.grace is not None:
        config.supervisor.grace = args.grace
    if args.log_level is not None:
        config.logging.level = args.log_level
    return config


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("no command given")

    try:
        config = load_config(args)
        log_config = LogConfig.from_config(config)
        quiet_secs = config.duration("watch.quiet")
        grace_secs = config.duration("supervisor.grace")
        abort_signal = config.signal("supervisor.abort_signal")
        quit_signals = config.signals("supervisor.quit_signals")
        chunk_size = config.integer("supervisor.chunk_size")
        shutdown = ShutdownManager(quit_signals)
    except (ConfigError, ValueError) as e:
        print(f"ptywatch: {e}", file=sys.stderr)
        return 2

    lg = LoggerFactory.create_root(log_config)
    if config.path is not None:
        lg.debug("loaded configuration", extra={"path": str(config.path)})

    shutdown.register_signal_handlers()
    try:
        supervisor = Supervisor(
            LoggerFactory.derive(lg, "supervisor"),
            abort_signal=abort_signal,
            grace_secs=grace_secs,
            chunk_size=chunk_size,
            log_level=log_config.level_name,
            log_colors=log_config.colors and sys.stderr.isatty(),
        )
        monitor = ChangeMonitor(
            LoggerFactory.derive(lg, "monitor"),
            config.watch.root,
            ignore=config.get("watch.ignore") or [],
        )
        runner = Runner(
            LoggerFactory.derive(lg, "runner"),
            supervisor,
            monitor,
            command,
            quiet_secs=quiet_secs,
        )
        return runner.run()
    except MonitorError as e:
        lg.error("cannot watch", extra={"exception": e})
        return 1
    except KeyboardInterrupt:
        return shutdown.get_signal_return_code()
    finally:
        shutdown.restore()


if __name__ == "__main__":
    sys.exit(main())
