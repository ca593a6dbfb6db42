"""Command-line interface for ctreaper.

This module handles argument parsing, command routing, and user interaction.
"""

import argparse
import logging
import signal
import sys
import threading
import uuid
from pathlib import Path

from .version import __version__
from .config import ReaperSettings, SessionContext
from .container import ReaperOptions, build_reaper_request
from .docker import DockerCLIProvider
from .labels import label_filter, session_labels
from .reaper import ReaperRegistry


def setup_logging(verbose, quiet):
    """Configure logging based on verbosity flags."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s", stream=sys.stderr)
    elif quiet:
        logging.basicConfig(level=logging.ERROR, stream=sys.stderr)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stderr)


def load_settings(args):
    explicit_configs = [Path(c) for c in args.config] if args.config else None
    return ReaperSettings.load(explicit_config_files=explicit_configs)


def cmd_labels(args):
    """Print the labels and Ryuk filter for a session."""
    session_id = args.session_id or uuid.uuid4().hex
    labels = session_labels(session_id)
    for key, value in sorted(labels.items()):
        print(f"{key}={value}")
    print(f"filter: {label_filter(labels)}")


def cmd_config_show(args):
    """Show merged settings."""
    try:
        settings = load_settings(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print("reaper:")
    for key, value in sorted(settings.to_dict().items()):
        print(f"  {key} = {repr(value)}")


def cmd_run(args):
    """Start the reaper and hold a connection until interrupted."""
    try:
        settings = load_settings(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if settings.ryuk_disabled:
        print("Error: reaper is disabled by configuration", file=sys.stderr)
        sys.exit(1)

    session_id = args.session_id or uuid.uuid4().hex
    context = SessionContext.current()
    options = ReaperOptions(image_name=args.image)
    provider = DockerCLIProvider(settings, dry_run=args.dry_run)

    logging.debug("Configuration:")
    logging.debug(f"  Session: {session_id}")
    logging.debug(f"  Docker socket: {context.host_socket()}")
    logging.debug(f"  Runtime: {settings.runtime}")
    logging.debug(f"  Privileged: {settings.ryuk_privileged}")
    logging.debug(f"  Network: {settings.default_network or 'bridge only'}")

    if args.dry_run:
        request = build_reaper_request(session_id, provider, context.host_socket(), options)
        provider.run_container(request)
        return

    try:
        reaper = ReaperRegistry().get_or_create(session_id, provider, context, options)
        connection = reaper.connect()
    except (RuntimeError, ConnectionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"RYUK_ENDPOINT={reaper.endpoint}")
    print(f"SESSION_ID={session_id}")
    sys.stdout.flush()

    stop = threading.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: stop.set())

    with connection:
        connection.wait_armed()
        if not args.quiet:
            print("[ctreaper] holding reaper connection, Ctrl+C to release", file=sys.stderr)
        stop.wait()

    connection.join(timeout=5)
    logging.info(f"Released session {session_id}")


def create_parser():
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog="ctreaper",
        description="ctreaper starts a Ryuk reaper that removes a test session's containers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,  # Require full option names
    )

    parser.add_argument("--version", action="version", version=f"ctreaper {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress non-essential output")
    parser.add_argument(
        "--config",
        action="append",
        help="Path to configuration file (can be used multiple times, order matters)",
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Start the reaper and hold a session open",
        description="""Start the reaper and hold a session open

Containers labeled with the printed session id are removed once this
command exits, however it exits.

Examples:
    ctreaper run                         # New session id
    ctreaper run --session-id abc123     # Reuse a session id
    ctreaper --verbose run --dry-run     # Show the docker command only""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("--session-id", help="Session id (default: random)")
    run_parser.add_argument("--image", help="Reaper image to use")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show commands without starting the reaper",
    )

    # labels command
    labels_parser = subparsers.add_parser("labels", help="Print the labels for a session")
    labels_parser.add_argument("session_id", nargs="?", help="Session id (default: random)")

    # config subcommand group
    config_parser = subparsers.add_parser("config", help="Configuration management commands")
    config_subparsers = config_parser.add_subparsers(
        dest="config_command", help="Config subcommands"
    )

    # config show
    config_subparsers.add_parser("show", help="Show merged settings")

    return parser


def main(argv=None):
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.quiet)

    # Route to appropriate command handler
    if args.subcommand == "run":
        cmd_run(args)
    elif args.subcommand == "labels":
        cmd_labels(args)
    elif args.subcommand == "config":
        if args.config_command == "show" or args.config_command is None:
            cmd_config_show(args)
        else:
            parser.parse_args(["config", "--help"])
    else:
        parser.print_help()
        sys.exit(1)
