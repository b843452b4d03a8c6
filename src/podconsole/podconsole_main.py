import argparse
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Optional, List

from pydantic import ValidationError

from podconsole.config import ConsoleConfig, apply_overrides, load_config
from podconsole.console.relay import SessionOutcome
from podconsole.console.resolver import list_sandboxes
from podconsole.console.session import attach
from podconsole.errors import EXIT_LOCAL_IO, EXIT_OK, EXIT_USAGE, ConsoleError
from podconsole.utils import configure_logging

logger = logging.getLogger(__name__)

def package_version() -> str:
    """Return the installed distribution version."""
    try:
        return version("podconsole")
    except PackageNotFoundError:
        return "unknown"

def outcome_exit_code(outcome: SessionOutcome) -> int:
    """Interrupts and clean closes are not errors; only a failed relay is."""
    return EXIT_OK if outcome.ok else EXIT_LOCAL_IO

def run_ps(config: ConsoleConfig) -> int:
    """Print every pod that exposes a debug console socket."""
    pods = list_sandboxes(config.socket_dir, config.socket_name)
    if not pods:
        print(f"No pods found in {config.socket_dir}.", file=sys.stderr)
        return EXIT_OK
    for pod in pods:
        print(pod)
    return EXIT_OK

def run_exec(config: ConsoleConfig, args: argparse.Namespace) -> int:
    """Attach to a pod's debug console and map the outcome to an exit code."""
    command = list(args.command or [])
    if command and command[0] == "--":
        command = command[1:]

    logger.info("Connecting to pod: %s", args.pod_id)
    logger.info("Port: %d", config.port)
    try:
        outcome = attach(
            config,
            args.pod_id,
            command=command,
            tty=args.tty,
            interactive=args.interactive,
        )
    except ConsoleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code

    if not outcome.ok:
        print(f"Error: {outcome.reason}", file=sys.stderr)
    return outcome_exit_code(outcome)

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="podconsole",
        description="Attach to the debug console of a running sandbox.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose output (-v for info, -vv for debug).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {package_version()}")
    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    exec_parser = subparsers.add_parser(
        "exec",
        help="Execute a command in a pod's debug console.",
        description=(
            "Open a pod's debug console. Options go before POD_ID; everything "
            "after POD_ID is sent as a one-shot command."
        ),
    )
    exec_parser.add_argument(
        "-t",
        "--tty",
        action="store_true",
        help="Allocate a pseudo-TTY (for interactive mode).",
    )
    exec_parser.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Keep STDIN open (for interactive mode).",
    )
    exec_parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="Debug console port (default: 1025).",
    )
    exec_parser.add_argument(
        "-d",
        "--socket-dir",
        default=None,
        help="Socket directory path (default: /run/kuasar).",
    )
    exec_parser.add_argument("pod_id", metavar="POD_ID", help="Pod/sandbox id or unique prefix.")
    exec_parser.add_argument(
        "command",
        metavar="COMMAND",
        nargs=argparse.REMAINDER,
        help="Command to execute (if not specified, relays stdin/stdout).",
    )

    ps_parser = subparsers.add_parser("ps", help="List pods with a debug console socket.")
    ps_parser.add_argument(
        "-d",
        "--socket-dir",
        default=None,
        help="Socket directory path (default: /run/kuasar).",
    )
    return parser.parse_args(argv)

def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.verbose)
    if args.verbose > 0:
        logger.info("podconsole version %s", package_version())

    try:
        config = apply_overrides(
            load_config(),
            socket_dir=args.socket_dir,
            port=getattr(args, "port", None),
        )
    except ValidationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    if args.subcommand == "ps":
        return run_ps(config)
    return run_exec(config, args)

if __name__ == "__main__":
    sys.exit(main())
