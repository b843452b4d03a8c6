import enum
import logging
import sys
import termios
from typing import Optional, Sequence, TextIO

from podconsole.config import ConsoleConfig
from podconsole.console.handshake import open_channel
from podconsole.console.relay import DuplexRelay, SessionOutcome, SessionState, validate_command
from podconsole.console.resolver import resolve_sandbox
from podconsole.console.shutdown import ShutdownController
from podconsole.console.terminal import TerminalController, is_terminal
from podconsole.errors import LocalIoFailure

logger = logging.getLogger(__name__)


class Mode(enum.Enum):
    INTERACTIVE = "interactive"
    COMMAND = "command"
    BASIC = "basic"


def select_mode(command: Optional[Sequence[str]], tty: bool, interactive: bool) -> Mode:
    """Interactive needs both -t and -i and no command; a command wins over basic relay."""
    if tty and interactive and not command:
        return Mode.INTERACTIVE
    if command:
        return Mode.COMMAND
    return Mode.BASIC


def attach(
    config: ConsoleConfig,
    pod_id: str,
    *,
    command: Optional[Sequence[str]] = None,
    tty: bool = False,
    interactive: bool = False,
    stdin_fd: Optional[int] = None,
    stdout_fd: Optional[int] = None,
    stderr: Optional[TextIO] = None,
) -> SessionOutcome:
    """
    Resolve `pod_id`, open its debug console and relay until the session ends.

    Resolution, validation and handshake failures raise before the terminal is
    touched. Once raw mode is entered, every exit path restores it after both
    relay workers have stopped, and the channel is closed last.
    """
    mode = select_mode(command, tty, interactive)
    line = None
    if mode is Mode.COMMAND:
        line = validate_command(command, config.max_command_length)

    ref = resolve_sandbox(config.socket_dir, pod_id, config.socket_name)
    logger.info("Found sandbox: %s", ref.id)
    logger.debug("Socket: %s", ref.control_socket_path)

    # One-shot commands never read local input.
    if mode is not Mode.COMMAND and stdin_fd is None:
        stdin_fd = sys.stdin.fileno()
    if mode is Mode.INTERACTIVE and not is_terminal(stdin_fd):
        raise LocalIoFailure("Interactive mode requires stdin to be a terminal")

    channel = open_channel(
        ref.control_socket_path,
        config.port,
        timeout=config.handshake_timeout,
        retry_budget=config.handshake_retries,
        retry_delay=config.handshake_retry_delay,
        base_dir=config.socket_dir,
        socket_name=config.socket_name,
    )
    logger.info("Connected successfully, starting %s session...", mode.value)

    try:
        if stdout_fd is None:
            stdout_fd = sys.stdout.fileno()
        state = SessionState()
        relay = DuplexRelay(
            channel,
            stdin_fd,
            stdout_fd,
            state,
            poll_interval=config.poll_interval,
            upstream_chunk=config.upstream_chunk,
            downstream_chunk=config.downstream_chunk,
        )
        with ShutdownController(state, poll_interval=config.poll_interval):
            if mode is Mode.COMMAND:
                return relay.run_command(line, config.max_command_length)
            if mode is Mode.BASIC:
                return relay.run()
            terminal = TerminalController(stdin_fd, stderr)
            try:
                with terminal.raw_mode():
                    return relay.run()
            except termios.error as e:
                raise LocalIoFailure(f"Failed to configure terminal: {e}") from e
    finally:
        channel.close()
        logger.debug("%s session ended", mode.value.capitalize())
