import atexit
import logging
import os
import sys
import termios
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional, TextIO

logger = logging.getLogger(__name__)

RECOVERY_GUIDANCE = (
    "Your terminal may be in an inconsistent state.\n"
    "Try running one of these commands to fix:\n"
    "  - reset\n"
    "  - stty sane\n"
)

# Indices into the list returned by termios.tcgetattr().
_OFLAG = 1
_LFLAG = 3
_CC = 6


@dataclass
class TerminalState:
    """Terminal attributes captured once at session start."""
    fd: int
    attrs: list
    restored: bool = field(default=False, repr=False)


def is_terminal(fd: int) -> bool:
    try:
        return os.isatty(fd)
    except OSError:
        return False


def raw_attrs(attrs: list) -> list:
    """
    Return a copy of `attrs` with echo and canonical input disabled.

    ISIG stays set so Ctrl-C still raises SIGINT locally instead of being
    forwarded to the remote console as a literal byte.
    """
    mode = list(attrs)
    mode[_CC] = list(attrs[_CC])
    mode[_LFLAG] &= ~(termios.ECHO | termios.ICANON)
    mode[_LFLAG] |= termios.ISIG
    mode[_OFLAG] |= termios.OPOST
    mode[_CC][termios.VMIN] = 1
    mode[_CC][termios.VTIME] = 0
    return mode


class TerminalController:
    """Capture, enter raw mode, and restore the local terminal exactly once."""

    def __init__(self, fd: int, stream: Optional[TextIO] = None):
        self.fd = fd
        self.stream = stream
        self._lock = threading.Lock()

    def capture(self) -> TerminalState:
        return TerminalState(self.fd, termios.tcgetattr(self.fd))

    def enter_raw(self, state: TerminalState) -> None:
        termios.tcsetattr(state.fd, termios.TCSANOW, raw_attrs(state.attrs))
        logger.info("Terminal set to raw mode (Ctrl+C to exit)")

    def restore(self, state: TerminalState) -> bool:
        """
        Put the captured attributes back. Safe to call from several exit
        paths; only the first call touches the terminal. Returns False if
        the terminal could not be restored.
        """
        with self._lock:
            if state.restored:
                return True
            state.restored = True
            try:
                termios.tcsetattr(state.fd, termios.TCSANOW, state.attrs)
            except (termios.error, OSError) as e:
                # stdout may be mid-transfer; guidance goes to the error stream only.
                stream = self.stream if self.stream is not None else sys.stderr
                stream.write(f"\n[ERROR] Failed to restore terminal settings: {e}\n")
                stream.write(RECOVERY_GUIDANCE)
                stream.flush()
                return False
        logger.debug("Terminal settings restored successfully")
        return True

    @contextmanager
    def raw_mode(self) -> Iterator[TerminalState]:
        """Hold the terminal in raw mode for the duration of the block."""
        state = self.capture()
        # Exit-time guarantee for paths that bypass the finally below.
        atexit.register(self.restore, state)
        try:
            self.enter_raw(state)
            yield state
        finally:
            try:
                self.restore(state)
            finally:
                atexit.unregister(self.restore)
