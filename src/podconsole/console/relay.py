import enum
import logging
import os
import select
import socket
import threading
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from podconsole.errors import CommandRejected

logger = logging.getLogger(__name__)

MAX_CMD_LENGTH = 4096

# Upper bound on chunks forwarded after cancellation, so a chatty peer
# cannot keep a finished session alive.
MAX_DRAIN_CHUNKS = 256

#########################################################################
## Session state ########################################################
#########################################################################

class OutcomeKind(enum.Enum):
    COMPLETED = "completed"
    REMOTE_CLOSED = "remote_closed"
    LOCAL_CLOSED = "local_closed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionOutcome:
    kind: OutcomeKind
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is not OutcomeKind.FAILED


@dataclass
class SessionState:
    """
    Flags shared by the workers of one session. Each session gets its own
    instance, so several sessions can coexist in a process.
    """
    cancel: threading.Event = field(default_factory=threading.Event)
    interrupted: threading.Event = field(default_factory=threading.Event)
    remote_closed: threading.Event = field(default_factory=threading.Event)
    local_closed: threading.Event = field(default_factory=threading.Event)
    finished: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def request_cancel(self) -> bool:
        """Raise the cancel flag. Returns True only for the call that raised it."""
        with self._lock:
            if self.cancel.is_set():
                return False
            self.cancel.set()
            return True

#########################################################################
## Helpers ##############################################################
#########################################################################

def write_all(
    fd: int,
    data: bytes,
    poll_interval: float = 0.25,
    state: Optional[SessionState] = None,
) -> bool:
    """
    Write every byte of data to fd, waiting for writability in select() so
    a stalled reader never holds the caller longer than poll_interval.

    With a session state the write is abandoned when the user interrupts,
    or once the session is cancelled and fd stays unwritable for a whole
    poll interval. Returns False when the write was abandoned.
    """
    view = memoryview(data)
    while view:
        if state is not None and state.interrupted.is_set():
            return False
        try:
            _, w, _ = select.select([], [fd], [], poll_interval)
        except InterruptedError:
            continue
        if not w:
            if state is not None and state.cancel.is_set():
                return False
            continue
        try:
            # Writability only guarantees room for PIPE_BUF bytes.
            n = os.write(fd, view[:select.PIPE_BUF])
        except (BlockingIOError, InterruptedError):
            continue
        view = view[n:]
    return True


def validate_command(command: Union[str, Sequence[str]], max_length: int = MAX_CMD_LENGTH) -> str:
    """Join and validate a one-shot command line."""
    line = command if isinstance(command, str) else " ".join(command)

    if "\0" in line:
        raise CommandRejected("Command contains null byte, which is not allowed")

    size = len(line.encode("utf-8"))
    if size > max_length:
        raise CommandRejected(
            f"Command too long: {size} bytes (max: {max_length} bytes)"
        )

    if ("\\x1b" in line or "\x1b" in line) and "grep" not in line and "sed" not in line:
        logger.warning("Command contains ANSI escape sequences which may not work correctly")

    return line

#########################################################################
## Relay ################################################################
#########################################################################

class DuplexRelay:
    """
    Copy local input to the channel and the channel to local output on two
    worker threads until either side closes or the session is cancelled.

    Workers wait in select() bounded by poll_interval, for reads and for
    writes, so the shared cancel flag is re-checked at least that often.
    The channel is put in non-blocking mode when a run starts.
    """

    def __init__(
        self,
        channel: socket.socket,
        input_fd: Optional[int],
        output_fd: int,
        state: SessionState,
        *,
        poll_interval: float = 0.25,
        upstream_chunk: int = 1024,
        downstream_chunk: int = 4096,
    ):
        self.channel = channel
        self.input_fd = input_fd
        self.output_fd = output_fd
        self.state = state
        self.poll_interval = poll_interval
        self.upstream_chunk = upstream_chunk
        self.downstream_chunk = downstream_chunk
        self._lock = threading.Lock()  # protects _errors and _first_close
        self._errors: list[str] = []
        self._first_close: Optional[OutcomeKind] = None

    def _fail(self, where: str, exc: BaseException) -> None:
        logger.error("%s error: %s", where, exc)
        with self._lock:
            self._errors.append(f"{where} error: {exc}")
        # The sibling worker would otherwise keep waiting on a dead session.
        self.state.request_cancel()

    def _closed(self, kind: OutcomeKind) -> None:
        with self._lock:
            if self._first_close is None:
                self._first_close = kind
        if kind is OutcomeKind.REMOTE_CLOSED:
            self.state.remote_closed.set()
        else:
            self.state.local_closed.set()

    def _upstream_loop(self) -> None:
        """stdin -> channel."""
        state = self.state
        while not (state.cancel.is_set() or state.remote_closed.is_set()):
            try:
                r, _, _ = select.select([self.input_fd], [], [], self.poll_interval)
            except InterruptedError:
                continue
            except (OSError, ValueError) as e:
                self._fail("stdin", e)
                return
            if not r:
                continue

            try:
                data = os.read(self.input_fd, self.upstream_chunk)
            except (BlockingIOError, InterruptedError):
                continue
            except OSError as e:
                self._fail("stdin read", e)
                return
            if not data:
                logger.debug("stdin closed")
                self._closed(OutcomeKind.LOCAL_CLOSED)
                return

            try:
                if not self._send(data):
                    break
            except OSError as e:
                self._fail("socket write", e)
                return
        logger.debug("stdin worker received stop signal")

    def _send(self, data: bytes) -> bool:
        """Send data on the non-blocking channel; False if cancelled first."""
        view = memoryview(data)
        while view:
            if self.state.cancel.is_set():
                return False
            try:
                _, w, _ = select.select([], [self.channel], [], self.poll_interval)
            except InterruptedError:
                continue
            if not w:
                continue
            try:
                sent = self.channel.send(view)
            except (BlockingIOError, InterruptedError):
                continue
            view = view[sent:]
        return True

    def _pump_once(self) -> bool:
        """Move one chunk channel -> stdout. Returns False when downstream should stop."""
        try:
            data = self.channel.recv(self.downstream_chunk)
        except (BlockingIOError, InterruptedError):
            return True
        if not data:
            logger.debug("socket closed")
            self._closed(OutcomeKind.REMOTE_CLOSED)
            return False
        try:
            if not write_all(self.output_fd, data, self.poll_interval, self.state):
                logger.debug("Dropped %d bytes of output after cancel", len(data))
                return False
        except OSError as e:
            self._fail("stdout write", e)
            return False
        return True

    def _drain(self) -> None:
        """Forward output still in flight once the session winds down."""
        for _ in range(MAX_DRAIN_CHUNKS):
            r, _, _ = select.select([self.channel], [], [], self.poll_interval)
            if not r or not self._pump_once():
                return

    def _downstream_loop(self) -> None:
        """channel -> stdout."""
        state = self.state
        try:
            while not state.cancel.is_set():
                try:
                    r, _, _ = select.select([self.channel], [], [], self.poll_interval)
                except InterruptedError:
                    continue
                if r and not self._pump_once():
                    return
            logger.debug("stdout worker received stop signal")
            if not state.interrupted.is_set():
                self._drain()
        except (OSError, ValueError) as e:
            self._fail("socket read", e)

    def _join(self, thread: threading.Thread) -> None:
        # Timed joins keep the main thread responsive to signal handlers.
        while thread.is_alive():
            thread.join(self.poll_interval)

    def _supervise(self, upstream: Optional[threading.Thread], downstream: threading.Thread) -> None:
        try:
            if upstream is not None:
                self._join(upstream)
                # Local input is done; stop the reader once in-flight output is drained.
                self.state.request_cancel()
            self._join(downstream)
        except BaseException:
            self.state.request_cancel()
            for t in (upstream, downstream):
                if t is not None:
                    self._join(t)
            raise
        finally:
            self.state.finished.set()

    def _outcome(self, eof_kind: Optional[OutcomeKind] = None) -> SessionOutcome:
        if self.state.interrupted.is_set():
            return SessionOutcome(OutcomeKind.INTERRUPTED)
        with self._lock:
            errors = list(self._errors)
            first_close = self._first_close
        if errors:
            return SessionOutcome(OutcomeKind.FAILED, "; ".join(errors))
        if first_close is not None:
            return SessionOutcome(eof_kind or first_close)
        return SessionOutcome(OutcomeKind.COMPLETED)

    def run(self) -> SessionOutcome:
        """Relay in both directions; returns once both workers have stopped."""
        if self.input_fd is None:
            raise ValueError("interactive relay requires an input fd")
        self.channel.setblocking(False)
        downstream = threading.Thread(target=self._downstream_loop, name="relay-downstream", daemon=True)
        upstream = threading.Thread(target=self._upstream_loop, name="relay-upstream", daemon=True)
        downstream.start()
        upstream.start()
        self._supervise(upstream, downstream)
        outcome = self._outcome()
        logger.debug("Relay stopped: %s", outcome)
        return outcome

    def run_command(self, command: Union[str, Sequence[str]], max_length: int = MAX_CMD_LENGTH) -> SessionOutcome:
        """
        Send a single command line, then copy channel output until the remote
        side closes. Validation happens before anything touches the socket.
        """
        line = validate_command(command, max_length)
        self.channel.setblocking(False)
        try:
            sent = self._send((line + "\n").encode("utf-8"))
        except OSError as e:
            self._fail("socket write", e)
            sent = False
        if not sent:
            self.state.finished.set()
            return self._outcome()
        logger.debug("Command sent: %s", line)

        downstream = threading.Thread(target=self._downstream_loop, name="relay-downstream", daemon=True)
        downstream.start()
        self._supervise(None, downstream)
        return self._outcome(eof_kind=OutcomeKind.COMPLETED)
