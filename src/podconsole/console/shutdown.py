import logging
import signal
import threading
from typing import Iterable, Optional

from podconsole.console.relay import SessionState

logger = logging.getLogger(__name__)


class ShutdownController:
    """
    Turn an interrupt signal into a single cooperative cancellation.

    The signal handler only records the interrupt; a watcher thread raises the
    session's cancel flag and logs. Nothing here closes sockets or touches the
    terminal: the relay workers poll the flag and stop on their own.
    """

    def __init__(
        self,
        state: SessionState,
        signals: Iterable[int] = (signal.SIGINT,),
        poll_interval: float = 0.25,
    ):
        self.state = state
        self.signals = tuple(signals)
        self.poll_interval = poll_interval
        self._previous: dict[int, object] = {}
        self._watcher: Optional[threading.Thread] = None

    def _handle_signal(self, signum, frame):
        # Runs between bytecodes of the main thread: no I/O, no locks.
        self.state.interrupted.set()

    def watch(self) -> None:
        """Wait for an interrupt or for the session to finish, whichever is first."""
        while not self.state.finished.is_set():
            if self.state.interrupted.wait(self.poll_interval):
                logger.info("Ctrl+C received, shutting down gracefully...")
                self.state.request_cancel()
                return

    def install(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; skipping signal handler installation")
            return
        for sig in self.signals:
            self._previous[sig] = signal.signal(sig, self._handle_signal)
        logger.debug("Signal handlers registered for %s", [signal.Signals(s).name for s in self.signals])

    def uninstall(self) -> None:
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()

    def __enter__(self) -> "ShutdownController":
        self.install()
        self._watcher = threading.Thread(target=self.watch, name="shutdown-watcher", daemon=True)
        self._watcher.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.state.finished.set()
        try:
            if self._watcher is not None:
                self._watcher.join()
        finally:
            self.uninstall()
