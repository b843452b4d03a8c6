from __future__ import annotations

import logging
import os
import select
import shutil
import socket
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

import pytest


def make_pods(base: str | Path, ids: list[str], socket_name: str = "task.socket") -> None:
    """Create one subdirectory per id, each holding a placeholder socket file."""
    for pod_id in ids:
        pod_dir = Path(base) / pod_id
        pod_dir.mkdir(parents=True, exist_ok=True)
        (pod_dir / socket_name).touch()


def echo_until_eof(conn: socket.socket) -> None:
    while True:
        try:
            data = conn.recv(4096)
        except OSError:
            return
        if not data:
            return
        conn.sendall(data)


def flood(fd: int, stop: threading.Event, stalled: threading.Event, stall_after: float = 0.5) -> None:
    """
    Write into fd until `stop`, setting `stalled` once fd has stayed
    unwritable for `stall_after` seconds, i.e. the reader stopped keeping up.
    """
    os.set_blocking(fd, False)
    chunk = b"x" * 65536
    while not stop.is_set():
        _, w, _ = select.select([], [fd], [], stall_after)
        if not w:
            stalled.set()
            continue
        try:
            os.write(fd, chunk)
        except BlockingIOError:
            continue
        except OSError:
            return


class FakeConsole:
    """
    A control socket peer that accepts one client, records the handshake
    request, optionally answers it and hands the connection to `handler`.
    """

    def __init__(
        self,
        path: str,
        reply: Optional[bytes] = b"OK\n",
        handler: Optional[Callable[[socket.socket], None]] = None,
    ):
        self.path = path
        self.reply = reply
        self.handler = handler
        self.request = b""
        self.stop = threading.Event()
        self.done = threading.Event()
        os.makedirs(os.path.dirname(path), exist_ok=True)
        if os.path.exists(path):
            os.unlink(path)
        self.server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.server.bind(path)
        self.server.listen(1)
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self) -> None:
        try:
            conn, _ = self.server.accept()
        except OSError:
            self.done.set()
            return
        if self.stop.is_set():
            # Woken by close() without a real client.
            conn.close()
            self.done.set()
            return
        with conn:
            self.request = conn.recv(4096)
            if self.reply is not None:
                conn.sendall(self.reply)
            if self.handler is not None:
                self.handler(conn)
            else:
                self.stop.wait(10)
        self.done.set()

    def close(self) -> None:
        self.stop.set()
        if not self.done.is_set():
            # close() alone does not interrupt a blocked accept().
            try:
                with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
                    s.connect(self.path)
            except OSError:
                pass
        self.server.close()
        self.thread.join(5)


@pytest.fixture
def sock_dir():
    # Short paths keep AF_UNIX addresses under the sun_path limit.
    d = tempfile.mkdtemp(prefix="pc-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def fake_console():
    consoles: list[FakeConsole] = []

    def _start(path: str, **kwargs) -> FakeConsole:
        console = FakeConsole(path, **kwargs)
        consoles.append(console)
        return console

    yield _start
    for console in consoles:
        console.close()


class Pipes:
    """Tracks pipe fds so teardown only closes the ones a test left open."""

    def __init__(self):
        self._open: set[int] = set()
        self._lock = threading.Lock()

    def open(self) -> tuple[int, int]:
        r, w = os.pipe()
        with self._lock:
            self._open.update((r, w))
        return r, w

    def close(self, fd: int) -> None:
        with self._lock:
            if fd not in self._open:
                return
            self._open.discard(fd)
        os.close(fd)

    def read_all(self, fd: int) -> bytes:
        """Read a pipe until EOF, then close it. The write end must be closed."""
        chunks = []
        while True:
            data = os.read(fd, 4096)
            if not data:
                break
            chunks.append(data)
        self.close(fd)
        return b"".join(chunks)

    def close_all(self) -> None:
        for fd in list(self._open):
            self.close(fd)


@pytest.fixture
def pipes():
    p = Pipes()
    yield p
    p.close_all()


@pytest.fixture(autouse=True)
def _restore_root_logging():
    # The CLI reconfigures the root logger against the captured stderr.
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
