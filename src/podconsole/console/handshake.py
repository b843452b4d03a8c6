import logging
import os
import socket
import stat
import time
from typing import Optional

from podconsole.config import DEFAULT_SOCKET_NAME
from podconsole.console.resolver import list_sandboxes
from podconsole.errors import ConnectionFailed, HandshakeFailed

logger = logging.getLogger(__name__)

CMD_CONNECT = "CONNECT"
CMD_OK = b"OK"

# Single reads during the handshake never need more than this.
RESPONSE_CHUNK = 4096


def connect_hint(control_path: str, base_dir: Optional[str], socket_name: str = DEFAULT_SOCKET_NAME) -> str:
    """
    Build troubleshooting text for a control socket that could not be found.
    The candidate list is recomputed because the directory may have changed
    since resolution.
    """
    hint = ""
    parent = os.path.dirname(control_path)
    if parent and not os.path.isdir(parent):
        hint = f"\nParent directory does not exist: {parent}"
    elif base_dir is not None:
        pods = list_sandboxes(base_dir, socket_name)
        if pods:
            hint = "\n\nAvailable pods:\n  " + "\n  ".join(pods)

    try:
        mode = os.stat(control_path).st_mode
    except OSError:
        mode = None
    if mode is not None:
        hint += f"\nSocket exists but cannot connect. Permissions: {stat.S_IMODE(mode):o}"

    troubleshooting = (
        "\n\nTroubleshooting:\n"
        "  1. Check if pod/container is running\n"
        f"  2. Check socket directory: ls -la {base_dir or parent}\n"
        "  3. Try running with sudo if permission denied"
    )
    return hint + troubleshooting


def _connect(control_path: str, base_dir: Optional[str], socket_name: str) -> socket.socket:
    s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        s.connect(control_path)
    except FileNotFoundError as e:
        s.close()
        raise ConnectionFailed(
            f"Socket not found or inaccessible: {control_path}"
            + connect_hint(control_path, base_dir, socket_name)
        ) from e
    except OSError as e:
        # PermissionError, ConnectionRefusedError and friends are reported verbatim.
        s.close()
        raise ConnectionFailed(f"Failed to connect to socket {control_path}: {e}") from e
    logger.info("Connected to socket: %s", control_path)
    return s


def _await_ok(s: socket.socket, port: int, timeout: float, retry_budget: int, retry_delay: float) -> bytes:
    """Read until the response contains OK; raise HandshakeFailed otherwise."""
    deadline = time.monotonic() + timeout
    response = bytearray()
    for _ in range(retry_budget):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        s.settimeout(remaining)
        try:
            chunk = s.recv(RESPONSE_CHUNK)
        except socket.timeout as e:
            raise HandshakeFailed(
                f"Timed out after {timeout:g}s waiting for OK from port {port}"
            ) from e
        except (BlockingIOError, InterruptedError):
            continue
        except OSError as e:
            raise HandshakeFailed(f"Failed to read response: {e}") from e

        if not chunk:
            time.sleep(min(retry_delay, max(deadline - time.monotonic(), 0)))
            continue

        response.extend(chunk)
        logger.debug("Received response: %r", bytes(chunk).strip())
        if CMD_OK in response:
            return bytes(response)

    if response:
        raise HandshakeFailed(
            f"Failed to setup connection to port {port}: {bytes(response)!r}"
        )
    raise HandshakeFailed("Failed to establish connection. No OK response received.")


def open_channel(
    control_path: str,
    port: int,
    *,
    timeout: float = 5.0,
    retry_budget: int = 10,
    retry_delay: float = 0.1,
    base_dir: Optional[str] = None,
    socket_name: str = DEFAULT_SOCKET_NAME,
) -> socket.socket:
    """
    Connect to a control socket and run the CONNECT/OK handshake for `port`.

    Returns a blocking socket with no timeout left on it: the handshake
    deadline must not leak into an interactive session that may idle for a
    long time. A failed handshake closes the socket and is never retried.
    """
    if not isinstance(port, int) or isinstance(port, bool) or port < 0:
        raise ValueError(f"port must be a non-negative integer, got {port!r}")

    s = _connect(control_path, base_dir, socket_name)
    try:
        s.settimeout(timeout)
        line = f"{CMD_CONNECT} {port}\n"
        logger.debug("Sending: %s", line.strip())
        try:
            s.sendall(line.encode("ascii"))
        except OSError as e:
            raise HandshakeFailed(f"Failed to send CONNECT command: {e}") from e

        _await_ok(s, port, timeout, retry_budget, retry_delay)
        s.settimeout(None)
    except BaseException:
        s.close()
        raise

    logger.debug("Connection to port %d established", port)
    return s
