import logging
import os
from dataclasses import dataclass

from podconsole.config import DEFAULT_SOCKET_NAME
from podconsole.errors import AmbiguousPrefix, SandboxNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SandboxRef:
    """A resolved sandbox id and the control socket that serves it."""
    id: str
    control_socket_path: str


def control_socket_path(base_dir: str, sandbox_id: str, socket_name: str = DEFAULT_SOCKET_NAME) -> str:
    return os.path.join(base_dir, sandbox_id, socket_name)


def list_sandboxes(base_dir: str, socket_name: str = DEFAULT_SOCKET_NAME) -> list[str]:
    """
    Return the sorted ids of every subdirectory of base_dir that holds a
    control socket. A missing base_dir yields an empty list.
    """
    if not os.path.isdir(base_dir):
        return []

    ids = []
    with os.scandir(base_dir) as entries:
        for entry in entries:
            if not entry.is_dir():
                continue
            if os.path.exists(os.path.join(entry.path, socket_name)):
                ids.append(entry.name)
    ids.sort()
    return ids


def resolve_sandbox(base_dir: str, prefix: str, socket_name: str = DEFAULT_SOCKET_NAME) -> SandboxRef:
    """Resolve an id or unique prefix to a SandboxRef, re-scanning base_dir every call."""
    available = list_sandboxes(base_dir, socket_name)

    # An exact id wins even when longer ids share it as a prefix.
    if prefix in available:
        logger.debug("Exact match found for pod id: %s", prefix)
        return SandboxRef(prefix, control_socket_path(base_dir, prefix, socket_name))

    matches = [pod for pod in available if pod.startswith(prefix)]
    if not matches:
        logger.debug("No matching sandbox found for: %s", prefix)
        raise SandboxNotFound(prefix, available, base_dir)
    if len(matches) > 1:
        logger.debug("Multiple matches found for %s: %s", prefix, matches)
        raise AmbiguousPrefix(prefix, matches)

    resolved = matches[0]
    logger.info('Resolved pod prefix "%s" to "%s"', prefix, resolved)
    return SandboxRef(resolved, control_socket_path(base_dir, resolved, socket_name))
