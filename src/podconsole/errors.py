#########################################################################
## Error taxonomy #######################################################
#########################################################################

EXIT_OK = 0
EXIT_RESOLUTION = 1
EXIT_USAGE = 2
EXIT_CONNECTION = 3
EXIT_LOCAL_IO = 126


class ConsoleError(RuntimeError):
    """Base class for failures surfaced to the user with a distinct exit code."""
    exit_code = EXIT_LOCAL_IO


class ResolutionError(ConsoleError):
    exit_code = EXIT_RESOLUTION


class SandboxNotFound(ResolutionError):
    """No candidate sandbox matches the requested id or prefix."""

    def __init__(self, prefix: str, available: list[str], socket_dir: str):
        self.prefix = prefix
        self.available = list(available)
        self.socket_dir = socket_dir
        if self.available:
            msg = (
                f'No pod found with prefix "{prefix}". Available pods:\n  '
                + "\n  ".join(self.available)
            )
        else:
            msg = (
                f"No pods found in {socket_dir}. "
                "Please check if any pods are running."
            )
        super().__init__(msg)


class AmbiguousPrefix(ResolutionError):
    """More than one candidate starts with the prefix; never auto-picked."""

    def __init__(self, prefix: str, matches: list[str]):
        self.prefix = prefix
        self.matches = list(matches)
        super().__init__(
            f'Pod prefix "{prefix}" matches multiple pods:\n  '
            + "\n  ".join(self.matches)
            + "\nPlease provide a more specific prefix."
        )


class ConnectionFailed(ConsoleError):
    exit_code = EXIT_CONNECTION


class HandshakeFailed(ConnectionFailed):
    """Connected to the control socket but no affirmative response arrived."""


class LocalIoFailure(ConsoleError):
    exit_code = EXIT_LOCAL_IO


class CommandRejected(ConsoleError):
    """A one-shot command failed validation before any socket write."""
    exit_code = EXIT_USAGE
