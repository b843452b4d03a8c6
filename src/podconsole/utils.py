import logging
import os
import sys

#########################################################################
## Environment helpers ##################################################
#########################################################################

def float_env(name: str, default: float) -> float:
    """Parse a float from the environment, gracefully falling back to default."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default

def int_env(name: str, default: int) -> int:
    """Parse an int from the environment, gracefully falling back to default."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value, 10)
    except ValueError:
        return default

#########################################################################
## Logging ##############################################################
#########################################################################

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

def verbosity_to_level(verbose: int) -> int:
    """Map a -v count to a logging level (warning, info, debug)."""
    if verbose <= 0:
        return logging.WARNING
    if verbose == 1:
        return logging.INFO
    return logging.DEBUG

def configure_logging(verbose: int = 0, stream=None) -> None:
    """
    Send log records to stderr. stdout carries relayed console bytes and must
    never receive diagnostics.
    """
    logging.basicConfig(
        level=verbosity_to_level(verbose),
        format=LOG_FORMAT,
        stream=stream if stream is not None else sys.stderr,
        force=True,
    )
