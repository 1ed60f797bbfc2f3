"""Logging helpers."""

import logging
import os

from contextlib import contextmanager

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def get_logger(name):
    return logging.getLogger(name)


def set_verbosity(verbose: bool) -> None:
    """Switch the root logger between INFO and DEBUG (CLI `--verbose`)."""
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)


@contextmanager
def suppress_fds():
    """Redirect FD 1 and 2 to /dev/null while native model code prints.

    InsightFace/onnxruntime write straight to the C-level descriptors, so
    swapping sys.stdout is not enough.
    """
    devnull = os.open(os.devnull, os.O_RDWR)
    old_stdout = os.dup(1)
    old_stderr = os.dup(2)
    try:
        os.dup2(devnull, 1)
        os.dup2(devnull, 2)
        yield
    finally:
        os.dup2(old_stdout, 1)
        os.dup2(old_stderr, 2)
        os.close(devnull)
        os.close(old_stdout)
        os.close(old_stderr)
