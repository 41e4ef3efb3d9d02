"""Signal helpers.
"""
import signal

from contextlib import contextmanager
from typing import Iterable


all_signals = signal.valid_signals()


@contextmanager
def blocked_signals(signals: Iterable[signal.Signals] = all_signals):
    """Block signals for the calling thread within the with statement.

    Threads started inside inherit the mask, which leaves signal delivery to
    the threads that did not block them.
    """
    old_mask = signal.pthread_sigmask(signal.SIG_BLOCK, signals)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)
