"""
pollenwall CLI Utilities

Glue between the click entry point and the long running polling loop.
"""

import signal
import threading
from contextlib import contextmanager

from pollenwall.poller import PollenPoller

STOP_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM") if hasattr(signal, name)
)


@contextmanager
def stop_on_signals(poller: PollenPoller, signals: tuple = STOP_SIGNALS):
    """
    Turn SIGINT/SIGTERM into a graceful stop of poller for the duration of the block and
    restore the previous handlers afterwards.

    Handlers can only be installed from the main thread; anywhere else the block runs
    without them and the poller has to be stopped by other means.
    """

    previous = {}

    if threading.current_thread() is threading.main_thread():
        for signum in signals:
            previous[signum] = signal.signal(signum, lambda *_: poller.stop())

    try:
        yield poller

    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
