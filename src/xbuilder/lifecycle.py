"""
Signal-driven cancellation of a pipeline run.

Usage:
    from xbuilder.cancellation import CancellationToken
    from xbuilder.lifecycle import cancel_on_signals

    cancel = CancellationToken()
    with cancel_on_signals(cancel):
        result = pipeline.run(cancel)
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from types import FrameType
from typing import Any

from xbuilder.cancellation import CancellationToken

# Type alias for signal handlers
SignalHandler = Callable[[int, FrameType | None], Any] | int | None

logger = logging.getLogger(__name__)


@contextmanager
def cancel_on_signals(
    token: CancellationToken,
    signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[CancellationToken]:
    """Cancel ``token`` when one of ``signals`` arrives.

    Handlers can only be installed from the main thread; elsewhere this is a
    no-op and the caller is responsible for cancelling the token. The
    previous handlers are restored on exit.
    """
    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not on main thread, signal handlers not installed")
        yield token
        return

    def _handle_signal(signum: int, frame: FrameType | None) -> None:
        signal_name = signal.Signals(signum).name
        logger.info("Received %s, cancelling run", signal_name)
        # Cancel from a separate thread so callbacks never run inside the handler
        threading.Thread(target=token.cancel, args=(f"received {signal_name}",), daemon=True).start()

    original: dict[signal.Signals, SignalHandler] = {}
    for sig in signals:
        original[sig] = signal.signal(sig, _handle_signal)
    logger.debug("Cancellation handlers installed (%s)", ", ".join(s.name for s in signals))

    try:
        yield token
    finally:
        for sig, handler in original.items():
            signal.signal(sig, handler)
        logger.debug("Cancellation handlers uninstalled")
