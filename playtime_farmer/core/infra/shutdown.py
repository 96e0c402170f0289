"""
Shutdown and signal handling module.

Signals set a process-wide shutdown event that the fleet runner watches.
"""

import asyncio
import os
import signal
import threading
from typing import Optional

from loguru import logger

# Global shutdown event for coordinating graceful shutdown - thread-safe singleton
_shutdown_event: Optional[asyncio.Event] = None
_shutdown_lock = threading.Lock()


def get_shutdown_event() -> Optional[asyncio.Event]:
    """Get shutdown event - thread-safe singleton pattern."""
    with _shutdown_lock:
        return _shutdown_event


def set_shutdown_event(event: Optional[asyncio.Event]) -> None:
    """Set shutdown event - thread-safe singleton pattern."""
    global _shutdown_event
    with _shutdown_lock:
        _shutdown_event = event


def request_shutdown(loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
    """
    Set the shutdown event.

    Args:
        loop: Loop owning the event; when given the event is set thread-safely

    Returns:
        False if there is no event or it was already set
    """
    event = get_shutdown_event()
    if event is None or event.is_set():
        return False
    if loop is not None:
        loop.call_soon_threadsafe(event.set)
    else:
        event.set()
    return True


def setup_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """
    Setup graceful shutdown handlers.

    The first SIGINT/SIGTERM asks every account to stop; a second one exits
    immediately (ledgers are already on disk up to the last checkpoint).

    Args:
        loop: Running event loop that owns the shutdown event
    """

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        if request_shutdown(loop):
            logger.info("Shutdown event set, waiting for accounts to log off...")
        else:
            logger.warning("Second signal received, forcing exit")
            os._exit(1)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)
