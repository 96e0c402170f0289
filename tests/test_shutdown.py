"""Tests for the process-wide shutdown event."""

import asyncio
import signal

import pytest

from playtime_farmer.core.infra import shutdown


@pytest.fixture(autouse=True)
def clear_event():
    shutdown.set_shutdown_event(None)
    yield
    shutdown.set_shutdown_event(None)


def test_request_without_event():
    assert shutdown.request_shutdown() is False


@pytest.mark.asyncio
async def test_request_sets_event_once():
    event = asyncio.Event()
    shutdown.set_shutdown_event(event)

    assert shutdown.request_shutdown() is True
    assert event.is_set()
    assert shutdown.request_shutdown() is False


@pytest.mark.asyncio
async def test_thread_safe_request():
    event = asyncio.Event()
    shutdown.set_shutdown_event(event)

    assert shutdown.request_shutdown(asyncio.get_running_loop()) is True
    await asyncio.wait_for(event.wait(), timeout=1)


@pytest.mark.asyncio
async def test_signal_handler_requests_shutdown(monkeypatch):
    installed = {}
    monkeypatch.setattr(
        shutdown.signal, "signal", lambda sig, handler: installed.update({sig: handler})
    )
    exits = []
    monkeypatch.setattr(shutdown.os, "_exit", exits.append)
    event = asyncio.Event()
    shutdown.set_shutdown_event(event)

    shutdown.setup_signal_handlers(asyncio.get_running_loop())
    installed[signal.SIGTERM](signal.SIGTERM, None)
    await asyncio.wait_for(event.wait(), timeout=1)
    installed[signal.SIGINT](signal.SIGINT, None)

    assert set(installed) == {signal.SIGTERM, signal.SIGINT}
    assert exits == [1]
