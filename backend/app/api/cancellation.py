"""Run blocking request work in the threadpool while watching for client disconnects."""
from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, TypeVar

from fastapi import Request
from starlette.concurrency import run_in_threadpool

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 0.25


async def _watch_disconnect(request: Request, cancel_event: threading.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def run_cancellable(request: Request, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call `func(*args, cancel_event=..., **kwargs)` in a worker thread.

    The event is set as soon as the client disconnects; `func` is expected to check it
    at safe points and abandon its work.
    """
    cancel_event = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        return await run_in_threadpool(func, *args, cancel_event=cancel_event, **kwargs)
    finally:
        watcher.cancel()
