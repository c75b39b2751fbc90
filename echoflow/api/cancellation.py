from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Protocol, TypeVar

from echoflow.api.errors import ClientDisconnected


T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 0.25


class DisconnectAware(Protocol):
    async def is_disconnected(self) -> bool: ...


async def run_until_disconnected(
    request: DisconnectAware,
    awaitable: Awaitable[T],
    poll_interval: float = DISCONNECT_POLL_SECONDS,
) -> T:
    """Await ``awaitable`` while watching the caller's connection.

    If the client disconnects first, the in-flight work (and any upstream
    request it is waiting on) is cancelled and ``ClientDisconnected`` raised.
    """
    task: "asyncio.Future[Any]" = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if done:
                return task.result()
            if await request.is_disconnected():
                task.cancel()
                await asyncio.wait({task})
                raise ClientDisconnected("client closed request")
    finally:
        if not task.done():
            task.cancel()
