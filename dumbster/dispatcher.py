#!/usr/bin/env python3

import asyncio


class ConnectionDispatcher:
    """Decides how an accepted connection's handler is scheduled."""

    async def dispatch(self, handler):
        raise NotImplementedError


class SerialDispatcher(ConnectionDispatcher):
    """One dialogue at a time; later connections wait their turn unanswered."""

    def __init__(self):
        self._lock = asyncio.Lock()

    @property
    def busy(self):
        return self._lock.locked()

    async def dispatch(self, handler):
        async with self._lock:
            return await handler()


class ConcurrentDispatcher(ConnectionDispatcher):
    """Every connection runs in its own task as soon as it is accepted."""

    async def dispatch(self, handler):
        return await handler()


def dispatcher_for(threaded):
    return ConcurrentDispatcher() if threaded else SerialDispatcher()
